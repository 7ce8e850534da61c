"""
Centralized prompt templates for DocGraph.

All LLM prompts are defined here to make prompt engineering easier
and to ensure consistency across the codebase. Templates are formatted
with ``str.format``, so literal braces in the JSON schemas are doubled.
"""

# =============================================================================
# Knowledge Graph Extraction (graph variant)
# =============================================================================

GRAPH_EXTRACTION_PROMPT = """You are an AI assistant that converts text into a Knowledge Graph JSON.

### STRICT RULES ###
1. LANGUAGE: ALL values (summary, reason) MUST be written in {language}.
2. FORBIDDEN: Do NOT use Chinese characters unless they appear in the input. Do NOT add commentary outside the JSON.
3. FORMAT: Output ONLY valid JSON matching the schema below.
4. CONTENT: Extract clear entities and their interactions. Ignore trivial greetings and filler.

### JSON SCHEMA ###
{{
  "entities": [{{"name": "Person or Topic", "category": "Person/Tech/Issue/Organization/Event", "summary": "Short description"}}],
  "relations": [{{"head": "Subject", "relation": "action_in_snake_case", "tail": "Object", "reason": "Context from the text"}}]
}}

### ONE-SHOT EXAMPLE (Follow this pattern) ###
Input:
Kim: When is the server deployment this week?
Lee: Tomorrow at 2pm. I'm a bit worried about the DB migration though.

Output:
{{
  "entities": [
    {{"name": "Kim", "category": "Person", "summary": "Asked about the deployment schedule"}},
    {{"name": "Lee", "category": "Person", "summary": "Answered the schedule and raised a DB concern"}},
    {{"name": "Server Deployment", "category": "Event", "summary": "Planned for tomorrow at 2pm"}},
    {{"name": "DB Migration", "category": "Tech", "summary": "Task Lee is worried about"}}
  ],
  "relations": [
    {{"head": "Kim", "relation": "asked_about", "tail": "Server Deployment", "reason": "Asked for the schedule"}},
    {{"head": "Lee", "relation": "scheduled", "tail": "Server Deployment", "reason": "Planned for tomorrow at 2pm"}},
    {{"head": "Lee", "relation": "worried_about", "tail": "DB Migration", "reason": "Expects possible problems"}}
  ]
}}"""


# =============================================================================
# Page / Document Analysis (analysis variant)
# =============================================================================

DOCUMENT_ANALYSIS_PROMPT = """You are a Librarian AI.
Analyze the given text snippet.

Output JSON format:
{{
    "topic": "Concise title of what the text is about",
    "summary": "1-sentence summary written in {language}",
    "key_entities": ["Entity1", "Entity2", "Technical Term"],
    "detailed_data": {{"any": "structured facts worth keeping (numbers, dates, names)"}}
}}

Rules:
1. 'key_entities' must be specific nouns (e.g., 'Python', 'Transformer', 'Sam Altman').
2. Extract 3~5 key entities.
3. 'detailed_data' may be an empty object.
4. JSON only."""


# =============================================================================
# Helper Functions
# =============================================================================

def format_prompt(template: str, **kwargs) -> str:
    """
    Format a prompt template with the given arguments.

    Args:
        template: Prompt template string
        **kwargs: Values to substitute

    Returns:
        Formatted prompt string
    """
    return template.format(**kwargs)
