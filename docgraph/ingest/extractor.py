"""
Structured extraction for DocGraph.

Sends one unit of text to an OpenAI-compatible chat endpoint (llama-server
by default) with a schema-bearing system prompt and turns the reply into a
typed result. Two output schemas are supported through strategies chosen
when the client is built:

    graph     {"entities": [...], "relations": [...]}
    analysis  {"topic", "summary", "key_entities", "detailed_data"}

Model output goes through json_repair before strict decoding.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, TypedDict, Union

import httpx

from docgraph.config import Config
from docgraph.exceptions import ExtractionError, InvalidConfiguration, NetworkError, ParseError
from docgraph.ingest.json_repair import parse_json
from docgraph.prompts import DOCUMENT_ANALYSIS_PROMPT, GRAPH_EXTRACTION_PROMPT, format_prompt

logger = logging.getLogger(__name__)


# =============================================================================
# Type Definitions (prevents key errors in dict handling)
# =============================================================================


class EntityDict(TypedDict, total=False):
    """Entity object as emitted by the model."""

    name: str
    category: str
    summary: str


class RelationDict(TypedDict, total=False):
    """Relation object as emitted by the model."""

    head: str
    relation: str
    tail: str
    reason: str


@dataclass
class ExtractedEntity:
    """A single entity candidate."""

    name: str
    category: str = "Unknown"
    summary: str = ""


@dataclass
class ExtractedRelation:
    """A directed (head, relation, tail) triple with its justification."""

    head: str
    relation: str
    tail: str
    reason: str = ""


@dataclass
class GraphExtraction:
    """Result of the graph variant."""

    entities: list[ExtractedEntity] = field(default_factory=list)
    relations: list[ExtractedRelation] = field(default_factory=list)
    ok: bool = True
    error: Optional[str] = None
    kind: str = "graph"

    def entity_candidates(self) -> list[ExtractedEntity]:
        return list(self.entities)

    def relation_triples(self) -> list[ExtractedRelation]:
        return list(self.relations)

    def to_metadata(self) -> dict:
        return asdict(self)


@dataclass
class DocumentAnalysis:
    """Result of the analysis variant."""

    topic: str = ""
    summary: str = ""
    key_entities: list[str] = field(default_factory=list)
    detailed_data: dict[str, Any] = field(default_factory=dict)
    ok: bool = True
    error: Optional[str] = None
    kind: str = "analysis"

    def entity_candidates(self) -> list[ExtractedEntity]:
        return [ExtractedEntity(name=name, category="Keyword") for name in self.key_entities]

    def relation_triples(self) -> list[ExtractedRelation]:
        return []

    def to_metadata(self) -> dict:
        return asdict(self)


ExtractionResult = Union[GraphExtraction, DocumentAnalysis]


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _object_list(value: Any) -> list:
    """A list field; a lone object or string counts as a one-item list."""
    if isinstance(value, (dict, str)):
        return [value]
    return value if isinstance(value, list) else []


# =============================================================================
# Strategies
# =============================================================================


class ExtractionStrategy(ABC):
    """Prompt + schema + parser for one output shape."""

    name: str = ""
    prompt_template: str = ""
    max_input_chars: Optional[int] = None

    def system_prompt(self, language: str) -> str:
        return format_prompt(self.prompt_template, language=language)

    def prepare_input(self, text: str) -> str:
        if self.max_input_chars and len(text) > self.max_input_chars:
            return text[: self.max_input_chars]
        return text

    @abstractmethod
    def parse(self, data: dict) -> ExtractionResult:
        """Build the typed result from decoded JSON."""

    @abstractmethod
    def default(self, error: str) -> ExtractionResult:
        """Failure-marked empty result."""


class GraphExtractionStrategy(ExtractionStrategy):
    """Entities and relations for the knowledge graph."""

    name = "graph"
    prompt_template = GRAPH_EXTRACTION_PROMPT

    def parse(self, data: dict) -> GraphExtraction:
        entities = []
        for item in _object_list(data.get("entities")):
            if isinstance(item, str):
                item = {"name": item}
            if not isinstance(item, dict):
                continue
            name = _text(item.get("name"))
            if not name:
                continue
            entities.append(
                ExtractedEntity(
                    name=name,
                    category=_text(item.get("category")) or "Unknown",
                    summary=_text(item.get("summary")),
                )
            )

        relations = []
        for item in _object_list(data.get("relations")):
            if not isinstance(item, dict):
                continue
            head, tail = _text(item.get("head")), _text(item.get("tail"))
            if not head or not tail:
                continue
            relations.append(
                ExtractedRelation(
                    head=head,
                    relation=_text(item.get("relation")) or "related_to",
                    tail=tail,
                    reason=_text(item.get("reason")),
                )
            )

        return GraphExtraction(entities=entities, relations=relations)

    def default(self, error: str) -> GraphExtraction:
        return GraphExtraction(ok=False, error=error)


class AnalysisStrategy(ExtractionStrategy):
    """
    Topic / summary / key entities for a page.

    Also accepts the older title/tags/keywords shape: title becomes the
    topic, tags and keywords are folded into key_entities.
    """

    name = "analysis"
    prompt_template = DOCUMENT_ANALYSIS_PROMPT
    # Long inputs make summaries slow on small local models
    max_input_chars = 2000

    def parse(self, data: dict) -> DocumentAnalysis:
        key_entities = []
        for key in ("key_entities", "keywords", "tags"):
            for name in _string_list(data.get(key)):
                if name not in key_entities:
                    key_entities.append(name)

        detailed = data.get("detailed_data")
        return DocumentAnalysis(
            topic=_text(data.get("topic")) or _text(data.get("title")),
            summary=_text(data.get("summary")),
            key_entities=key_entities,
            detailed_data=detailed if isinstance(detailed, dict) else {},
        )

    def default(self, error: str) -> DocumentAnalysis:
        return DocumentAnalysis(topic="Untitled", ok=False, error=error)


STRATEGIES = {
    GraphExtractionStrategy.name: GraphExtractionStrategy,
    AnalysisStrategy.name: AnalysisStrategy,
}


def get_strategy(name: str) -> ExtractionStrategy:
    """Instantiate a strategy by name ("graph" or "analysis")."""
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise InvalidConfiguration(f"Unknown extraction strategy: {name}") from None


# =============================================================================
# Client
# =============================================================================


class ExtractionClient:
    """
    Extract structured data from text using a local chat-completions server.

    Usage:
        with ExtractionClient("http://127.0.0.1:8081/v1", GraphExtractionStrategy()) as client:
            result = client.extract_or_default("Bob works at Acme.")
            for entity in result.entity_candidates():
                print(entity.name, entity.category)
    """

    def __init__(
        self,
        base_url: str,
        strategy: ExtractionStrategy,
        model: str = "gpt-3.5-turbo",
        temperature: float = 0.1,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        language: str = "the same language as the input text",
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize client.

        Args:
            base_url: API root, e.g. http://127.0.0.1:8081/v1
            strategy: Output schema strategy
            model: Model name or server alias
            temperature: Sampling temperature (keep low for stable JSON)
            max_tokens: Upper bound on generated tokens
            timeout: HTTP timeout in seconds
            language: Language the model must answer in
            http_client: Pre-built client (tests); owned clients are closed on close()
        """
        self.base_url = base_url
        self.strategy = strategy
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.language = language
        self._client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_config(cls, config: Config, strategy_name: str) -> "ExtractionClient":
        return cls(
            base_url=config.INFERENCE_BASE_URL,
            strategy=get_strategy(strategy_name),
            model=config.INFERENCE_MODEL,
            temperature=config.INFERENCE_TEMPERATURE,
            max_tokens=config.INFERENCE_MAX_TOKENS,
            timeout=config.INFERENCE_TIMEOUT,
            language=config.OUTPUT_LANGUAGE,
        )

    @property
    def client(self) -> httpx.Client:
        """Lazy load HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def build_payload(self, text: str) -> dict:
        """Chat request for one unit of text."""
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.strategy.system_prompt(self.language)},
                {"role": "user", "content": self.strategy.prepare_input(text)},
            ],
            # 0.0 can get stuck repeating itself on small models
            "temperature": self.temperature,
            "top_p": 0.9,
            "frequency_penalty": 1.1,
            "max_tokens": self.max_tokens,
            "stream": False,
            "response_format": {"type": "json_object"},
        }

    def complete(self, text: str) -> str:
        """
        Send one chat request and return the raw assistant message.

        Raises:
            NetworkError: transport failure or non-2xx status
            ParseError: response envelope has no message content
        """
        logger.debug(f"Requesting {self.strategy.name} extraction from {self.endpoint}")

        try:
            response = self.client.post(self.endpoint, json=self.build_payload(text))
        except httpx.HTTPError as e:
            raise NetworkError(f"Inference request failed: {e}") from e

        if not response.is_success:
            raise NetworkError(
                f"Inference server returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ParseError(f"No content in response: {e}", raw=response.text) from e

        if not isinstance(content, str):
            raise ParseError("Message content is not a string", raw=response.text)

        return content

    def extract(self, text: str) -> ExtractionResult:
        """
        Complete, repair and parse.

        Raises:
            ExtractionError: NetworkError or ParseError
        """
        raw = self.complete(text)
        data = parse_json(raw)
        logger.debug(f"Parsed {self.strategy.name} result: {data}")
        try:
            return self.strategy.parse(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise ParseError(f"Unexpected {self.strategy.name} result shape: {e}", raw=raw) from e

    def extract_or_default(self, text: str) -> ExtractionResult:
        """Like extract(), but failures become the strategy's default result."""
        try:
            return self.extract(text)
        except ExtractionError as e:
            logger.warning(f"{self.strategy.name} extraction failed: {e}")
            return self.strategy.default(str(e))

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

