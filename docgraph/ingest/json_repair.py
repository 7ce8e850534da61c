"""
Best-effort repair of near-valid JSON emitted by local models.

Small quantized models often wrap their answer in a markdown fence, leave
trailing commas, emit ``"": "..."`` artifacts or simply stop mid-object
when they hit the token limit. ``repair_json`` undoes those in a fixed
order of independent, idempotent passes. The output is balanced but not
guaranteed to decode; ``parse_json`` raises ParseError in that case and
callers fall back to a default result.
"""

import json
import logging
import re

from docgraph.exceptions import ParseError

logger = logging.getLogger(__name__)

TRAILING_COMMA_RE = re.compile(r",(\s*[\]}])")
EMPTY_KEY_RE = re.compile(r'\s*""\s*:\s*".*?",?')


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    clean = text.strip()

    start = clean.find("```json")
    if start != -1:
        clean = clean[start + len("```json"):]
    else:
        start = clean.find("```")
        if start != -1:
            clean = clean[start + len("```"):]

    end = clean.rfind("```")
    if end != -1:
        clean = clean[:end]

    return clean.strip()


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket or brace."""
    return TRAILING_COMMA_RE.sub(r"\1", text)


def remove_empty_keys(text: str) -> str:
    """Drop degenerate ``"": "...",`` members."""
    return EMPTY_KEY_RE.sub("", text)


CLOSERS = {"[": "]", "{": "}"}


def _scan_unclosed(text: str) -> tuple[list[str], bool]:
    """
    Track '[' and '{' left open outside string literals.

    Returns:
        (open structures, innermost last; whether the text ends inside a string)
    """
    stack: list[str] = []
    in_string = False
    escaped = False

    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in CLOSERS:
            stack.append(ch)
        elif ch in ("]", "}"):
            # Stray closers are left for json.loads to reject
            if stack and CLOSERS[stack[-1]] == ch:
                stack.pop()

    return stack, in_string


def close_truncated(text: str) -> str:
    """
    Close a truncated object.

    Only acts when the text does not already end with '}'. A string cut
    off mid-value is closed first, then every open '[' / '{' is closed,
    innermost first. If the result still does not end with '}', one is
    forced.
    """
    if text.endswith("}"):
        return text

    clean = text.rstrip().rstrip(",").rstrip()

    stack, in_string = _scan_unclosed(clean)
    if in_string:
        if clean.endswith("\\"):
            clean = clean[:-1]
        clean += '"'

    clean = clean.rstrip().rstrip(",").rstrip()
    clean += "".join(CLOSERS[opener] for opener in reversed(stack))

    if not clean.endswith("}"):
        clean += "}"

    return clean


def repair_json(raw: str) -> str:
    """
    Repair model output so that it is syntactically closed.

    Args:
        raw: Assistant message text

    Returns:
        Repaired text, ready for ``json.loads``
    """
    clean = strip_code_fence(raw or "")
    clean = remove_trailing_commas(clean)
    clean = remove_empty_keys(clean)
    clean = close_truncated(clean)
    return clean


def parse_json(raw: str) -> dict:
    """
    Repair and strictly decode a JSON object.

    Raises:
        ParseError: if the repaired text is not a JSON object
    """
    repaired = repair_json(raw)
    try:
        data = json.loads(repaired)
    except json.JSONDecodeError as e:
        logger.debug(f"Unrepairable model output: {raw!r}")
        raise ParseError(f"Invalid JSON after repair: {e}", raw=raw) from e

    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}", raw=raw)

    return data
