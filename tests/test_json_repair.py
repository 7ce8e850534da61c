"""
Tests for model output repair.
"""

import json

import pytest

from docgraph.exceptions import ParseError
from docgraph.ingest.json_repair import (
    close_truncated,
    parse_json,
    remove_empty_keys,
    remove_trailing_commas,
    repair_json,
    strip_code_fence,
)


def _balance(text: str) -> tuple[int, int]:
    return text.count("[") - text.count("]"), text.count("{") - text.count("}")


class TestStripCodeFence:
    """Tests for markdown fence removal."""

    def test_json_fence(self):
        """```json fences are removed."""
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        """Bare ``` fences are removed."""
        assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        """Unfenced text is only trimmed."""
        assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'

    def test_text_before_fence(self):
        """Chatter before the fence is dropped."""
        assert strip_code_fence('Here you go:\n```json\n{"a": 1}\n```') == '{"a": 1}'


class TestPasses:
    """Tests for the individual repair passes."""

    def test_trailing_comma_before_brace(self):
        """A comma before } is removed."""
        assert remove_trailing_commas('{"a": 1,}') == '{"a": 1}'

    def test_trailing_comma_before_bracket(self):
        """A comma before ] is removed, whitespace kept."""
        assert remove_trailing_commas('[1, 2, \n]') == '[1, 2 \n]'

    def test_empty_key_artifact(self):
        """Degenerate "": "..." members are removed."""
        assert remove_empty_keys('{"a": 1, "": "junk", "b": 2}') == '{"a": 1, "b": 2}'


class TestCloseTruncated:
    """Tests for closing truncated output."""

    def test_complete_object_untouched(self):
        """Text ending with } is returned as-is."""
        assert close_truncated('{"a": [1, 2]}') == '{"a": [1, 2]}'

    def test_missing_brace(self):
        """A single missing } is appended."""
        assert close_truncated('{"a": 1') == '{"a": 1}'

    def test_trailing_comma_then_closers(self):
        """A trailing comma is dropped before closing."""
        assert close_truncated('{"a": [1, 2,') == '{"a": [1, 2]}'

    def test_nested_closes_innermost_first(self):
        """Open structures are closed innermost first."""
        repaired = close_truncated('{"entities": [{"name": "Bob"')
        assert repaired == '{"entities": [{"name": "Bob"}]}'
        assert json.loads(repaired) == {"entities": [{"name": "Bob"}]}

    def test_open_string_closed(self):
        """A string cut off mid-value is closed."""
        repaired = close_truncated('{"summary": "works at Ac')
        assert json.loads(repaired) == {"summary": "works at Ac"}

    def test_brackets_inside_strings_ignored(self):
        """Brackets inside string literals are not counted."""
        repaired = close_truncated('{"reason": "see [1] and {x}"')
        assert json.loads(repaired) == {"reason": "see [1] and {x}"}

    def test_dangling_escape_dropped(self):
        """A trailing backslash inside an open string is dropped."""
        repaired = close_truncated('{"a": "line\\')
        assert json.loads(repaired) == {"a": "line"}

    def test_forces_brace(self):
        """If closers do not end with }, one is forced."""
        assert close_truncated("[1, 2").endswith("}")

    @pytest.mark.parametrize("missing", [1, 2, 3, 5])
    def test_balances_truncated_objects(self, missing):
        """An object missing N closers comes back balanced."""
        complete = '{"a": {"b": {"c": {"d": {"e": [1]}}}}}'
        truncated = complete[: len(complete) - missing]
        assert _balance(close_truncated(truncated)) == (0, 0)


class TestRepairJson:
    """Tests for the full repair pipeline."""

    def test_fenced_with_trailing_comma(self):
        """Fence and trailing comma are both repaired."""
        raw = '```json\n{"entities": [{"name": "Alice"},],}\n```'
        assert json.loads(repair_json(raw)) == {"entities": [{"name": "Alice"}]}

    def test_truncated_graph_output(self):
        """Typical token-limit truncation parses after repair."""
        raw = '{"entities": [{"name": "Alice", "category": "Person"}, {"name": "Bob", "category": "Per'
        data = json.loads(repair_json(raw))
        assert data["entities"][0]["name"] == "Alice"
        assert data["entities"][1]["name"] == "Bob"

    def test_idempotent(self):
        """Repairing repaired output changes nothing."""
        raw = '```json\n{"a": [1, 2,\n'
        once = repair_json(raw)
        assert repair_json(once) == once

    def test_none_input(self):
        """None is treated as empty output."""
        assert repair_json(None) == "}"


class TestParseJson:
    """Tests for strict decoding after repair."""

    def test_valid_object(self):
        """Valid JSON decodes unchanged."""
        assert parse_json('{"topic": "x"}') == {"topic": "x"}

    def test_repaired_object(self):
        """Repairable output decodes."""
        assert parse_json('{"topic": "x",') == {"topic": "x"}

    def test_garbage_raises(self):
        """Unrepairable output raises ParseError with the raw text."""
        with pytest.raises(ParseError) as exc_info:
            parse_json("I cannot help with that.")
        assert exc_info.value.raw == "I cannot help with that."

    def test_empty_raises(self):
        """Empty output raises ParseError."""
        with pytest.raises(ParseError):
            parse_json("")

    def test_array_raises(self):
        """A top-level array is rejected."""
        with pytest.raises(ParseError):
            parse_json('[{"a": 1}]')
