"""
Pytest configuration and fixtures for DocGraph tests.
"""

import json
import threading
from pathlib import Path

import httpx
import pytest

from docgraph.config import Config
from docgraph.context import PipelineContext
from docgraph.db import InMemoryGraphStore
from docgraph.exceptions import PageExtractionError
from docgraph.ingest.extractor import (
    AnalysisStrategy,
    ExtractionClient,
    GraphExtractionStrategy,
)
from docgraph.ingest.pdf_parser import PageExtractor

BASE_URL = "http://llm.test/v1"


# =============================================================================
# Fakes
# =============================================================================


def chat_completion(content) -> dict:
    """OpenAI-style chat completion body."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


class ScriptedLLM:
    """
    httpx.MockTransport handler that answers by matching the user turn.

    ``replies`` maps a substring of the user text to the reply: a content
    string, an httpx.Response, or an exception to raise.
    """

    def __init__(self, replies=None, default="{}"):
        self.replies = dict(replies or {})
        self.default = default
        self.requests = []
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        with self._lock:
            self.requests.append(payload)

        user_text = payload["messages"][-1]["content"]
        reply = self.default
        for key, value in self.replies.items():
            if key in user_text:
                reply = value
                break

        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=chat_completion(reply))

    def client(self, strategy) -> ExtractionClient:
        return ExtractionClient(
            BASE_URL,
            strategy,
            http_client=httpx.Client(transport=httpx.MockTransport(self)),
        )


class StaticPageExtractor(PageExtractor):
    """Pages keyed by filename; an exception value makes the file unreadable."""

    suffixes = (".pdf",)

    def __init__(self, pages: dict):
        self.pages = pages
        self.calls = []

    def extract_pages(self, path: Path) -> list[str]:
        self.calls.append(path.name)
        value = self.pages.get(path.name, [])
        if isinstance(value, Exception):
            raise PageExtractionError(path, str(value))
        return list(value)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_config(tmp_path):
    """Config isolated from the environment's backend and store path."""
    return Config(
        overrides={
            "GRAPH_BACKEND": "memory",
            "GRAPH_STORE_PATH": str(tmp_path / "graph.json"),
            "CHUNKING_MODE": "page",
            "INFERENCE_PARALLELISM": 1,
            "MAX_UNITS_PER_FILE": 0,
            "LINK_BATCH_SIZE": 50,
        }
    )


@pytest.fixture
def memory_store():
    return InMemoryGraphStore()


@pytest.fixture
def pdf_dir(tmp_path):
    """Factory: directory holding empty files with the given names."""

    def make(*names: str) -> Path:
        directory = tmp_path / "docs"
        directory.mkdir(exist_ok=True)
        for name in names:
            (directory / name).write_bytes(b"")
        return directory

    return make


@pytest.fixture
def make_context(test_config, memory_store):
    """
    Factory for a PipelineContext on an in-memory store.

    Args (of the factory):
        pages: filename -> page texts (or an exception)
        ingest_llm / link_llm: ScriptedLLM for Stage 1 / Stage 2
        **overrides: extra config overrides
    """

    def make(pages=None, ingest_llm=None, link_llm=None, **overrides):
        test_config.overrides.update(overrides)
        ingest_llm = ingest_llm or ScriptedLLM()
        link_llm = link_llm or ScriptedLLM()
        return PipelineContext(
            config=test_config,
            store=memory_store,
            page_extractor=StaticPageExtractor(pages or {}),
            ingest_client=ingest_llm.client(AnalysisStrategy()),
            link_client=link_llm.client(GraphExtractionStrategy()),
        )

    return make


@pytest.fixture
def graph_reply():
    """Factory for a graph-variant model reply."""

    def make(entities=(), relations=()) -> str:
        return json.dumps(
            {
                "entities": [
                    {"name": name, "category": category, "summary": f"{name} summary"}
                    for name, category in entities
                ],
                "relations": [
                    {"head": head, "relation": rel, "tail": tail, "reason": "stated"}
                    for head, rel, tail in relations
                ],
            }
        )

    return make


# =============================================================================
# Pytest markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (require a live Neo4j)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with -m 'not slow')"
    )
