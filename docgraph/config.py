"""
Centralized configuration for DocGraph.

All configuration values should be imported from this module.
Supports environment variable overrides (and a .env file) so the same
code runs against a local llama-server, a Neo4j instance or a plain
JSON snapshot on disk.
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


CHUNKING_MODES = ("page", "window")
SOURCE_FORMATS = ("pdf", "chatlog")
EXTRACTION_STRATEGIES = ("graph", "analysis")
GRAPH_BACKENDS = ("json", "memory", "neo4j")


def _find_project_root() -> Path:
    """Find project root by looking for pyproject.toml or .git."""
    current = Path(__file__).resolve().parent
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return current.parent


@dataclass
class Config:
    """DocGraph configuration.

    Values resolve in order: ``overrides`` (set by the CLI), environment,
    built-in default.
    """

    PROJECT_ROOT: Path = field(default_factory=_find_project_root)
    overrides: dict = field(default_factory=dict, repr=False)

    def _get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        if name in self.overrides and self.overrides[name] is not None:
            return str(self.overrides[name])
        return os.environ.get(name, default)

    # ==========================================================================
    # Inference endpoint (OpenAI-compatible, e.g. llama-server)
    # ==========================================================================
    @property
    def INFERENCE_BASE_URL(self) -> str:
        return self._get("INFERENCE_BASE_URL", "http://127.0.0.1:8081/v1")

    @property
    def INFERENCE_MODEL(self) -> str:
        # llama-server answers to whatever alias it was started with
        return self._get("INFERENCE_MODEL", "gpt-3.5-turbo")

    @property
    def INFERENCE_TIMEOUT(self) -> float:
        return float(self._get("INFERENCE_TIMEOUT", "120"))

    @property
    def INFERENCE_TEMPERATURE(self) -> float:
        return float(self._get("INFERENCE_TEMPERATURE", "0.1"))

    @property
    def INFERENCE_MAX_TOKENS(self) -> int:
        return int(self._get("INFERENCE_MAX_TOKENS", "4096"))

    @property
    def INFERENCE_PARALLELISM(self) -> int:
        return int(self._get("INFERENCE_PARALLELISM", "1"))

    # ==========================================================================
    # Chunking & extraction
    # ==========================================================================
    @property
    def SOURCE_FORMAT(self) -> str:
        return self._get("SOURCE_FORMAT", "pdf")

    @property
    def CHUNKING_MODE(self) -> str:
        return self._get("CHUNKING_MODE", "page")

    @property
    def CHUNK_SIZE(self) -> int:
        return int(self._get("CHUNK_SIZE", "1000"))

    @property
    def CHUNK_OVERLAP(self) -> int:
        return int(self._get("CHUNK_OVERLAP", "100"))

    @property
    def OUTPUT_LANGUAGE(self) -> str:
        return self._get("OUTPUT_LANGUAGE", "the same language as the input text")

    @property
    def INGEST_STRATEGY(self) -> str:
        return self._get("INGEST_STRATEGY", "analysis")

    @property
    def LINK_STRATEGY(self) -> str:
        return self._get("LINK_STRATEGY", "graph")

    @property
    def MAX_UNITS_PER_FILE(self) -> int:
        return int(self._get("MAX_UNITS_PER_FILE", "0"))

    @property
    def LINK_BATCH_SIZE(self) -> int:
        return int(self._get("LINK_BATCH_SIZE", "50"))

    @property
    def GRAPH_CHUNK_LIMIT(self) -> int:
        return int(self._get("GRAPH_CHUNK_LIMIT", "500"))

    # ==========================================================================
    # Graph store
    # ==========================================================================
    @property
    def GRAPH_BACKEND(self) -> str:
        return self._get("GRAPH_BACKEND", "json")

    @property
    def GRAPH_STORE_PATH(self) -> Path:
        return Path(self._get("GRAPH_STORE_PATH", str(self.PROJECT_ROOT / "data" / "graph.json")))

    @property
    def NEO4J_URI(self) -> str:
        return self._get("NEO4J_URI", "bolt://localhost:7687")

    @property
    def NEO4J_USER(self) -> str:
        return self._get("NEO4J_USER", "neo4j")

    @property
    def NEO4J_PASSWORD(self) -> str:
        return self._get("NEO4J_PASSWORD", "")

    @property
    def NEO4J_DATABASE(self) -> str:
        return self._get("NEO4J_DATABASE", "neo4j")

    # ==========================================================================
    # Logging
    # ==========================================================================
    @property
    def LOG_LEVEL(self) -> str:
        return self._get("LOG_LEVEL", "INFO")

    # ==========================================================================
    # Validation
    # ==========================================================================
    def validate(self) -> list[str]:
        """Return list of configuration errors."""
        errors = []

        try:
            size, overlap = self.CHUNK_SIZE, self.CHUNK_OVERLAP
            if size <= 0:
                errors.append(f"CHUNK_SIZE must be positive, got {size}")
            if overlap < 0 or overlap >= size:
                errors.append(
                    f"CHUNK_OVERLAP must satisfy 0 <= overlap < CHUNK_SIZE, got {overlap}"
                )
        except ValueError as e:
            errors.append(f"Invalid chunk geometry: {e}")

        if self.CHUNKING_MODE not in CHUNKING_MODES:
            errors.append(f"Unknown CHUNKING_MODE: {self.CHUNKING_MODE}")
        if self.SOURCE_FORMAT not in SOURCE_FORMATS:
            errors.append(f"Unknown SOURCE_FORMAT: {self.SOURCE_FORMAT}")

        for name in ("INGEST_STRATEGY", "LINK_STRATEGY"):
            value = getattr(self, name)
            if value not in EXTRACTION_STRATEGIES:
                errors.append(f"Unknown {name}: {value}")

        if self.GRAPH_BACKEND not in GRAPH_BACKENDS:
            errors.append(f"Unknown GRAPH_BACKEND: {self.GRAPH_BACKEND}")
        elif self.GRAPH_BACKEND == "neo4j" and not self.NEO4J_PASSWORD:
            errors.append("NEO4J_PASSWORD not set")

        def number(name: str):
            try:
                return getattr(self, name)
            except ValueError:
                errors.append(f"{name} must be a number, got {self._get(name)!r}")
                return None

        for name in (
            "INFERENCE_TIMEOUT",
            "INFERENCE_TEMPERATURE",
            "INFERENCE_MAX_TOKENS",
            "GRAPH_CHUNK_LIMIT",
        ):
            number(name)

        parallelism = number("INFERENCE_PARALLELISM")
        if parallelism is not None and parallelism < 1:
            errors.append("INFERENCE_PARALLELISM must be at least 1")
        batch_size = number("LINK_BATCH_SIZE")
        if batch_size is not None and batch_size < 1:
            errors.append("LINK_BATCH_SIZE must be at least 1")
        max_units = number("MAX_UNITS_PER_FILE")
        if max_units is not None and max_units < 0:
            errors.append("MAX_UNITS_PER_FILE must be 0 (unlimited) or positive")

        return errors

    def ensure_dirs(self):
        """Create required directories if they don't exist."""
        if self.GRAPH_BACKEND == "json":
            self.GRAPH_STORE_PATH.parent.mkdir(parents=True, exist_ok=True)

    def as_dict(self) -> dict:
        """Effective settings, with secrets masked."""
        return {
            "INFERENCE_BASE_URL": self.INFERENCE_BASE_URL,
            "INFERENCE_MODEL": self.INFERENCE_MODEL,
            "INFERENCE_TIMEOUT": self.INFERENCE_TIMEOUT,
            "INFERENCE_TEMPERATURE": self.INFERENCE_TEMPERATURE,
            "INFERENCE_MAX_TOKENS": self.INFERENCE_MAX_TOKENS,
            "INFERENCE_PARALLELISM": self.INFERENCE_PARALLELISM,
            "SOURCE_FORMAT": self.SOURCE_FORMAT,
            "CHUNKING_MODE": self.CHUNKING_MODE,
            "CHUNK_SIZE": self.CHUNK_SIZE,
            "CHUNK_OVERLAP": self.CHUNK_OVERLAP,
            "OUTPUT_LANGUAGE": self.OUTPUT_LANGUAGE,
            "INGEST_STRATEGY": self.INGEST_STRATEGY,
            "LINK_STRATEGY": self.LINK_STRATEGY,
            "MAX_UNITS_PER_FILE": self.MAX_UNITS_PER_FILE,
            "LINK_BATCH_SIZE": self.LINK_BATCH_SIZE,
            "GRAPH_CHUNK_LIMIT": self.GRAPH_CHUNK_LIMIT,
            "GRAPH_BACKEND": self.GRAPH_BACKEND,
            "GRAPH_STORE_PATH": str(self.GRAPH_STORE_PATH),
            "NEO4J_URI": self.NEO4J_URI,
            "NEO4J_USER": self.NEO4J_USER,
            "NEO4J_PASSWORD": "***" if self.NEO4J_PASSWORD else "",
            "NEO4J_DATABASE": self.NEO4J_DATABASE,
            "LOG_LEVEL": self.LOG_LEVEL,
        }

    def __repr__(self) -> str:
        return (
            f"Config(\n"
            f"  PROJECT_ROOT={self.PROJECT_ROOT}\n"
            f"  INFERENCE_BASE_URL={self.INFERENCE_BASE_URL}\n"
            f"  GRAPH_BACKEND={self.GRAPH_BACKEND}\n"
            f"  CHUNKING_MODE={self.CHUNKING_MODE}\n"
            f")"
        )


# Global config instance
config = Config()
