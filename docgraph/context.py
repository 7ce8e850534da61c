"""
Pipeline context for DocGraph.

Everything a command needs (config, graph store, page extractor and the two
extraction clients) is built once here and passed explicitly. There are no
module-level connection handles.

Usage:
    from docgraph.context import build_context

    with build_context() as ctx:
        IngestPipeline(ctx).ingest_directory("docs/")
"""

import logging
from dataclasses import dataclass
from typing import Optional

from docgraph.config import Config, config as default_config
from docgraph.db import GraphStore, InMemoryGraphStore, JsonFileGraphStore
from docgraph.exceptions import InvalidConfiguration
from docgraph.ingest.extractor import ExtractionClient
from docgraph.ingest.pdf_parser import PageExtractor, get_page_extractor

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Collaborators shared by Stage 1, Stage 2 and the queries."""

    config: Config
    store: GraphStore
    page_extractor: PageExtractor
    ingest_client: ExtractionClient
    link_client: ExtractionClient

    def close(self) -> None:
        """Flush the store and release HTTP clients."""
        try:
            self.store.close()
        finally:
            self.ingest_client.close()
            self.link_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def build_store(cfg: Config) -> GraphStore:
    """Open the graph store selected by GRAPH_BACKEND."""
    backend = cfg.GRAPH_BACKEND

    if backend == "memory":
        return InMemoryGraphStore()

    if backend == "json":
        cfg.ensure_dirs()
        return JsonFileGraphStore(cfg.GRAPH_STORE_PATH)

    if backend == "neo4j":
        from docgraph.db.neo4j import Neo4jGraphStore

        store = Neo4jGraphStore.from_config(cfg)
        store.init_schema()
        return store

    raise InvalidConfiguration(f"Unknown GRAPH_BACKEND: {backend}")


def build_context(cfg: Optional[Config] = None) -> PipelineContext:
    """
    Validate configuration and build the context.

    Raises:
        InvalidConfiguration: if validate() reports any error
    """
    cfg = cfg or default_config

    errors = cfg.validate()
    if errors:
        raise InvalidConfiguration("; ".join(errors))

    store = build_store(cfg)
    logger.info(f"Using {cfg.GRAPH_BACKEND} graph store")

    return PipelineContext(
        config=cfg,
        store=store,
        page_extractor=get_page_extractor(cfg.SOURCE_FORMAT),
        ingest_client=ExtractionClient.from_config(cfg, cfg.INGEST_STRATEGY),
        link_client=ExtractionClient.from_config(cfg, cfg.LINK_STRATEGY),
    )
