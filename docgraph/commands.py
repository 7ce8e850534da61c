"""
Command layer for DocGraph.

Thin functions over an explicit PipelineContext; the CLI (and any other
front end) calls these and never touches the pipeline classes directly.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from docgraph.exceptions import DocGraphError
from docgraph.graph import query
from docgraph.graph.construction import GraphConstructionStage
from docgraph.graph.query import GraphData
from docgraph.ingest.pipeline import IngestPipeline

logger = logging.getLogger(__name__)


def ingest(ctx, directory, cancel_event: Optional[threading.Event] = None) -> str:
    """
    Stage 1 over a directory.

    Returns the run summary; a failed run is reported as
    ``"Ingest failed: <reason>"`` instead of raising.
    """
    try:
        report = IngestPipeline(ctx).ingest_directory(Path(directory), cancel_event=cancel_event)
    except (OSError, DocGraphError) as e:
        logger.error(f"Ingest of {directory} failed: {e}")
        return f"Ingest failed: {e}"
    return report.summary()


def construct_graph(
    ctx,
    limit: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> str:
    """Stage 2 over one batch of unlinked chunks."""
    try:
        report = GraphConstructionStage(ctx).run(limit=limit, cancel_event=cancel_event)
    except DocGraphError as e:
        logger.error(f"Graph construction failed: {e}")
        return f"Graph construction failed: {e}"
    return report.summary()


def fetch_graph(ctx, view_mode: str = "all") -> GraphData:
    """Raises ValueError for an unknown view mode."""
    return query.fetch_graph(ctx.store, view_mode, chunk_limit=ctx.config.GRAPH_CHUNK_LIMIT)


def list_documents(ctx) -> list[dict]:
    return query.list_documents(ctx.store)


def describe_node(group: str, node_id: str, label: str, info: Optional[str] = None) -> str:
    message = query.describe_node(group, node_id, label, info)
    logger.info(message)
    return message
