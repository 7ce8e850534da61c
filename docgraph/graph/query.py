"""
Read-side queries for DocGraph.

- fetch_graph: nodes + links for a force-directed visualization
- list_documents: documents with their ordered chunks
- describe_node: one-line-per-field description of a clicked node
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from docgraph.db.graph_store import (
    CHUNK,
    CONTAINS,
    DOCUMENT,
    ENTITY,
    IMPORTED,
    MENTIONS,
    RELATED_TO,
    SESSION,
    GraphStore,
    NodeQuery,
)

logger = logging.getLogger(__name__)

VIEW_MODES = ("all", "knowledge")

# Visual weight per node group
NODE_SIZES = {
    SESSION: 20,
    DOCUMENT: 15,
    ENTITY: 12,
    CHUNK: 5,
}


@dataclass
class GraphNode:
    id: str
    group: str
    label: str
    val: int
    info: Optional[str] = None


@dataclass
class GraphLink:
    source: str
    target: str
    label: Optional[str] = None


@dataclass
class GraphData:
    """Visualization payload: ``{"nodes": [...], "links": [...]}``."""

    nodes: list[GraphNode] = field(default_factory=list)
    links: list[GraphLink] = field(default_factory=list)

    def to_dict(self) -> dict:
        def compact(item) -> dict:
            return {k: v for k, v in asdict(item).items() if v is not None}

        return {
            "nodes": [compact(n) for n in self.nodes],
            "links": [compact(link) for link in self.links],
        }


def fetch_graph(store: GraphStore, view_mode: str = "all", chunk_limit: int = 500) -> GraphData:
    """
    Build the visualization graph.

    Args:
        store: Graph store to read
        view_mode: "all" (sessions, documents, chunks, entities) or
            "knowledge" (entities and related_to only)
        chunk_limit: Maximum number of chunk nodes in "all" mode

    Returns:
        GraphData; links are kept only when both endpoints are in the node set

    Raises:
        ValueError: unknown view mode
    """
    if view_mode not in VIEW_MODES:
        raise ValueError(f"Unknown view mode: {view_mode!r} (expected one of {VIEW_MODES})")

    data = GraphData()

    if view_mode == "all":
        for node in store.select(NodeQuery(table=SESSION, order_by="created_at")):
            data.nodes.append(
                GraphNode(str(node.ref), SESSION, "Import Session", NODE_SIZES[SESSION])
            )
        for node in store.select(NodeQuery(table=DOCUMENT, order_by="created_at")):
            data.nodes.append(
                GraphNode(
                    str(node.ref), DOCUMENT, node.get("filename") or node.id, NODE_SIZES[DOCUMENT]
                )
            )

    for node in store.select(NodeQuery(table=ENTITY, order_by="name")):
        data.nodes.append(
            GraphNode(
                str(node.ref),
                ENTITY,
                node.get("name") or node.id,
                NODE_SIZES[ENTITY],
                info=node.get("category"),
            )
        )

    if view_mode == "all":
        for node in store.select(NodeQuery(table=CHUNK, order_by="created_at", limit=chunk_limit)):
            data.nodes.append(
                GraphNode(str(node.ref), CHUNK, f"p.{node.get('index')}", NODE_SIZES[CHUNK])
            )

    edge_tables = (IMPORTED, CONTAINS, MENTIONS, RELATED_TO) if view_mode == "all" else (RELATED_TO,)
    node_ids = {n.id for n in data.nodes}

    for edge_table in edge_tables:
        for edge in store.edges(edge_table):
            source, target = str(edge.source), str(edge.target)
            if source not in node_ids or target not in node_ids:
                continue
            label = edge.props.get("relation") if edge_table == RELATED_TO else None
            data.links.append(GraphLink(source, target, label))

    logger.info(f"Graph ({view_mode}): {len(data.nodes)} nodes, {len(data.links)} links")
    return data


def list_documents(store: GraphStore) -> list[dict]:
    """Documents, newest first, each with its chunks in index order."""
    documents = []
    for doc in store.select(NodeQuery(table=DOCUMENT, order_by="created_at", descending=True)):
        chunks = store.related(CONTAINS, doc.ref, order_by="index")
        documents.append(
            {
                "id": str(doc.ref),
                "filename": doc.get("filename"),
                "createdAt": doc.get("created_at"),
                "metadata": doc.metadata,
                "chunks": [
                    {
                        "id": str(chunk.ref),
                        "index": chunk.get("index"),
                        "content": chunk.get("content"),
                        "metadata": chunk.metadata,
                    }
                    for chunk in chunks
                ],
            }
        )
    return documents


def describe_node(group: str, node_id: str, label: str, info: Optional[str] = None) -> str:
    """Human-readable description of a clicked visualization node."""
    if group == ENTITY:
        return f"Entity\n- id: {node_id}\n- name: {label}\n- category: {info or 'unknown'}"
    if group == DOCUMENT:
        return f"Document\n- id: {node_id}\n- filename: {label}"
    if group == CHUNK:
        return f"Chunk\n- id: {node_id}\n- page: {label}"
    return f"Node\n- id: {node_id}\n- label: {label}"
