"""
Graph storage for DocGraph.

The pipeline depends only on the GraphStore interface:
    from docgraph.db import GraphStore, RecordRef, NodeQuery

Backends:
    InMemoryGraphStore  - process memory (tests, one-off runs)
    JsonFileGraphStore  - JSON snapshot on disk (default)
    Neo4jGraphStore     - from docgraph.db.neo4j import Neo4jGraphStore
"""

from .graph_store import (
    CHUNK,
    CONTAINS,
    DOCUMENT,
    ENTITY,
    IMPORTED,
    MENTIONS,
    RELATED_TO,
    SESSION,
    Edge,
    GraphStore,
    Node,
    NodeQuery,
    RecordRef,
)
from .memory import InMemoryGraphStore, JsonFileGraphStore

# The Neo4j backend is imported lazily by build_store() so the driver is
# only needed when that backend is selected.

__all__ = [
    "CHUNK",
    "CONTAINS",
    "DOCUMENT",
    "ENTITY",
    "IMPORTED",
    "MENTIONS",
    "RELATED_TO",
    "SESSION",
    "Edge",
    "GraphStore",
    "Node",
    "NodeQuery",
    "RecordRef",
    "InMemoryGraphStore",
    "JsonFileGraphStore",
]
