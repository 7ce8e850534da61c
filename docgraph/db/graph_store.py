"""
Storage-agnostic graph store interface for DocGraph.

The pipeline only ever talks to ``GraphStore``. Backends (in-memory, JSON
snapshot, Neo4j) decide how a ``RecordRef`` maps onto the engine's own
identifiers.

Tables:
    session, document, chunk, entity

Edge tables:
    imported   (session  -> document)
    contains   (document -> chunk, ordered by index)
    mentions   (chunk    -> entity)
    related_to (entity   -> entity, carries relation + reason)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, NamedTuple, Optional

SESSION = "session"
DOCUMENT = "document"
CHUNK = "chunk"
ENTITY = "entity"

IMPORTED = "imported"
CONTAINS = "contains"
MENTIONS = "mentions"
RELATED_TO = "related_to"

NODE_TABLES = (SESSION, DOCUMENT, CHUNK, ENTITY)
EDGE_TABLES = (IMPORTED, CONTAINS, MENTIONS, RELATED_TO)


def utc_now() -> str:
    """Timestamp format used for every created_at field."""
    return datetime.now(timezone.utc).isoformat()


class RecordRef(NamedTuple):
    """Opaque (table, local id) reference to a stored node."""

    table: str
    local_id: str

    def __str__(self) -> str:
        return f"{self.table}:{self.local_id}"

    @classmethod
    def parse(cls, value: str) -> "RecordRef":
        """Parse the ``table:local_id`` string form."""
        table, sep, local_id = value.partition(":")
        if not sep or not table or not local_id:
            raise ValueError(f"Not a record reference: {value!r}")
        return cls(table, local_id)


@dataclass
class Node:
    """A stored node: its reference plus its content fields."""

    ref: RecordRef
    content: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.ref.local_id

    def get(self, key: str, default: Any = None) -> Any:
        return self.content.get(key, default)

    @property
    def metadata(self) -> dict[str, Any]:
        return self.content.get("metadata") or {}


@dataclass
class Edge:
    """A directed, typed edge. Edges are append-only."""

    table: str
    source: RecordRef
    target: RecordRef
    props: dict[str, Any] = field(default_factory=dict)


@dataclass
class NodeQuery:
    """
    Filtered select over one table.

    Field names may be dotted to address a key inside a map-valued field,
    e.g. ``metadata.processed``.

    Attributes:
        table: Table to select from
        equals: field -> value equality filters
        not_true: fields that must be missing or not ``True``
        order_by: field to sort by (None = unordered)
        descending: sort direction
        limit: maximum number of rows (None = all)
    """

    table: str
    equals: dict[str, Any] = field(default_factory=dict)
    not_true: list[str] = field(default_factory=list)
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None


def resolve_field(content: dict, path: str) -> Any:
    """Read a possibly dotted field from node content (None when missing)."""
    value: Any = content
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class GraphStore(ABC):
    """
    Abstract node/edge CRUD consumed by the pipeline.

    Node upsert and the edges created after it are independent calls; a
    crash in between leaves an entity without an edge, which a retry of
    the unit repairs because upsert is idempotent.
    """

    @abstractmethod
    def create_node(self, table: str, id: str, content: dict) -> Node:
        """Create a node. Raises DuplicateNodeError if the id exists."""

    @abstractmethod
    def upsert_node(self, table: str, id: str, content: dict) -> Node:
        """Create or replace a node."""

    @abstractmethod
    def update_node(self, ref: RecordRef, fields: dict) -> Node:
        """Merge top-level fields into an existing node. Raises NodeNotFoundError."""

    @abstractmethod
    def get_node(self, ref: RecordRef) -> Optional[Node]:
        """Fetch a node by reference."""

    @abstractmethod
    def relate(
        self,
        edge_table: str,
        from_ref: RecordRef,
        to_ref: RecordRef,
        props: Optional[dict] = None,
    ) -> Edge:
        """Create a directed edge. Missing endpoints become placeholder nodes."""

    @abstractmethod
    def select(self, query: NodeQuery) -> list[Node]:
        """Run a filtered select."""

    @abstractmethod
    def edges(self, edge_table: str) -> list[Edge]:
        """All edges of one edge table."""

    @abstractmethod
    def related(
        self,
        edge_table: str,
        from_ref: RecordRef,
        order_by: Optional[str] = None,
    ) -> list[Node]:
        """Targets of ``from_ref``'s outgoing edges in ``edge_table``."""

    def count(self, table: str) -> int:
        """Number of nodes in a table."""
        return len(self.select(NodeQuery(table=table)))

    def flush(self) -> None:
        """Persist buffered state (no-op for engines that write through)."""

    def close(self) -> None:
        """Release resources."""
        self.flush()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
