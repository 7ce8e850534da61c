"""
Dict-backed graph stores for DocGraph.

InMemoryGraphStore is the reference implementation of GraphStore (used by
tests and short-lived runs). JsonFileGraphStore adds a JSON snapshot on
disk so the CLI works without any database server.
"""

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from docgraph.db.graph_store import (
    Edge,
    GraphStore,
    Node,
    NodeQuery,
    RecordRef,
    resolve_field,
)
from docgraph.exceptions import DuplicateNodeError, NodeNotFoundError, StorageError

logger = logging.getLogger(__name__)


def _sort_key(field_name: str):
    def key(node: Node):
        value = resolve_field(node.content, field_name)
        return (value is None, value if value is not None else 0)
    return key


class InMemoryGraphStore(GraphStore):
    """
    Graph store kept in process memory.

    ``write_count`` counts every node or edge write, which lets callers
    check that a pass was a pure no-op.
    """

    def __init__(self):
        self._nodes: dict[str, dict[str, dict]] = {}
        self._edges: list[Edge] = []
        self._lock = threading.RLock()
        self.write_count = 0

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _table(self, table: str) -> dict[str, dict]:
        return self._nodes.setdefault(table, {})

    def create_node(self, table: str, id: str, content: dict) -> Node:
        with self._lock:
            rows = self._table(table)
            if id in rows:
                raise DuplicateNodeError(RecordRef(table, id))
            rows[id] = copy.deepcopy(content)
            self.write_count += 1
            return Node(RecordRef(table, id), copy.deepcopy(rows[id]))

    def upsert_node(self, table: str, id: str, content: dict) -> Node:
        with self._lock:
            rows = self._table(table)
            rows[id] = copy.deepcopy(content)
            self.write_count += 1
            return Node(RecordRef(table, id), copy.deepcopy(rows[id]))

    def update_node(self, ref: RecordRef, fields: dict) -> Node:
        with self._lock:
            rows = self._table(ref.table)
            if ref.local_id not in rows:
                raise NodeNotFoundError(ref)
            rows[ref.local_id].update(copy.deepcopy(fields))
            self.write_count += 1
            return Node(ref, copy.deepcopy(rows[ref.local_id]))

    def get_node(self, ref: RecordRef) -> Optional[Node]:
        with self._lock:
            content = self._nodes.get(ref.table, {}).get(ref.local_id)
            if content is None:
                return None
            return Node(ref, copy.deepcopy(content))

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def relate(
        self,
        edge_table: str,
        from_ref: RecordRef,
        to_ref: RecordRef,
        props: Optional[dict] = None,
    ) -> Edge:
        with self._lock:
            for ref in (from_ref, to_ref):
                rows = self._table(ref.table)
                if ref.local_id not in rows:
                    logger.debug(f"Creating placeholder node {ref}")
                    rows[ref.local_id] = {}
            edge = Edge(edge_table, from_ref, to_ref, copy.deepcopy(props or {}))
            self._edges.append(edge)
            self.write_count += 1
            return copy.deepcopy(edge)

    def edges(self, edge_table: str) -> list[Edge]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._edges if e.table == edge_table]

    def related(
        self,
        edge_table: str,
        from_ref: RecordRef,
        order_by: Optional[str] = None,
    ) -> list[Node]:
        with self._lock:
            seen = set()
            nodes = []
            for edge in self._edges:
                if edge.table != edge_table or edge.source != from_ref:
                    continue
                if edge.target in seen:
                    continue
                seen.add(edge.target)
                node = self.get_node(edge.target)
                if node is not None:
                    nodes.append(node)
        if order_by:
            nodes.sort(key=_sort_key(order_by))
        return nodes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def select(self, query: NodeQuery) -> list[Node]:
        with self._lock:
            rows = list(self._nodes.get(query.table, {}).items())

        nodes = []
        for id, content in rows:
            if any(resolve_field(content, k) != v for k, v in query.equals.items()):
                continue
            if any(resolve_field(content, k) is True for k in query.not_true):
                continue
            nodes.append(Node(RecordRef(query.table, id), copy.deepcopy(content)))

        if query.order_by:
            nodes.sort(key=_sort_key(query.order_by), reverse=query.descending)
        if query.limit is not None:
            nodes = nodes[: query.limit]
        return nodes

    # ------------------------------------------------------------------
    # Snapshot helpers
    # ------------------------------------------------------------------

    def to_snapshot(self) -> dict:
        with self._lock:
            return {
                "nodes": copy.deepcopy(self._nodes),
                "edges": [
                    {
                        "table": e.table,
                        "source": str(e.source),
                        "target": str(e.target),
                        "props": copy.deepcopy(e.props),
                    }
                    for e in self._edges
                ],
            }

    def load_snapshot(self, snapshot: dict) -> None:
        with self._lock:
            self._nodes = copy.deepcopy(snapshot.get("nodes", {}))
            self._edges = [
                Edge(
                    e["table"],
                    RecordRef.parse(e["source"]),
                    RecordRef.parse(e["target"]),
                    e.get("props", {}),
                )
                for e in snapshot.get("edges", [])
            ]


class JsonFileGraphStore(InMemoryGraphStore):
    """
    In-memory store persisted as a JSON snapshot.

    The snapshot is read on open and written on flush()/close(). Writes
    go to a temporary file first and replace the snapshot atomically.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            try:
                snapshot = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise StorageError(f"Cannot read graph snapshot {self.path}: {e}") from e
            self.load_snapshot(snapshot)
            logger.info(f"Loaded graph snapshot from {self.path}")
        self._flushed_at = self.write_count

    def flush(self) -> None:
        if self.write_count == self._flushed_at and self.path.exists():
            return

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(self.to_snapshot(), ensure_ascii=False, indent=1),
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Cannot write graph snapshot {self.path}: {e}") from e

        self._flushed_at = self.write_count
        logger.debug(f"Graph snapshot written to {self.path}")
