"""
Neo4j backend for the DocGraph graph store.

Tables map to labels (chunk -> Chunk), edge tables to relationship types
(related_to -> RELATED_TO). Every node carries its local id in an ``id``
property with a uniqueness constraint per label.

Neo4j properties cannot hold maps, so map-valued fields (``metadata``) are
stored as JSON strings; their scalar leaves are mirrored as
``<field>__<key>`` properties so dotted filters such as
``metadata.processed`` can run server-side.
"""

import json
import logging
import re
from typing import Any, Optional

from neo4j import Driver, GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from docgraph.config import Config
from docgraph.db.graph_store import (
    NODE_TABLES,
    Edge,
    GraphStore,
    Node,
    NodeQuery,
    RecordRef,
)
from docgraph.exceptions import DuplicateNodeError, NodeNotFoundError, StorageError

logger = logging.getLogger(__name__)

JSON_FIELDS_KEY = "_json_fields"
LEAF_SEPARATOR = "__"
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def label_for(table: str) -> str:
    """session -> Session, related_to -> RelatedTo."""
    return "".join(part.capitalize() for part in table.split("_"))


def table_for(label: str) -> str:
    """Inverse of label_for."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", label).lower()


def rel_type_for(edge_table: str) -> str:
    return edge_table.upper()


def _identifier(name: str) -> str:
    """Guard names interpolated into Cypher (labels, types, properties)."""
    if not _IDENTIFIER_RE.match(name):
        raise StorageError(f"Invalid identifier for Cypher: {name!r}")
    return name


def _property_for(field_path: str) -> str:
    return _identifier(field_path.replace(".", LEAF_SEPARATOR))


def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def encode_properties(content: dict) -> dict:
    """Flatten node content into Neo4j-storable properties."""
    props: dict[str, Any] = {}
    json_fields = []

    for key, value in content.items():
        _identifier(key)
        if isinstance(value, dict):
            props[key] = json.dumps(value, ensure_ascii=False)
            json_fields.append(key)
            for leaf, leaf_value in value.items():
                if _is_scalar(leaf_value) and leaf_value is not None and _IDENTIFIER_RE.match(str(leaf)):
                    props[f"{key}{LEAF_SEPARATOR}{leaf}"] = leaf_value
        elif isinstance(value, list) and not all(_is_scalar(v) for v in value):
            props[key] = json.dumps(value, ensure_ascii=False)
            json_fields.append(key)
        elif value is not None:
            props[key] = value

    props[JSON_FIELDS_KEY] = json_fields
    return props


def decode_properties(props: dict) -> dict:
    """Inverse of encode_properties (drops the id and mirrored leaves)."""
    json_fields = set(props.get(JSON_FIELDS_KEY) or [])
    content = {}

    for key, value in props.items():
        if key in ("id", JSON_FIELDS_KEY) or LEAF_SEPARATOR in key:
            continue
        if key in json_fields and isinstance(value, str):
            content[key] = json.loads(value)
        else:
            content[key] = value

    return content


class Neo4jGraphStore(GraphStore):
    """
    GraphStore on top of the official neo4j driver.

    Usage:
        store = Neo4jGraphStore.from_config(config)
        store.init_schema()
        store.upsert_node("entity", "acme", {"name": "Acme"})
    """

    def __init__(self, driver: Driver, database: str = "neo4j"):
        self._driver = driver
        self.database = database

    @classmethod
    def from_config(cls, config: Config) -> "Neo4jGraphStore":
        logger.info(f"Creating Neo4j driver for {config.NEO4J_URI}")
        driver = GraphDatabase.driver(
            config.NEO4J_URI,
            auth=(config.NEO4J_USER, config.NEO4J_PASSWORD),
            max_connection_lifetime=3600,
            max_connection_pool_size=10,
        )
        return cls(driver, database=config.NEO4J_DATABASE)

    def _run(self, query: str, params: Optional[dict] = None) -> list[dict]:
        try:
            records, _, _ = self._driver.execute_query(
                query,
                parameters_=params or {},
                database_=self.database,
            )
        except (Neo4jError, DriverError) as e:
            raise StorageError(f"Neo4j query failed: {e}") from e
        return [record.data() for record in records]

    def init_schema(self) -> None:
        """Create one uniqueness constraint per node label."""
        for table in NODE_TABLES:
            label = label_for(table)
            self._run(
                f"CREATE CONSTRAINT {table}_id IF NOT EXISTS "
                f"FOR (n:{label}) REQUIRE n.id IS UNIQUE"
            )
        logger.info("Neo4j constraints ensured")

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def create_node(self, table: str, id: str, content: dict) -> Node:
        label = _identifier(label_for(table))
        rows = self._run(
            f"""
            OPTIONAL MATCH (existing:{label} {{id: $id}})
            WITH existing WHERE existing IS NULL
            CREATE (n:{label} {{id: $id}})
            SET n += $props
            RETURN properties(n) AS props
            """,
            {"id": id, "props": encode_properties(content)},
        )
        if not rows:
            raise DuplicateNodeError(RecordRef(table, id))
        return Node(RecordRef(table, id), decode_properties(rows[0]["props"]))

    def upsert_node(self, table: str, id: str, content: dict) -> Node:
        label = _identifier(label_for(table))
        props = encode_properties(content)
        props["id"] = id
        rows = self._run(
            f"""
            MERGE (n:{label} {{id: $id}})
            SET n = $props
            RETURN properties(n) AS props
            """,
            {"id": id, "props": props},
        )
        return Node(RecordRef(table, id), decode_properties(rows[0]["props"]))

    def update_node(self, ref: RecordRef, fields: dict) -> Node:
        current = self.get_node(ref)
        if current is None:
            raise NodeNotFoundError(ref)

        merged = {**current.content, **fields}
        props = encode_properties(merged)
        props["id"] = ref.local_id
        label = _identifier(label_for(ref.table))
        rows = self._run(
            f"""
            MATCH (n:{label} {{id: $id}})
            SET n = $props
            RETURN properties(n) AS props
            """,
            {"id": ref.local_id, "props": props},
        )
        if not rows:
            raise NodeNotFoundError(ref)
        return Node(ref, decode_properties(rows[0]["props"]))

    def get_node(self, ref: RecordRef) -> Optional[Node]:
        label = _identifier(label_for(ref.table))
        rows = self._run(
            f"MATCH (n:{label} {{id: $id}}) RETURN properties(n) AS props",
            {"id": ref.local_id},
        )
        if not rows:
            return None
        return Node(ref, decode_properties(rows[0]["props"]))

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
        from_label = _identifier(label_for(from_ref.table))
        to_label = _identifier(label_for(to_ref.table))
        rel_type = _identifier(rel_type_for(edge_table))
        edge_props = {k: v for k, v in (props or {}).items() if v is not None}

        self._run(
            f"""
            MERGE (a:{from_label} {{id: $from_id}})
            MERGE (b:{to_label} {{id: $to_id}})
            CREATE (a)-[r:{rel_type}]->(b)
            SET r = $props
            """,
            {"from_id": from_ref.local_id, "to_id": to_ref.local_id, "props": edge_props},
        )
        return Edge(edge_table, from_ref, to_ref, edge_props)

    def edges(self, edge_table: str) -> list[Edge]:
        rel_type = _identifier(rel_type_for(edge_table))
        rows = self._run(
            f"""
            MATCH (a)-[r:{rel_type}]->(b)
            RETURN labels(a)[0] AS a_label, a.id AS a_id,
                   labels(b)[0] AS b_label, b.id AS b_id,
                   properties(r) AS props
            """
        )
        return [
            Edge(
                edge_table,
                RecordRef(table_for(row["a_label"]), row["a_id"]),
                RecordRef(table_for(row["b_label"]), row["b_id"]),
                row.get("props") or {},
            )
            for row in rows
        ]

    def related(
        self,
        edge_table: str,
        from_ref: RecordRef,
        order_by: Optional[str] = None,
    ) -> list[Node]:
        label = _identifier(label_for(from_ref.table))
        rel_type = _identifier(rel_type_for(edge_table))
        order = f"ORDER BY b.{_property_for(order_by)}" if order_by else ""
        rows = self._run(
            f"""
            MATCH (a:{label} {{id: $id}})-[:{rel_type}]->(b)
            WITH DISTINCT b
            RETURN labels(b)[0] AS label, b.id AS id, properties(b) AS props
            {order}
            """,
            {"id": from_ref.local_id},
        )
        return [
            Node(RecordRef(table_for(row["label"]), row["id"]), decode_properties(row["props"]))
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def select(self, query: NodeQuery) -> list[Node]:
        label = _identifier(label_for(query.table))
        clauses = []
        params: dict[str, Any] = {}

        for i, (field_path, value) in enumerate(query.equals.items()):
            clauses.append(f"n.{_property_for(field_path)} = $eq_{i}")
            params[f"eq_{i}"] = value
        for field_path in query.not_true:
            clauses.append(f"coalesce(n.{_property_for(field_path)}, false) <> true")

        cypher = f"MATCH (n:{label})"
        if clauses:
            cypher += " WHERE " + " AND ".join(clauses)
        cypher += " RETURN n.id AS id, properties(n) AS props"
        if query.order_by:
            direction = " DESC" if query.descending else ""
            cypher += f" ORDER BY n.{_property_for(query.order_by)}{direction}"
        if query.limit is not None:
            cypher += " LIMIT $limit"
            params["limit"] = query.limit

        rows = self._run(cypher, params)
        return [
            Node(RecordRef(query.table, row["id"]), decode_properties(row["props"]))
            for row in rows
        ]

    def count(self, table: str) -> int:
        label = _identifier(label_for(table))
        rows = self._run(f"MATCH (n:{label}) RETURN count(n) AS count")
        return rows[0]["count"] if rows else 0

    def close(self) -> None:
        self._driver.close()
        logger.info("Neo4j driver closed")


