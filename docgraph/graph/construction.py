"""
Stage 2 graph construction for DocGraph.

Re-scans chunks that Stage 1 stored but nobody has linked yet
(``metadata.processed`` not true), asks the model for entities and
relations, and writes them into the graph:

    chunk  -[mentions]->   entity
    entity -[related_to]-> entity   (relation, reason)

Entity ids are canonical, so "Bob" from two different chunks lands on the
same node. Each chunk is marked processed once its writes are done, which
makes the stage resumable: an interrupted run simply continues with the
chunks still unmarked.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from docgraph.db.graph_store import (
    CHUNK,
    ENTITY,
    MENTIONS,
    RELATED_TO,
    Node,
    NodeQuery,
    RecordRef,
    utc_now,
)
from docgraph.exceptions import ExtractionError
from docgraph.ingest.canonicalizer import entity_ref, is_storable_id
from docgraph.ingest.extractor import ExtractionResult

logger = logging.getLogger(__name__)


@dataclass
class ConstructionReport:
    """Result of one Stage 2 run."""

    chunks_selected: int = 0
    chunks_linked: int = 0
    chunks_failed: int = 0
    entities_upserted: int = 0
    mentions_created: int = 0
    relations_created: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    def summary(self) -> str:
        if not self.chunks_selected:
            return "No unlinked chunks"
        text = (
            f"Linked {self.chunks_linked} of {self.chunks_selected} chunks: "
            f"{self.entities_upserted} entities, {self.mentions_created} mentions, "
            f"{self.relations_created} relations, {self.chunks_failed} failed "
            f"({self.elapsed_seconds:.1f}s)"
        )
        if self.cancelled:
            text += " [cancelled]"
        return text


class GraphConstructionStage:
    """
    Stage 2: link unprocessed chunks into the knowledge graph.

    Usage:
        with build_context() as ctx:
            report = GraphConstructionStage(ctx).run(limit=20)
    """

    def __init__(self, context):
        self.context = context
        self.config = context.config
        self.store = context.store
        self.client = context.link_client

    def pending_chunks(self, limit: Optional[int] = None) -> list[Node]:
        """Oldest chunks not yet marked processed."""
        return self.store.select(
            NodeQuery(
                table=CHUNK,
                not_true=["metadata.processed"],
                order_by="created_at",
                limit=limit,
            )
        )

    def run(
        self,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ConstructionReport:
        """
        Link one batch of chunks.

        Args:
            limit: Batch size (default LINK_BATCH_SIZE)
            cancel_event: Checked before each chunk

        Returns:
            ConstructionReport with counts
        """
        start_time = time.time()
        report = ConstructionReport()

        if limit is None:
            limit = self.config.LINK_BATCH_SIZE

        chunks = self.pending_chunks(limit)
        report.chunks_selected = len(chunks)
        if not chunks:
            logger.info("No unlinked chunks")
            return report

        logger.info(f"Linking {len(chunks)} chunks")
        for position, chunk in enumerate(chunks, start=1):
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                break
            logger.info(f"Linking chunk {position}/{len(chunks)} ({chunk.id})")
            self.link_chunk(chunk, report)

        self.store.flush()

        report.elapsed_seconds = time.time() - start_time
        logger.info(report.summary())
        return report

    def link_chunk(self, chunk: Node, report: ConstructionReport) -> None:
        """Extract, write entities and relations, mark processed."""
        try:
            result = self.client.extract(chunk.get("content") or "")
        except ExtractionError as e:
            # Marked anyway so one bad chunk cannot stall every later batch
            logger.warning(f"Extraction failed for chunk {chunk.id}: {e}")
            self._mark_processed(chunk, entity_count=0, relation_count=0, error=str(e))
            report.chunks_failed += 1
            return

        entity_count, relation_count = self._write_result(chunk.ref, result, report)
        self._mark_processed(chunk, entity_count=entity_count, relation_count=relation_count)
        report.chunks_linked += 1

    def _upsert_entity(self, ref: RecordRef, name: str, category: str, description: str) -> None:
        existing = self.store.get_node(ref)
        created_at = existing.get("created_at") if existing is not None else None
        self.store.upsert_node(
            ENTITY,
            ref.local_id,
            {
                "name": name,
                "category": category,
                "description": description,
                "created_at": created_at or utc_now(),
            },
        )

    def _write_result(
        self,
        chunk_ref: RecordRef,
        result: ExtractionResult,
        report: ConstructionReport,
    ) -> tuple[int, int]:
        mentioned: set[RecordRef] = set()

        for candidate in result.entity_candidates():
            ref = entity_ref(candidate.name)
            if not is_storable_id(ref.local_id):
                logger.debug(f"Skipping entity without usable id: {candidate.name!r}")
                continue

            self._upsert_entity(ref, candidate.name, candidate.category, candidate.summary)
            if ref in mentioned:
                continue
            mentioned.add(ref)
            self.store.relate(
                MENTIONS, chunk_ref, ref, {"name": candidate.name, "created_at": utc_now()}
            )

        report.entities_upserted += len(mentioned)
        report.mentions_created += len(mentioned)

        relation_count = 0
        known = set(mentioned)
        for relation in result.relation_triples():
            head, tail = entity_ref(relation.head), entity_ref(relation.tail)
            if not is_storable_id(head.local_id) or not is_storable_id(tail.local_id):
                logger.debug(f"Skipping relation without usable ids: {relation}")
                continue

            for ref, name in ((head, relation.head), (tail, relation.tail)):
                if ref in known:
                    continue
                known.add(ref)
                existing = self.store.get_node(ref)
                if existing is None or not existing.content:
                    self._upsert_entity(ref, name, "Unknown", "")
                    report.entities_upserted += 1

            self.store.relate(
                RELATED_TO,
                head,
                tail,
                {
                    "relation": relation.relation,
                    "reason": relation.reason,
                    "created_at": utc_now(),
                },
            )
            relation_count += 1

        report.relations_created += relation_count
        return len(mentioned), relation_count

    def _mark_processed(
        self,
        chunk: Node,
        entity_count: int,
        relation_count: int,
        error: Optional[str] = None,
    ) -> None:
        metadata = dict(chunk.metadata)
        metadata.update(
            {
                "processed": True,
                "linked_at": utc_now(),
                "entity_count": entity_count,
                "relation_count": relation_count,
            }
        )
        if error is not None:
            metadata["link_error"] = error
        self.store.update_node(chunk.ref, {"metadata": metadata})
