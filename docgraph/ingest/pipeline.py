"""
Stage 1 ingestion for DocGraph.

Orchestrates: directory scan → page extraction → units → per-unit analysis
→ Document / Chunk nodes and their edges. Entity linking happens later in
Stage 2 (docgraph.graph.construction), which picks up every chunk whose
``metadata.processed`` flag is not set.

Failure handling:
- directory cannot be listed: OSError propagates, nothing is written
- file cannot be read: logged, file skipped
- unit analysis fails: stored with the strategy's default result (ok=False)
- store write fails: StorageError propagates and aborts the run
"""

import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from docgraph.db.graph_store import (
    CHUNK,
    CONTAINS,
    DOCUMENT,
    IMPORTED,
    SESSION,
    RecordRef,
    utc_now,
)
from docgraph.exceptions import PageExtractionError
from docgraph.ingest.chunking import Unit, build_units
from docgraph.ingest.extractor import DocumentAnalysis, ExtractionResult

logger = logging.getLogger(__name__)


@dataclass
class FileReport:
    """Result of ingesting a single file."""

    filename: str
    document_id: Optional[str] = None
    pages: int = 0
    units: int = 0
    chunks_created: int = 0
    failed_units: int = 0
    skipped: bool = False
    cancelled: bool = False
    error: Optional[str] = None
    elapsed_seconds: float = 0.0


@dataclass
class IngestReport:
    """Result of one ingest_directory() run."""

    directory: str
    session_id: Optional[str] = None
    files_seen: int = 0
    files_ingested: int = 0
    files_skipped: int = 0
    chunks_created: int = 0
    failed_units: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    files: list[FileReport] = field(default_factory=list)

    def summary(self) -> str:
        text = (
            f"Imported {self.files_ingested} of {self.files_seen} files from {self.directory}: "
            f"{self.chunks_created} chunks, {self.failed_units} failed units, "
            f"{self.files_skipped} files skipped ({self.elapsed_seconds:.1f}s)"
        )
        if self.cancelled:
            text += " [cancelled]"
        return text


def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def build_digest(
    path: Path,
    pages: list[str],
    units: list[Unit],
    results: list[Optional[ExtractionResult]],
) -> dict:
    """
    Document-level metadata from the per-unit results.

    Title, summary and tags come from the first successful analysis;
    keywords collect every entity candidate named by any successful unit.
    """
    title, summary, tags = "Untitled", "", []
    keywords: list[str] = []
    first = None

    for result in results:
        if result is None or not result.ok:
            continue
        if first is None and isinstance(result, DocumentAnalysis):
            first = result
        for candidate in result.entity_candidates():
            if candidate.name not in keywords:
                keywords.append(candidate.name)

    if first is not None:
        title = first.topic or title
        summary = first.summary
        tags = list(first.key_entities)

    return {
        "source_path": str(path),
        "page_count": len(pages),
        "unit_count": len(units),
        "analyzed_unit_count": sum(1 for r in results if r is not None),
        "failed_unit_count": sum(1 for r in results if r is not None and not r.ok),
        "title": title,
        "summary": summary,
        "tags": tags,
        "keywords": keywords,
    }


class IngestPipeline:
    """
    Stage 1: import a directory of documents into the graph store.

    Usage:
        with build_context() as ctx:
            report = IngestPipeline(ctx).ingest_directory("/path/to/pdfs")
            print(report.summary())
    """

    def __init__(self, context):
        """
        Args:
            context: PipelineContext with store, page extractor and ingest client
        """
        self.context = context
        self.config = context.config
        self.store = context.store
        self.extractor = context.page_extractor
        self.client = context.ingest_client

    # ------------------------------------------------------------------
    # Directory
    # ------------------------------------------------------------------

    def list_sources(self, directory: Path) -> list[Path]:
        """
        Files directly inside ``directory`` that the page extractor accepts,
        in sorted filename order.

        Raises:
            OSError: directory missing, not a directory or unreadable
        """
        directory = Path(directory)
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
        return [p for p in entries if p.is_file() and self.extractor.accepts(p)]

    def ingest_directory(
        self,
        directory: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> IngestReport:
        """
        Ingest every accepted file in a directory.

        Creates one Session node, then per file one Document node and one
        Chunk node per unit.

        Args:
            directory: Directory to scan (not recursive)
            cancel_event: Checked before each file and each unit

        Returns:
            IngestReport with counts
        """
        start_time = time.time()
        directory = Path(directory)
        report = IngestReport(directory=str(directory))

        sources = self.list_sources(directory)
        report.files_seen = len(sources)
        logger.info(f"Found {len(sources)} files in {directory}")

        session_ref = self.create_session(directory)
        report.session_id = session_ref.local_id

        for path in sources:
            if _is_cancelled(cancel_event):
                report.cancelled = True
                break

            file_report = self.ingest_file(path, session_ref, cancel_event)
            report.files.append(file_report)

            if file_report.skipped:
                report.files_skipped += 1
            else:
                report.files_ingested += 1
            report.chunks_created += file_report.chunks_created
            report.failed_units += file_report.failed_units

            if file_report.cancelled:
                report.cancelled = True
                break

        # Flush per run so a JSON snapshot survives a later crash
        self.store.flush()

        report.elapsed_seconds = time.time() - start_time
        logger.info(report.summary())
        return report

    def create_session(self, directory: Path) -> RecordRef:
        node = self.store.create_node(
            SESSION,
            uuid.uuid4().hex,
            {"summary": f"Import from {directory}", "created_at": utc_now()},
        )
        return node.ref

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def ingest_file(
        self,
        path: Path,
        session_ref: RecordRef,
        cancel_event: Optional[threading.Event] = None,
    ) -> FileReport:
        """Ingest one file under an existing session."""
        start_time = time.time()
        file_report = FileReport(filename=path.name)

        logger.info(f"Extracting pages: {path.name}")
        try:
            pages = self.extractor.extract_pages(path)
        except PageExtractionError as e:
            logger.warning(f"Skipping {path.name}: {e}")
            file_report.skipped = True
            file_report.error = str(e)
            return file_report

        units = build_units(
            pages,
            mode=self.config.CHUNKING_MODE,
            size=self.config.CHUNK_SIZE,
            overlap=self.config.CHUNK_OVERLAP,
        )
        file_report.pages = len(pages)
        file_report.units = len(units)

        if not units:
            logger.warning(f"Skipping {path.name}: no text extracted")
            file_report.skipped = True
            file_report.error = "No text extracted"
            return file_report

        document = self.store.create_node(
            DOCUMENT,
            uuid.uuid4().hex,
            {"filename": path.name, "created_at": utc_now(), "metadata": {}},
        )
        self.store.relate(IMPORTED, session_ref, document.ref, {"created_at": utc_now()})
        file_report.document_id = document.id

        results: list[Optional[ExtractionResult]] = []
        for unit, result in self._analyze_units(units, cancel_event):
            self._store_chunk(document.ref, unit, result)
            results.append(result)
            file_report.chunks_created += 1
            if result is not None and not result.ok:
                file_report.failed_units += 1

        if len(results) < len(units):
            file_report.cancelled = True
            logger.info(f"Cancelled {path.name} after {len(results)} of {len(units)} units")

        digest = build_digest(path, pages, units, results)
        self.store.update_node(document.ref, {"metadata": digest})

        file_report.elapsed_seconds = time.time() - start_time
        logger.info(
            f"Ingested {path.name}: {file_report.chunks_created} chunks, "
            f"{file_report.failed_units} failed in {file_report.elapsed_seconds:.1f}s"
        )
        return file_report

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    def _analyze(self, unit: Unit) -> Optional[ExtractionResult]:
        limit = self.config.MAX_UNITS_PER_FILE
        if limit and unit.index >= limit:
            return None
        return self.client.extract_or_default(unit.text)

    def _analyze_units(
        self,
        units: list[Unit],
        cancel_event: Optional[threading.Event],
    ) -> Iterator[tuple[Unit, Optional[ExtractionResult]]]:
        """
        Yield (unit, result) in unit order.

        With INFERENCE_PARALLELISM > 1 up to that many analyses run at once;
        results are still yielded in order. Stops submitting on cancel and
        lets in-flight units finish.
        """
        parallelism = self.config.INFERENCE_PARALLELISM

        if parallelism <= 1:
            for unit in units:
                if _is_cancelled(cancel_event):
                    return
                yield unit, self._analyze(unit)
            return

        with ThreadPoolExecutor(max_workers=parallelism) as pool:
            pending = deque()
            for unit in units:
                if _is_cancelled(cancel_event):
                    break
                pending.append((unit, pool.submit(self._analyze, unit)))
                if len(pending) >= parallelism:
                    done_unit, future = pending.popleft()
                    yield done_unit, future.result()
            while pending:
                done_unit, future = pending.popleft()
                yield done_unit, future.result()

    def _store_chunk(
        self,
        document_ref: RecordRef,
        unit: Unit,
        result: Optional[ExtractionResult],
    ) -> RecordRef:
        now = utc_now()
        chunk = self.store.create_node(
            CHUNK,
            uuid.uuid4().hex,
            {
                "content": unit.text,
                "index": unit.index,
                "page_num": unit.page_num,
                "embedding": [],
                "created_at": now,
                "metadata": {
                    "extraction": result.to_metadata() if result is not None else None,
                    "processed": False,
                },
            },
        )
        self.store.relate(CONTAINS, document_ref, chunk.ref, {"index": unit.index, "created_at": now})
        return chunk.ref
