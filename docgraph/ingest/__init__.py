"""
Ingestion for DocGraph.

Handles page extraction, chunking, structured extraction, JSON repair,
entity canonicalization and Stage 1 storage.
"""

from .canonicalizer import canonicalize, entity_ref
from .chunking import Unit, build_units, chunk_text
from .extractor import (
    AnalysisStrategy,
    DocumentAnalysis,
    ExtractionClient,
    GraphExtraction,
    GraphExtractionStrategy,
    get_strategy,
)
from .json_repair import parse_json, repair_json
from .pdf_parser import ChatLogExtractor, PageExtractor, PDFParser, parse_chat_log
from .pipeline import FileReport, IngestPipeline, IngestReport

__all__ = [
    "canonicalize",
    "entity_ref",
    "Unit",
    "build_units",
    "chunk_text",
    "AnalysisStrategy",
    "DocumentAnalysis",
    "ExtractionClient",
    "GraphExtraction",
    "GraphExtractionStrategy",
    "get_strategy",
    "parse_json",
    "repair_json",
    "ChatLogExtractor",
    "PageExtractor",
    "PDFParser",
    "parse_chat_log",
    "FileReport",
    "IngestPipeline",
    "IngestReport",
]
