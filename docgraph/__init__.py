"""
DocGraph - PDF to Knowledge Graph

Turns a directory of PDF documents into a persisted knowledge graph:
- Per-page text extraction (PyMuPDF)
- Structured extraction with a local OpenAI-compatible model
- Defensive JSON repair of model output
- Canonical entity ids for deduplication
- Two-stage, resumable graph construction (ingest, then link)
"""

__version__ = "0.3.0"
