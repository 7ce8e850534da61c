"""
Page extraction for DocGraph.

Turns a source file into an ordered list of page texts. The pipeline only
depends on the PageExtractor interface, so tests can feed pages directly.

Extractors:
- PDFParser: PyMuPDF, one string per PDF page
- ChatLogExtractor: exported chat logs (``[name] [time] message`` lines)
"""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

import fitz  # PyMuPDF

from docgraph.exceptions import InvalidConfiguration, PageExtractionError

logger = logging.getLogger(__name__)

# [name] [time] message
CHAT_LINE_RE = re.compile(r"\[(.*?)\] \[(.*?)\] (.*)")


class PageExtractor(ABC):
    """Source file -> ordered page texts."""

    # File suffixes (lowercase) this extractor accepts
    suffixes: tuple[str, ...] = ()

    def accepts(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes

    @abstractmethod
    def extract_pages(self, path: Path) -> list[str]:
        """
        Extract page texts in page order.

        Raises:
            PageExtractionError: the file cannot be read or decoded
        """


class PDFParser(PageExtractor):
    """
    PDF text extraction using PyMuPDF.

    Usage:
        parser = PDFParser()
        pages = parser.extract_pages(Path("paper.pdf"))
    """

    suffixes = (".pdf",)

    def __init__(self, strip_nul: bool = True):
        """
        Args:
            strip_nul: Remove NUL bytes (they break JSON and some stores)
        """
        self.strip_nul = strip_nul

    def extract_pages(self, path: Path) -> list[str]:
        path = Path(path)
        try:
            doc = fitz.open(path)
        except Exception as e:
            # fitz raises its own FileDataError as well as RuntimeError/OSError
            raise PageExtractionError(path, f"cannot open PDF: {e}") from e

        try:
            pages = []
            for page in doc:
                text = page.get_text() or ""
                if self.strip_nul:
                    text = text.replace("\x00", "")
                pages.append(text)
        except Exception as e:
            raise PageExtractionError(path, f"cannot read PDF text: {e}") from e
        finally:
            doc.close()

        logger.debug(f"Extracted {len(pages)} pages from {path.name}")
        return pages


def parse_chat_log(text: str) -> str:
    """
    Normalize an exported chat log.

    ``[name] [time] message`` becomes ``name: message``; timestamps carry
    no graph value. Other lines (date separators etc.) are kept as-is.
    """
    lines = []
    for line in text.splitlines():
        match = CHAT_LINE_RE.match(line)
        if match:
            lines.append(f"{match.group(1)}: {match.group(3)}")
        else:
            lines.append(line)
    return "\n".join(lines)


class ChatLogExtractor(PageExtractor):
    """Chat log export as a single page; pair it with window chunking."""

    suffixes = (".txt",)

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def extract_pages(self, path: Path) -> list[str]:
        path = Path(path)
        try:
            raw = path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise PageExtractionError(path, f"cannot read chat log: {e}") from e
        return [parse_chat_log(raw)]


EXTRACTORS = {
    "pdf": PDFParser,
    "chatlog": ChatLogExtractor,
}


def get_page_extractor(source_format: str) -> PageExtractor:
    """Instantiate the extractor for a source format ("pdf" or "chatlog")."""
    try:
        return EXTRACTORS[source_format]()
    except KeyError:
        raise InvalidConfiguration(f"Unknown source format: {source_format}") from None
