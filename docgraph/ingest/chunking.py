"""
Text chunking for DocGraph.

Two ways of turning extracted pages into units for the model:
- Page mode: one unit per page (pages are already a natural chunk)
- Window mode: fixed-size character windows with overlap across the
  whole document

The window chunker rejects ``overlap >= size`` up front; with a
non-positive step the window would never advance.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from docgraph.exceptions import InvalidConfiguration


@dataclass
class Unit:
    """One piece of text sent to the model and stored as a Chunk node."""

    index: int
    text: str
    page_num: Optional[int] = None  # 1-based, page mode only

    def __len__(self) -> int:
        return len(self.text)


def _check_geometry(size: int, overlap: int) -> None:
    if size <= 0:
        raise InvalidConfiguration(f"chunk size must be positive, got {size}")
    if overlap < 0:
        raise InvalidConfiguration(f"chunk overlap must not be negative, got {overlap}")
    if overlap >= size:
        raise InvalidConfiguration(
            f"chunk overlap ({overlap}) must be smaller than chunk size ({size})"
        )


def chunk_text(text: str, size: int, overlap: int) -> list[str]:
    """
    Split text into overlapping fixed-size character windows.

    Args:
        text: Raw text
        size: Window size in characters
        overlap: Characters shared by consecutive windows (0 <= overlap < size)

    Returns:
        Trimmed, non-empty windows in document order. The last window may
        be shorter than ``size``.

    Raises:
        InvalidConfiguration: if the geometry would not advance the window
    """
    _check_geometry(size, overlap)

    if not text:
        return []

    step = size - overlap
    chunks = []
    start = 0

    while start < len(text):
        end = min(start + size, len(text))
        window = text[start:end].strip()
        if window:
            chunks.append(window)
        if end == len(text):
            break
        start += step

    return chunks


def build_units(
    pages: Sequence[str],
    mode: str = "page",
    size: int = 1000,
    overlap: int = 100,
) -> list[Unit]:
    """
    Turn ordered page texts into units.

    Args:
        pages: Page texts in reading order
        mode: "page" (one unit per non-blank page) or "window"
        size: Window size (window mode)
        overlap: Window overlap (window mode)

    Returns:
        Units with consecutive indexes starting at 0
    """
    if mode == "page":
        units = []
        for page_num, page in enumerate(pages, start=1):
            content = page.strip() if page else ""
            if content:
                units.append(Unit(index=len(units), text=content, page_num=page_num))
        return units

    if mode == "window":
        joined = "\n\n".join(p for p in pages if p and p.strip())
        return [
            Unit(index=i, text=window)
            for i, window in enumerate(chunk_text(joined, size, overlap))
        ]

    raise InvalidConfiguration(f"Unknown chunking mode: {mode}")
