"""
Error taxonomy for DocGraph.

Where each error is handled:
- OSError (filesystem): fatal for the whole command
- PageExtractionError: the file is skipped
- NetworkError / ParseError: the unit is skipped with a default result
- StorageError: propagated, aborts the current command
"""


class DocGraphError(Exception):
    """Base class for all DocGraph errors."""


class InvalidConfiguration(DocGraphError, ValueError):
    """Raised when a setting cannot produce a valid run (e.g. overlap >= size)."""


class PageExtractionError(DocGraphError):
    """Raised when text cannot be extracted from a source file."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ExtractionError(DocGraphError):
    """Raised when the model could not produce a usable result for a unit."""


class NetworkError(ExtractionError):
    """Transport failure or non-2xx response from the inference endpoint."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ParseError(ExtractionError):
    """Model output could not be parsed, even after repair."""

    def __init__(self, message: str, raw: str | None = None):
        self.raw = raw
        super().__init__(message)


class StorageError(DocGraphError):
    """A write or read against the graph store failed."""


class DuplicateNodeError(StorageError):
    """create_node was called for an id that already exists."""

    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Node already exists: {ref}")


class NodeNotFoundError(StorageError):
    """update_node was called for a node that does not exist."""

    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Node not found: {ref}")
