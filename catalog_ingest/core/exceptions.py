"""
Exception hierarchy for catalog ingestion.

Parse errors are fatal to an upload, storage/transport errors propagate
to the task queue retry policy, lookups that miss raise *NotFound errors.
"""


class CatalogIngestError(Exception):
    """Base class for all ingestion errors."""


class UnsupportedFileTypeError(CatalogIngestError):
    """Raised when a submitted file has an extension we cannot ingest."""


class SpreadsheetParseError(CatalogIngestError):
    """Raised when a spreadsheet cannot be read as its declared type."""


class ArchiveError(CatalogIngestError):
    """Raised when an archive is corrupt or contains unsafe member paths."""


class UploadNotFoundError(CatalogIngestError):
    """Raised when an upload id does not exist."""

    def __init__(self, upload_id: int):
        super().__init__(f"Upload {upload_id} not found")
        self.upload_id = upload_id


class ChunkNotFoundError(CatalogIngestError):
    """Raised when a chunk id does not exist."""

    def __init__(self, chunk_id: int):
        super().__init__(f"Chunk {chunk_id} not found")
        self.chunk_id = chunk_id


class InvalidStatusTransition(CatalogIngestError):
    """Raised when an upload status change violates the state machine."""

    def __init__(self, upload_id: int, current: str, target: str):
        super().__init__(
            f"Upload {upload_id} cannot move from '{current}' to '{target}'"
        )
        self.upload_id = upload_id
        self.current = current
        self.target = target


class BlobNotFoundError(CatalogIngestError):
    """Raised when a blob key does not exist in the store."""

    def __init__(self, key: str):
        super().__init__(f"Blob not found: {key}")
        self.key = key


class MatcherError(CatalogIngestError):
    """Raised when the external product matcher call fails."""
