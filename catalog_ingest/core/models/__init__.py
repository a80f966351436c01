"""
Core data models for catalog ingestion.

All models use Pydantic for runtime validation and type safety.
"""

from .chunk import Chunk, ChunkRange, ChunkResult, ChunkStatus, ChunkTask, ChunkView
from .part import ImageCandidate, PartRecord, RecordKey, UpsertResult
from .upload import Upload, UploadKind, UploadStatus, UploadStatusView

__all__ = [
    "Upload",
    "UploadKind",
    "UploadStatus",
    "UploadStatusView",
    "Chunk",
    "ChunkRange",
    "ChunkResult",
    "ChunkStatus",
    "ChunkTask",
    "ChunkView",
    "PartRecord",
    "RecordKey",
    "UpsertResult",
    "ImageCandidate",
]
