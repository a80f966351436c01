"""
Batch ingestion: chunking, chunk workers, aggregation, archives.
"""

from .aggregation import (
    AggregationOutcome,
    ArchiveAggregator,
    UploadAggregator,
    backoff_delay,
    classify_children,
    classify_chunks,
)
from .archive import ArchiveExpander, ArchiveMember, MemberKind, classify_member, is_artifact
from .chunk_worker import ChunkWorker
from .chunking import Analysis, ChunkBuilder, plan_chunks, should_chunk
from .images import ImageAssociator, image_key, slugify
from .pipeline import IngestionPipeline

__all__ = [
    "AggregationOutcome",
    "ArchiveAggregator",
    "UploadAggregator",
    "backoff_delay",
    "classify_children",
    "classify_chunks",
    "ArchiveExpander",
    "ArchiveMember",
    "MemberKind",
    "classify_member",
    "is_artifact",
    "ChunkWorker",
    "Analysis",
    "ChunkBuilder",
    "plan_chunks",
    "should_chunk",
    "ImageAssociator",
    "image_key",
    "slugify",
    "IngestionPipeline",
]
