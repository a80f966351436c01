"""
Chunk model: one bounded row range of an upload.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class ChunkStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ChunkStatus.COMPLETED, ChunkStatus.FAILED)


class ChunkRange(BaseModel):
    """
    Half-open range of 0-based data row offsets, header excluded.

    Attributes:
        sequence: 1-based position of the range within its upload
        start_row: First data row (inclusive)
        end_row: Last data row (exclusive)
    """

    sequence: int = Field(..., ge=1)
    start_row: int = Field(..., ge=0)
    end_row: int = Field(..., gt=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "ChunkRange":
        if self.end_row <= self.start_row:
            raise ValueError("end_row must be greater than start_row")
        return self

    @property
    def row_count(self) -> int:
        return self.end_row - self.start_row


class Chunk(ChunkRange):
    """
    Persisted chunk record.

    Once completed or failed a chunk never changes again.
    """

    id: int | None = None
    upload_id: int
    status: ChunkStatus = ChunkStatus.PENDING
    created_count: int = Field(default=0, ge=0)
    updated_count: int = Field(default=0, ge=0)
    processing_seconds: float | None = None
    error_message: str | None = None
    attempts: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    finished_at: datetime | None = None


class ChunkTask(BaseModel):
    """
    Full payload of one chunk worker task.

    Everything a worker needs travels in the message so no task
    depends on state held by another process.
    """

    chunk_id: int
    upload_id: int
    batch_id: str
    blob_key: str
    filename: str
    dataset_context: str
    headers: list[str]


class ChunkResult(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0
    duration_seconds: float = 0.0


class ChunkView(BaseModel):
    sequence: int
    status: ChunkStatus
    created: int
    updated: int
    error: str | None = None
