"""
Upload model and its status state machine.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class UploadKind(str, Enum):
    SPREADSHEET = "spreadsheet"
    ARCHIVE = "archive"


class UploadStatus(str, Enum):
    """
    Upload lifecycle.

    pending -> analyzing -> (processing | completed | failed)
    processing -> (completed | completed_with_errors | failed)

    pending -> failed is also allowed so an upload whose staging fails
    never lingers. Terminal states have no outgoing transitions.
    """

    PENDING = "pending"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        """Completed, fully or partially."""
        return self in (UploadStatus.COMPLETED, UploadStatus.COMPLETED_WITH_ERRORS)

    def can_transition_to(self, target: "UploadStatus") -> bool:
        return target in _TRANSITIONS.get(self, frozenset())

    @classmethod
    def sources_for(cls, target: "UploadStatus") -> list["UploadStatus"]:
        """States from which ``target`` may be entered."""
        return [source for source, targets in _TRANSITIONS.items() if target in targets]


TERMINAL_STATUSES = frozenset(
    {UploadStatus.COMPLETED, UploadStatus.COMPLETED_WITH_ERRORS, UploadStatus.FAILED}
)

_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.ANALYZING, UploadStatus.FAILED}),
    UploadStatus.ANALYZING: frozenset(
        {UploadStatus.PROCESSING, UploadStatus.COMPLETED, UploadStatus.FAILED}
    ),
    UploadStatus.PROCESSING: frozenset(
        {
            UploadStatus.COMPLETED,
            UploadStatus.COMPLETED_WITH_ERRORS,
            UploadStatus.FAILED,
        }
    ),
}


class Upload(BaseModel):
    """
    One submitted file, or one spreadsheet extracted from an archive.

    Attributes:
        id: Upload ID (PK, None until persisted)
        original_filename: Name the file was submitted or archived under
        kind: spreadsheet or archive
        status: Current lifecycle status
        batch_id: Opaque grouping key shared by an archive and its children
        blob_key: Key of the staged bytes in the blob store
        dataset_context: Dataset the records belong to (file stem for spreadsheets)
        staged_archive_key: Archive bytes kept for the image association pass
        total_record_count: Data rows (spreadsheets) or sum over children (archives)
        processed_record_count: Records created or updated
        processing_logs: Append-only operator log
        parent_upload_id: Archive upload this spreadsheet was extracted from
        enrichment_dispatched_at: Set once when enrichment has been dispatched
        created_at: When the upload was accepted
        completed_at: When the upload reached a terminal status
    """

    id: int | None = None
    original_filename: str = Field(..., min_length=1)
    kind: UploadKind
    status: UploadStatus = UploadStatus.PENDING
    batch_id: str = Field(..., min_length=1)
    blob_key: str | None = None
    dataset_context: str | None = None
    staged_archive_key: str | None = None
    total_record_count: int | None = Field(default=None, ge=0)
    processed_record_count: int = Field(default=0, ge=0)
    processing_logs: list[str] = Field(default_factory=list)
    parent_upload_id: int | None = None
    enrichment_dispatched_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None

    @model_validator(mode="after")
    def check_invariants(self) -> "Upload":
        if (
            self.total_record_count is not None
            and self.processed_record_count > self.total_record_count
        ):
            raise ValueError("processed_record_count cannot exceed total_record_count")
        if self.parent_upload_id is not None and self.kind == UploadKind.ARCHIVE:
            raise ValueError("an archive member cannot itself be an archive")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "id": 42,
                "original_filename": "hydraulics.xlsx",
                "kind": "spreadsheet",
                "status": "processing",
                "batch_id": "5f0c4d9e-0b51-4c38-a1a2-3c1c7e0f3a11",
                "dataset_context": "hydraulics",
                "total_record_count": 1200,
                "processed_record_count": 0,
                "processing_logs": ["File chunked into 3 chunks of up to 500 rows (1200 rows)"],
            }
        }


class UploadStatusView(BaseModel):
    """Status summary returned to API callers."""

    upload_id: int
    status: UploadStatus
    total: int | None
    processed: int
    logs: list[str]
    chunks_total: int = 0
    chunks_finished: int = 0

    @property
    def progress_percent(self) -> float:
        if self.status.is_terminal:
            return 100.0
        if self.chunks_total == 0:
            return 0.0
        return round(100.0 * self.chunks_finished / self.chunks_total, 1)
