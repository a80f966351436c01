"""
Upload submission and status queries, the surface used by the API layer.
"""

import uuid
from pathlib import Path
from typing import BinaryIO

from catalog_ingest.batch.readers import SPREADSHEET_EXTENSIONS, file_extension
from catalog_ingest.core.exceptions import UnsupportedFileTypeError
from catalog_ingest.core.models import (
    ChunkView,
    Upload,
    UploadKind,
    UploadStatus,
    UploadStatusView,
)
from catalog_ingest.observability.logger import get_logger
from catalog_ingest.observability.metrics import increment_counter, uploads_submitted_total

logger = get_logger(__name__)

ARCHIVE_EXTENSIONS = frozenset({"zip"})


def upload_kind_for(filename: str) -> UploadKind:
    """
    Raises:
        UnsupportedFileTypeError: If the extension is neither a spreadsheet nor a ZIP
    """
    extension = file_extension(filename)
    if extension in ARCHIVE_EXTENSIONS:
        return UploadKind.ARCHIVE
    if extension in SPREADSHEET_EXTENSIONS:
        return UploadKind.SPREADSHEET
    raise UnsupportedFileTypeError(f"Unsupported file type: {filename}")


class IngestionService:
    """
    Accepts uploads and reports their progress.
    """

    def __init__(self, uploads, blob_store, scheduler):
        self.uploads = uploads
        self.blob_store = blob_store
        self.scheduler = scheduler

    def submit_upload(self, stream: BinaryIO, filename: str, batch_id: str | None = None) -> int:
        """
        Stage a file and queue its analysis.

        Args:
            stream: File contents
            filename: Original file name (drives the format)
            batch_id: Grouping key (a new UUID when omitted)

        Returns:
            Upload id; analysis runs asynchronously

        Raises:
            UnsupportedFileTypeError: If the file type is not accepted
        """
        kind = upload_kind_for(filename)
        name = Path(filename).name
        blob_key = self.blob_store.stage(stream, name)

        upload = self.uploads.create_upload(
            Upload(
                original_filename=name,
                kind=kind,
                batch_id=batch_id or str(uuid.uuid4()),
                blob_key=blob_key,
                dataset_context=Path(name).stem if kind == UploadKind.SPREADSHEET else None,
                processing_logs=[f"Upload received: {name}"],
            )
        )
        try:
            self.scheduler.schedule_analysis(upload.id)
        except Exception as e:
            self.uploads.transition(upload.id, UploadStatus.FAILED, f"Could not queue analysis: {e}")
            raise

        increment_counter(uploads_submitted_total, 1, kind=kind.value)
        logger.info(f"Upload accepted: {name}", extra={"upload_id": upload.id, "kind": kind.value})
        return upload.id

    def get_upload_status(self, upload_id: int) -> UploadStatusView:
        """
        Raises:
            UploadNotFoundError: If the upload does not exist
        """
        upload = self.uploads.get_upload(upload_id)
        chunks = self.uploads.list_chunks(upload_id)
        return UploadStatusView(
            upload_id=upload_id,
            status=upload.status,
            total=upload.total_record_count,
            processed=upload.processed_record_count,
            logs=list(upload.processing_logs),
            chunks_total=len(chunks),
            chunks_finished=sum(1 for c in chunks if c.status.is_terminal),
        )

    def list_chunks(self, upload_id: int) -> list[ChunkView]:
        """
        Raises:
            UploadNotFoundError: If the upload does not exist
        """
        self.uploads.get_upload(upload_id)
        return [
            ChunkView(
                sequence=chunk.sequence,
                status=chunk.status,
                created=chunk.created_count,
                updated=chunk.updated_count,
                error=chunk.error_message,
            )
            for chunk in self.uploads.list_chunks(upload_id)
        ]

    def find_stuck_uploads(self, older_than_seconds: int) -> list[Upload]:
        """Uploads still not terminal after ``older_than_seconds``."""
        return self.uploads.find_unfinished(older_than_seconds)
