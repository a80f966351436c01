"""
Upload analysis orchestration.

Flow for a spreadsheet:  pending -> analyzing -> chunk builder
Flow for an archive:     pending -> analyzing -> expand -> one child upload
                         per dataset spreadsheet -> processing -> archive aggregator
"""

import shutil
import tempfile
from pathlib import Path

from catalog_ingest.core.exceptions import ArchiveError, BlobNotFoundError, InvalidStatusTransition
from catalog_ingest.core.models import Upload, UploadKind, UploadStatus
from catalog_ingest.observability.logger import get_logger, log_operation
from catalog_ingest.observability.metrics import (
    increment_counter,
    record_error,
    uploads_finalized_total,
)

from .archive import ArchiveExpander, ArchiveMember, MemberKind
from .chunking import ChunkBuilder, initial_aggregation_delay

logger = get_logger(__name__)


class IngestionPipeline:
    """
    Entry point of the analyze task.

    Steps:
    1. Claim the upload (pending -> analyzing)
    2. Spreadsheet: hand it to the chunk builder
    3. Archive: extract, create and analyze one child per dataset, stage
       the archive for image association, start the archive aggregator
    """

    def __init__(self, uploads, blob_store, scheduler, chunk_builder: ChunkBuilder,
                 expander: ArchiveExpander | None = None):
        self.uploads = uploads
        self.blob_store = blob_store
        self.scheduler = scheduler
        self.chunk_builder = chunk_builder
        self.expander = expander or ArchiveExpander()

    @property
    def settings(self):
        return self.chunk_builder.settings

    def analyze_upload(self, upload_id: int) -> Upload:
        """
        Analyze a pending upload.

        A redelivered task for an upload that already left pending is a no-op.

        Returns:
            The upload as it is after analysis
        """
        if not self.uploads.transition(upload_id, UploadStatus.ANALYZING):
            upload = self.uploads.get_upload(upload_id)
            logger.info(
                f"Upload is {upload.status.value}; analysis skipped",
                extra={"upload_id": upload_id},
            )
            return upload

        upload = self.uploads.get_upload(upload_id)
        try:
            with log_operation("Analyzing upload", logger=logger, upload_id=upload_id, kind=upload.kind.value):
                if upload.kind == UploadKind.ARCHIVE:
                    self._expand_archive(upload)
                else:
                    self.chunk_builder.analyze(upload)
        except Exception as e:
            # An upload must not stay in analyzing once its task has given up
            if not self.uploads.get_upload(upload_id).status.is_terminal:
                record_error(e, "analyzer")
                self._fail(upload, f"Analysis failed: {e}")
            raise
        return self.uploads.get_upload(upload_id)

    def _fail(self, upload: Upload, message: str) -> None:
        logger.error(message, extra={"upload_id": upload.id})
        if self.uploads.transition(upload.id, UploadStatus.FAILED, message):
            increment_counter(uploads_finalized_total, 1, kind=upload.kind.value, status="failed")

    def _expand_archive(self, upload: Upload) -> None:
        scratch = Path(tempfile.mkdtemp(prefix="catalog-archive-"))
        try:
            try:
                with self.blob_store.read(upload.blob_key) as stream:
                    members = self.expander.extract(stream, scratch)
            except (ArchiveError, BlobNotFoundError) as e:
                record_error(e, "archive_expander")
                self._fail(upload, f"Failed to extract {upload.original_filename}: {e}")
                self.blob_store.delete(upload.blob_key)
                return

            datasets = [m for m in members if m.kind == MemberKind.DATASET]
            images = [m for m in members if m.kind == MemberKind.IMAGE]
            documents = [m for m in members if m.kind == MemberKind.DOCUMENT]
            self.uploads.append_log(
                upload.id,
                f"Archive contains {len(datasets)} datasets, {len(images)} images, "
                f"{len(documents)} documents, {len(members) - len(datasets) - len(images) - len(documents)} other files",
            )

            if not datasets:
                self._fail(upload, "Archive contains no dataset spreadsheets")
                self.blob_store.delete(upload.blob_key)
                return

            if not self.uploads.transition(upload.id, UploadStatus.PROCESSING):
                logger.warning("Archive left analyzing during expansion", extra={"upload_id": upload.id})
                return

            for member in datasets:
                self._start_child(upload, member)

            if images:
                staged_key = f"staging/archives/{upload.id}/{Path(upload.original_filename).name}"
                self.blob_store.move(upload.blob_key, staged_key)
                self.uploads.update_upload(upload.id, staged_archive_key=staged_key, blob_key=None)
            else:
                self.blob_store.delete(upload.blob_key)
                self.uploads.update_upload(upload.id, blob_key=None)

            self.scheduler.schedule_archive_aggregation(
                upload.id,
                attempt=1,
                countdown=initial_aggregation_delay(len(datasets), self.settings),
            )
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    def _start_child(self, parent: Upload, member: ArchiveMember) -> None:
        """Stage one dataset spreadsheet and analyze it as a child upload."""
        with open(member.path, "rb") as f:
            child_key = self.blob_store.stage(f, member.name, prefix=f"uploads/archive-{parent.id}")

        child = self.uploads.create_upload(
            Upload(
                original_filename=member.name,
                kind=UploadKind.SPREADSHEET,
                batch_id=parent.batch_id,
                blob_key=child_key,
                dataset_context=member.stem,
                parent_upload_id=parent.id,
                processing_logs=[f"Part of archive: {parent.original_filename} ({member.archive_path})"],
            )
        )
        self.uploads.append_log(parent.id, f"Created child upload {child.id} for {member.archive_path}")

        try:
            if not self.uploads.transition(child.id, UploadStatus.ANALYZING):
                raise InvalidStatusTransition(
                    child.id, child.status.value, UploadStatus.ANALYZING.value
                )
            self.chunk_builder.analyze(self.uploads.get_upload(child.id))
        except Exception as e:
            # Siblings carry on; the child is terminal either way
            self.uploads.transition(child.id, UploadStatus.FAILED, f"Processing failed: {e}")
            record_error(e, "archive_expander")
            logger.error(
                f"Child upload {child.id} failed: {e}",
                extra={"upload_id": parent.id, "child_upload_id": child.id},
            )
            self.uploads.append_log(parent.id, f"Child upload {child.id} ({member.name}) failed: {e}")
