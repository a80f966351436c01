"""
Upload and archive aggregators.

Aggregators are self-rescheduling checks: each run reads chunk or child
state from the database and either reschedules itself with capped
exponential backoff, or rolls the results up and finalizes the upload.
Runs are safe to repeat because chunk and upload terminal states are
written with guarded updates.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel

from catalog_ingest.core.config import IngestionSettings
from catalog_ingest.core.models import Chunk, ChunkStatus, Upload, UploadStatus
from catalog_ingest.observability.logger import get_logger
from catalog_ingest.observability.metrics import (
    aggregation_reschedules_total,
    increment_counter,
    record_error,
    stuck_uploads_total,
    uploads_finalized_total,
)

logger = get_logger(__name__)

ABANDONED_CHUNK_MESSAGE = "Abandoned after exceeding the aggregation wait limit"


class AggregationOutcome(BaseModel):
    action: Literal["rescheduled", "finalized", "already_final", "failed"]
    status: UploadStatus | None = None
    delay_seconds: int | None = None


def backoff_delay(attempt: int, base_seconds: int, cap_seconds: int) -> int:
    """min(base * 2^(attempt - 1), cap) for attempt >= 1."""
    exponent = max(attempt, 1) - 1
    # Avoid building huge ints for long-running polls
    if exponent >= 32:
        return cap_seconds
    return min(base_seconds * 2 ** exponent, cap_seconds)


def classify_chunks(completed: int, failed: int) -> UploadStatus:
    if completed == 0:
        return UploadStatus.FAILED
    if failed > 0:
        return UploadStatus.COMPLETED_WITH_ERRORS
    return UploadStatus.COMPLETED


def classify_children(children: list[Upload]) -> UploadStatus:
    """Archive status from its children's final statuses."""
    succeeded = [c for c in children if c.status.is_success]
    if not succeeded:
        return UploadStatus.FAILED
    if len(succeeded) < len(children) or any(
        c.status == UploadStatus.COMPLETED_WITH_ERRORS for c in children
    ):
        return UploadStatus.COMPLETED_WITH_ERRORS
    return UploadStatus.COMPLETED


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _PollingAggregator(ABC):
    """Shared rescheduling, stuck detection and abort handling."""

    name = "aggregator"

    def __init__(self, uploads, blob_store, scheduler, dispatcher, settings: IngestionSettings, clock=utcnow):
        self.uploads = uploads
        self.blob_store = blob_store
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.settings = settings
        self.clock = clock

    def _elapsed_seconds(self, upload: Upload) -> float:
        return (self.clock() - upload.created_at).total_seconds()

    def _exceeded_wait(self, upload: Upload) -> bool:
        return self._elapsed_seconds(upload) > self.settings.aggregation_max_wait_seconds

    def _next_delay(self, attempt: int) -> int:
        return backoff_delay(
            attempt,
            self.settings.aggregation_base_delay_seconds,
            self.settings.aggregation_max_delay_seconds,
        )

    @abstractmethod
    def _schedule(self, upload_id: int, attempt: int, delay: int) -> None:
        """Enqueue the next check of this aggregator."""

    def _reschedule(self, upload: Upload, attempt: int, waiting_on: int) -> AggregationOutcome:
        delay = self._next_delay(attempt)
        self._schedule(upload.id, attempt + 1, delay)
        increment_counter(aggregation_reschedules_total, 1, aggregator=self.name)
        logger.info(
            f"Waiting on {waiting_on} unfinished units; next check in {delay}s",
            extra={"upload_id": upload.id, "attempt": attempt},
        )
        return AggregationOutcome(action="rescheduled", status=upload.status, delay_seconds=delay)

    def _report_stuck(self, upload: Upload, unfinished: int) -> None:
        message = (
            f"Upload stuck: {unfinished} units unfinished after "
            f"{self._elapsed_seconds(upload):.0f}s; treating them as failed"
        )
        increment_counter(stuck_uploads_total, 1, aggregator=self.name)
        logger.error(message, extra={"upload_id": upload.id, "alert": "stuck_upload"})
        self.uploads.append_log(upload.id, message)

    def _record_final(self, upload: Upload, status: UploadStatus, message: str) -> None:
        increment_counter(uploads_finalized_total, 1, kind=upload.kind.value, status=status.value)
        log = logger.info if status != UploadStatus.FAILED else logger.warning
        log(message, extra={"upload_id": upload.id, "status": status.value})

    def _abort(self, upload_id: int, error: Exception) -> AggregationOutcome:
        record_error(error, f"{self.name}_aggregator")
        logger.error(
            f"Aggregation failed: {error}", extra={"upload_id": upload_id}, exc_info=True
        )
        try:
            self.uploads.transition(upload_id, UploadStatus.FAILED, f"Aggregation failed: {error}")
        except Exception as e:
            logger.error(f"Could not mark upload failed: {e}", extra={"upload_id": upload_id})
        return AggregationOutcome(action="failed", status=UploadStatus.FAILED)


class UploadAggregator(_PollingAggregator):
    """
    Waits for every chunk of one upload, then rolls up and finalizes it.
    """

    name = "upload"

    def _schedule(self, upload_id: int, attempt: int, delay: int) -> None:
        self.scheduler.schedule_upload_aggregation(upload_id, attempt, delay)

    def check(self, upload_id: int, attempt: int = 1) -> AggregationOutcome:
        """
        One aggregation run.

        Args:
            upload_id: Upload to check
            attempt: 1-based run number, drives the backoff

        Returns:
            What this run did
        """
        try:
            upload = self.uploads.get_upload(upload_id)
            if upload.status.is_terminal:
                return AggregationOutcome(action="already_final", status=upload.status)

            outcome = self.try_finalize(upload)
            if outcome is not None:
                return outcome
            if self._exceeded_wait(upload):
                return self.try_finalize(upload, force=True)

            unfinished = sum(
                1 for c in self.uploads.list_chunks(upload_id) if not c.status.is_terminal
            )
            return self._reschedule(upload, attempt, unfinished)
        except Exception as e:
            return self._abort(upload_id, e)

    def try_finalize(self, upload: Upload, force: bool = False) -> AggregationOutcome | None:
        """
        Finalize the upload if all of its chunks are terminal.

        Args:
            upload: Upload to finalize
            force: Fail unfinished chunks first (stuck upload)

        Returns:
            Outcome, or None when chunks are still running (or not created yet)
        """
        chunks = self.uploads.list_chunks(upload.id)
        unfinished = [c for c in chunks if not c.status.is_terminal]

        if not force and (not chunks or unfinished):
            return None

        if force:
            self._report_stuck(upload, len(unfinished) or 1)
            if unfinished:
                self.uploads.abandon_chunks(upload.id, ABANDONED_CHUNK_MESSAGE)
                chunks = self.uploads.list_chunks(upload.id)

        return self._finalize(upload, chunks)

    def _finalize(self, upload: Upload, chunks: list[Chunk]) -> AggregationOutcome:
        completed = [c for c in chunks if c.status == ChunkStatus.COMPLETED]
        failed = [c for c in chunks if c.status == ChunkStatus.FAILED]
        created = sum(c.created_count for c in completed)
        updated = sum(c.updated_count for c in completed)
        processed = created + updated
        seconds = sum(c.processing_seconds or 0.0 for c in chunks)
        status = classify_chunks(len(completed), len(failed))

        counts = f"Created: {created}, Updated: {updated}, Total: {processed} parts in {seconds:.2f}s"
        if status == UploadStatus.COMPLETED:
            message = f"Processing completed successfully. {counts}"
        elif status == UploadStatus.COMPLETED_WITH_ERRORS:
            message = f"Processing completed with {len(failed)} failed chunks. {counts}"
        else:
            message = f"Processing failed: {len(failed)} of {len(chunks)} chunks failed"

        if not self.uploads.finalize(upload.id, status, processed, message):
            return AggregationOutcome(action="already_final", status=status)
        self._record_final(upload, status, message)

        if upload.blob_key:
            try:
                self.blob_store.delete(upload.blob_key)
            except Exception as e:
                logger.warning(f"Could not delete staged file {upload.blob_key}: {e}")

        if processed > 0:
            self.dispatcher.dispatch_for_upload(upload.id)

        return AggregationOutcome(action="finalized", status=status)


class ArchiveAggregator(_PollingAggregator):
    """
    Waits for every child upload of an archive, associates images, then
    rolls the children up into the archive upload.
    """

    name = "archive"

    def __init__(self, uploads, blob_store, scheduler, dispatcher, settings: IngestionSettings,
                 upload_aggregator: UploadAggregator, image_associator, clock=utcnow):
        super().__init__(uploads, blob_store, scheduler, dispatcher, settings, clock)
        self.upload_aggregator = upload_aggregator
        self.image_associator = image_associator

    def _schedule(self, upload_id: int, attempt: int, delay: int) -> None:
        self.scheduler.schedule_archive_aggregation(upload_id, attempt, delay)

    def check(self, upload_id: int, attempt: int = 1) -> AggregationOutcome:
        upload = None
        try:
            upload = self.uploads.get_upload(upload_id)
            if upload.status.is_terminal:
                return AggregationOutcome(action="already_final", status=upload.status)

            unresolved = []
            for child in self.uploads.list_children(upload_id):
                if child.status.is_terminal:
                    continue
                # Fallback for children whose own aggregator has not run yet
                if self.upload_aggregator.try_finalize(child) is None:
                    unresolved.append(child)

            if unresolved:
                if not self._exceeded_wait(upload):
                    return self._reschedule(upload, attempt, len(unresolved))
                self._report_stuck(upload, len(unresolved))
                for child in unresolved:
                    self.upload_aggregator.try_finalize(child, force=True)

            return self._finalize(upload)
        except Exception as e:
            if upload is not None:
                self._cleanup(upload)
            return self._abort(upload_id, e)

    def _finalize(self, upload: Upload) -> AggregationOutcome:
        try:
            children = self.uploads.list_children(upload.id)
            succeeded = [c for c in children if c.status.is_success]

            for child in succeeded:
                if child.processed_record_count > 0:
                    self.dispatcher.dispatch_for_upload(child.id)

            status = classify_children(children)
            linked = 0
            if upload.staged_archive_key and succeeded:
                try:
                    linked = self.image_associator.associate(upload, succeeded)
                except Exception as e:
                    record_error(e, "image_association")
                    logger.error(f"Image association failed: {e}", extra={"upload_id": upload.id})
                    self.uploads.append_log(upload.id, f"Image association failed: {e}")
                    if status == UploadStatus.COMPLETED:
                        status = UploadStatus.COMPLETED_WITH_ERRORS

            total = sum(c.total_record_count or 0 for c in children)
            processed = sum(c.processed_record_count for c in children)
            failed = len(children) - len(succeeded)
            message = (
                f"Archive processing finished: {len(children)} datasets, "
                f"{len(succeeded)} succeeded, {failed} failed. "
                f"Processed {processed} of {total} records, {linked} images linked"
            )

            if not self.uploads.finalize(upload.id, status, processed, message, total=total):
                return AggregationOutcome(action="already_final", status=status)
            self._record_final(upload, status, message)
            return AggregationOutcome(action="finalized", status=status)
        finally:
            self._cleanup(upload)

    def _cleanup(self, upload: Upload) -> None:
        for key in (upload.staged_archive_key, upload.blob_key):
            if not key:
                continue
            try:
                self.blob_store.delete(key)
            except Exception as e:
                logger.warning(f"Could not delete staged archive {key}: {e}")
