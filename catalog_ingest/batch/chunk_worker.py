"""
Chunk worker: imports one row range of a spreadsheet.
"""

import time

from catalog_ingest.core.config import IngestionSettings
from catalog_ingest.core.mapping import HeaderMapping, ManufacturerNormalizer, RowNormalizer
from catalog_ingest.core.models import ChunkResult, ChunkTask
from catalog_ingest.observability.logger import get_logger, log_operation
from catalog_ingest.observability.metrics import record_chunk_result, record_error

from .aggregation import backoff_delay
from .readers import open_spreadsheet

logger = get_logger(__name__)


def retry_countdown(retries: int, settings: IngestionSettings) -> int:
    """Seconds before a failed chunk runs again after ``retries`` earlier retries."""
    return backoff_delay(
        retries + 1, settings.chunk_retry_delay_seconds, settings.aggregation_max_delay_seconds
    )


class ChunkWorker:
    """
    Processes one chunk: read range, normalize, upsert, record counters.

    Re-running a chunk reprocesses its whole range; the upsert is
    idempotent per row, so partial earlier attempts need no cleanup.
    """

    def __init__(
        self,
        uploads,
        catalog,
        blob_store,
        mapping: HeaderMapping,
        manufacturers: ManufacturerNormalizer,
    ):
        self.uploads = uploads
        self.catalog = catalog
        self.blob_store = blob_store
        self.mapping = mapping
        self.manufacturers = manufacturers

    def process(self, task: ChunkTask, final_attempt: bool = True) -> ChunkResult:
        """
        Process the chunk described by ``task``.

        Args:
            task: Chunk payload
            final_attempt: Whether the queue will not retry this chunk again.
                A failure on the final attempt marks the chunk failed; earlier
                failures leave it processing so the retry can pick it up.

        Returns:
            Created/updated/skipped counts and elapsed time

        Raises:
            Exception: Whatever failed, after rollback, so the queue can retry
        """
        chunk = self.uploads.start_chunk(task.chunk_id)
        if chunk is None:
            existing = self.uploads.get_chunk(task.chunk_id)
            logger.warning(
                f"Chunk {task.chunk_id} is already {existing.status.value}; skipping",
                extra={"upload_id": task.upload_id, "chunk_id": task.chunk_id},
            )
            return ChunkResult(
                created=existing.created_count,
                updated=existing.updated_count,
                duration_seconds=existing.processing_seconds or 0.0,
            )

        started = time.monotonic()
        try:
            with log_operation(
                f"Processing chunk {chunk.sequence}",
                logger=logger,
                upload_id=task.upload_id,
                chunk_id=task.chunk_id,
                attempt=chunk.attempts,
            ):
                with self.blob_store.read(task.blob_key) as stream:
                    with open_spreadsheet(stream, task.filename) as reader:
                        rows = reader.read_range(chunk.start_row, chunk.end_row)

                normalizer = RowNormalizer(
                    task.headers, self.mapping, self.manufacturers, task.dataset_context
                )
                batch = normalizer.normalize(rows)
                written = self.catalog.write_records(batch.records, task.upload_id, task.batch_id)
        except Exception as e:
            duration = time.monotonic() - started
            record_error(e, "chunk_worker")
            if final_attempt:
                self.uploads.fail_chunk(task.chunk_id, str(e) or type(e).__name__, duration)
                record_chunk_result("failed", duration_seconds=duration)
            else:
                record_chunk_result("retrying", duration_seconds=duration)
            raise

        duration = time.monotonic() - started
        if not self.uploads.complete_chunk(task.chunk_id, written.created, written.updated, duration):
            logger.warning(
                f"Chunk {task.chunk_id} was finalized by the aggregator before it completed",
                extra={"upload_id": task.upload_id, "chunk_id": task.chunk_id},
            )
        record_chunk_result(
            "completed",
            written.created,
            written.updated,
            batch.skipped_blank,
            batch.skipped_missing_number,
            duration,
        )
        return ChunkResult(
            created=written.created,
            updated=written.updated,
            skipped=batch.skipped,
            duration_seconds=duration,
        )
