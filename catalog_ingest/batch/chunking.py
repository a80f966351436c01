"""
Chunk builder: decides between direct and chunked processing.

Small spreadsheets are imported inside the analysis task. Anything over
the size or row threshold is split into fixed-size row ranges, each
processed by its own chunk worker task and supervised by the upload
aggregator.
"""

import math
import time
from pathlib import Path

from pydantic import BaseModel

from catalog_ingest.core.config import IngestionSettings
from catalog_ingest.core.exceptions import BlobNotFoundError, SpreadsheetParseError
from catalog_ingest.core.mapping import HeaderMapping, ManufacturerNormalizer, RowNormalizer
from catalog_ingest.core.models import ChunkRange, ChunkTask, Upload, UploadStatus
from catalog_ingest.observability.logger import get_logger
from catalog_ingest.observability.metrics import (
    increment_counter,
    processing_mode_total,
    record_chunk_result,
    record_error,
    uploads_finalized_total,
)

from .readers import open_spreadsheet

logger = get_logger(__name__)


class Analysis(BaseModel):
    """
    Result of analyzing one spreadsheet.

    Attributes:
        header_row: Header cells as read from the file
        total_rows: Data rows, header excluded
        size_bytes: Staged file size (None if it could not be determined)
        chunk_count: Chunks created (0 for direct processing)
        direct: True when the file was imported without chunks
    """

    header_row: list[str]
    total_rows: int
    size_bytes: int | None = None
    chunk_count: int = 0
    direct: bool = False


def plan_chunks(total_rows: int, chunk_size: int) -> list[ChunkRange]:
    """
    Partition ``[0, total_rows)`` into consecutive ranges of ``chunk_size``.

    Returns:
        ceil(total_rows / chunk_size) ranges with sequences 1..N
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return [
        ChunkRange(
            sequence=index + 1,
            start_row=start,
            end_row=min(start + chunk_size, total_rows),
        )
        for index, start in enumerate(range(0, total_rows, chunk_size))
    ]


def should_chunk(size_bytes: int | None, row_count: int | None, settings: IngestionSettings) -> bool:
    """Chunk when either threshold is exceeded or a measurement is missing."""
    if size_bytes is None or row_count is None:
        return True
    return size_bytes > settings.large_file_bytes or row_count > settings.direct_row_limit


def initial_aggregation_delay(chunk_count: int, settings: IngestionSettings) -> int:
    """First aggregator check: roughly when the chunks should be done."""
    estimate = math.ceil(chunk_count / settings.chunks_per_minute_estimate) * 60
    return max(settings.aggregation_base_delay_seconds, estimate)


def dataset_context_for(upload: Upload) -> str:
    return upload.dataset_context or Path(upload.original_filename).stem


class ChunkBuilder:
    """
    Analyzes one spreadsheet upload and either imports it or chunks it.
    """

    def __init__(
        self,
        uploads,
        catalog,
        blob_store,
        scheduler,
        dispatcher,
        settings: IngestionSettings,
        mapping: HeaderMapping,
        manufacturers: ManufacturerNormalizer,
    ):
        self.uploads = uploads
        self.catalog = catalog
        self.blob_store = blob_store
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.settings = settings
        self.mapping = mapping
        self.manufacturers = manufacturers

    def analyze(self, upload: Upload) -> Analysis | None:
        """
        Analyze an upload that is in the analyzing status.

        Args:
            upload: Spreadsheet upload (standalone or archive member)

        Returns:
            Analysis, or None when the file could not be parsed (upload failed)

        Raises:
            Exception: Storage errors during direct import, after the upload is failed
        """
        size_bytes = self._measure_size(upload.blob_key)

        try:
            with self.blob_store.read(upload.blob_key) as stream:
                with open_spreadsheet(stream, upload.original_filename) as reader:
                    headers = reader.header()
                    total_rows = reader.row_count()
                    if total_rows == 0:
                        raise SpreadsheetParseError("Spreadsheet has no data rows")

                    direct = not should_chunk(size_bytes, total_rows, self.settings)
                    rows = reader.read_range(0, total_rows) if direct else []
        except (SpreadsheetParseError, BlobNotFoundError, ValueError) as e:
            record_error(e, "chunk_builder")
            self._fail(upload, f"Failed to parse {upload.original_filename}: {e}")
            return None

        analysis = Analysis(header_row=headers, total_rows=total_rows, size_bytes=size_bytes, direct=direct)
        if direct:
            self._process_directly(upload, analysis, rows)
        else:
            analysis.chunk_count = self._create_chunks(upload, analysis)
        return analysis

    def _measure_size(self, key: str) -> int | None:
        try:
            return self.blob_store.size(key)
        except Exception as e:
            logger.warning(f"Could not determine size of {key}: {e}")
            return None

    def _fail(self, upload: Upload, message: str) -> None:
        logger.error(message, extra={"upload_id": upload.id})
        if self.uploads.transition(upload.id, UploadStatus.FAILED, message):
            increment_counter(uploads_finalized_total, 1, kind=upload.kind.value, status="failed")

    def _process_directly(self, upload: Upload, analysis: Analysis, rows: list[list[str]]) -> None:
        increment_counter(processing_mode_total, 1, mode="direct")
        self.uploads.append_log(
            upload.id,
            f"Processing directly: {analysis.total_rows} rows, "
            f"{analysis.size_bytes if analysis.size_bytes is not None else 'unknown'} bytes",
        )

        started = time.monotonic()
        normalizer = RowNormalizer(
            analysis.header_row, self.mapping, self.manufacturers, dataset_context_for(upload)
        )
        batch = normalizer.normalize(rows)
        try:
            result = self.catalog.write_records(batch.records, upload.id, upload.batch_id)
        except Exception as e:
            record_error(e, "chunk_builder")
            self._fail(upload, f"Direct processing failed: {e}")
            raise
        duration = time.monotonic() - started

        processed = result.created + result.updated
        record_chunk_result(
            "completed",
            result.created,
            result.updated,
            batch.skipped_blank,
            batch.skipped_missing_number,
            duration,
        )
        message = (
            f"Processing completed successfully. Created: {result.created}, "
            f"Updated: {result.updated}, Total: {processed} parts in {duration:.2f}s"
        )
        if batch.skipped_missing_number:
            message += f" ({batch.skipped_missing_number} rows without part number skipped)"

        finalized = self.uploads.finalize(
            upload.id, UploadStatus.COMPLETED, processed, message, total=analysis.total_rows
        )
        if not finalized:
            logger.warning("Upload was finalized concurrently", extra={"upload_id": upload.id})
            return
        increment_counter(uploads_finalized_total, 1, kind=upload.kind.value, status="completed")
        logger.info(message, extra={"upload_id": upload.id})

        if processed:
            self.dispatcher.dispatch_for_upload(upload.id, result.part_ids)

    def _create_chunks(self, upload: Upload, analysis: Analysis) -> int:
        increment_counter(processing_mode_total, 1, mode="chunked")
        ranges = plan_chunks(analysis.total_rows, self.settings.chunk_size)
        chunks = self.uploads.create_chunks(upload.id, ranges)
        self.uploads.update_upload(upload.id, total_record_count=analysis.total_rows)

        message = (
            f"File chunked into {len(chunks)} chunks of up to {self.settings.chunk_size} rows "
            f"({analysis.total_rows} rows)"
        )
        if not self.uploads.transition(upload.id, UploadStatus.PROCESSING, message):
            logger.warning(
                "Upload left analyzing before chunks were dispatched",
                extra={"upload_id": upload.id},
            )
            return len(chunks)

        context = dataset_context_for(upload)
        for chunk in chunks:
            self.scheduler.schedule_chunk(
                ChunkTask(
                    chunk_id=chunk.id,
                    upload_id=upload.id,
                    batch_id=upload.batch_id,
                    blob_key=upload.blob_key,
                    filename=upload.original_filename,
                    dataset_context=context,
                    headers=analysis.header_row,
                ),
                countdown=chunk.sequence * self.settings.chunk_stagger_seconds,
            )

        self.scheduler.schedule_upload_aggregation(
            upload.id, attempt=1, countdown=initial_aggregation_delay(len(chunks), self.settings)
        )
        logger.info(message, extra={"upload_id": upload.id})
        return len(chunks)
