"""
Unit tests for chunk planning and the chunk builder.
"""

import io
import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from catalog_ingest.batch.chunking import (
    initial_aggregation_delay,
    plan_chunks,
    should_chunk,
)
from catalog_ingest.core.config import IngestionSettings
from catalog_ingest.core.models import Upload, UploadKind, UploadStatus
from catalog_ingest.tasks.scheduler import (
    AGGREGATE_UPLOAD_TASK,
    ANALYZE_UPLOAD_TASK,
    ENRICH_RECORDS_TASK,
    PROCESS_CHUNK_TASK,
)
from tests.builders import PARTS_HEADER, make_csv, make_parts_csv, make_xlsx, parts_rows, truncate_member


def submit(runtime, data: bytes, filename: str) -> Upload:
    """Stage a file and run its analysis task."""
    upload_id = runtime.service.submit_upload(io.BytesIO(data), filename)
    runtime.scheduler.take(ANALYZE_UPLOAD_TASK)
    runtime.pipeline.analyze_upload(upload_id)
    return runtime.uploads.get_upload(upload_id)


@pytest.mark.unit
class TestPlanChunks:

    @pytest.mark.parametrize(
        "total,size",
        [(1, 500), (499, 500), (500, 500), (501, 500), (1200, 500), (10_000, 333), (7, 1)],
    )
    def test_ranges_cover_rows_exactly_once(self, total, size):
        ranges = plan_chunks(total, size)

        assert len(ranges) == math.ceil(total / size)
        assert [r.sequence for r in ranges] == list(range(1, len(ranges) + 1))
        assert ranges[0].start_row == 0
        assert ranges[-1].end_row == total
        for previous, current in zip(ranges, ranges[1:]):
            assert current.start_row == previous.end_row
        assert all(0 < r.row_count <= size for r in ranges)

    @given(st.integers(min_value=0, max_value=20_000), st.integers(min_value=1, max_value=5_000))
    def test_every_row_in_exactly_one_chunk(self, total, size):
        ranges = plan_chunks(total, size)
        covered = [(r.start_row, r.end_row) for r in ranges]
        assert sum(end - start for start, end in covered) == total
        assert all(b[0] == a[1] for a, b in zip(covered, covered[1:]))

    def test_1200_rows_in_three_chunks(self):
        assert [r.row_count for r in plan_chunks(1200, 500)] == [500, 500, 200]

    def test_zero_rows(self):
        assert plan_chunks(0, 500) == []

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            plan_chunks(10, 0)


@pytest.mark.unit
class TestThresholds:

    def test_small_file_is_direct(self):
        assert not should_chunk(1024, 100, IngestionSettings())

    def test_row_threshold(self):
        assert should_chunk(1024, 101, IngestionSettings())

    def test_size_threshold(self):
        assert should_chunk(10 * 1024 * 1024 + 1, 5, IngestionSettings())

    def test_unknown_measurement_chunks(self):
        assert should_chunk(None, 5, IngestionSettings())
        assert should_chunk(1024, None, IngestionSettings())

    def test_initial_aggregation_delay(self):
        settings = IngestionSettings()
        assert initial_aggregation_delay(3, settings) == 60
        assert initial_aggregation_delay(25, settings) == 180


@pytest.mark.unit
class TestChunkBuilder:

    def test_small_file_processed_directly(self, runtime):
        upload = submit(runtime, make_parts_csv(40), "fittings.csv")

        assert upload.status == UploadStatus.COMPLETED
        assert upload.total_record_count == 40
        assert upload.processed_record_count == 40
        assert runtime.uploads.list_chunks(upload.id) == []
        assert runtime.scheduler.pending(PROCESS_CHUNK_TASK) == []
        assert any(
            line.startswith("Processing completed successfully. Created: 40, Updated: 0, Total: 40")
            for line in upload.processing_logs
        )
        [(args, _)] = runtime.scheduler.pending(ENRICH_RECORDS_TASK)
        assert len(args[0]) == 40

    def test_direct_records_use_file_stem_as_context(self, runtime):
        submit(runtime, make_parts_csv(3), "Hydraulic Fittings.csv")
        assert runtime.catalog.count_records("Hydraulic Fittings") == 3

    def test_large_file_is_chunked(self, runtime):
        upload = submit(runtime, make_parts_csv(1200), "fittings.csv")

        assert upload.status == UploadStatus.PROCESSING
        assert upload.total_record_count == 1200
        chunks = runtime.uploads.list_chunks(upload.id)
        assert [(c.start_row, c.end_row) for c in chunks] == [(0, 500), (500, 1000), (1000, 1200)]
        assert "File chunked into 3 chunks of up to 500 rows (1200 rows)" in upload.processing_logs

        dispatched = runtime.scheduler.pending(PROCESS_CHUNK_TASK)
        assert [countdown for _, countdown in dispatched] == [2, 4, 6]
        task = dispatched[0][0][0]
        assert task.upload_id == upload.id
        assert task.headers == ["Part Number", "Description", "Manufacturer", "Voltage"]
        assert task.dataset_context == "fittings"

        [(args, countdown)] = runtime.scheduler.pending(AGGREGATE_UPLOAD_TASK)
        assert args == (upload.id, 1)
        assert countdown == 60

    def test_no_records_written_before_chunks_run(self, runtime):
        submit(runtime, make_parts_csv(1200), "fittings.csv")
        assert runtime.catalog.count_records() == 0

    def test_header_only_file_fails(self, runtime):
        upload = submit(runtime, make_csv([], header=["Part Number"]), "empty.csv")
        assert upload.status == UploadStatus.FAILED
        assert upload.processing_logs[-1].startswith("Failed to parse empty.csv")

    def test_corrupt_workbook_fails_without_chunks(self, runtime):
        upload = submit(runtime, b"definitely not a zip", "broken.xlsx")
        assert upload.status == UploadStatus.FAILED
        assert runtime.uploads.list_chunks(upload.id) == []

    def test_truncated_worksheet_fails_upload(self, runtime):
        data = truncate_member(make_xlsx(parts_rows(5), PARTS_HEADER), "xl/worksheets/sheet1.xml")
        upload = submit(runtime, data, "broken.xlsx")

        assert upload.status == UploadStatus.FAILED
        assert upload.processing_logs[-1].startswith("Failed to parse broken.xlsx")
        assert runtime.scheduler.pending(AGGREGATE_UPLOAD_TASK) == []

    def test_unexpected_error_does_not_strand_upload(self, runtime, monkeypatch):
        def broken_create_chunks(upload_id, ranges):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(runtime.uploads, "create_chunks", broken_create_chunks)
        upload_id = runtime.service.submit_upload(io.BytesIO(make_parts_csv(1200)), "fittings.csv")

        with pytest.raises(RuntimeError):
            runtime.pipeline.analyze_upload(upload_id)

        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.FAILED
        assert upload.processing_logs[-1] == "Analysis failed: connection reset"

    def test_write_failure_fails_direct_upload(self, runtime):
        runtime.catalog.fail_writes = 1
        upload_id = runtime.service.submit_upload(io.BytesIO(make_parts_csv(5)), "fittings.csv")

        with pytest.raises(ConnectionError):
            runtime.pipeline.analyze_upload(upload_id)

        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.FAILED
        assert "Direct processing failed" in upload.processing_logs[-1]

    def test_redelivered_analysis_is_noop(self, runtime):
        upload = submit(runtime, make_parts_csv(1200), "fittings.csv")
        runtime.pipeline.analyze_upload(upload.id)
        assert len(runtime.uploads.list_chunks(upload.id)) == 3

    def test_size_threshold_forces_chunking(self, runtime):
        runtime.chunk_builder.settings = runtime.settings.model_copy(update={"large_file_bytes": 100})
        upload = submit(runtime, make_parts_csv(20), "fittings.csv")
        assert upload.status == UploadStatus.PROCESSING
        assert len(runtime.uploads.list_chunks(upload.id)) == 1


@pytest.mark.unit
def test_missing_staged_file_fails_upload(runtime):
    upload = runtime.uploads.create_upload(
        Upload(original_filename="a.csv", kind=UploadKind.SPREADSHEET, batch_id="b", blob_key="missing/a.csv")
    )
    result = runtime.pipeline.analyze_upload(upload.id)
    assert result.status == UploadStatus.FAILED
    assert "Blob not found" in result.processing_logs[-1]
