"""
End-to-end tests for chunked ingestion.

Runs uploads from submission to enrichment through the real pipeline
components, with the task queue drained in-process.
"""

import io

import pytest

from catalog_ingest.core.models import ChunkStatus, UploadStatus
from tests.builders import PARTS_HEADER, PNG_BYTES, make_csv, make_parts_csv, make_xlsx, make_zip, parts_rows
from tests.fakes import drain


@pytest.mark.e2e
class TestChunkedSpreadsheet:

    def test_large_csv_end_to_end(self, runtime, matcher):
        """1200 rows -> 3 chunks -> completed -> one enrichment pass"""
        matcher.known = {"PN-00042": "gid://catalog/42"}
        upload_id = runtime.service.submit_upload(io.BytesIO(make_parts_csv(1200)), "fittings.csv")

        errors = drain(runtime)

        assert errors == []
        status = runtime.service.get_upload_status(upload_id)
        assert status.status == UploadStatus.COMPLETED
        assert status.total == 1200
        assert status.processed == 1200
        assert status.progress_percent == 100.0
        assert [c.created for c in runtime.service.list_chunks(upload_id)] == [500, 500, 200]
        assert runtime.catalog.count_records("fittings") == 1200

        assert sum(len(call) for call in matcher.calls) == 1200
        assert max(len(call) for call in matcher.calls) == 20
        assert runtime.catalog.find("PN-00042", "Parker Hannifin", "fittings")["external_id"] == "gid://catalog/42"
        assert status.logs[-1].endswith("1 matched, 1199 not found, 0 failed")

    def test_reimport_updates_instead_of_duplicating(self, runtime):
        data = make_parts_csv(1200)
        first = runtime.service.submit_upload(io.BytesIO(data), "fittings.csv")
        drain(runtime)
        second = runtime.service.submit_upload(io.BytesIO(data), "fittings.csv")
        drain(runtime)

        assert runtime.catalog.count_records() == 1200
        upload = runtime.uploads.get_upload(second)
        assert upload.status == UploadStatus.COMPLETED
        assert any("Created: 0, Updated: 1200" in line for line in upload.processing_logs)
        assert runtime.catalog.record_ids_for_upload(first) == []
        assert len(runtime.catalog.record_ids_for_upload(second)) == 1200

    def test_transient_write_failure_is_retried(self, runtime):
        upload_id = runtime.service.submit_upload(io.BytesIO(make_parts_csv(1200)), "fittings.csv")
        runtime.catalog.fail_writes = 1

        errors = drain(runtime)

        assert errors == []
        assert runtime.uploads.get_upload(upload_id).status == UploadStatus.COMPLETED
        assert [c.attempts for c in runtime.uploads.list_chunks(upload_id)] == [2, 1, 1]

    def test_persistent_failure_fails_one_chunk(self, runtime):
        upload_id = runtime.service.submit_upload(io.BytesIO(make_parts_csv(1200)), "fittings.csv")
        runtime.catalog.fail_writes = 3

        errors = drain(runtime, max_attempts=3)

        assert len(errors) == 1
        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.COMPLETED_WITH_ERRORS
        assert upload.processed_record_count == 700
        chunks = runtime.uploads.list_chunks(upload_id)
        assert [c.status for c in chunks] == [ChunkStatus.FAILED, ChunkStatus.COMPLETED, ChunkStatus.COMPLETED]

    def test_chunked_workbook(self, runtime):
        runtime.chunk_builder.settings = runtime.settings.model_copy(update={"chunk_size": 100})
        data = make_xlsx(parts_rows(250, manufacturer="SKF"), PARTS_HEADER)
        upload_id = runtime.service.submit_upload(io.BytesIO(data), "Bearings.xlsx")

        drain(runtime)

        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.COMPLETED
        assert [c.created_count for c in runtime.uploads.list_chunks(upload_id)] == [100, 100, 50]
        assert runtime.catalog.count_records("Bearings") == 250


@pytest.mark.e2e
def test_archive_end_to_end(runtime, blob_store):
    """Archive with one small and one large dataset plus images"""
    small = make_csv(
        [["V-1", "Ball valve", "Swagelok", "V-1.png"], ["V-2", "Gate valve", "Swagelok", ""]],
        ["Part Number", "Description", "Manufacturer", "img_page_path"],
    )
    members = {
        "Valves/valves.csv": small,
        "Valves/V-1.png": PNG_BYTES,
        "Fittings/fittings.csv": make_parts_csv(600),
        "__MACOSX/Valves/._valves.csv": b"junk",
    }
    upload_id = runtime.service.submit_upload(io.BytesIO(make_zip(members)), "supplier.zip")

    errors = drain(runtime)

    assert errors == []
    archive = runtime.uploads.get_upload(upload_id)
    assert archive.status == UploadStatus.COMPLETED
    assert archive.total_record_count == 602
    assert archive.processed_record_count == 602
    children = runtime.uploads.list_children(upload_id)
    assert sorted(c.original_filename for c in children) == ["fittings.csv", "valves.csv"]
    assert all(c.status == UploadStatus.COMPLETED for c in children)

    valve = runtime.catalog.find("V-1", "SWAGELOK", "valves")
    assert valve["image_ref"] == "parts/valves/v-1.png"
    assert blob_store.exists(valve["image_ref"])
    assert archive.processing_logs[-1].endswith("602 of 602 records, 1 images linked")
