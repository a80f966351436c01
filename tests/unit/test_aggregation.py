"""
Unit tests for the upload aggregator.
"""

import io

import pytest

from catalog_ingest.batch.aggregation import _PollingAggregator, backoff_delay, classify_children, classify_chunks
from catalog_ingest.core.models import ChunkStatus, Upload, UploadKind, UploadStatus
from catalog_ingest.tasks.scheduler import (
    AGGREGATE_UPLOAD_TASK,
    ANALYZE_UPLOAD_TASK,
    ENRICH_RECORDS_TASK,
    PROCESS_CHUNK_TASK,
)
from tests.builders import make_parts_csv


def start_chunked(runtime, rows: int = 1200):
    upload_id = runtime.service.submit_upload(io.BytesIO(make_parts_csv(rows)), "fittings.csv")
    runtime.scheduler.take(ANALYZE_UPLOAD_TASK)
    runtime.pipeline.analyze_upload(upload_id)
    runtime.scheduler.take(AGGREGATE_UPLOAD_TASK)
    tasks = [args[0] for args in runtime.scheduler.take(PROCESS_CHUNK_TASK)]
    return upload_id, tasks


@pytest.mark.unit
class TestBackoff:

    @pytest.mark.parametrize(
        "attempt,expected", [(1, 60), (2, 120), (3, 240), (4, 300), (10, 300), (500, 300)]
    )
    def test_capped_exponential(self, attempt, expected):
        assert backoff_delay(attempt, 60, 300) == expected

    def test_classify_chunks(self):
        assert classify_chunks(3, 0) == UploadStatus.COMPLETED
        assert classify_chunks(2, 1) == UploadStatus.COMPLETED_WITH_ERRORS
        assert classify_chunks(0, 3) == UploadStatus.FAILED

    def test_classify_children(self):
        def child(status):
            return Upload(original_filename="a.csv", kind=UploadKind.SPREADSHEET, batch_id="b", status=status)

        assert classify_children([child(UploadStatus.COMPLETED)] * 2) == UploadStatus.COMPLETED
        assert classify_children(
            [child(UploadStatus.COMPLETED), child(UploadStatus.COMPLETED_WITH_ERRORS)]
        ) == UploadStatus.COMPLETED_WITH_ERRORS
        assert classify_children(
            [child(UploadStatus.COMPLETED), child(UploadStatus.FAILED)]
        ) == UploadStatus.COMPLETED_WITH_ERRORS
        assert classify_children([child(UploadStatus.FAILED)] * 2) == UploadStatus.FAILED
        assert classify_children([]) == UploadStatus.FAILED

    def test_base_aggregator_needs_a_schedule(self, runtime):
        with pytest.raises(TypeError):
            _PollingAggregator(runtime.uploads, runtime.blob_store, runtime.scheduler, None, runtime.settings)


@pytest.mark.unit
class TestUploadAggregator:

    def test_reschedules_while_chunks_pending(self, runtime):
        upload_id, tasks = start_chunked(runtime)
        runtime.chunk_worker.process(tasks[0])

        outcome = runtime.upload_aggregator.check(upload_id, attempt=2)

        assert outcome.action == "rescheduled"
        assert outcome.delay_seconds == 120
        assert runtime.scheduler.pending(AGGREGATE_UPLOAD_TASK) == [((upload_id, 3), 120)]
        assert runtime.uploads.get_upload(upload_id).status == UploadStatus.PROCESSING

    def test_all_chunks_completed(self, runtime, blob_store):
        upload_id, tasks = start_chunked(runtime)
        blob_key = runtime.uploads.get_upload(upload_id).blob_key
        for task in tasks:
            runtime.chunk_worker.process(task)

        outcome = runtime.upload_aggregator.check(upload_id)

        upload = runtime.uploads.get_upload(upload_id)
        assert outcome.action == "finalized"
        assert upload.status == UploadStatus.COMPLETED
        assert upload.processed_record_count == 1200
        assert upload.completed_at is not None
        assert upload.processing_logs[-2].startswith(
            "Processing completed successfully. Created: 1200, Updated: 0, Total: 1200 parts"
        )
        assert upload.processing_logs[-1] == "Enrichment dispatched for 1200 records"
        assert not blob_store.exists(blob_key)

    def test_partial_failure(self, runtime):
        upload_id, tasks = start_chunked(runtime)
        runtime.chunk_worker.process(tasks[0])
        runtime.chunk_worker.process(tasks[2])
        runtime.catalog.fail_writes = 1
        with pytest.raises(ConnectionError):
            runtime.chunk_worker.process(tasks[1], final_attempt=True)

        runtime.upload_aggregator.check(upload_id)

        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.COMPLETED_WITH_ERRORS
        assert upload.processed_record_count == 700
        assert any("Processing completed with 1 failed chunks" in line for line in upload.processing_logs)
        [(args, _)] = runtime.scheduler.pending(ENRICH_RECORDS_TASK)
        assert len(args[0]) == 700

    def test_total_failure(self, runtime):
        upload_id, tasks = start_chunked(runtime)
        for task in tasks:
            runtime.catalog.fail_writes = 1
            with pytest.raises(ConnectionError):
                runtime.chunk_worker.process(task, final_attempt=True)

        runtime.upload_aggregator.check(upload_id)

        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.FAILED
        assert upload.processed_record_count == 0
        assert upload.processing_logs[-1] == "Processing failed: 3 of 3 chunks failed"
        assert runtime.scheduler.pending(ENRICH_RECORDS_TASK) == []

    def test_repeated_run_is_noop(self, runtime):
        upload_id, tasks = start_chunked(runtime)
        for task in tasks:
            runtime.chunk_worker.process(task)
        runtime.upload_aggregator.check(upload_id)
        logs = runtime.uploads.get_upload(upload_id).processing_logs

        outcome = runtime.upload_aggregator.check(upload_id, attempt=2)

        assert outcome.action == "already_final"
        assert runtime.uploads.get_upload(upload_id).processing_logs == logs
        assert len(runtime.scheduler.pending(ENRICH_RECORDS_TASK)) == 1

    def test_stuck_upload_is_finalized_after_wait_limit(self, runtime, clock):
        upload_id, tasks = start_chunked(runtime)
        runtime.chunk_worker.process(tasks[0])
        clock.advance(runtime.settings.aggregation_max_wait_seconds + 1)

        outcome = runtime.upload_aggregator.check(upload_id, attempt=40)

        assert outcome.action == "finalized"
        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.COMPLETED_WITH_ERRORS
        assert upload.processed_record_count == 500
        assert any(line.startswith("Upload stuck: 2 units unfinished") for line in upload.processing_logs)
        statuses = [c.status for c in runtime.uploads.list_chunks(upload_id)]
        assert statuses == [ChunkStatus.COMPLETED, ChunkStatus.FAILED, ChunkStatus.FAILED]
        assert runtime.scheduler.pending(AGGREGATE_UPLOAD_TASK) == []

    def test_late_chunk_cannot_complete_after_abandonment(self, runtime, clock):
        upload_id, tasks = start_chunked(runtime)
        clock.advance(runtime.settings.aggregation_max_wait_seconds + 1)
        runtime.upload_aggregator.check(upload_id)

        runtime.chunk_worker.process(tasks[0])

        assert runtime.uploads.get_chunk(tasks[0].chunk_id).status == ChunkStatus.FAILED
        assert runtime.uploads.get_upload(upload_id).status == UploadStatus.FAILED

    def test_aggregator_error_fails_upload(self, runtime, monkeypatch):
        upload_id, _ = start_chunked(runtime)

        def broken(upload_id):
            raise RuntimeError("database went away")

        monkeypatch.setattr(runtime.uploads, "list_chunks", broken)
        outcome = runtime.upload_aggregator.check(upload_id)

        assert outcome.action == "failed"
        upload = runtime.uploads.get_upload(upload_id)
        assert upload.status == UploadStatus.FAILED
        assert upload.processing_logs[-1] == "Aggregation failed: database went away"
        assert runtime.scheduler.pending(AGGREGATE_UPLOAD_TASK) == []
