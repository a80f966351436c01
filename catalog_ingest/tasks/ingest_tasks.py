"""
Celery tasks for the ingestion pipeline.

Each task is a thin shell around a runtime component; the payload carries
everything the component needs, so tasks can run on any worker.
"""

from catalog_ingest.batch.chunk_worker import retry_countdown
from catalog_ingest.core.models import ChunkTask
from catalog_ingest.observability.logger import get_logger, log_context
from catalog_ingest.runtime import get_runtime

from .celery_app import celery_app, settings
from .scheduler import (
    AGGREGATE_ARCHIVE_TASK,
    AGGREGATE_UPLOAD_TASK,
    ANALYZE_UPLOAD_TASK,
    ENRICH_RECORDS_TASK,
    PROCESS_CHUNK_TASK,
)

logger = get_logger(__name__)


@celery_app.task(name=ANALYZE_UPLOAD_TASK)
def analyze_upload(upload_id: int) -> str:
    with log_context(upload_id=upload_id):
        upload = get_runtime().pipeline.analyze_upload(upload_id)
    return upload.status.value


@celery_app.task(
    bind=True,
    name=PROCESS_CHUNK_TASK,
    max_retries=settings.chunk_max_attempts - 1,
    time_limit=settings.chunk_time_limit_seconds,
    soft_time_limit=max(settings.chunk_time_limit_seconds - 30, 1),
    acks_late=True,
)
def process_chunk(self, payload: dict) -> dict:
    """
    Process one chunk, retrying on failure until the last attempt.

    Only the last attempt marks the chunk failed, so the aggregator never
    sees a chunk as finished while a retry is still queued.
    """
    task = ChunkTask.model_validate(payload)
    final_attempt = self.request.retries >= self.max_retries
    try:
        with log_context(task_id=self.request.id, upload_id=task.upload_id, chunk_id=task.chunk_id):
            result = get_runtime().chunk_worker.process(task, final_attempt=final_attempt)
    except Exception as e:
        if final_attempt:
            raise
        logger.warning(
            f"Chunk {task.chunk_id} failed on attempt {self.request.retries + 1}; retrying: {e}",
            extra={"upload_id": task.upload_id, "chunk_id": task.chunk_id},
        )
        raise self.retry(exc=e, countdown=retry_countdown(self.request.retries, settings))
    return result.model_dump()


@celery_app.task(name=AGGREGATE_UPLOAD_TASK)
def aggregate_upload(upload_id: int, attempt: int = 1) -> dict:
    with log_context(upload_id=upload_id, aggregation_attempt=attempt):
        outcome = get_runtime().upload_aggregator.check(upload_id, attempt)
    return outcome.model_dump(mode="json")


@celery_app.task(name=AGGREGATE_ARCHIVE_TASK)
def aggregate_archive(upload_id: int, attempt: int = 1) -> dict:
    with log_context(upload_id=upload_id, aggregation_attempt=attempt):
        outcome = get_runtime().archive_aggregator.check(upload_id, attempt)
    return outcome.model_dump(mode="json")


@celery_app.task(name=ENRICH_RECORDS_TASK)
def enrich_records(record_ids: list[int], upload_id: int) -> dict:
    with log_context(upload_id=upload_id):
        summary = get_runtime().enrichment_runner.run(record_ids, upload_id)
    return summary.model_dump()
