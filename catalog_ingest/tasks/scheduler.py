"""
Scheduling of pipeline tasks.

Components never call Celery directly; they hand explicit payloads to a
TaskScheduler so every task carries its full input.
"""

from abc import ABC, abstractmethod

from celery import Celery

from catalog_ingest.core.models import ChunkTask

ANALYZE_UPLOAD_TASK = "catalog_ingest.analyze_upload"
PROCESS_CHUNK_TASK = "catalog_ingest.process_chunk"
AGGREGATE_UPLOAD_TASK = "catalog_ingest.aggregate_upload"
AGGREGATE_ARCHIVE_TASK = "catalog_ingest.aggregate_archive"
ENRICH_RECORDS_TASK = "catalog_ingest.enrich_records"


class TaskScheduler(ABC):
    """Enqueues pipeline tasks, optionally delayed by ``countdown`` seconds."""

    @abstractmethod
    def schedule_analysis(self, upload_id: int) -> None: ...

    @abstractmethod
    def schedule_chunk(self, task: ChunkTask, countdown: int = 0) -> None: ...

    @abstractmethod
    def schedule_upload_aggregation(self, upload_id: int, attempt: int, countdown: int) -> None: ...

    @abstractmethod
    def schedule_archive_aggregation(self, upload_id: int, attempt: int, countdown: int) -> None: ...

    @abstractmethod
    def schedule_enrichment(self, record_ids: list[int], upload_id: int) -> None: ...


class CeleryScheduler(TaskScheduler):
    """
    Sends tasks by name so schedulers never import the task module.
    """

    def __init__(self, app: Celery):
        self.app = app

    def schedule_analysis(self, upload_id: int) -> None:
        self.app.send_task(ANALYZE_UPLOAD_TASK, args=[upload_id])

    def schedule_chunk(self, task: ChunkTask, countdown: int = 0) -> None:
        self.app.send_task(PROCESS_CHUNK_TASK, args=[task.model_dump()], countdown=countdown)

    def schedule_upload_aggregation(self, upload_id: int, attempt: int, countdown: int) -> None:
        self.app.send_task(AGGREGATE_UPLOAD_TASK, args=[upload_id, attempt], countdown=countdown)

    def schedule_archive_aggregation(self, upload_id: int, attempt: int, countdown: int) -> None:
        self.app.send_task(AGGREGATE_ARCHIVE_TASK, args=[upload_id, attempt], countdown=countdown)

    def schedule_enrichment(self, record_ids: list[int], upload_id: int) -> None:
        self.app.send_task(ENRICH_RECORDS_TASK, args=[record_ids, upload_id])
