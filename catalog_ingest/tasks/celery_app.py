"""
Celery application for the ingestion workers.

Start a worker with:
    celery -A catalog_ingest.tasks.celery_app worker --loglevel=INFO
"""

from celery import Celery

from catalog_ingest.core.config import IngestionSettings

settings = IngestionSettings.from_env()

celery_app = Celery(
    "catalog_ingest",
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=["catalog_ingest.tasks.ingest_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Chunk tasks are long; hand out one at a time and ack after completion
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_ignore_result=True,
)
