"""
Component wiring.

One IngestionRuntime holds every collaborator a task needs. Workers build
it lazily from the environment; tests build it from in-memory stand-ins.
"""

from catalog_ingest.batch import (
    ArchiveAggregator,
    ArchiveExpander,
    ChunkBuilder,
    ChunkWorker,
    ImageAssociator,
    IngestionPipeline,
    UploadAggregator,
)
from catalog_ingest.core.config import IngestionSettings
from catalog_ingest.core.mapping import HeaderMapping, ManufacturerNormalizer
from catalog_ingest.enrichment import EnrichmentDispatcher, EnrichmentRunner, create_matcher
from catalog_ingest.service import IngestionService


class IngestionRuntime:
    """
    Builds the pipeline components around repositories, storage and a scheduler.
    """

    def __init__(self, uploads, catalog, blob_store, scheduler, settings: IngestionSettings | None = None,
                 matcher=None, mapping: HeaderMapping | None = None, sleep=None, clock=None):
        """
        Args:
            uploads: Upload/chunk repository
            catalog: Catalog writer
            blob_store: Blob store backend
            scheduler: Task scheduler
            settings: Ingestion settings (defaults to the environment)
            matcher: Product matcher (defaults to one built from settings)
            mapping: Header mapping (defaults to settings.mapping_file or the packaged table)
            sleep: Sleep function for enrichment pacing
            clock: Clock for aggregator wait limits
        """
        self.settings = settings or IngestionSettings.from_env()
        self.uploads = uploads
        self.catalog = catalog
        self.blob_store = blob_store
        self.scheduler = scheduler

        self.mapping = mapping or HeaderMapping.load(self.settings.mapping_file)
        self.manufacturers = ManufacturerNormalizer(self.mapping.manufacturer_aliases)
        self.expander = ArchiveExpander()

        self.dispatcher = EnrichmentDispatcher(uploads, catalog, scheduler)
        runner_options = {"sleep": sleep} if sleep else {}
        self.enrichment_runner = EnrichmentRunner(
            uploads,
            catalog,
            matcher or create_matcher(self.settings),
            batch_size=self.settings.enrichment_batch_size,
            batch_delay_seconds=self.settings.enrichment_batch_delay_seconds,
            **runner_options,
        )

        self.chunk_builder = ChunkBuilder(
            uploads, catalog, blob_store, scheduler, self.dispatcher,
            self.settings, self.mapping, self.manufacturers,
        )
        self.chunk_worker = ChunkWorker(uploads, catalog, blob_store, self.mapping, self.manufacturers)
        self.pipeline = IngestionPipeline(uploads, blob_store, scheduler, self.chunk_builder, self.expander)

        clock_options = {"clock": clock} if clock else {}
        self.upload_aggregator = UploadAggregator(
            uploads, blob_store, scheduler, self.dispatcher, self.settings, **clock_options
        )
        self.archive_aggregator = ArchiveAggregator(
            uploads, blob_store, scheduler, self.dispatcher, self.settings,
            upload_aggregator=self.upload_aggregator,
            image_associator=ImageAssociator(catalog, blob_store, self.expander),
            **clock_options,
        )
        self.service = IngestionService(uploads, blob_store, scheduler)


_runtime: IngestionRuntime | None = None


def get_runtime() -> IngestionRuntime:
    """
    Get the process-wide runtime, building it from the environment on first use.
    """
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def set_runtime(runtime: IngestionRuntime | None) -> None:
    global _runtime
    _runtime = runtime


def build_runtime(settings: IngestionSettings | None = None) -> IngestionRuntime:
    """Production wiring: PostgreSQL, configured blob store, Celery."""
    from catalog_ingest.storage.blob_store import create_blob_store
    from catalog_ingest.tasks.celery_app import celery_app
    from catalog_ingest.tasks.scheduler import CeleryScheduler
    from catalog_ingest.warehouse.connection import get_pool, initialize_pool
    from catalog_ingest.warehouse.upsert import CatalogWriter
    from catalog_ingest.warehouse.uploads import UploadRepository

    settings = settings or IngestionSettings.from_env()
    try:
        pool = get_pool()
    except RuntimeError:
        pool = initialize_pool()

    return IngestionRuntime(
        uploads=UploadRepository(pool),
        catalog=CatalogWriter(pool, settings.part_batch_size, settings.attribute_batch_size),
        blob_store=create_blob_store(settings),
        scheduler=CeleryScheduler(celery_app),
        settings=settings,
    )
