"""
Prometheus metrics for catalog-ingest

Counters and histograms for uploads, chunks, record writes, aggregation
polling and enrichment. All metrics live in a module-level registry.
"""
import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# UPLOAD METRICS
# =======================

uploads_submitted_total = Counter(
    name="ingest_uploads_submitted_total",
    documentation="Total number of uploads accepted",
    labelnames=["kind"],  # kind: spreadsheet, archive
    registry=REGISTRY,
)

uploads_finalized_total = Counter(
    name="ingest_uploads_finalized_total",
    documentation="Total number of uploads that reached a terminal status",
    labelnames=["kind", "status"],
    registry=REGISTRY,
)

processing_mode_total = Counter(
    name="ingest_processing_mode_total",
    documentation="Chunk builder decisions",
    labelnames=["mode"],  # mode: direct, chunked
    registry=REGISTRY,
)

# =======================
# CHUNK METRICS
# =======================

chunks_processed_total = Counter(
    name="ingest_chunks_processed_total",
    documentation="Total number of chunk worker runs",
    labelnames=["status"],  # status: completed, failed, retrying
    registry=REGISTRY,
)

chunk_duration_seconds = Histogram(
    name="ingest_chunk_duration_seconds",
    documentation="Time spent processing one chunk in seconds",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0],
    registry=REGISTRY,
)

# =======================
# WAREHOUSE METRICS
# =======================

records_written_total = Counter(
    name="ingest_records_written_total",
    documentation="Total number of catalog records written",
    labelnames=["operation"],  # operation: created, updated
    registry=REGISTRY,
)

rows_skipped_total = Counter(
    name="ingest_rows_skipped_total",
    documentation="Spreadsheet rows skipped during normalization",
    labelnames=["reason"],  # reason: blank, missing_part_number
    registry=REGISTRY,
)

id_mismatch_total = Counter(
    name="ingest_upsert_id_mismatch_total",
    documentation="Upsert batches that returned fewer ids than rows sent",
    registry=REGISTRY,
)

# =======================
# AGGREGATION METRICS
# =======================

aggregation_reschedules_total = Counter(
    name="ingest_aggregation_reschedules_total",
    documentation="Aggregator checks that found unfinished work and rescheduled",
    labelnames=["aggregator"],  # aggregator: upload, archive
    registry=REGISTRY,
)

stuck_uploads_total = Counter(
    name="ingest_stuck_uploads_total",
    documentation="Uploads finalized after exceeding the aggregation wall-clock cap",
    labelnames=["aggregator"],
    registry=REGISTRY,
)

images_linked_total = Counter(
    name="ingest_images_linked_total",
    documentation="Archive images associated with catalog records",
    registry=REGISTRY,
)

# =======================
# ENRICHMENT METRICS
# =======================

enrichment_batches_total = Counter(
    name="ingest_enrichment_batches_total",
    documentation="External matcher batch calls",
    labelnames=["status"],  # status: success, failure
    registry=REGISTRY,
)

enrichment_records_total = Counter(
    name="ingest_enrichment_records_total",
    documentation="Records sent to the external matcher by outcome",
    labelnames=["outcome"],  # outcome: matched, unmatched, failed
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="ingest_errors_total",
    documentation="Total number of errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def start_metrics_server(port: int | None = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    if labels:
        histogram.labels(**labels).observe(value)
    else:
        histogram.observe(value)


def record_error(error: BaseException, component: str) -> None:
    increment_counter(errors_total, 1, error_type=type(error).__name__, component=component)


def record_chunk_result(
    status: str,
    created: int = 0,
    updated: int = 0,
    skipped_blank: int = 0,
    skipped_missing_number: int = 0,
    duration_seconds: float = 0.0,
) -> None:
    """
    Record the outcome of one chunk (or direct) import.

    Args:
        status: completed, failed or retrying
        created: Records inserted
        updated: Records updated
        skipped_blank: Blank rows skipped
        skipped_missing_number: Rows skipped for an empty part number
        duration_seconds: Wall-clock time of the run
    """
    increment_counter(chunks_processed_total, 1, status=status)
    if created:
        increment_counter(records_written_total, created, operation="created")
    if updated:
        increment_counter(records_written_total, updated, operation="updated")
    if skipped_blank:
        increment_counter(rows_skipped_total, skipped_blank, reason="blank")
    if skipped_missing_number:
        increment_counter(rows_skipped_total, skipped_missing_number, reason="missing_part_number")
    if duration_seconds > 0:
        observe_histogram(chunk_duration_seconds, duration_seconds)
