"""
Enrichment dispatch and the batch enrichment pass.

Dispatch is fire-and-forget: aggregators hand record ids to the queue
and finalize without waiting. The pass itself tolerates failed batches.
"""

import time

from pydantic import BaseModel

from catalog_ingest.observability.logger import get_logger
from catalog_ingest.observability.metrics import (
    enrichment_batches_total,
    enrichment_records_total,
    increment_counter,
    record_error,
)

from .matcher import ProductMatcher

logger = get_logger(__name__)


class EnrichmentSummary(BaseModel):
    matched: int = 0
    unmatched: int = 0
    failed: int = 0
    batches: int = 0
    duration_seconds: float = 0.0

    def log_line(self) -> str:
        return (
            f"Product matching completed in {self.duration_seconds:.2f}s: "
            f"{self.matched} matched, {self.unmatched} not found, {self.failed} failed"
        )


class EnrichmentDispatcher:
    """
    Enqueues the enrichment pass for an upload's records.
    """

    def __init__(self, uploads, catalog, scheduler):
        self.uploads = uploads
        self.catalog = catalog
        self.scheduler = scheduler

    def dispatch(self, record_ids: list[int], upload_id: int) -> None:
        self.scheduler.schedule_enrichment(record_ids, upload_id)
        self.uploads.append_log(upload_id, f"Enrichment dispatched for {len(record_ids)} records")
        logger.info(
            f"Enrichment dispatched for {len(record_ids)} records",
            extra={"upload_id": upload_id},
        )

    def dispatch_for_upload(self, upload_id: int, record_ids: list[int] | None = None) -> int:
        """
        Dispatch enrichment for the records of an upload, at most once.

        Args:
            upload_id: Upload whose records are enriched
            record_ids: Ids written by a single-pass import; chunked uploads
                leave this out and the upload's records are looked up

        Returns:
            Number of record ids dispatched (0 if already claimed or empty)
        """
        if record_ids is None:
            record_ids = self.catalog.record_ids_for_upload(upload_id)
        record_ids = sorted(set(record_ids))
        if not record_ids:
            return 0
        if not self.uploads.claim_enrichment(upload_id):
            logger.info("Enrichment already dispatched", extra={"upload_id": upload_id})
            return 0
        self.dispatch(record_ids, upload_id)
        return len(record_ids)


class EnrichmentRunner:
    """
    Runs the external matcher over records in small batches.
    """

    def __init__(self, uploads, catalog, matcher: ProductMatcher, batch_size: int = 20,
                 batch_delay_seconds: float = 0.25, sleep=time.sleep):
        """
        Initialize enrichment runner.

        Args:
            uploads: Upload repository (for the summary log line)
            catalog: Catalog writer (record keys, external ids)
            matcher: External matcher client
            batch_size: Records per matcher call
            batch_delay_seconds: Pause between calls
            sleep: Sleep function (replaced in tests)
        """
        self.uploads = uploads
        self.catalog = catalog
        self.matcher = matcher
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.sleep = sleep

    def run(self, record_ids: list[int], upload_id: int) -> EnrichmentSummary:
        started = time.monotonic()
        summary = EnrichmentSummary()

        for start in range(0, len(record_ids), self.batch_size):
            batch_ids = record_ids[start:start + self.batch_size]
            if start > 0 and self.batch_delay_seconds:
                self.sleep(self.batch_delay_seconds)
            summary.batches += 1

            try:
                keys = self.catalog.record_keys(batch_ids)
                result = self.matcher.match_batch(keys)
                matches = {m.record_id: m.external_id for m in result.matched}
                self.catalog.set_external_ids(matches)
            except Exception as e:
                summary.failed += len(batch_ids)
                increment_counter(enrichment_batches_total, 1, status="failure")
                increment_counter(enrichment_records_total, len(batch_ids), outcome="failed")
                record_error(e, "enrichment")
                logger.error(
                    f"Enrichment batch {summary.batches} failed: {e}",
                    extra={"upload_id": upload_id, "batch_size": len(batch_ids)},
                )
                continue

            failed = len((set(result.failed) & set(batch_ids)) - set(matches))
            unmatched = len(batch_ids) - len(matches) - failed
            summary.matched += len(matches)
            summary.failed += failed
            summary.unmatched += unmatched
            increment_counter(enrichment_batches_total, 1, status="success")
            increment_counter(enrichment_records_total, len(matches), outcome="matched")
            increment_counter(enrichment_records_total, unmatched, outcome="unmatched")
            increment_counter(enrichment_records_total, failed, outcome="failed")

        summary.duration_seconds = time.monotonic() - started
        self.uploads.append_log(upload_id, summary.log_line())
        logger.info(summary.log_line(), extra={"upload_id": upload_id})
        return summary
