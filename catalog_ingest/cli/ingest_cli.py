"""
Command-line interface for the catalog ingestion pipeline.

Usage:
    catalog-ingest init-db [--drop]
    catalog-ingest submit --file <path> [--batch-id <id>]
    catalog-ingest status --upload-id <id> [--logs]
    catalog-ingest chunks --upload-id <id>
    catalog-ingest stuck [--older-than <seconds>]
    catalog-ingest metrics-server [--port <port>]
"""

import argparse
import sys
import time
from datetime import datetime
from pathlib import Path

from catalog_ingest.core.exceptions import CatalogIngestError
from catalog_ingest.observability.logger import get_logger
from catalog_ingest.observability.metrics import start_metrics_server
from catalog_ingest.service import IngestionService
from catalog_ingest.warehouse.connection import close_pool, initialize_pool
from catalog_ingest.warehouse.schema_mgmt import SchemaManager
from catalog_ingest.warehouse.uploads import UploadRepository

logger = get_logger(__name__)


def format_timestamp(ts: datetime | None) -> str:
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def _open_pool(args):
    return initialize_pool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )


def init_db_command(args):
    """Create (or recreate with --drop) the ingestion tables."""
    pool = _open_pool(args)
    manager = SchemaManager(pool)
    if args.drop:
        manager.drop_schema()
        print("Dropped existing tables")
    manager.create_schema()
    print("Schema ready")


def submit_command(args):
    """
    Stage a file and queue it for analysis.

    Args:
        args: Command line arguments
    """
    from catalog_ingest.runtime import build_runtime

    path = Path(args.file)
    if not path.is_file():
        print(f"\nError: file not found: {path}")
        sys.exit(1)

    _open_pool(args)
    runtime = build_runtime()
    with open(path, "rb") as f:
        upload_id = runtime.service.submit_upload(f, path.name, batch_id=args.batch_id)

    print(f"\nUpload {upload_id} queued: {path.name}")
    print(f"Check progress with: catalog-ingest status --upload-id {upload_id}\n")


def status_command(args):
    pool = _open_pool(args)
    service = IngestionService(UploadRepository(pool), blob_store=None, scheduler=None)
    view = service.get_upload_status(args.upload_id)
    upload = service.uploads.get_upload(args.upload_id)

    print(f"\n{'=' * 60}")
    print(f"UPLOAD {view.upload_id}: {upload.original_filename}")
    print(f"{'=' * 60}\n")
    print(f"  Status:     {view.status.value}")
    print(f"  Kind:       {upload.kind.value}")
    print(f"  Records:    {view.processed} of {view.total if view.total is not None else '?'}")
    if view.chunks_total:
        print(f"  Chunks:     {view.chunks_finished} of {view.chunks_total} finished")
    print(f"  Progress:   {view.progress_percent:.1f}%")
    print(f"  Created:    {format_timestamp(upload.created_at)}")
    print(f"  Completed:  {format_timestamp(upload.completed_at)}")

    children = service.uploads.list_children(args.upload_id)
    if children:
        print("\nDatasets:")
        for child in children:
            print(
                f"  {child.id:<8} {child.status.value:<24} "
                f"{child.processed_record_count:>8}  {child.original_filename}"
            )

    if args.logs:
        print("\nProcessing log:")
        for line in view.logs:
            print(f"  - {line}")
    print()


def chunks_command(args):
    pool = _open_pool(args)
    service = IngestionService(UploadRepository(pool), blob_store=None, scheduler=None)
    chunks = service.list_chunks(args.upload_id)
    if not chunks:
        print(f"\nUpload {args.upload_id} was not chunked\n")
        return

    print(f"\n{'Seq':<6} {'Status':<12} {'Created':>8} {'Updated':>8}  Error")
    print(f"{'-' * 60}")
    for chunk in chunks:
        print(
            f"{chunk.sequence:<6} {chunk.status.value:<12} {chunk.created:>8} "
            f"{chunk.updated:>8}  {chunk.error or '-'}"
        )
    print()


def stuck_command(args):
    """List uploads that have not reached a terminal status in time."""
    pool = _open_pool(args)
    service = IngestionService(UploadRepository(pool), blob_store=None, scheduler=None)
    uploads = service.find_stuck_uploads(args.older_than)
    if not uploads:
        print(f"\nNo uploads unfinished after {args.older_than}s\n")
        return

    print(f"\n{'ID':<8} {'Status':<12} {'Created':<20} File")
    print(f"{'-' * 60}")
    for upload in uploads:
        print(
            f"{upload.id:<8} {upload.status.value:<12} "
            f"{format_timestamp(upload.created_at):<20} {upload.original_filename}"
        )
    print()
    sys.exit(2)


def metrics_server_command(args):
    start_metrics_server(args.port)
    print(f"Serving metrics on :{args.port}/metrics (Ctrl+C to stop)")
    while True:
        time.sleep(60)


def main():
    """Main entry point for the ingestion CLI."""
    parser = argparse.ArgumentParser(
        description="Catalog ingestion pipeline CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global database connection options (fall back to DB_* env vars)
    parser.add_argument("--db-host", default=None, help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", default=None, help="Database name (default: $DB_NAME or catalog)")
    parser.add_argument("--db-user", default=None, help="Database user (default: $DB_USER or catalog)")
    parser.add_argument("--db-password", default=None, help="Database password (default: $DB_PASSWORD)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-db", help="Create the ingestion tables")
    init_parser.add_argument(
        "--drop",
        action="store_true",
        help="Drop existing tables first (destroys data)"
    )

    submit_parser = subparsers.add_parser("submit", help="Submit a spreadsheet or ZIP archive")
    submit_parser.add_argument("--file", required=True, help="Path to .csv, .xlsx, .xls or .zip file")
    submit_parser.add_argument("--batch-id", default=None, help="Batch id (default: new UUID)")

    status_parser = subparsers.add_parser("status", help="Show upload status and progress")
    status_parser.add_argument("--upload-id", type=int, required=True, help="Upload ID")
    status_parser.add_argument("--logs", action="store_true", help="Print the processing log")

    chunks_parser = subparsers.add_parser("chunks", help="Show per-chunk results")
    chunks_parser.add_argument("--upload-id", type=int, required=True, help="Upload ID")

    stuck_parser = subparsers.add_parser("stuck", help="List uploads that never finished")
    stuck_parser.add_argument(
        "--older-than",
        type=int,
        default=21600,
        help="Age in seconds after which an unfinished upload is stuck (default: 21600)"
    )

    metrics_parser = subparsers.add_parser("metrics-server", help="Expose Prometheus metrics")
    metrics_parser.add_argument("--port", type=int, default=9090, help="Port (default: 9090)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "init-db": init_db_command,
        "submit": submit_command,
        "status": status_command,
        "chunks": chunks_command,
        "stuck": stuck_command,
        "metrics-server": metrics_server_command,
    }

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except CatalogIngestError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"\nError: {e}")
        sys.exit(1)
    finally:
        close_pool()


if __name__ == "__main__":
    main()
