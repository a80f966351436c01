"""
Schema management for the ingestion tables.

Creates and drops the uploads, upload_chunks, parts and part_attributes
tables. Statements are idempotent so init-db can run on every deploy.
"""

from .connection import DatabaseConnectionPool

TABLES = ("part_attributes", "parts", "upload_chunks", "uploads")

SCHEMA_DDL = [
    """
    CREATE TABLE IF NOT EXISTS uploads (
        id BIGSERIAL PRIMARY KEY,
        original_filename TEXT NOT NULL,
        kind TEXT NOT NULL CHECK (kind IN ('spreadsheet', 'archive')),
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN (
            'pending', 'analyzing', 'processing',
            'completed', 'completed_with_errors', 'failed'
        )),
        batch_id TEXT NOT NULL,
        blob_key TEXT,
        dataset_context TEXT,
        staged_archive_key TEXT,
        total_record_count INTEGER CHECK (total_record_count >= 0),
        processed_record_count INTEGER NOT NULL DEFAULT 0,
        processing_logs TEXT[] NOT NULL DEFAULT '{}',
        parent_upload_id BIGINT REFERENCES uploads (id),
        enrichment_dispatched_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        completed_at TIMESTAMPTZ,
        CONSTRAINT uploads_processed_within_total CHECK (
            total_record_count IS NULL OR processed_record_count <= total_record_count
        ),
        CONSTRAINT uploads_member_not_archive CHECK (
            parent_upload_id IS NULL OR kind = 'spreadsheet'
        )
    )
    """,
    "CREATE INDEX IF NOT EXISTS uploads_parent_idx ON uploads (parent_upload_id)",
    "CREATE INDEX IF NOT EXISTS uploads_status_idx ON uploads (status)",
    """
    CREATE TABLE IF NOT EXISTS upload_chunks (
        id BIGSERIAL PRIMARY KEY,
        upload_id BIGINT NOT NULL REFERENCES uploads (id) ON DELETE CASCADE,
        sequence INTEGER NOT NULL CHECK (sequence >= 1),
        start_row INTEGER NOT NULL CHECK (start_row >= 0),
        end_row INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN (
            'pending', 'processing', 'completed', 'failed'
        )),
        created_count INTEGER NOT NULL DEFAULT 0,
        updated_count INTEGER NOT NULL DEFAULT 0,
        processing_seconds DOUBLE PRECISION,
        error_message TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        started_at TIMESTAMPTZ,
        finished_at TIMESTAMPTZ,
        CONSTRAINT upload_chunks_sequence_unique UNIQUE (upload_id, sequence),
        CONSTRAINT upload_chunks_range_valid CHECK (end_row > start_row)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS parts (
        id BIGSERIAL PRIMARY KEY,
        part_number TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        manufacturer TEXT NOT NULL DEFAULT '',
        dataset_context TEXT NOT NULL,
        upload_id BIGINT REFERENCES uploads (id) ON DELETE SET NULL,
        batch_id TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        external_id TEXT,
        image_ref TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT parts_business_key UNIQUE (part_number, manufacturer, dataset_context)
    )
    """,
    "CREATE INDEX IF NOT EXISTS parts_upload_idx ON parts (upload_id)",
    """
    CREATE TABLE IF NOT EXISTS part_attributes (
        id BIGSERIAL PRIMARY KEY,
        part_id BIGINT NOT NULL REFERENCES parts (id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        value TEXT NOT NULL,
        CONSTRAINT part_attributes_name_unique UNIQUE (part_id, name)
    )
    """,
    "CREATE INDEX IF NOT EXISTS part_attributes_name_idx ON part_attributes (name, part_id)",
]


class SchemaManager:
    """
    Creates, inspects and drops the ingestion schema.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def create_schema(self) -> None:
        """Create all tables and indexes in one transaction."""
        with self.pool.transaction() as cur:
            for statement in SCHEMA_DDL:
                cur.execute(statement)

    def drop_schema(self) -> None:
        with self.pool.transaction() as cur:
            for table in TABLES:
                cur.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    def truncate_all(self) -> None:
        """Remove every row, restarting id sequences."""
        self.pool.execute_command(
            f"TRUNCATE TABLE {', '.join(TABLES)} RESTART IDENTITY CASCADE"
        )

    def missing_tables(self) -> list[str]:
        """
        List ingestion tables that do not exist yet.

        Returns:
            Table names absent from the current schema
        """
        rows = self.pool.execute_query(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = current_schema() AND table_name = ANY(%s)
            """,
            (list(TABLES),),
        )
        present = {row["table_name"] for row in rows}
        return [table for table in TABLES if table not in present]
