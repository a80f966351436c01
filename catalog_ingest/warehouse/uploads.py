"""
Persistence for Upload and Chunk records.

Status changes are guarded UPDATEs (``WHERE status = ANY(allowed)``), so a
terminal upload or chunk can never be moved again, no matter how many
workers or aggregator runs race on it.
"""

from catalog_ingest.core.exceptions import ChunkNotFoundError, UploadNotFoundError
from catalog_ingest.core.models import (
    Chunk,
    ChunkRange,
    ChunkStatus,
    Upload,
    UploadStatus,
)

from .connection import DatabaseConnectionPool

UPLOAD_COLUMNS = """
    id, original_filename, kind, status, batch_id, blob_key, dataset_context,
    staged_archive_key, total_record_count, processed_record_count,
    processing_logs, parent_upload_id, enrichment_dispatched_at,
    created_at, completed_at
"""

CHUNK_COLUMNS = """
    id, upload_id, sequence, start_row, end_row, status, created_count,
    updated_count, processing_seconds, error_message, attempts,
    created_at, started_at, finished_at
"""

UPDATABLE_UPLOAD_FIELDS = frozenset(
    {"blob_key", "staged_archive_key", "total_record_count", "dataset_context"}
)


def _values(statuses) -> list[str]:
    return [status.value for status in statuses]


class UploadRepository:
    """
    Reads and writes uploads and their chunks.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    # =======================
    # UPLOADS
    # =======================

    def create_upload(self, upload: Upload) -> Upload:
        """
        Insert a new upload.

        Returns:
            The stored upload, with its generated id
        """
        rows = self.pool.execute_query(
            f"""
            INSERT INTO uploads (
                original_filename, kind, status, batch_id, blob_key,
                dataset_context, parent_upload_id, processing_logs
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {UPLOAD_COLUMNS}
            """,
            (
                upload.original_filename,
                upload.kind.value,
                upload.status.value,
                upload.batch_id,
                upload.blob_key,
                upload.dataset_context,
                upload.parent_upload_id,
                upload.processing_logs,
            ),
        )
        return Upload.model_validate(rows[0])

    def get_upload(self, upload_id: int) -> Upload:
        """
        Raises:
            UploadNotFoundError: If the upload does not exist
        """
        rows = self.pool.execute_query(
            f"SELECT {UPLOAD_COLUMNS} FROM uploads WHERE id = %s", (upload_id,)
        )
        if not rows:
            raise UploadNotFoundError(upload_id)
        return Upload.model_validate(rows[0])

    def list_children(self, parent_id: int) -> list[Upload]:
        rows = self.pool.execute_query(
            f"SELECT {UPLOAD_COLUMNS} FROM uploads WHERE parent_upload_id = %s ORDER BY id",
            (parent_id,),
        )
        return [Upload.model_validate(row) for row in rows]

    def update_upload(self, upload_id: int, **fields) -> None:
        """
        Set non-status columns (blob keys, total count, dataset context).

        Raises:
            ValueError: If a field is not updatable this way
        """
        unknown = set(fields) - UPDATABLE_UPLOAD_FIELDS
        if unknown:
            raise ValueError(f"Cannot update upload fields: {sorted(unknown)}")
        if not fields:
            return

        assignments = ", ".join(f"{name} = %s" for name in fields)
        self.pool.execute_command(
            f"UPDATE uploads SET {assignments} WHERE id = %s",
            (*fields.values(), upload_id),
        )

    def append_log(self, upload_id: int, message: str) -> None:
        self.pool.execute_command(
            "UPDATE uploads SET processing_logs = array_append(processing_logs, %s) WHERE id = %s",
            (message, upload_id),
        )

    def transition(self, upload_id: int, target: UploadStatus, message: str | None = None) -> bool:
        """
        Move an upload to ``target`` if the state machine allows it.

        Args:
            upload_id: Upload to move
            target: New status
            message: Optional log line appended in the same statement

        Returns:
            True if the row changed, False if its current status forbids the move
        """
        completed_at = "NOW()" if target.is_terminal else "completed_at"
        rows = self.pool.execute_query(
            f"""
            UPDATE uploads
            SET status = %s,
                completed_at = {completed_at},
                processing_logs = CASE WHEN %s::text IS NULL THEN processing_logs
                                       ELSE array_append(processing_logs, %s::text) END
            WHERE id = %s AND status = ANY(%s)
            RETURNING id
            """,
            (target.value, message, message, upload_id, _values(UploadStatus.sources_for(target))),
        )
        return bool(rows)

    def finalize(
        self,
        upload_id: int,
        status: UploadStatus,
        processed: int,
        message: str,
        total: int | None = None,
    ) -> bool:
        """
        Write final counts and move the upload to a terminal status.

        Args:
            upload_id: Upload to finalize
            status: completed, completed_with_errors or failed
            processed: Records created plus updated
            message: Summary log line
            total: New total record count (keeps the current one when None)

        Returns:
            True if this call finalized the upload, False if it already was
        """
        rows = self.pool.execute_query(
            """
            UPDATE uploads
            SET status = %s,
                total_record_count = COALESCE(%s, total_record_count),
                processed_record_count = %s,
                completed_at = NOW(),
                processing_logs = array_append(processing_logs, %s)
            WHERE id = %s AND status = ANY(%s)
            RETURNING id
            """,
            (
                status.value,
                total,
                processed,
                message,
                upload_id,
                _values(UploadStatus.sources_for(status)),
            ),
        )
        return bool(rows)

    def claim_enrichment(self, upload_id: int) -> bool:
        """
        Mark enrichment as dispatched, exactly once per upload.

        Returns:
            True for the single caller that wins the claim
        """
        rows = self.pool.execute_query(
            """
            UPDATE uploads SET enrichment_dispatched_at = NOW()
            WHERE id = %s AND enrichment_dispatched_at IS NULL
            RETURNING id
            """,
            (upload_id,),
        )
        return bool(rows)

    def find_unfinished(self, older_than_seconds: int) -> list[Upload]:
        """Non-terminal uploads created more than ``older_than_seconds`` ago."""
        rows = self.pool.execute_query(
            f"""
            SELECT {UPLOAD_COLUMNS} FROM uploads
            WHERE status = ANY(%s)
              AND created_at < NOW() - make_interval(secs => %s)
            ORDER BY created_at
            """,
            (
                _values([UploadStatus.PENDING, UploadStatus.ANALYZING, UploadStatus.PROCESSING]),
                older_than_seconds,
            ),
        )
        return [Upload.model_validate(row) for row in rows]

    # =======================
    # CHUNKS
    # =======================

    def create_chunks(self, upload_id: int, ranges: list[ChunkRange]) -> list[Chunk]:
        """
        Insert every chunk of an upload in one transaction.

        Returns:
            Stored chunks ordered by sequence
        """
        params = [(upload_id, r.sequence, r.start_row, r.end_row) for r in ranges]
        stored = []
        with self.pool.transaction() as cur:
            cur.executemany(
                f"""
                INSERT INTO upload_chunks (upload_id, sequence, start_row, end_row)
                VALUES (%s, %s, %s, %s)
                RETURNING {CHUNK_COLUMNS}
                """,
                params,
                returning=True,
            )
            while True:
                stored.extend(cur.fetchall())
                if not cur.nextset():
                    break
        return sorted((Chunk.model_validate(row) for row in stored), key=lambda c: c.sequence)

    def get_chunk(self, chunk_id: int) -> Chunk:
        """
        Raises:
            ChunkNotFoundError: If the chunk does not exist
        """
        rows = self.pool.execute_query(
            f"SELECT {CHUNK_COLUMNS} FROM upload_chunks WHERE id = %s", (chunk_id,)
        )
        if not rows:
            raise ChunkNotFoundError(chunk_id)
        return Chunk.model_validate(rows[0])

    def list_chunks(self, upload_id: int) -> list[Chunk]:
        rows = self.pool.execute_query(
            f"SELECT {CHUNK_COLUMNS} FROM upload_chunks WHERE upload_id = %s ORDER BY sequence",
            (upload_id,),
        )
        return [Chunk.model_validate(row) for row in rows]

    def start_chunk(self, chunk_id: int) -> Chunk | None:
        """
        Mark a chunk processing and count the attempt.

        A retried chunk is already processing, so that state is accepted too.

        Returns:
            The updated chunk, or None if it is already terminal
        """
        rows = self.pool.execute_query(
            f"""
            UPDATE upload_chunks
            SET status = %s, attempts = attempts + 1, started_at = NOW()
            WHERE id = %s AND status = ANY(%s)
            RETURNING {CHUNK_COLUMNS}
            """,
            (
                ChunkStatus.PROCESSING.value,
                chunk_id,
                _values([ChunkStatus.PENDING, ChunkStatus.PROCESSING]),
            ),
        )
        if rows:
            return Chunk.model_validate(rows[0])
        self.get_chunk(chunk_id)
        return None

    def complete_chunk(self, chunk_id: int, created: int, updated: int, seconds: float) -> bool:
        return self.pool.execute_command(
            """
            UPDATE upload_chunks
            SET status = %s, created_count = %s, updated_count = %s,
                processing_seconds = %s, error_message = NULL, finished_at = NOW()
            WHERE id = %s AND status = %s
            """,
            (
                ChunkStatus.COMPLETED.value,
                created,
                updated,
                seconds,
                chunk_id,
                ChunkStatus.PROCESSING.value,
            ),
        ) > 0

    def fail_chunk(self, chunk_id: int, message: str, seconds: float | None = None) -> bool:
        return self.pool.execute_command(
            """
            UPDATE upload_chunks
            SET status = %s, error_message = %s, processing_seconds = %s, finished_at = NOW()
            WHERE id = %s AND status = ANY(%s)
            """,
            (
                ChunkStatus.FAILED.value,
                message,
                seconds,
                chunk_id,
                _values([ChunkStatus.PENDING, ChunkStatus.PROCESSING]),
            ),
        ) > 0

    def abandon_chunks(self, upload_id: int, message: str) -> int:
        """
        Fail every non-terminal chunk of an upload.

        Returns:
            Number of chunks that were failed
        """
        return self.pool.execute_command(
            """
            UPDATE upload_chunks
            SET status = %s, error_message = %s, finished_at = NOW()
            WHERE upload_id = %s AND status = ANY(%s)
            """,
            (
                ChunkStatus.FAILED.value,
                message,
                upload_id,
                _values([ChunkStatus.PENDING, ChunkStatus.PROCESSING]),
            ),
        )
