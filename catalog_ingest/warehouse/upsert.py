"""
Idempotent upserts into the parts catalog.

Records are keyed by (part_number, manufacturer, dataset_context) with a
real unique constraint; writes use INSERT ... ON CONFLICT DO UPDATE and
read generated ids back through RETURNING.
"""

from catalog_ingest.core.models import ImageCandidate, PartRecord, RecordKey, UpsertResult
from catalog_ingest.core.models.part import IMAGE_FILENAME_ATTRIBUTE
from catalog_ingest.observability.logger import get_logger
from catalog_ingest.observability.metrics import id_mismatch_total, increment_counter

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

UPSERT_PART_SQL = """
    INSERT INTO parts (
        part_number, description, manufacturer, dataset_context,
        upload_id, batch_id, is_active
    )
    VALUES (%s, %s, %s, %s, %s, %s, TRUE)
    ON CONFLICT (part_number, manufacturer, dataset_context) DO UPDATE SET
        description = EXCLUDED.description,
        upload_id = EXCLUDED.upload_id,
        batch_id = EXCLUDED.batch_id,
        is_active = TRUE,
        updated_at = NOW()
    RETURNING id, part_number, manufacturer, dataset_context, (xmax = 0) AS inserted
"""

INSERT_ATTRIBUTE_SQL = """
    INSERT INTO part_attributes (part_id, name, value) VALUES (%s, %s, %s)
"""


def dedupe_records(records: list[PartRecord]) -> list[PartRecord]:
    """Collapse records sharing a key; the last row wins."""
    by_key: dict[tuple[str, str, str], PartRecord] = {}
    for record in records:
        by_key[record.key] = record
    return list(by_key.values())


def _batches(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class CatalogWriter:
    """
    Writes and queries catalog records.

    ``write_records`` is the unit of atomicity for a chunk: the part
    upserts and the attribute rewrite commit together or not at all.
    """

    def __init__(
        self,
        pool: DatabaseConnectionPool,
        part_batch_size: int = 500,
        attribute_batch_size: int = 1000,
    ):
        """
        Initialize catalog writer.

        Args:
            pool: Database connection pool
            part_batch_size: Parts per upsert statement batch
            attribute_batch_size: Attribute rows per insert batch
        """
        self.pool = pool
        self.part_batch_size = part_batch_size
        self.attribute_batch_size = attribute_batch_size

    def write_records(self, records: list[PartRecord], upload_id: int, batch_id: str) -> UpsertResult:
        """
        Upsert records and replace their attributes in one transaction.

        Args:
            records: Normalized records (duplicate keys are collapsed)
            upload_id: Upload the records now belong to
            batch_id: Batch identifier of the upload

        Returns:
            Created/updated counts and the ids of every written record
        """
        records = dedupe_records(records)
        result = UpsertResult()
        if not records:
            return result

        with self.pool.transaction() as cur:
            for batch in _batches(records, self.part_batch_size):
                returned = self._upsert_batch(cur, batch, upload_id, batch_id)

                by_key = {
                    (row["part_number"], row["manufacturer"], row["dataset_context"]): row
                    for row in returned
                }
                if len(by_key) != len(batch):
                    increment_counter(id_mismatch_total)
                    logger.warning(
                        f"Upsert returned {len(by_key)} ids for {len(batch)} records; "
                        "attributes are only written for matched records",
                        extra={"upload_id": upload_id},
                    )

                written: list[tuple[int, PartRecord]] = []
                for record in batch:
                    row = by_key.get(record.key)
                    if row is None:
                        continue
                    written.append((row["id"], record))
                    if row["inserted"]:
                        result.created += 1
                    else:
                        result.updated += 1

                self._replace_attributes(cur, written)
                result.part_ids.extend(part_id for part_id, _ in written)

        return result

    def _upsert_batch(self, cur, batch: list[PartRecord], upload_id: int, batch_id: str) -> list[dict]:
        params = [
            (
                record.part_number,
                record.description,
                record.manufacturer,
                record.dataset_context,
                upload_id,
                batch_id,
            )
            for record in batch
        ]
        cur.executemany(UPSERT_PART_SQL, params, returning=True)
        returned = []
        while True:
            returned.extend(cur.fetchall())
            if not cur.nextset():
                break
        return returned

    def _replace_attributes(self, cur, written: list[tuple[int, PartRecord]]) -> None:
        if not written:
            return
        cur.execute(
            "DELETE FROM part_attributes WHERE part_id = ANY(%s)",
            ([part_id for part_id, _ in written],),
        )
        rows = [
            (part_id, name, value)
            for part_id, record in written
            for name, value in record.all_attributes().items()
        ]
        for batch in _batches(rows, self.attribute_batch_size):
            cur.executemany(INSERT_ATTRIBUTE_SQL, batch)

    def record_ids_for_upload(self, upload_id: int) -> list[int]:
        rows = self.pool.execute_query(
            "SELECT id FROM parts WHERE upload_id = %s ORDER BY id", (upload_id,)
        )
        return [row["id"] for row in rows]

    def record_keys(self, record_ids: list[int]) -> list[RecordKey]:
        rows = self.pool.execute_query(
            """
            SELECT id AS record_id, part_number, manufacturer, description
            FROM parts WHERE id = ANY(%s) ORDER BY id
            """,
            (record_ids,),
        )
        return [RecordKey.model_validate(row) for row in rows]

    def set_external_ids(self, matches: dict[int, str]) -> int:
        """
        Store external product ids returned by the matcher.

        Returns:
            Number of records updated
        """
        if not matches:
            return 0
        with self.pool.transaction() as cur:
            cur.executemany(
                "UPDATE parts SET external_id = %s, updated_at = NOW() WHERE id = %s",
                [(external_id, record_id) for record_id, external_id in matches.items()],
            )
        return len(matches)

    def image_candidates(self, upload_ids: list[int]) -> list[ImageCandidate]:
        """Records of the given uploads that name a source image file."""
        rows = self.pool.execute_query(
            """
            SELECT p.id AS part_id, p.dataset_context, a.value AS image_filename, p.image_ref
            FROM parts p
            JOIN part_attributes a ON a.part_id = p.id AND a.name = %s
            WHERE p.upload_id = ANY(%s)
            ORDER BY p.id
            """,
            (IMAGE_FILENAME_ATTRIBUTE, upload_ids),
        )
        return [ImageCandidate.model_validate(row) for row in rows]

    def set_image_refs(self, refs: dict[int, str]) -> int:
        if not refs:
            return 0
        with self.pool.transaction() as cur:
            cur.executemany(
                "UPDATE parts SET image_ref = %s, updated_at = NOW() WHERE id = %s",
                [(ref, part_id) for part_id, ref in refs.items()],
            )
        return len(refs)

    def image_ref_in_use(self, image_ref: str) -> bool:
        rows = self.pool.execute_query(
            "SELECT 1 AS found FROM parts WHERE image_ref = %s LIMIT 1", (image_ref,)
        )
        return bool(rows)

    def get_attributes(self, part_id: int) -> dict[str, str]:
        rows = self.pool.execute_query(
            "SELECT name, value FROM part_attributes WHERE part_id = %s ORDER BY name",
            (part_id,),
        )
        return {row["name"]: row["value"] for row in rows}

    def count_records(self, dataset_context: str | None = None) -> int:
        if dataset_context is None:
            rows = self.pool.execute_query("SELECT COUNT(*) AS n FROM parts")
        else:
            rows = self.pool.execute_query(
                "SELECT COUNT(*) AS n FROM parts WHERE dataset_context = %s", (dataset_context,)
            )
        return rows[0]["n"]
