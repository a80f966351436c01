"""
Turns raw spreadsheet rows into PartRecord instances.
"""

from pydantic import BaseModel, Field

from catalog_ingest.core.models import PartRecord

from .header_mapping import HeaderMapping
from .manufacturer import ManufacturerNormalizer


class NormalizedBatch(BaseModel):
    records: list[PartRecord] = Field(default_factory=list)
    skipped_blank: int = 0
    skipped_missing_number: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_blank + self.skipped_missing_number


class RowNormalizer:
    """
    Extracts core fields and free-form attributes from raw rows.

    Core fields are located with the header mapping. Every other
    non-empty column becomes an attribute keyed by its header text.
    """

    def __init__(
        self,
        headers: list[str],
        mapping: HeaderMapping,
        manufacturers: ManufacturerNormalizer,
        dataset_context: str,
    ):
        self.headers = [str(h).strip() for h in headers]
        self.mapping = mapping
        self.manufacturers = manufacturers
        self.dataset_context = dataset_context
        self.columns = mapping.resolve(self.headers)
        core_indexes = set(self.columns.values())
        self.attribute_columns = [
            (index, header)
            for index, header in enumerate(self.headers)
            if index not in core_indexes and header
        ]

    def _cell(self, row: list[str], field: str) -> str:
        index = self.columns.get(field)
        if index is None or index >= len(row):
            return ""
        return str(row[index]).strip()

    def normalize_row(self, row: list[str]) -> PartRecord | None:
        """Build one record, or None when the row has no part number."""
        part_number = self._cell(row, "part_number")
        if not part_number:
            return None

        raw_manufacturer = self._cell(row, "manufacturer")
        attributes = {}
        for index, header in self.attribute_columns:
            if index < len(row):
                value = str(row[index]).strip()
                if value:
                    attributes[header] = value

        return PartRecord(
            part_number=part_number,
            description=self._cell(row, "description"),
            manufacturer=self.manufacturers.normalize(raw_manufacturer),
            raw_manufacturer=raw_manufacturer,
            dataset_context=self.dataset_context,
            image_filename=self._cell(row, "image_filename") or None,
            attributes=attributes,
        )

    def normalize(self, rows: list[list[str]]) -> NormalizedBatch:
        batch = NormalizedBatch()
        for row in rows:
            if not any(str(cell).strip() for cell in row):
                batch.skipped_blank += 1
                continue
            record = self.normalize_row(row)
            if record is None:
                batch.skipped_missing_number += 1
                continue
            batch.records.append(record)
        return batch
