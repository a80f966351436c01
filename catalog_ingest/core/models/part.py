"""
Normalized catalog records produced from spreadsheet rows.
"""

from pydantic import BaseModel, Field

DATASET_CONTEXT_ATTRIBUTE = "_dataset_context"
ORIGINAL_MANUFACTURER_ATTRIBUTE = "_original_manufacturer"
IMAGE_FILENAME_ATTRIBUTE = "_image_filename"


class PartRecord(BaseModel):
    """
    One normalized row ready to be upserted.

    Attributes:
        part_number: Business number (part of the unique key)
        description: Free-text description
        manufacturer: Canonical manufacturer name (part of the unique key)
        dataset_context: Dataset the row came from (part of the unique key)
        raw_manufacturer: Manufacturer as written in the spreadsheet
        image_filename: Value of the image filename column, if any
        attributes: Non-core columns keyed by header name
    """

    part_number: str = Field(..., min_length=1)
    description: str = ""
    manufacturer: str = ""
    dataset_context: str
    raw_manufacturer: str = ""
    image_filename: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.part_number, self.manufacturer, self.dataset_context)

    def all_attributes(self) -> dict[str, str]:
        """Extra columns plus bookkeeping attributes, as written to storage."""
        values = dict(self.attributes)
        values[DATASET_CONTEXT_ATTRIBUTE] = self.dataset_context
        if self.raw_manufacturer and self.raw_manufacturer != self.manufacturer:
            values[ORIGINAL_MANUFACTURER_ATTRIBUTE] = self.raw_manufacturer
        if self.image_filename:
            values[IMAGE_FILENAME_ATTRIBUTE] = self.image_filename
        return values


class UpsertResult(BaseModel):
    """Outcome of writing one batch of records."""

    created: int = 0
    updated: int = 0
    part_ids: list[int] = Field(default_factory=list)


class RecordKey(BaseModel):
    """Identity of a stored record, as sent to the product matcher."""

    record_id: int
    part_number: str
    manufacturer: str
    description: str = ""


class ImageCandidate(BaseModel):
    """A stored record that names a source image file."""

    part_id: int
    dataset_context: str
    image_filename: str
    image_ref: str | None = None
