"""
Declarative header mapping.

Loads the canonical-field -> accepted-header table from YAML once and
resolves a spreadsheet header row against it.
"""

from pathlib import Path
from typing import Any

import yaml

DEFAULT_MAPPING_PATH = Path(__file__).with_name("default_mapping.yaml")

CORE_FIELDS = ("part_number", "description", "manufacturer", "image_filename")


def normalize_header(value: str) -> str:
    return " ".join(str(value).split()).casefold()


class HeaderMapping:
    """
    Maps spreadsheet header names to canonical fields.

    Expected YAML format:
    ```yaml
    fields:
      part_number: [part_number, part no, partnumber]
      manufacturer: [manufacturer, vendor, brand]
    manufacturers:
      Parker Hannifin: [parker, parker-hannifin]
    ```
    """

    def __init__(self, synonyms: dict[str, list[str]], manufacturer_aliases: dict[str, list[str]] | None = None):
        """
        Initialize the mapping.

        Args:
            synonyms: Canonical field -> accepted header spellings
            manufacturer_aliases: Canonical manufacturer -> aliases

        Raises:
            ValueError: If part_number has no synonyms or a spelling maps to two fields
        """
        if not synonyms.get("part_number"):
            raise ValueError("Header mapping must define synonyms for 'part_number'")

        self.synonyms = {field: list(names) for field, names in synonyms.items()}
        self.manufacturer_aliases = dict(manufacturer_aliases or {})

        self._lookup: dict[str, str] = {}
        for field, names in self.synonyms.items():
            for name in names:
                key = normalize_header(name)
                owner = self._lookup.setdefault(key, field)
                if owner != field:
                    raise ValueError(
                        f"Header '{name}' is listed for both '{owner}' and '{field}'"
                    )

    @classmethod
    def load(cls, path: str | Path | None = None) -> "HeaderMapping":
        """
        Load a mapping from YAML, defaulting to the packaged table.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the YAML has no ``fields`` section
        """
        config_path = Path(path) if path else DEFAULT_MAPPING_PATH
        if not config_path.exists():
            raise FileNotFoundError(f"Header mapping file not found: {config_path}")

        with open(config_path) as f:
            config: dict[str, Any] = yaml.safe_load(f) or {}

        if "fields" not in config:
            raise ValueError("Mapping file must contain 'fields' section")

        return cls(config["fields"], config.get("manufacturers") or {})

    def field_for(self, header: str) -> str | None:
        """Canonical field for one header, or None for a free-form column."""
        return self._lookup.get(normalize_header(header))

    def resolve(self, headers: list[str]) -> dict[str, int]:
        """
        Find the column index of each canonical field.

        The first matching column wins when a sheet repeats a field.

        Returns:
            Canonical field -> column index (only fields present in the header)
        """
        columns: dict[str, int] = {}
        for index, header in enumerate(headers):
            field = self.field_for(header)
            if field is not None and field not in columns:
                columns[field] = index
        return columns
