"""
Unit tests for header mapping, manufacturer normalization and row
normalization.
"""

import string

import pytest
from hypothesis import given
from hypothesis import strategies as st

from catalog_ingest.core.mapping import HeaderMapping, ManufacturerNormalizer, RowNormalizer


@pytest.fixture(scope="module")
def mapping() -> HeaderMapping:
    return HeaderMapping.load()


@pytest.fixture(scope="module")
def manufacturers(mapping) -> ManufacturerNormalizer:
    return ManufacturerNormalizer(mapping.manufacturer_aliases)


@pytest.mark.unit
class TestHeaderMapping:

    @pytest.mark.parametrize("header", ["part_number", "Part Number", "  PART NO ", "PartNumber"])
    def test_part_number_synonyms(self, mapping, header):
        assert mapping.field_for(header) == "part_number"

    def test_free_form_column(self, mapping):
        assert mapping.field_for("Thread Size") is None

    def test_resolve_first_match_wins(self, mapping):
        columns = mapping.resolve(["Vendor", "Part No", "Desc", "Brand", "img_page_path"])
        assert columns == {
            "manufacturer": 0,
            "part_number": 1,
            "description": 2,
            "image_filename": 4,
        }

    def test_requires_part_number(self):
        with pytest.raises(ValueError, match="part_number"):
            HeaderMapping({"description": ["description"]})

    def test_rejects_spelling_shared_by_two_fields(self):
        with pytest.raises(ValueError, match="both"):
            HeaderMapping({"part_number": ["sku"], "description": ["SKU"]})

    def test_load_custom_file(self, tmp_path):
        path = tmp_path / "mapping.yaml"
        path.write_text(
            "fields:\n  part_number: [sku]\nmanufacturers:\n  Acme: [acme corp]\n"
        )
        mapping = HeaderMapping.load(path)
        assert mapping.field_for("SKU") == "part_number"
        assert mapping.manufacturer_aliases == {"Acme": ["acme corp"]}

    def test_load_requires_fields_section(self, tmp_path):
        path = tmp_path / "mapping.yaml"
        path.write_text("manufacturers: {}\n")
        with pytest.raises(ValueError, match="fields"):
            HeaderMapping.load(path)


@pytest.mark.unit
class TestManufacturerNormalizer:

    @pytest.mark.parametrize(
        "raw",
        ["Parker", "parker", "  PARKER  ", "Parker-Hannifin", "parker   hannifin", "Parker Hannifin."],
    )
    def test_aliases_collapse_to_canonical(self, manufacturers, raw):
        assert manufacturers.normalize(raw) == "Parker Hannifin"

    def test_unknown_names_collapse_by_case_and_spacing(self, manufacturers):
        variants = ["acme  tools", "ACME TOOLS", " Acme Tools ", "acme tools,"]
        assert {manufacturers.normalize(v) for v in variants} == {"ACME TOOLS"}

    def test_empty(self, manufacturers):
        assert manufacturers.normalize(None) == ""
        assert manufacturers.normalize("   ") == ""

    def test_deterministic(self, manufacturers):
        assert manufacturers.normalize("hp") == manufacturers.normalize("HP") == "Hewlett-Packard"

    @given(st.text(alphabet=string.ascii_letters + string.digits + " .,-&", max_size=40))
    def test_case_and_spacing_variants_collapse(self, manufacturers, raw):
        variant = "  " + raw.lower().replace(" ", "   ") + " "
        assert manufacturers.normalize(variant) == manufacturers.normalize(raw)

    @given(st.text(alphabet=string.ascii_letters + string.digits + " .,-&", max_size=40))
    def test_normalizing_twice_changes_nothing(self, manufacturers, raw):
        once = manufacturers.normalize(raw)
        assert manufacturers.normalize(once) == once


@pytest.mark.unit
class TestRowNormalizer:

    HEADERS = ["Part Number", "Description", "Manufacturer", "Voltage", "image", ""]

    def make(self, mapping, manufacturers):
        return RowNormalizer(self.HEADERS, mapping, manufacturers, dataset_context="hydraulics")

    def test_core_fields_and_attributes(self, mapping, manufacturers):
        record = self.make(mapping, manufacturers).normalize_row(
            ["PN-1", "Hose fitting", "parker", "24V", "img/pn-1.png", "ignored"]
        )
        assert record.part_number == "PN-1"
        assert record.description == "Hose fitting"
        assert record.manufacturer == "Parker Hannifin"
        assert record.raw_manufacturer == "parker"
        assert record.dataset_context == "hydraulics"
        assert record.image_filename == "img/pn-1.png"
        assert record.attributes == {"Voltage": "24V"}

    def test_empty_attribute_values_not_stored(self, mapping, manufacturers):
        record = self.make(mapping, manufacturers).normalize_row(["PN-1", "", "", "  ", "", ""])
        assert record.attributes == {}
        assert record.image_filename is None

    def test_short_rows_are_padded(self, mapping, manufacturers):
        record = self.make(mapping, manufacturers).normalize_row(["PN-2"])
        assert record.part_number == "PN-2"
        assert record.manufacturer == ""

    def test_skips_blank_and_missing_part_number(self, mapping, manufacturers):
        batch = self.make(mapping, manufacturers).normalize(
            [
                ["PN-1", "a", "SKF", "", "", ""],
                ["", "", "", "", "", ""],
                ["", "orphan description", "SKF", "", "", ""],
                ["PN-2", "b", "skf", "", "", ""],
            ]
        )
        assert [r.part_number for r in batch.records] == ["PN-1", "PN-2"]
        assert batch.skipped_blank == 1
        assert batch.skipped_missing_number == 1
        assert batch.skipped == 2
