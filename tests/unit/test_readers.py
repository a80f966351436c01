"""
Unit tests for the row-range spreadsheet readers.
"""

import io

import pytest

from catalog_ingest.batch.readers import CSVReader, XLSXReader, file_extension, open_spreadsheet
from catalog_ingest.core.exceptions import SpreadsheetParseError
from tests.builders import make_csv, make_xlsx, truncate_member


@pytest.mark.unit
class TestCSVReader:

    def test_header_and_row_count(self):
        data = make_csv([["A1", "x"], ["A2", "y"], ["A3", "z"]], header=["Part Number", "Description"])
        reader = CSVReader(io.BytesIO(data))
        assert reader.header() == ["Part Number", "Description"]
        assert reader.row_count() == 3

    def test_read_range_is_positional(self):
        rows = [[f"A{i}", str(i)] for i in range(10)]
        reader = CSVReader(io.BytesIO(make_csv(rows, header=["pn", "n"])))
        assert reader.read_range(3, 6) == rows[3:6]
        assert reader.read_range(8, 20) == rows[8:]
        assert reader.read_range(0, 2) == rows[:2]

    def test_utf8_bom_and_semicolon_delimiter(self):
        data = "\ufeffPart Number;Description\nA1;Ventil\n".encode("utf-8")
        reader = CSVReader(io.BytesIO(data))
        assert reader.delimiter == ";"
        assert reader.header() == ["Part Number", "Description"]
        assert reader.read_range(0, 1) == [["A1", "Ventil"]]

    def test_blank_rows_keep_their_offsets(self):
        data = b"pn,desc\nA1,x\n,\nA3,z\n"
        reader = CSVReader(io.BytesIO(data))
        assert reader.row_count() == 3
        assert reader.read_range(1, 2) == [["", ""]]

    def test_empty_file(self):
        with pytest.raises(SpreadsheetParseError):
            CSVReader(io.BytesIO(b"")).header()

    def test_stream_left_open(self):
        stream = io.BytesIO(make_csv([["A1"]], header=["pn"]))
        with open_spreadsheet(stream, "parts.csv") as reader:
            reader.read_range(0, 1)
        assert not stream.closed


@pytest.mark.unit
class TestXLSXReader:

    def test_reads_first_sheet(self):
        data = make_xlsx([["A1", 12.0, None], ["A2", 3.5, True]], header=["Part Number", "Qty", "Active"])
        with XLSXReader(io.BytesIO(data)) as reader:
            assert reader.header() == ["Part Number", "Qty", "Active"]
            assert reader.row_count() == 2
            assert reader.read_range(0, 2) == [["A1", "12", ""], ["A2", "3.5", "TRUE"]]

    def test_read_range_offsets(self):
        rows = [[f"P{i}", f"d{i}"] for i in range(7)]
        data = make_xlsx(rows, header=["pn", "desc"])
        with XLSXReader(io.BytesIO(data)) as reader:
            assert reader.read_range(2, 5) == rows[2:5]

    def test_corrupt_workbook(self):
        with pytest.raises(SpreadsheetParseError):
            XLSXReader(io.BytesIO(b"not a workbook"))

    def test_truncated_worksheet_xml(self):
        data = truncate_member(make_xlsx([["A1", "x"]] * 5, header=["pn", "desc"]), "xl/worksheets/sheet1.xml")
        with pytest.raises(SpreadsheetParseError):
            with XLSXReader(io.BytesIO(data)) as reader:
                reader.header()
                reader.row_count()


@pytest.mark.unit
class TestOpenSpreadsheet:

    def test_dispatch_by_extension(self):
        data = make_xlsx([["A1"]], header=["pn"])
        with open_spreadsheet(io.BytesIO(data), "Parts.XLSX") as reader:
            assert isinstance(reader, XLSXReader)

    def test_unsupported_extension(self):
        with pytest.raises(ValueError, match="Unsupported"):
            open_spreadsheet(io.BytesIO(b""), "notes.txt")

    @pytest.mark.parametrize("name,ext", [("a.CSV", "csv"), ("dir/b.xlsm", "xlsm"), ("noext", "")])
    def test_file_extension(self, name, ext):
        assert file_extension(name) == ext
