"""
Excel readers: openpyxl for .xlsx/.xlsm, xlrd for legacy .xls.
"""

import zipfile
import zlib
from typing import BinaryIO

import openpyxl
import xlrd
from openpyxl.utils.exceptions import InvalidFileException

from catalog_ingest.core.exceptions import SpreadsheetParseError

from .base import SpreadsheetReader, cell_to_text


class XLSXReader(SpreadsheetReader):
    """
    Reads the first worksheet of an .xlsx workbook in read-only mode.

    Read-only mode streams rows from the archive instead of building
    the whole cell tree in memory.
    """

    def __init__(self, stream: BinaryIO):
        try:
            self.workbook = openpyxl.load_workbook(stream, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, SyntaxError, KeyError, OSError) as e:
            raise SpreadsheetParseError(f"Unreadable Excel workbook: {e}") from e
        if not self.workbook.worksheets:
            self.workbook.close()
            raise SpreadsheetParseError("Excel workbook has no worksheets")
        self.sheet = self.workbook.worksheets[0]
        self._row_count: int | None = None

    def _rows(self, min_row: int = 1, max_row: int | None = None):
        rows = self.sheet.iter_rows(min_row=min_row, max_row=max_row, values_only=True)
        # Worksheet XML is parsed lazily; ElementTree and lxml parse errors are SyntaxErrors
        try:
            for row in rows:
                yield [cell_to_text(value) for value in row]
        except (SyntaxError, zipfile.BadZipFile, zlib.error, KeyError, ValueError) as e:
            raise SpreadsheetParseError(f"Corrupt Excel worksheet: {e}") from e

    def header(self) -> list[str]:
        first = next(self._rows(min_row=1, max_row=1), None)
        if not first or not any(first):
            raise SpreadsheetParseError("Excel worksheet has no header row")
        # Trailing empty header cells are formatting noise
        while first and not first[-1]:
            first.pop()
        return first

    def row_count(self) -> int:
        if self._row_count is None:
            # max_row is unreliable for sheets written without dimensions
            self._row_count = sum(1 for _ in self._rows(min_row=2))
        return self._row_count

    def read_range(self, start: int, end: int) -> list[list[str]]:
        # Worksheet row 1 is the header, data row 0 is worksheet row 2
        return list(self._rows(min_row=start + 2, max_row=end + 1))

    def close(self) -> None:
        self.workbook.close()


class XLSReader(SpreadsheetReader):
    """
    Reads the first sheet of a legacy .xls workbook.
    """

    def __init__(self, stream: BinaryIO):
        try:
            self.book = xlrd.open_workbook(file_contents=stream.read(), on_demand=True)
            self.sheet = self.book.sheet_by_index(0)
        except (xlrd.XLRDError, IndexError, ValueError) as e:
            raise SpreadsheetParseError(f"Unreadable XLS workbook: {e}") from e

    def _row(self, index: int) -> list[str]:
        try:
            values = self.sheet.row_values(index)
        except (xlrd.XLRDError, IndexError, ValueError) as e:
            raise SpreadsheetParseError(f"Corrupt XLS sheet: {e}") from e
        return [cell_to_text(value) for value in values]

    def header(self) -> list[str]:
        if self.sheet.nrows == 0:
            raise SpreadsheetParseError("XLS sheet has no header row")
        first = self._row(0)
        if not any(first):
            raise SpreadsheetParseError("XLS sheet has no header row")
        return first

    def row_count(self) -> int:
        return max(self.sheet.nrows - 1, 0)

    def read_range(self, start: int, end: int) -> list[list[str]]:
        last = min(end, self.row_count())
        return [self._row(index + 1) for index in range(start, last)]

    def close(self) -> None:
        self.book.release_resources()
