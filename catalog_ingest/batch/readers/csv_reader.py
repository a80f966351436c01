"""
CSV reader that streams rows instead of loading the whole file.
"""

import csv
import io
from itertools import islice
from typing import BinaryIO

from catalog_ingest.core.exceptions import SpreadsheetParseError

from .base import SpreadsheetReader


class CSVReader(SpreadsheetReader):
    """
    Reads CSV files with an optional BOM, sniffing the delimiter.

    Each call rewinds the underlying stream, so ranges can be read in
    any order.
    """

    def __init__(self, stream: BinaryIO, encoding: str = "utf-8-sig", delimiter: str | None = None):
        """
        Initialize CSV reader.

        Args:
            stream: Seekable binary stream
            encoding: Text encoding (undecodable bytes are replaced)
            delimiter: Field delimiter; sniffed from the first line when None
        """
        self.stream = stream
        self.encoding = encoding
        self.delimiter = delimiter or self._sniff_delimiter()

    def _text(self) -> io.TextIOWrapper:
        self.stream.seek(0)
        return io.TextIOWrapper(self.stream, encoding=self.encoding, errors="replace", newline="")

    def _rows(self):
        text = self._text()
        try:
            yield from csv.reader(text, delimiter=self.delimiter)
        except csv.Error as e:
            raise SpreadsheetParseError(f"Malformed CSV: {e}") from e
        finally:
            text.detach()

    def _sniff_delimiter(self) -> str:
        text = self._text()
        try:
            sample = text.readline()
        finally:
            text.detach()
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            return ","

    def header(self) -> list[str]:
        first = next(self._rows(), None)
        if not first or not any(cell.strip() for cell in first):
            raise SpreadsheetParseError("CSV file has no header row")
        return [cell.strip() for cell in first]

    def row_count(self) -> int:
        rows = self._rows()
        next(rows, None)
        return sum(1 for _ in rows)

    def read_range(self, start: int, end: int) -> list[list[str]]:
        rows = self._rows()
        next(rows, None)
        return [[cell.strip() for cell in row] for row in islice(rows, start, end)]
