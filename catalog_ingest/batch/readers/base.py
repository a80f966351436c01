"""
Row-range spreadsheet reader interface.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime


def cell_to_text(value) -> str:
    """Render a cell value the way it appears in the sheet."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


class SpreadsheetReader(ABC):
    """
    Reads a spreadsheet's header and data rows by 0-based offset.

    Data row 0 is the first row after the header. Rows are lists of
    strings; blank rows are returned as-is so offsets stay positional.
    """

    @abstractmethod
    def header(self) -> list[str]:
        """
        Header row.

        Raises:
            SpreadsheetParseError: If the sheet is empty or unreadable
        """

    @abstractmethod
    def row_count(self) -> int:
        """Number of data rows, header excluded."""

    @abstractmethod
    def read_range(self, start: int, end: int) -> list[list[str]]:
        """Data rows in ``[start, end)``."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
