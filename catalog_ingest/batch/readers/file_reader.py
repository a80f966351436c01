"""
Opens the right spreadsheet reader for a file name.
"""

from pathlib import PurePath
from typing import BinaryIO

from .base import SpreadsheetReader
from .csv_reader import CSVReader
from .excel_reader import XLSReader, XLSXReader

SPREADSHEET_EXTENSIONS = frozenset({"csv", "xlsx", "xlsm", "xls"})


def file_extension(filename: str) -> str:
    return PurePath(filename).suffix.lower().lstrip(".")


def open_spreadsheet(stream: BinaryIO, filename: str) -> SpreadsheetReader:
    """
    Open a reader for a spreadsheet stream.

    Args:
        stream: Seekable binary stream
        filename: Name used to pick the format

    Returns:
        SpreadsheetReader for the format

    Raises:
        ValueError: If the extension is not a supported spreadsheet format
        SpreadsheetParseError: If the content cannot be read as that format
    """
    extension = file_extension(filename)
    if extension == "csv":
        return CSVReader(stream)
    elif extension in ("xlsx", "xlsm"):
        return XLSXReader(stream)
    elif extension == "xls":
        return XLSReader(stream)
    else:
        raise ValueError(f"Unsupported spreadsheet format: {extension or filename}")
