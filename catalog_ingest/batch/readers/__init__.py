"""
Spreadsheet readers (CSV, XLSX, XLS).
"""

from .base import SpreadsheetReader
from .csv_reader import CSVReader
from .excel_reader import XLSReader, XLSXReader
from .file_reader import SPREADSHEET_EXTENSIONS, file_extension, open_spreadsheet

__all__ = [
    "SpreadsheetReader",
    "CSVReader",
    "XLSXReader",
    "XLSReader",
    "SPREADSHEET_EXTENSIONS",
    "file_extension",
    "open_spreadsheet",
]
