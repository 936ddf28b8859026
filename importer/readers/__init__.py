"""Batch readers for uploaded files."""

from importer.readers.base import BatchReader, ReaderError, SheetInfo, coerce_cell, get_reader
from importer.readers.csv_reader import CSVReader
from importer.readers.excel import ExcelReader

__all__ = [
    "BatchReader",
    "CSVReader",
    "ExcelReader",
    "ReaderError",
    "SheetInfo",
    "coerce_cell",
    "get_reader",
]
