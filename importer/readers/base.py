"""
Batch reader interface.

A batch reader returns one slice of a sheet's data rows as dicts keyed by
header. Returning fewer rows than requested means the sheet is exhausted,
which is the only end-of-data signal the pipeline relies on.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any

# Codes such as "007" or "01234" keep their leading zeros
LEADING_ZERO_PATTERN = re.compile(r"^-?0\d+$")
INTEGER_PATTERN = re.compile(r"^-?\d+$")
FLOAT_PATTERN = re.compile(r"^-?(\d+\.\d*|\.\d+|\d+)([eE][-+]?\d+)?$")


class ReaderError(Exception):
    """Raised when a file cannot be opened or read."""
    pass


@dataclass
class SheetInfo:
    index: int
    name: str
    headers: list[str]
    row_count: int


def coerce_cell(value: Any) -> Any:
    """
    Give a raw cell value its natural Python type.

    Empty strings become None, numeric strings become int or float,
    "true"/"false" become booleans and spreadsheet dates become ISO strings.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()

    text = str(value).strip()
    if text == "":
        return None

    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False

    if LEADING_ZERO_PATTERN.match(text):
        return text
    if INTEGER_PATTERN.match(text):
        return int(text)
    if FLOAT_PATTERN.match(text):
        return float(text)
    return text


def make_headers(raw_headers: list[Any]) -> list[str]:
    """Header names with blanks and repeats made unique."""
    headers: list[str] = []
    seen: dict[str, int] = {}
    for index, raw in enumerate(raw_headers):
        name = str(raw).strip() if raw is not None else ""
        if not name:
            name = f"column_{index + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        headers.append(name)
    return headers


class BatchReader(ABC):
    """Reads data rows from one file."""

    @abstractmethod
    def list_sheets(self, file_path: Path) -> list[SheetInfo]:
        """List the sheets in the file with their headers and data row counts."""
        pass

    @abstractmethod
    def read(self, file_path: Path, sheet_index: int, start_row: int, limit: int) -> list[dict[str, Any]]:
        """
        Read up to ``limit`` data rows starting at ``start_row`` (0-based, header excluded).

        Raises:
            ReaderError: If the file or sheet cannot be read
        """
        pass


def get_reader(file_path: str | Path) -> BatchReader:
    """
    Pick a reader by file extension.

    Raises:
        ReaderError: For unsupported file types
    """
    # Imported here to avoid a cycle with the implementations
    from importer.readers.csv_reader import CSVReader
    from importer.readers.excel import ExcelReader

    suffix = Path(file_path).suffix.lower()
    if suffix in (".csv", ".tsv", ".txt"):
        return CSVReader(delimiter="\t" if suffix == ".tsv" else ",")
    if suffix in (".xlsx", ".xlsm"):
        return ExcelReader()
    raise ReaderError(f"Unsupported file type: {suffix or file_path}")
