"""CSV batch reader."""

import csv
from itertools import islice
from pathlib import Path
from typing import Any

from loguru import logger

from importer.readers.base import BatchReader, ReaderError, SheetInfo, coerce_cell, make_headers


class CSVReader(BatchReader):
    """Reads a delimited text file as a single sheet."""

    def __init__(self, delimiter: str = ",", encoding: str = "utf-8-sig"):
        self.delimiter = delimiter
        self.encoding = encoding

    def _open(self, file_path: Path):
        try:
            return open(file_path, newline="", encoding=self.encoding)
        except OSError as e:
            raise ReaderError(f"Cannot open {file_path}: {e}") from e

    def list_sheets(self, file_path: Path) -> list[SheetInfo]:
        file_path = Path(file_path)
        with self._open(file_path) as f:
            reader = csv.reader(f, delimiter=self.delimiter)
            raw_headers = next(reader, None)
            if raw_headers is None:
                return []
            row_count = sum(1 for row in reader if any(cell.strip() for cell in row))

        return [SheetInfo(index=0, name=file_path.stem, headers=make_headers(raw_headers), row_count=row_count)]

    def read(self, file_path: Path, sheet_index: int, start_row: int, limit: int) -> list[dict[str, Any]]:
        if sheet_index != 0:
            raise ReaderError(f"CSV files have a single sheet, got sheet index {sheet_index}")

        file_path = Path(file_path)
        with self._open(file_path) as f:
            reader = csv.reader(f, delimiter=self.delimiter)
            raw_headers = next(reader, None)
            if raw_headers is None:
                return []
            headers = make_headers(raw_headers)

            data_rows = (row for row in reader if any(cell.strip() for cell in row))
            rows = []
            try:
                for raw in islice(data_rows, start_row, start_row + limit):
                    values = raw + [""] * (len(headers) - len(raw))
                    rows.append({header: coerce_cell(value) for header, value in zip(headers, values)})
            except csv.Error as e:
                raise ReaderError(f"Malformed CSV in {file_path}: {e}") from e

        logger.debug(f"Read {len(rows)} rows from {file_path.name} at offset {start_row}")
        return rows
