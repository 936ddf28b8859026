"""XLSX batch reader (openpyxl)."""

from itertools import islice
from pathlib import Path
from typing import Any
from zipfile import BadZipFile

import openpyxl
from loguru import logger
from openpyxl.utils.exceptions import InvalidFileException

from importer.readers.base import BatchReader, ReaderError, SheetInfo, coerce_cell, make_headers


def _is_blank(row: tuple) -> bool:
    return all(cell is None or (isinstance(cell, str) and not cell.strip()) for cell in row)


class ExcelReader(BatchReader):
    """Reads worksheets of an .xlsx workbook; the first row of each sheet is the header."""

    def _load(self, file_path: Path):
        try:
            return openpyxl.load_workbook(file_path, read_only=True, data_only=True)
        except (OSError, BadZipFile, InvalidFileException, KeyError, ValueError) as e:
            raise ReaderError(f"Cannot open workbook {file_path}: {e}") from e

    def list_sheets(self, file_path: Path) -> list[SheetInfo]:
        file_path = Path(file_path)
        wb = self._load(file_path)
        try:
            sheets = []
            for index, name in enumerate(wb.sheetnames):
                rows = wb[name].iter_rows(values_only=True)
                raw_headers = next(rows, None)
                if raw_headers is None:
                    sheets.append(SheetInfo(index=index, name=name, headers=[], row_count=0))
                    continue
                row_count = sum(1 for row in rows if not _is_blank(row))
                sheets.append(
                    SheetInfo(index=index, name=name, headers=make_headers(list(raw_headers)), row_count=row_count)
                )
            return sheets
        finally:
            wb.close()

    def read(self, file_path: Path, sheet_index: int, start_row: int, limit: int) -> list[dict[str, Any]]:
        file_path = Path(file_path)
        wb = self._load(file_path)
        try:
            if sheet_index >= len(wb.sheetnames):
                raise ReaderError(f"Workbook {file_path.name} has no sheet {sheet_index}")
            sheet = wb[wb.sheetnames[sheet_index]]

            rows_iter = sheet.iter_rows(values_only=True)
            raw_headers = next(rows_iter, None)
            if raw_headers is None:
                return []
            headers = make_headers(list(raw_headers))

            data_rows = (row for row in rows_iter if not _is_blank(row))
            rows = []
            for raw in islice(data_rows, start_row, start_row + limit):
                values = list(raw) + [None] * (len(headers) - len(raw))
                rows.append({header: coerce_cell(value) for header, value in zip(headers, values)})
        finally:
            wb.close()

        logger.debug(f"Read {len(rows)} rows from {file_path.name}[{sheet_index}] at offset {start_row}")
        return rows
