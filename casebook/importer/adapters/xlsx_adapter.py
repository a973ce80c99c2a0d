"""XLSX adapter: reads the first worksheet only.

The workbook is opened in read-only mode so rows stream from the archive;
the row ceiling is enforced while iterating.
"""

from __future__ import annotations

import io
import zipfile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from casebook.importer.errors import ParseError

from .common import (
    ParsedFile,
    ParseLimits,
    WarningCollector,
    build_columns,
    enforce_row_ceiling,
    ensure_rows_present,
)
from .rows import Row


def _row_is_blank(values) -> bool:
    return all(value is None or (isinstance(value, str) and not value.strip()) for value in values)


def _clean(value):
    if isinstance(value, str):
        return value.strip()
    return value


class XLSXAdapter:
    file_format = "xlsx"

    def __init__(self, payload: bytes, limits: ParseLimits) -> None:
        self._payload = payload
        self.limits = limits
        self.sheet_name: str | None = None

    def parse(self) -> ParsedFile:
        if not self._payload:
            raise ParseError("File is empty.")
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(self._payload), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
            raise ParseError(f"Unable to read XLSX workbook: {exc}") from exc

        warnings = WarningCollector()
        try:
            if not workbook.worksheets:
                raise ParseError("Workbook contains no worksheets.")
            worksheet = workbook.worksheets[0]
            self.sheet_name = worksheet.title
            if len(workbook.worksheets) > 1:
                warnings.add(
                    f"Workbook has {len(workbook.worksheets)} sheets; only the first sheet "
                    f"'{worksheet.title}' was read."
                )
            rows_iter = worksheet.iter_rows(values_only=True)

            columns: tuple[str, ...] | None = None
            for values in rows_iter:
                if not _row_is_blank(values):
                    columns = build_columns(values, warnings)
                    break
            if columns is None:
                raise ParseError("File is empty.")

            rows: list[Row] = []
            blank_rows = 0
            for values in rows_iter:
                if _row_is_blank(values):
                    blank_rows += 1
                    continue
                enforce_row_ceiling(len(rows) + 1, self.limits)
                overflow = values[len(columns):]
                if any(value not in (None, "") for value in overflow):
                    warnings.add_row(f"Data row {len(rows) + 1} has values beyond the header; they were ignored.")
                rows.append(Row.from_values(columns, [_clean(value) for value in values]))
        finally:
            workbook.close()

        if blank_rows:
            warnings.add(f"Skipped {blank_rows} blank row(s).")
        ensure_rows_present(rows)
        return ParsedFile(file_format=self.file_format, columns=columns, rows=rows, warnings=warnings.finish())
