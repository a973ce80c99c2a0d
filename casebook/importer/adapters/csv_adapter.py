"""CSV adapter for client imports.

Decodes the payload, detects the delimiter among comma, semicolon and tab,
and streams rows into typed ``Row`` objects. Cells are trimmed strings; CSV
carries no type information so values are never coerced here.
"""

from __future__ import annotations

import csv
import io
from typing import Iterator

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

CANDIDATE_DELIMITERS = (",", ";", "\t")
SNIFF_SAMPLE_BYTES = 64 * 1024
_DELIMITER_NAMES = {",": "comma", ";": "semicolon", "\t": "tab"}


def _decode(payload: bytes, warnings: WarningCollector) -> str:
    try:
        return payload.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass
    try:
        text = payload.decode("cp1252")
        warnings.add("File is not valid UTF-8; decoded as Windows-1252.")
        return text
    except UnicodeDecodeError:
        warnings.add("File is not valid UTF-8; decoded as Latin-1.")
        return payload.decode("latin-1")


def detect_delimiter(sample: str) -> str:
    """Pick the delimiter for ``sample``, falling back to a header count."""

    try:
        dialect = csv.Sniffer().sniff(sample, delimiters="".join(CANDIDATE_DELIMITERS))
        if dialect.delimiter in CANDIDATE_DELIMITERS:
            return dialect.delimiter
    except csv.Error:
        pass

    first_line = next((line for line in sample.splitlines() if line.strip()), "")
    counts = {delimiter: first_line.count(delimiter) for delimiter in CANDIDATE_DELIMITERS}
    best = max(CANDIDATE_DELIMITERS, key=lambda delimiter: counts[delimiter])
    return best if counts[best] > 0 else ","


def _row_is_blank(values: list[str]) -> bool:
    return all(not value.strip() for value in values)


class CSVAdapter:
    """Parse a CSV payload under the configured limits."""

    file_format = "csv"

    def __init__(self, payload: bytes, limits: ParseLimits) -> None:
        self._payload = payload
        self.limits = limits
        self.delimiter: str | None = None

    def _iter_records(self, text: str) -> Iterator[tuple[int, list[str]]]:
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.delimiter or ",")
        try:
            for values in reader:
                yield reader.line_num, values
        except csv.Error as exc:
            raise ParseError(f"Malformed CSV near line {reader.line_num}: {exc}", row=reader.line_num) from exc

    def parse(self) -> ParsedFile:
        warnings = WarningCollector()
        text = _decode(self._payload, warnings)
        if not text.strip():
            raise ParseError("File is empty.")

        self.delimiter = detect_delimiter(text[:SNIFF_SAMPLE_BYTES])
        if self.delimiter != ",":
            warnings.add(f"Detected {_DELIMITER_NAMES[self.delimiter]}-delimited file.")

        records = self._iter_records(text)
        columns: tuple[str, ...] | None = None
        for _, values in records:
            if not _row_is_blank(values):
                columns = build_columns(values, warnings)
                break
        if columns is None:
            raise ParseError("File is empty.")

        rows: list[Row] = []
        blank_rows = 0
        for line_number, values in records:
            if _row_is_blank(values):
                blank_rows += 1
                continue
            enforce_row_ceiling(len(rows) + 1, self.limits)
            if len(values) > len(columns):
                extras = values[len(columns):]
                if any(value.strip() for value in extras):
                    warnings.add_row(
                        f"Line {line_number} has {len(values)} values but the header has {len(columns)}; "
                        "extra values were ignored."
                    )
            elif len(values) < len(columns):
                warnings.add_row(f"Line {line_number} has {len(values)} values; missing cells left empty.")
            rows.append(Row.from_values(columns, [value.strip() for value in values]))

        if blank_rows:
            warnings.add(f"Skipped {blank_rows} blank line(s).")
        ensure_rows_present(rows)
        return ParsedFile(file_format=self.file_format, columns=columns, rows=rows, warnings=warnings.finish())
