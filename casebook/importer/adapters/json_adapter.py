"""JSON adapter: an array of flat objects.

Columns are the union of keys across all objects in first-seen order. Nested
values are serialized back to JSON text so no information is dropped.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from casebook.importer.errors import ParseError

from .common import ParsedFile, ParseLimits, WarningCollector, enforce_row_ceiling, ensure_rows_present
from .rows import Row


def _flatten(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    if isinstance(value, str):
        return value.strip()
    return value


class JSONAdapter:
    file_format = "json"

    def __init__(self, payload: bytes, limits: ParseLimits) -> None:
        self._payload = payload
        self.limits = limits

    def parse(self) -> ParsedFile:
        try:
            text = self._payload.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError("JSON files must be UTF-8 encoded.") from exc
        if not text.strip():
            raise ParseError("File is empty.")

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(f"Invalid JSON at line {exc.lineno}, column {exc.colno}: {exc.msg}") from exc

        if not isinstance(data, list):
            raise ParseError("JSON must be an array of objects.")
        enforce_row_ceiling(len(data), self.limits)

        warnings = WarningCollector()
        columns: dict[str, None] = {}
        objects: list[Mapping[str, Any]] = []
        nested_columns: set[str] = set()
        for position, item in enumerate(data, start=1):
            if not isinstance(item, Mapping):
                warnings.add_row(f"Element {position} is not an object and was skipped.")
                continue
            for key, value in item.items():
                column = str(key).strip()
                if not column:
                    continue
                columns.setdefault(column, None)
                if isinstance(value, (dict, list)):
                    nested_columns.add(column)
            objects.append(item)

        if not columns:
            raise ParseError("JSON array contains no objects with keys.")
        for column in sorted(nested_columns):
            warnings.add(f"Column '{column}' holds nested values; they were kept as JSON text.")

        ordered = tuple(columns)
        rows: list[Row] = []
        for item in objects:
            normalized = {str(key).strip(): _flatten(value) for key, value in item.items()}
            row = Row.from_values(ordered, [normalized.get(column) for column in ordered])
            if row.is_blank:
                warnings.add_row("An object with no values was skipped.")
                continue
            rows.append(row)

        ensure_rows_present(rows)
        return ParsedFile(file_format=self.file_format, columns=ordered, rows=rows, warnings=warnings.finish())
