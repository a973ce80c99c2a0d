"""Shared parser types and header helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from casebook.importer.errors import ParseError

from .rows import Row

# Individual row-shape warnings beyond this count are summarized.
MAX_ROW_WARNINGS = 20


@dataclass(frozen=True)
class ParseLimits:
    max_bytes: int
    max_rows: int


@dataclass
class ParsedFile:
    """Uniform tabular output of every adapter."""

    file_format: str
    columns: tuple[str, ...]
    rows: list[Row]
    warnings: list[str] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


class WarningCollector:
    """Accumulates warnings, folding repetitive per-row messages."""

    def __init__(self, limit: int = MAX_ROW_WARNINGS) -> None:
        self.limit = limit
        self.messages: list[str] = []
        self._row_warnings = 0

    def add(self, message: str) -> None:
        self.messages.append(message)

    def add_row(self, message: str) -> None:
        self._row_warnings += 1
        if self._row_warnings <= self.limit:
            self.messages.append(message)

    def finish(self) -> list[str]:
        overflow = self._row_warnings - self.limit
        if overflow > 0:
            self.messages.append(f"{overflow} additional row warnings suppressed.")
        return self.messages


def _sanitize_header(header: object | None) -> str:
    token = "" if header is None else str(header)
    return token.strip().lstrip("\ufeff").strip()


def build_columns(raw_headers: Sequence[object | None], warnings: WarningCollector) -> tuple[str, ...]:
    """
    Clean a header row: strip BOM/whitespace, name blank headers positionally
    and suffix repeated names so every column is addressable.
    """

    headers = [_sanitize_header(header) for header in raw_headers]
    while headers and not headers[-1]:
        headers.pop()
    if not headers:
        raise ParseError("File has no header row.")

    seen: dict[str, int] = {}
    columns: list[str] = []
    for position, header in enumerate(headers, start=1):
        name = header
        if not name:
            name = f"Column {position}"
            warnings.add(f"Header in position {position} is blank; using '{name}'.")
        if name in seen:
            seen[name] += 1
            renamed = f"{name}_{seen[name]}"
            warnings.add(f"Duplicate header '{name}' renamed to '{renamed}'.")
            name = renamed
        else:
            seen[name] = 1
        columns.append(name)
    return tuple(columns)


def enforce_row_ceiling(row_count: int, limits: ParseLimits) -> None:
    if row_count > limits.max_rows:
        raise ParseError(f"File exceeds the maximum of {limits.max_rows} data rows.", row=row_count)


def ensure_rows_present(rows: list[Row]) -> None:
    if not rows:
        raise ParseError("File contains a header but no data rows.")
