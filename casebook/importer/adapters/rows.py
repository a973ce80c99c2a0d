"""Typed tabular rows produced once at parse time.

Every source cell becomes a ``Cell`` tagged as string, number, date or empty.
Downstream stages read cells through ``Row`` and never re-inspect the raw
parser output.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Iterable, Iterator, Sequence


class CellKind(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    EMPTY = "empty"


@dataclass(frozen=True)
class Cell:
    kind: CellKind
    value: str | int | float | date | None = None

    @classmethod
    def empty(cls) -> "Cell":
        return cls(CellKind.EMPTY)

    @classmethod
    def of(cls, value: Any) -> "Cell":
        """Classify a parser primitive."""

        if value is None:
            return cls.empty()
        if isinstance(value, bool):
            return cls(CellKind.STRING, "true" if value else "false")
        if isinstance(value, (int, float)):
            if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
                return cls.empty()
            return cls(CellKind.NUMBER, value)
        if isinstance(value, datetime):
            if value.time() == time.min:
                return cls(CellKind.DATE, value.date())
            return cls(CellKind.DATE, value.replace(microsecond=0))
        if isinstance(value, date):
            return cls(CellKind.DATE, value)
        text = str(value)
        if not text.strip():
            return cls.empty()
        return cls(CellKind.STRING, text)

    @property
    def is_empty(self) -> bool:
        return self.kind is CellKind.EMPTY

    def as_text(self) -> str | None:
        if self.kind is CellKind.EMPTY:
            return None
        if self.kind is CellKind.NUMBER:
            if isinstance(self.value, float) and self.value.is_integer():
                return str(int(self.value))
            return str(self.value)
        if self.kind is CellKind.DATE:
            return self.value.isoformat()  # type: ignore[union-attr]
        return str(self.value)

    def to_json(self) -> dict[str, Any]:
        value: Any = self.value
        if self.kind is CellKind.DATE:
            value = self.value.isoformat()  # type: ignore[union-attr]
        return {"kind": self.kind.value, "value": value}

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> "Cell":
        kind = CellKind(payload.get("kind", CellKind.EMPTY.value))
        value = payload.get("value")
        if kind is CellKind.DATE and isinstance(value, str):
            value = datetime.fromisoformat(value) if "T" in value else date.fromisoformat(value)
        return cls(kind, value)


class Row:
    """Ordered association of column name to ``Cell``."""

    __slots__ = ("_cells", "_index")

    def __init__(self, cells: Iterable[tuple[str, Cell]]) -> None:
        self._cells: tuple[tuple[str, Cell], ...] = tuple(cells)
        self._index = {column: cell for column, cell in self._cells}

    @classmethod
    def from_values(cls, columns: Sequence[str], values: Sequence[Any]) -> "Row":
        cells = []
        for position, column in enumerate(columns):
            raw = values[position] if position < len(values) else None
            cells.append((column, Cell.of(raw)))
        return cls(cells)

    def __iter__(self) -> Iterator[tuple[str, Cell]]:
        return iter(self._cells)

    def __len__(self) -> int:
        return len(self._cells)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Row) and self._cells == other._cells

    def __repr__(self) -> str:
        return f"Row({self.as_text_dict()!r})"

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(column for column, _ in self._cells)

    def get(self, column: str) -> Cell:
        return self._index.get(column) or Cell.empty()

    def text(self, column: str) -> str | None:
        return self.get(column).as_text()

    @property
    def is_blank(self) -> bool:
        return all(cell.is_empty for _, cell in self._cells)

    def as_text_dict(self) -> dict[str, str | None]:
        return {column: cell.as_text() for column, cell in self._cells}

    def to_json(self) -> list[dict[str, Any]]:
        return [{"column": column, **cell.to_json()} for column, cell in self._cells]

    @classmethod
    def from_json(cls, payload: Iterable[dict[str, Any]]) -> "Row":
        return cls((str(item["column"]), Cell.from_json(item)) for item in payload)
