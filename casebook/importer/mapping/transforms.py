"""Value transforms applied to mapped cells.

A transform tag is ``name`` or ``name:argument`` (``date:%m/%d/%Y``). Transforms
raise ``ValueError`` on input they cannot convert; the caller records that as a
row-level validation error.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Callable

from casebook.importer.adapters.rows import Cell, CellKind

_NON_DIGITS = re.compile(r"\D")
_DATE_PATTERNS: tuple[tuple[re.Pattern[str], tuple[int, int, int]], ...] = (
    (re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), (3, 1, 2)),  # MM/DD/YYYY
    (re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$"), (3, 2, 1)),  # DD-MM-YYYY
    (re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$"), (1, 2, 3)),  # YYYY-MM-DD
)


def parse_date(text: str, fmt: str | None = None) -> date:
    """Parse a date from ``fmt`` or the accepted US, EU and ISO layouts."""

    token = text.strip()
    if fmt:
        return datetime.strptime(token, fmt).date()
    for pattern, (year_group, month_group, day_group) in _DATE_PATTERNS:
        match = pattern.match(token)
        if match:
            groups = match.groups()
            return date(int(groups[year_group - 1]), int(groups[month_group - 1]), int(groups[day_group - 1]))
    try:
        return datetime.fromisoformat(token.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValueError(f"'{text}' is not a recognised date") from None


def _date(cell: Cell, argument: str | None) -> str:
    if cell.kind is CellKind.DATE:
        value = cell.value
        if isinstance(value, datetime):
            value = value.date()
        return value.isoformat()  # type: ignore[union-attr]
    return parse_date(cell.as_text() or "", argument).isoformat()


def _phone(cell: Cell, argument: str | None) -> str:
    digits = _NON_DIGITS.sub("", cell.as_text() or "")
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def _ssn(cell: Cell, argument: str | None) -> str:
    return _NON_DIGITS.sub("", cell.as_text() or "")


def _number(cell: Cell, argument: str | None) -> float | int:
    if cell.kind is CellKind.NUMBER:
        return cell.value  # type: ignore[return-value]
    cleaned = re.sub(r"[^0-9.\-]", "", cell.as_text() or "")
    if not cleaned:
        raise ValueError(f"'{cell.as_text()}' is not a number")
    number = float(cleaned)
    return int(number) if number.is_integer() else number


TRANSFORMS: dict[str, Callable[[Cell, str | None], Any]] = {
    "trim": lambda cell, _: (cell.as_text() or "").strip(),
    "uppercase": lambda cell, _: (cell.as_text() or "").upper(),
    "lowercase": lambda cell, _: (cell.as_text() or "").lower(),
    "phone": _phone,
    "ssn": _ssn,
    "number": _number,
    "date": _date,
}


def split_transform(tag: str) -> tuple[str, str | None]:
    name, _, argument = tag.partition(":")
    return name.strip().lower(), (argument.strip() or None)


def is_known_transform(tag: str) -> bool:
    name, _ = split_transform(tag)
    return name in TRANSFORMS


def apply_transform(cell: Cell, tag: str | None) -> Any:
    """Return the transformed value of ``cell``; empty cells pass through as None."""

    if cell.is_empty:
        return None
    if not tag:
        return cell.value if cell.kind is CellKind.STRING else cell.as_text()
    name, argument = split_transform(tag)
    transform = TRANSFORMS.get(name)
    if transform is None:
        raise ValueError(f"Unknown transform '{tag}'")
    return transform(cell, argument)
