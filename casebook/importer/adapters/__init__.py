"""
File adapters turning uploaded bytes into typed rows.

``parse_file`` is the single entry point: it enforces the byte ceiling before
any decoding and dispatches on the declared extension.
"""

from __future__ import annotations

from casebook.importer.errors import ParseError

from .common import ParsedFile, ParseLimits
from .csv_adapter import CSVAdapter, detect_delimiter
from .json_adapter import JSONAdapter
from .rows import Cell, CellKind, Row
from .xlsx_adapter import XLSXAdapter

ADAPTERS = {
    "csv": CSVAdapter,
    "xlsx": XLSXAdapter,
    "json": JSONAdapter,
}
SUPPORTED_EXTENSIONS: tuple[str, ...] = tuple(ADAPTERS)

__all__ = [
    "ADAPTERS",
    "CSVAdapter",
    "Cell",
    "CellKind",
    "JSONAdapter",
    "ParseLimits",
    "ParsedFile",
    "Row",
    "SUPPORTED_EXTENSIONS",
    "XLSXAdapter",
    "detect_delimiter",
    "parse_file",
    "resolve_extension",
]


def resolve_extension(declared: str | None) -> str:
    """Accept either a bare extension (``csv``/``.csv``) or a filename."""

    token = (declared or "").strip().lower()
    if "." in token:
        token = token.rsplit(".", 1)[1]
    if token not in ADAPTERS:
        supported = ", ".join(ext.upper() for ext in SUPPORTED_EXTENSIONS)
        raise ParseError(f"Unsupported file type '{token or declared}'. Supported formats: {supported}.")
    return token


def parse_file(file_bytes: bytes, declared_extension: str, *, limits: ParseLimits) -> ParsedFile:
    extension = resolve_extension(declared_extension)
    if not file_bytes:
        raise ParseError("File is empty.")
    if len(file_bytes) > limits.max_bytes:
        megabytes = limits.max_bytes / (1024 * 1024)
        raise ParseError(f"File exceeds the maximum upload size of {megabytes:g} MB.")
    adapter = ADAPTERS[extension](file_bytes, limits)
    return adapter.parse()
