"""
Importer-specific utilities for handling uploaded files.
"""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from casebook.importer.adapters import SUPPORTED_EXTENSIONS
from casebook.importer.errors import ParseError


def safe_upload_name(filename: str | None) -> str:
    """
    Sanitize a client-supplied filename, keeping its extension recognisable.

    ``secure_filename`` can return an empty string for names made entirely of
    unsafe characters; those fall back to ``upload.<ext>``.
    """

    original = filename or ""
    cleaned = secure_filename(original)
    if cleaned and "." in cleaned:
        return cleaned
    extension = Path(original).suffix.lstrip(".").lower()
    return f"{cleaned or 'upload'}.{extension}" if extension else cleaned or "upload"


def allowed_file(filename: str, allowed_extensions=SUPPORTED_EXTENSIONS) -> bool:
    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def read_limited(stream: BinaryIO, max_bytes: int) -> bytes:
    """Read at most ``max_bytes``; a longer stream raises before it is buffered whole."""

    payload = stream.read(max_bytes + 1)
    if len(payload) > max_bytes:
        megabytes = max_bytes / (1024 * 1024)
        raise ParseError(f"File exceeds the maximum upload size of {megabytes:g} MB.")
    return payload


def read_upload(file_storage: FileStorage | None, max_bytes: int) -> tuple[str, bytes]:
    """Return ``(safe_name, payload)`` for a multipart upload."""

    if file_storage is None or not file_storage.filename:
        raise ParseError("No file was uploaded; send it in the 'file' form field.")
    name = safe_upload_name(file_storage.filename)
    if not allowed_file(name):
        supported = ", ".join(ext.upper() for ext in SUPPORTED_EXTENSIONS)
        raise ParseError(f"Unsupported file type for '{name}'. Supported formats: {supported}.")
    return name, read_limited(file_storage.stream, max_bytes)
