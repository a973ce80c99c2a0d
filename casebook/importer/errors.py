"""
Error taxonomy for the importer.

Every externally visible failure carries a stable ``code`` and an HTTP status
so the blueprint can serialize it without inspecting the exception type.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Iterable, Mapping

INTERNAL_ERROR_CODE = "internal_error"
INTERNAL_ERROR_MESSAGE = "An internal error occurred."


class ImporterError(Exception):
    """Base class for user-facing importer failures."""

    code = "importer_error"
    http_status = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ParseError(ImporterError):
    """Malformed, oversized or unsupported file."""

    code = "parse_error"
    http_status = HTTPStatus.BAD_REQUEST

    def __init__(self, message: str, *, row: int | None = None, column: str | None = None) -> None:
        details: dict[str, Any] = {}
        if row is not None:
            details["row"] = row
        if column is not None:
            details["column"] = column
        super().__init__(message, details=details)
        self.row = row
        self.column = column


class ValidationError(ImporterError):
    """Missing or malformed value, or a malformed request payload."""

    code = "validation_error"
    http_status = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(self, message: str, *, field: str | None = None, row_number: int | None = None) -> None:
        details: dict[str, Any] = {}
        if field is not None:
            details["field"] = field
        if row_number is not None:
            details["row_number"] = row_number
        super().__init__(message, details=details)
        self.field = field
        self.row_number = row_number


class MappingIncompleteError(ImporterError):
    """Required target fields are not mapped."""

    code = "mapping_incomplete"
    http_status = HTTPStatus.UNPROCESSABLE_ENTITY

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(
            "Required target fields are not mapped: " + ", ".join(self.missing) + ".",
            details={"missing": list(self.missing)},
        )


class RollbackUnavailableError(ImporterError):
    """Batch is not completed or its rollback window has closed."""

    code = "rollback_unavailable"
    http_status = HTTPStatus.CONFLICT


class NotFoundError(ImporterError):
    """Batch, job or tenant absent, or owned by another tenant."""

    code = "not_found"
    http_status = HTTPStatus.NOT_FOUND


class BatchStateError(ImporterError):
    """Operation not permitted in the batch's current status."""

    code = "batch_state_invalid"
    http_status = HTTPStatus.CONFLICT


def internal_error_payload() -> dict[str, Any]:
    return {"code": INTERNAL_ERROR_CODE, "message": INTERNAL_ERROR_MESSAGE}
