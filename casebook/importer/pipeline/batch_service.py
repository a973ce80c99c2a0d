"""
Service helpers for import batch history, detail and serialization.

The history and detail endpoints and the CLI share these queries and payload
shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from casebook.models import ImportBatch, ImportBatchStatus, ImportRecord, db

from .batch_store import COUNT_KEYS, BatchStore

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_SORT = "-created_at"

VALID_SORT_FIELDS = {
    "created_at": ImportBatch.created_at,
    "completed_at": ImportBatch.completed_at,
    "id": ImportBatch.id,
}


@dataclass(frozen=True)
class BatchFilters:
    """Canonical set of filter options applied to batch history queries."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    sort: str = DEFAULT_SORT
    statuses: tuple[ImportBatchStatus, ...] = field(default_factory=tuple)

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        sort: str | None = None,
        statuses: Iterable[str] | str | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> "BatchFilters":
        """
        Coerce mixed user input into a validated ``BatchFilters`` instance.
        """

        resolved_page = _coerce_positive_int(page, fallback=DEFAULT_PAGE)
        resolved_size = min(_coerce_positive_int(page_size, fallback=default_page_size), MAX_PAGE_SIZE)

        resolved_sort = (sort or DEFAULT_SORT).strip()
        sort_key = resolved_sort.lstrip("-")
        if sort_key not in VALID_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{sort_key}'.")

        if isinstance(statuses, str):
            statuses = statuses.split(",")
        resolved_statuses: list[ImportBatchStatus] = []
        for value in statuses or ():
            if value is None or not str(value).strip():
                continue
            status = _coerce_status(value)
            if status not in resolved_statuses:
                resolved_statuses.append(status)

        return cls(
            page=resolved_page,
            page_size=resolved_size,
            sort=resolved_sort,
            statuses=tuple(resolved_statuses),
        )


@dataclass(slots=True)
class BatchSummary:
    """Summarized representation of an import batch."""

    id: int
    file_name: str
    file_format: str
    status: str
    total_rows: int
    uploaded_by_user_id: int | None
    created_at: datetime | None
    completed_at: datetime | None
    rollback_available: bool
    rollback_available_until: datetime | None
    counts: Mapping[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "file_format": self.file_format,
            "status": self.status,
            "total_rows": self.total_rows,
            "uploaded_by_user_id": self.uploaded_by_user_id,
            "created_at": _isoformat(self.created_at),
            "completed_at": _isoformat(self.completed_at),
            "rollback_available": self.rollback_available,
            "rollback_available_until": _isoformat(self.rollback_available_until),
            "counts": dict(self.counts),
        }


@dataclass(slots=True)
class BatchListResult:
    """Paginated result set for import batches."""

    items: list[BatchSummary]
    total: int
    page: int
    page_size: int
    total_pages: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


class ImportBatchService:
    """Facade for querying a tenant's import batches."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session
        self.store = BatchStore(self.session)

    def list_batches(self, organization_id: int, filters: BatchFilters) -> BatchListResult:
        predicates = [ImportBatch.organization_id == organization_id]
        if filters.statuses:
            predicates.append(ImportBatch.status.in_(filters.statuses))

        total = int(self.session.scalar(select(func.count(ImportBatch.id)).where(*predicates)) or 0)
        if total == 0:
            return BatchListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        stmt = (
            select(ImportBatch)
            .where(*predicates)
            .order_by(_resolve_sort_expression(filters.sort), ImportBatch.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
        )
        items = [self.summarize(batch) for batch in self.session.scalars(stmt)]
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return BatchListResult(
            items=items, total=total, page=filters.page, page_size=filters.page_size, total_pages=total_pages
        )

    def batch_detail(self, batch_id: int, organization_id: int, *, record_limit: int) -> dict[str, Any]:
        batch = self.store.get_batch(batch_id, organization_id)
        records = self.store.list_records(batch.id, limit=record_limit)
        payload = self.summarize(batch).to_dict()
        payload.update(
            {
                "detected_columns": list(batch.detected_columns or []),
                "parse_warnings": list(batch.parse_warnings or []),
                "field_mappings": batch.field_mappings,
                "duplicate_settings": batch.duplicate_settings,
                "error_summary": batch.error_summary,
                "started_at": _isoformat(batch.started_at),
                "rollback_executed_at": _isoformat(batch.rollback_executed_at),
                "rollback_summary": batch.rollback_summary,
                "record_status_counts": self.store.status_counts(batch.id),
                "records": [serialize_record(record) for record in records],
                "records_truncated": batch.total_rows > len(records),
            }
        )
        return payload

    def summarize(self, batch: ImportBatch) -> BatchSummary:
        counts = {key: int((batch.counts_json or {}).get(key, 0) or 0) for key in COUNT_KEYS}
        return BatchSummary(
            id=batch.id,
            file_name=batch.file_name,
            file_format=batch.file_format,
            status=_status_value(batch.status),
            total_rows=batch.total_rows,
            uploaded_by_user_id=batch.uploaded_by_user_id,
            created_at=batch.created_at,
            completed_at=batch.completed_at,
            rollback_available=batch.rollback_available(),
            rollback_available_until=batch.rollback_available_until,
            counts=counts,
        )


def serialize_record(record: ImportRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "row_number": record.row_number,
        "status": _status_value(record.status),
        "action": _status_value(record.action) if record.action else None,
        "source": {item["column"]: item.get("value") for item in record.source_json or []},
        "mapped": record.mapped_json,
        "validation_errors": list(record.validation_errors or []),
        "duplicate_verdict": _status_value(record.duplicate_verdict) if record.duplicate_verdict else None,
        "duplicate_score": record.duplicate_score,
        "matched_client_id": record.matched_client_id,
        "created_client_id": record.created_client_id,
        "updated_client_id": record.updated_client_id,
        "rolled_back_client_id": record.rolled_back_client_id,
        "rollback_note": record.rollback_note,
        "processed_at": _isoformat(record.processed_at),
    }


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.strip().isdigit():
        return max(1, int(candidate.strip()))
    raise ValueError(f"Expected positive integer for pagination, received '{candidate}'.")


def _coerce_status(value: str | ImportBatchStatus) -> ImportBatchStatus:
    if isinstance(value, ImportBatchStatus):
        return value
    normalized = str(value).strip().lower()
    try:
        return ImportBatchStatus(normalized)
    except ValueError:
        raise ValueError(f"Unsupported status filter '{value}'.") from None


def _resolve_sort_expression(sort: str):
    descending = sort.startswith("-")
    column = VALID_SORT_FIELDS[sort.lstrip("-")]
    return column.desc() if descending else column.asc()


def _status_value(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
