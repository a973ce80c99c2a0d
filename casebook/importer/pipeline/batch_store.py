"""
Persistence for parsed uploads: one ``ImportBatch`` plus one ``ImportRecord`` per row.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Iterator, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from casebook.importer.adapters import ParsedFile
from casebook.importer.errors import NotFoundError
from casebook.models import (
    ImportAction,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    Organization,
    db,
)

COUNT_KEYS = ("created", "updated", "skipped", "invalid", "failed")


class BatchStore:
    """Create and load batches scoped to one tenant."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def create_batch(
        self,
        *,
        organization_id: int,
        uploaded_by_user_id: int | None,
        file_name: str,
        file_size: int,
        parsed: ParsedFile,
        suggestions: Sequence[dict[str, Any]] = (),
    ) -> ImportBatch:
        """Insert the batch and all of its records in one transaction."""

        batch = ImportBatch(
            organization_id=organization_id,
            uploaded_by_user_id=uploaded_by_user_id,
            file_name=file_name,
            file_format=parsed.file_format,
            file_size=file_size,
            detected_columns=list(parsed.columns),
            total_rows=parsed.total_rows,
            status=ImportBatchStatus.MAPPING,
            parse_warnings=list(parsed.warnings),
            suggested_mappings=list(suggestions),
        )
        self.session.add(batch)
        try:
            self.session.flush()
            self.session.add_all(
                ImportRecord(
                    batch_id=batch.id,
                    row_number=row_number,
                    source_json=row.to_json(),
                    status=ImportRecordStatus.PENDING,
                )
                for row_number, row in enumerate(parsed.rows, start=1)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return batch

    def get_organization(self, organization_id: int | None) -> Organization:
        organization = Organization.find_active(organization_id)
        if organization is None:
            raise NotFoundError("Organization not found.")
        return organization

    def get_batch(self, batch_id: int, organization_id: int, *, for_update: bool = False) -> ImportBatch:
        """Load a batch owned by the tenant; other tenants' batches are reported as missing."""

        stmt = select(ImportBatch).where(ImportBatch.id == batch_id, ImportBatch.organization_id == organization_id)
        if for_update:
            stmt = stmt.with_for_update()
        batch = self.session.scalars(stmt).one_or_none()
        if batch is None:
            raise NotFoundError(f"Import batch {batch_id} not found.")
        return batch

    def iter_records(
        self,
        batch_id: int,
        *,
        statuses: Iterable[ImportRecordStatus] | None = None,
    ) -> Iterator[ImportRecord]:
        stmt = select(ImportRecord).where(ImportRecord.batch_id == batch_id)
        if statuses is not None:
            stmt = stmt.where(ImportRecord.status.in_(tuple(statuses)))
        stmt = stmt.order_by(ImportRecord.row_number.asc())
        yield from self.session.scalars(stmt)

    def pending_record_ids(self, batch_id: int) -> list[int]:
        stmt = (
            select(ImportRecord.id)
            .where(ImportRecord.batch_id == batch_id, ImportRecord.status == ImportRecordStatus.PENDING)
            .order_by(ImportRecord.row_number.asc())
        )
        return list(self.session.scalars(stmt))

    def list_records(self, batch_id: int, *, limit: int) -> list[ImportRecord]:
        stmt = (
            select(ImportRecord)
            .where(ImportRecord.batch_id == batch_id)
            .order_by(ImportRecord.row_number.asc())
            .limit(max(limit, 0))
        )
        return list(self.session.scalars(stmt))

    def record_count(self, batch_id: int) -> int:
        stmt = select(func.count(ImportRecord.id)).where(ImportRecord.batch_id == batch_id)
        return int(self.session.scalar(stmt) or 0)

    def status_counts(self, batch_id: int) -> dict[str, int]:
        stmt = (
            select(ImportRecord.status, func.count(ImportRecord.id))
            .where(ImportRecord.batch_id == batch_id)
            .group_by(ImportRecord.status)
        )
        return {
            (status.value if isinstance(status, ImportRecordStatus) else str(status)): count
            for status, count in self.session.execute(stmt)
        }

    def outcome_counts(self, batch_id: int) -> dict[str, int]:
        """Cumulative outcome counts across every run of the batch."""

        stmt = (
            select(ImportRecord.status, ImportRecord.action, func.count(ImportRecord.id))
            .where(ImportRecord.batch_id == batch_id)
            .group_by(ImportRecord.status, ImportRecord.action)
        )
        counts: Counter[str] = Counter({key: 0 for key in COUNT_KEYS})
        for status, action, count in self.session.execute(stmt):
            if status in (ImportRecordStatus.APPLIED, ImportRecordStatus.ROLLED_BACK):
                if action == ImportAction.CREATE:
                    counts["created"] += count
                elif action == ImportAction.UPDATE:
                    counts["updated"] += count
            elif status == ImportRecordStatus.SKIPPED:
                counts["skipped"] += count
            elif status == ImportRecordStatus.INVALID:
                counts["invalid"] += count
            elif status == ImportRecordStatus.VALID:
                counts["failed"] += count
        return {key: counts[key] for key in COUNT_KEYS}

    def transition(
        self,
        batch_id: int,
        *,
        from_statuses: Iterable[ImportBatchStatus],
        to_status: ImportBatchStatus,
        **values: Any,
    ) -> bool:
        """Compare-and-set the batch status; returns False when another caller won."""

        stmt = (
            update(ImportBatch)
            .where(ImportBatch.id == batch_id, ImportBatch.status.in_(tuple(from_statuses)))
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1
