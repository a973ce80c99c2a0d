"""
Time-boxed, single-shot reversal of a completed batch.

The batch is claimed with a conditional update so only one caller can ever
roll it back. Rows are then reversed independently: created clients are
soft-deleted unless edited since the import, updated clients get their
pre-image restored. Rows that cannot be reversed are flagged, not retried.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm import Session

from casebook.importer import audit
from casebook.importer.errors import RollbackUnavailableError
from casebook.importer.metrics import record_rollback
from casebook.models import (
    Client,
    ImportAction,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    db,
)

from .batch_store import BatchStore

MODIFIED_SINCE_IMPORT = "modified_since_import"
NO_PRE_IMAGE = "no_pre_image"
CLIENT_MISSING = "client_missing"
REVERSAL_FAILED = "reversal_failed"


@dataclass
class RollbackResult:
    batch_id: int
    rolled_back_count: int = 0
    flagged: list[dict[str, Any]] = field(default_factory=list)

    def flag(self, record: ImportRecord, reason: str) -> None:
        self.flagged.append({"row_number": record.row_number, "client_id": record.client_id, "reason": reason})

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "rolled_back_count": self.rolled_back_count,
            "flagged": list(self.flagged),
        }


class RollbackEngine:
    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session
        self.store = BatchStore(self.session)

    def rollback(self, batch_id: int, organization_id: int, *, actor_id: int | None = None) -> RollbackResult:
        batch = self.store.get_batch(batch_id, organization_id)
        now = datetime.now(timezone.utc)
        if not batch.rollback_available(now):
            record_rollback("unavailable")
            raise RollbackUnavailableError(
                f"Rollback is not available for import batch {batch_id}.",
                details={
                    "status": batch.status.value,
                    "rollback_available_until": (
                        batch.rollback_available_until.isoformat() if batch.rollback_available_until else None
                    ),
                },
            )

        claim = (
            update(ImportBatch)
            .where(
                ImportBatch.id == batch.id,
                ImportBatch.status == ImportBatchStatus.COMPLETED,
                ImportBatch.rollback_executed_at.is_(None),
                ImportBatch.rollback_available_until > now,
            )
            .values(rollback_executed_at=now)
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(claim).rowcount != 1:
            self.session.rollback()
            record_rollback("unavailable")
            raise RollbackUnavailableError(f"Rollback is not available for import batch {batch_id}.")
        self.session.commit()

        result = RollbackResult(batch_id=batch.id)
        try:
            applied = list(self.store.iter_records(batch.id, statuses=(ImportRecordStatus.APPLIED,)))
            # Newest first, so a later row's update is undone before an earlier row's create is checked.
            for record in reversed(applied):
                self._reverse_row(record, organization_id, result)

            batch = self.store.get_batch(batch_id, organization_id)
            batch.status = ImportBatchStatus.ROLLED_BACK
            batch.rollback_available_until = None
            batch.rollback_summary = result.to_dict()
            self.session.commit()
        except Exception as exc:
            self._fail(batch_id, organization_id, actor_id, result, exc)
            raise

        record_rollback("success")
        audit.emit(
            audit.BATCH_ROLLED_BACK,
            organization_id=organization_id,
            batch_id=batch_id,
            actor_id=actor_id,
            counts={"rolled_back": result.rolled_back_count, "flagged": len(result.flagged)},
        )
        current_app.logger.info(
            "Rolled back import batch %s",
            batch_id,
            extra={
                "importer_batch_id": batch_id,
                "importer_organization_id": organization_id,
                "importer_rolled_back": result.rolled_back_count,
                "importer_flagged": len(result.flagged),
            },
        )
        return result

    def _reverse_row(self, record: ImportRecord, organization_id: int, result: RollbackResult) -> None:
        record_id = record.id
        try:
            reason = self._reverse(record, organization_id)
            if reason is None:
                result.rolled_back_count += 1
            else:
                record.rollback_note = reason
                result.flag(record, reason)
            self.session.commit()
        except Exception:
            self.session.rollback()
            current_app.logger.warning(
                "Could not reverse import record %s",
                record_id,
                exc_info=True,
                extra={"importer_record_id": record_id},
            )
            record = self.session.get(ImportRecord, record_id)
            record.rollback_note = REVERSAL_FAILED
            result.flag(record, REVERSAL_FAILED)
            self.session.commit()

    def _fail(
        self,
        batch_id: int,
        organization_id: int,
        actor_id: int | None,
        result: RollbackResult,
        exc: Exception,
    ) -> None:
        """The claim is spent: the batch leaves ``completed`` with whatever was reversed so far."""

        message = f"Rollback interrupted: {exc.__class__.__name__}: {exc}"
        current_app.logger.exception(
            "Rollback of import batch %s failed",
            batch_id,
            extra={"importer_batch_id": batch_id, "importer_organization_id": organization_id},
        )
        self.session.rollback()
        batch = self.session.get(ImportBatch, batch_id)
        if batch is not None:
            batch.status = ImportBatchStatus.FAILED
            batch.error_summary = message[:2000]
            batch.rollback_available_until = None
            batch.rollback_summary = dict(result.to_dict(), error=message)
            self.session.commit()
        record_rollback("failure")
        audit.emit(
            audit.BATCH_ROLLBACK_FAILED,
            organization_id=organization_id,
            batch_id=batch_id,
            actor_id=actor_id,
            error=message,
        )

    def _reverse(self, record: ImportRecord, organization_id: int) -> str | None:
        """Reverse one applied row; returns a flag reason when it cannot."""

        client_id = record.client_id
        client = self.session.get(Client, client_id) if client_id is not None else None
        if client is None or client.organization_id != organization_id or client.is_deleted:
            return CLIENT_MISSING
        if record.post_apply_checksum and client.checksum() != record.post_apply_checksum:
            return MODIFIED_SINCE_IMPORT

        if record.action == ImportAction.CREATE:
            client.soft_delete()
        else:
            if not record.pre_image_json:
                return NO_PRE_IMAGE
            client.restore_snapshot(record.pre_image_json)

        record.rolled_back_client_id = client.id
        record.created_client_id = None
        record.updated_client_id = None
        record.status = ImportRecordStatus.ROLLED_BACK
        return None
