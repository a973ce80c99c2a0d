"""
Batch executor: applies confirmed mappings and duplicate policy row by row.

Each pending row is one transaction: the client mutation, the record's status
transition and the job progress tick commit together. Rows already past
``pending`` are never revisited, so re-running a batch is safe.
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from casebook.importer import audit
from casebook.importer.adapters.rows import Row
from casebook.importer.errors import BatchStateError, ImporterError, NotFoundError
from casebook.importer.mapping import FieldMapping, ensure_minimum_mapping
from casebook.importer.metrics import record_execution, record_row_outcome
from casebook.models import (
    Client,
    ImportAction,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    Organization,
    db,
)

from .batch_store import BatchStore
from .duplicates import DuplicateDetector, ResolvedAction, RowVerdict, resolve_action
from .fuzzy_features import ScoringStrategy
from .progress import JobProgressSink, NullProgressSink
from .settings import DuplicateResolution, DuplicateSettings, ResolutionAction, resolutions_to_dict
from .snapshot import ClientCandidate, ClientSnapshot
from .validation import prepare_row

RUNNABLE_STATUSES = frozenset({ImportBatchStatus.PENDING, ImportBatchStatus.PROCESSING})


@dataclass(frozen=True)
class ExecutionParameters:
    """Mappings, policy and overrides persisted on the batch at execute time."""

    mappings: tuple[FieldMapping, ...]
    settings: DuplicateSettings = field(default_factory=DuplicateSettings)
    resolutions: Mapping[int, DuplicateResolution] = field(default_factory=dict)

    @classmethod
    def from_batch(cls, batch: ImportBatch) -> "ExecutionParameters":
        mappings = tuple(
            FieldMapping(
                source_column=entry["source_column"],
                target_field=entry["target_field"],
                transform=entry.get("transform"),
            )
            for entry in batch.field_mappings or ()
        )
        return cls(
            mappings=mappings,
            settings=DuplicateSettings.coerce(batch.duplicate_settings),
            resolutions=DuplicateResolution.coerce_many(batch.duplicate_resolutions),
        )

    def store_on(self, batch: ImportBatch) -> None:
        batch.field_mappings = [mapping.to_dict() for mapping in self.mappings]
        batch.duplicate_settings = self.settings.to_dict()
        batch.duplicate_resolutions = resolutions_to_dict(self.resolutions)


@dataclass
class ExecutionResult:
    batch_id: int
    status: str
    counts: dict[str, int]
    processed: dict[str, int]
    rollback_available_until: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "counts": dict(self.counts),
            "processed": dict(self.processed),
            "rollback_available_until": (
                self.rollback_available_until.isoformat() if self.rollback_available_until else None
            ),
        }


@dataclass
class _RowOutcome:
    outcome: str
    candidate: ClientCandidate | None = None


class BatchExecutor:
    """Runs one batch to completion; batch-level failures leave it ``failed``."""

    def __init__(
        self,
        *,
        session: Session | None = None,
        sink: JobProgressSink | None = None,
        scorer: ScoringStrategy | None = None,
        rollback_window: timedelta = timedelta(hours=24),
        capture_pre_images: bool = True,
        default_region: str = "1",
    ) -> None:
        self.session: Session = session or db.session
        self.sink: JobProgressSink = sink or NullProgressSink()
        self.scorer = scorer
        self.rollback_window = rollback_window
        self.capture_pre_images = capture_pre_images
        self.default_region = default_region
        self.store = BatchStore(self.session)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], **kwargs: Any) -> "BatchExecutor":
        return cls(
            rollback_window=timedelta(hours=int(config.get("IMPORTER_ROLLBACK_WINDOW_HOURS", 24))),
            capture_pre_images=bool(config.get("IMPORTER_CAPTURE_PRE_IMAGES", True)),
            default_region=str(config.get("IMPORTER_DEFAULT_PHONE_REGION", "1")),
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Batch level
    # ------------------------------------------------------------------

    def run(self, batch_id: int, organization_id: int, *, actor_id: int | None = None) -> ExecutionResult:
        started = time.monotonic()
        logger = current_app.logger
        try:
            batch = self.store.get_batch(batch_id, organization_id)
        except NotFoundError as exc:
            self.sink.failed(exc.message)
            self.session.commit()
            raise

        if batch.status not in RUNNABLE_STATUSES:
            raise BatchStateError(
                f"Import batch {batch_id} is '{batch.status.value}' and cannot be executed.",
                details={"status": batch.status.value},
            )

        try:
            if Organization.find_active(organization_id) is None:
                raise NotFoundError("Organization not found.")
            params = ExecutionParameters.from_batch(batch)
            ensure_minimum_mapping(params.mappings)

            batch.status = ImportBatchStatus.PROCESSING
            batch.started_at = batch.started_at or datetime.now(timezone.utc)
            batch.error_summary = None
            pending_ids = self.store.pending_record_ids(batch.id)
            total = batch.total_rows
            already_done = total - len(pending_ids)
            self.sink.started(total)
            self.sink.advanced(already_done, total, {})
            self.session.commit()

            logger.info(
                "Executing import batch %s (%s pending of %s rows)",
                batch_id,
                len(pending_ids),
                total,
                extra={
                    "importer_batch_id": batch_id,
                    "importer_organization_id": organization_id,
                    "importer_pending_rows": len(pending_ids),
                },
            )

            snapshot = ClientSnapshot.load(organization_id, self.session)
            detector = DuplicateDetector(params.settings, self.scorer)
            run_counts: Counter[str] = Counter()
            for position, record_id in enumerate(pending_ids, start=1):
                row = self._process_record(
                    record_id,
                    organization_id=organization_id,
                    actor_id=actor_id,
                    params=params,
                    detector=detector,
                    snapshot=snapshot,
                    progress=(already_done + position, total, run_counts),
                )
                if row.outcome != "already_processed":
                    run_counts[row.outcome] += 1
                if row.candidate is not None:
                    snapshot.put(row.candidate)

            return self._complete(batch_id, organization_id, actor_id, dict(run_counts), started)
        except Exception as exc:
            self._fail(batch_id, organization_id, actor_id, exc, started)
            raise

    def _complete(
        self,
        batch_id: int,
        organization_id: int,
        actor_id: int | None,
        run_counts: dict[str, int],
        started: float,
    ) -> ExecutionResult:
        batch = self.store.get_batch(batch_id, organization_id)
        now = datetime.now(timezone.utc)
        counts = self.store.outcome_counts(batch.id)
        batch.status = ImportBatchStatus.COMPLETED
        batch.completed_at = now
        batch.rollback_available_until = now + self.rollback_window
        batch.counts_json = counts
        result = ExecutionResult(
            batch_id=batch.id,
            status=batch.status.value,
            counts=counts,
            processed=run_counts,
            rollback_available_until=batch.rollback_available_until,
        )
        self.sink.completed(result.to_dict())
        self.session.commit()

        duration = time.monotonic() - started
        for outcome, count in run_counts.items():
            record_row_outcome(outcome, count)  # type: ignore[arg-type]
        record_execution(status="completed", duration_seconds=duration)
        audit.emit(
            audit.BATCH_EXECUTED,
            organization_id=organization_id,
            batch_id=batch_id,
            actor_id=actor_id,
            counts=counts,
        )
        current_app.logger.info(
            "Import batch %s completed",
            batch_id,
            extra={
                "importer_batch_id": batch_id,
                "importer_organization_id": organization_id,
                "importer_counts": counts,
                "importer_duration_seconds": round(duration, 3),
            },
        )
        return result

    def _fail(
        self,
        batch_id: int,
        organization_id: int,
        actor_id: int | None,
        exc: Exception,
        started: float,
    ) -> None:
        message = exc.message if isinstance(exc, ImporterError) else f"{exc.__class__.__name__}: {exc}"
        current_app.logger.exception(
            "Import batch %s failed",
            batch_id,
            extra={"importer_batch_id": batch_id, "importer_organization_id": organization_id},
        )
        self.session.rollback()
        batch = self.session.get(ImportBatch, batch_id)
        if batch is not None:
            batch.status = ImportBatchStatus.FAILED
            batch.error_summary = message[:2000]
            batch.rollback_available_until = None
            batch.counts_json = self.store.outcome_counts(batch.id)
        self.sink.failed(message)
        self.session.commit()
        record_execution(status="failed", duration_seconds=time.monotonic() - started)
        audit.emit(
            audit.BATCH_FAILED,
            organization_id=organization_id,
            batch_id=batch_id,
            actor_id=actor_id,
            error=message,
        )

    # ------------------------------------------------------------------
    # Row level
    # ------------------------------------------------------------------

    def _process_record(
        self,
        record_id: int,
        *,
        organization_id: int,
        actor_id: int | None,
        params: ExecutionParameters,
        detector: DuplicateDetector,
        snapshot: ClientSnapshot,
        progress: tuple[int, int, Counter],
    ) -> _RowOutcome:
        processed, total, run_counts = progress
        record = self.session.get(ImportRecord, record_id)
        if record is None or record.status != ImportRecordStatus.PENDING:
            return _RowOutcome("already_processed")
        row_number = record.row_number

        try:
            row = self._apply_record(record, organization_id, actor_id, params, detector, snapshot)
            self._tick(processed, total, run_counts, row.outcome)
            self.session.commit()
            return row
        except SQLAlchemyError as exc:
            self.session.rollback()
            current_app.logger.warning(
                "Write failed for row %s of import record %s",
                row_number,
                record_id,
                exc_info=True,
                extra={"importer_record_id": record_id, "importer_row_number": row_number},
            )
            record = self.session.get(ImportRecord, record_id)
            record.status = ImportRecordStatus.VALID
            record.action = None
            record.validation_errors = [f"write_failed: {exc.__class__.__name__}"]
            record.processed_at = datetime.now(timezone.utc)
            self._tick(processed, total, run_counts, "failed")
            self.session.commit()
            return _RowOutcome("failed")

    def _tick(self, processed: int, total: int, run_counts: Counter, outcome: str) -> None:
        counts = dict(run_counts)
        counts[outcome] = counts.get(outcome, 0) + 1
        self.sink.advanced(processed, total, counts)

    def _apply_record(
        self,
        record: ImportRecord,
        organization_id: int,
        actor_id: int | None,
        params: ExecutionParameters,
        detector: DuplicateDetector,
        snapshot: ClientSnapshot,
    ) -> _RowOutcome:
        record.processed_at = datetime.now(timezone.utc)
        prepared = prepare_row(Row.from_json(record.source_json), params.mappings, default_region=self.default_region)
        record.mapped_json = prepared.mapped_json()
        if not prepared.is_valid:
            return self._mark_invalid(record, prepared.errors)

        verdict = detector.detect_row(record.row_number, prepared.values, snapshot)
        resolved = resolve_action(verdict, params.settings, params.resolutions.get(record.row_number))
        self._record_verdict(record, verdict)

        if resolved.action is ResolutionAction.SKIP:
            record.status = ImportRecordStatus.SKIPPED
            record.action = ImportAction.SKIP
            record.validation_errors = [resolved.note] if resolved.note else None
            return _RowOutcome("skipped")
        if resolved.action is ResolutionAction.CREATE:
            return self._create_client(record, organization_id, actor_id, prepared.values)
        return self._update_client(record, organization_id, resolved, prepared.values)

    @staticmethod
    def _record_verdict(record: ImportRecord, verdict: RowVerdict) -> None:
        record.duplicate_verdict = verdict.verdict
        record.duplicate_score = verdict.score
        record.matched_client_id = verdict.best.client_id if verdict.best else None

    @staticmethod
    def _mark_invalid(record: ImportRecord, errors: list[str]) -> _RowOutcome:
        record.status = ImportRecordStatus.INVALID
        record.action = None
        record.validation_errors = list(errors)
        return _RowOutcome("invalid")

    def _create_client(
        self,
        record: ImportRecord,
        organization_id: int,
        actor_id: int | None,
        values: Mapping[str, Any],
    ) -> _RowOutcome:
        client = Client(organization_id=organization_id, created_by_user_id=actor_id, **values)
        self.session.add(client)
        self.session.flush()
        record.created_client_id = client.id
        record.action = ImportAction.CREATE
        record.status = ImportRecordStatus.APPLIED
        record.validation_errors = None
        record.post_apply_checksum = client.checksum()
        return _RowOutcome("created", ClientCandidate.from_client(client))

    def _update_client(
        self,
        record: ImportRecord,
        organization_id: int,
        resolved: ResolvedAction,
        values: Mapping[str, Any],
    ) -> _RowOutcome:
        client = self.session.get(Client, resolved.client_id) if resolved.client_id is not None else None
        if client is None or client.organization_id != organization_id or client.is_deleted:
            return self._mark_invalid(
                record, [f"client.id: client {resolved.client_id} was not found in this organization"]
            )

        pre_image = client.snapshot() if self.capture_pre_images else None
        merge_only = resolved.action is ResolutionAction.MERGE
        for attribute, value in values.items():
            if value in (None, ""):
                continue
            if merge_only and getattr(client, attribute) not in (None, ""):
                continue
            setattr(client, attribute, value)
        client.updated_at = datetime.now(timezone.utc)
        self.session.flush()

        record.updated_client_id = client.id
        record.pre_image_json = pre_image
        record.action = ImportAction.UPDATE
        record.status = ImportRecordStatus.APPLIED
        record.validation_errors = None
        record.post_apply_checksum = client.checksum()
        return _RowOutcome("updated", ClientCandidate.from_client(client))
