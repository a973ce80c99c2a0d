"""
Importer facade used by the blueprint and CLI.

Every operation is tenant scoped: batches and jobs belonging to another
organization are reported as not found.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from casebook.importer import audit
from casebook.importer.adapters import ParseLimits, parse_file
from casebook.importer.errors import BatchStateError, ImporterError, NotFoundError, ParseError
from casebook.importer.mapping import coerce_mappings, ensure_minimum_mapping, get_field_catalogue
from casebook.importer.metrics import record_parse_failure, record_upload
from casebook.importer.utils import safe_upload_name
from casebook.models import (
    ImportBatch,
    ImportBatchStatus,
    JobProgress,
    JobStatus,
    db,
)
from casebook.models.importer import EXECUTABLE_BATCH_STATUSES

from .batch_service import BatchFilters, BatchListResult, ImportBatchService
from .batch_store import BatchStore
from .executor import BatchExecutor, ExecutionParameters, ExecutionResult
from .fuzzy_features import ScoringStrategy
from .preview import PreviewBuilder, PreviewReport
from .progress import DatabaseProgressSink
from .rollback import RollbackEngine, RollbackResult
from .settings import DuplicateResolution, DuplicateSettings
from .suggest import suggest_mappings

EXECUTE_TASK_NAME = "importer.pipeline.execute_batch"


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    batch_id: int
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {"job_id": self.job_id, "batch_id": self.batch_id, "status": self.status}


@dataclass
class UploadResult:
    batch_id: int
    file_name: str
    file_format: str
    total_rows: int
    columns: list[str]
    preview_rows: list[dict[str, Any]]
    suggested_mappings: list[dict[str, Any]]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "file_name": self.file_name,
            "file_format": self.file_format,
            "total_rows": self.total_rows,
            "columns": list(self.columns),
            "preview_rows": list(self.preview_rows),
            "suggested_mappings": list(self.suggested_mappings),
            "warnings": list(self.warnings),
        }


class ImportService:
    def __init__(
        self,
        session: Session | None = None,
        *,
        config: Mapping[str, Any] | None = None,
        scorer: ScoringStrategy | None = None,
    ) -> None:
        self.session: Session = session or db.session
        self.config = config if config is not None else current_app.config
        self.scorer = scorer
        self.store = BatchStore(self.session)

    @property
    def default_region(self) -> str:
        return str(self.config.get("IMPORTER_DEFAULT_PHONE_REGION", "1"))

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(
        self,
        organization_id: int | None,
        actor_id: int | None,
        file_name: str,
        payload: bytes,
    ) -> UploadResult:
        self.store.get_organization(organization_id)
        file_name = safe_upload_name(file_name)
        limits = ParseLimits(
            max_bytes=int(self.config.get("IMPORTER_MAX_UPLOAD_MB", 10)) * 1024 * 1024,
            max_rows=int(self.config.get("IMPORTER_MAX_ROWS", 10_000)),
        )
        try:
            parsed = parse_file(payload, file_name, limits=limits)
        except ParseError:
            record_parse_failure()
            raise

        suggestions = suggest_mappings(
            parsed.columns,
            parsed.rows,
            get_field_catalogue(),
            sample_size=int(self.config.get("IMPORTER_SUGGEST_SAMPLE_ROWS", 20)),
        )
        batch = self.store.create_batch(
            organization_id=organization_id,
            uploaded_by_user_id=actor_id,
            file_name=file_name,
            file_size=len(payload),
            parsed=parsed,
            suggestions=[suggestion.to_dict() for suggestion in suggestions],
        )

        record_upload(parsed.file_format)
        audit.emit(
            audit.BATCH_UPLOADED,
            organization_id=organization_id,
            batch_id=batch.id,
            actor_id=actor_id,
            counts={"total_rows": parsed.total_rows},
            file_name=file_name,
        )
        current_app.logger.info(
            "Import batch %s uploaded",
            batch.id,
            extra={
                "importer_batch_id": batch.id,
                "importer_organization_id": organization_id,
                "importer_file_format": parsed.file_format,
                "importer_total_rows": parsed.total_rows,
                "importer_warning_count": len(parsed.warnings),
            },
        )
        preview_limit = int(self.config.get("IMPORTER_PREVIEW_ROWS", 10))
        return UploadResult(
            batch_id=batch.id,
            file_name=file_name,
            file_format=parsed.file_format,
            total_rows=parsed.total_rows,
            columns=list(parsed.columns),
            preview_rows=[row.as_text_dict() for row in parsed.rows[:preview_limit]],
            suggested_mappings=batch.suggested_mappings or [],
            warnings=list(parsed.warnings),
        )

    # ------------------------------------------------------------------
    # Preview / execute
    # ------------------------------------------------------------------

    def _parameters(
        self,
        batch: ImportBatch,
        mappings_payload: Any,
        settings_payload: Any,
        resolutions_payload: Any,
    ) -> ExecutionParameters:
        mappings = coerce_mappings(mappings_payload, get_field_catalogue(), columns=batch.detected_columns)
        return ExecutionParameters(
            mappings=mappings,
            settings=DuplicateSettings.coerce(settings_payload),
            resolutions=DuplicateResolution.coerce_many(resolutions_payload),
        )

    def preview(
        self,
        batch_id: int,
        organization_id: int | None,
        mappings_payload: Any,
        settings_payload: Any = None,
        resolutions_payload: Any = None,
        *,
        limit: int | None = None,
    ) -> PreviewReport:
        """Build a dry-run report; confirmed parameters are remembered on the batch."""

        self.store.get_organization(organization_id)
        batch = self.store.get_batch(batch_id, organization_id)
        params = self._parameters(batch, mappings_payload, settings_payload, resolutions_payload)
        builder = PreviewBuilder(self.session, scorer=self.scorer, default_region=self.default_region)
        report = builder.build(batch, params.mappings, params.settings, params.resolutions, limit=limit)

        if batch.status in (ImportBatchStatus.MAPPING, ImportBatchStatus.READY):
            params.store_on(batch)
            batch.status = ImportBatchStatus.READY
            self.session.commit()
        return report

    def execute(
        self,
        batch_id: int,
        organization_id: int | None,
        actor_id: int | None,
        mappings_payload: Any,
        settings_payload: Any = None,
        resolutions_payload: Any = None,
    ) -> JobHandle:
        """Validate, claim the batch and hand it to the worker (or run it inline)."""

        self.store.get_organization(organization_id)
        batch = self.store.get_batch(batch_id, organization_id)
        if batch.status not in EXECUTABLE_BATCH_STATUSES:
            raise BatchStateError(
                f"Import batch {batch_id} is '{batch.status.value}' and cannot be executed.",
                details={"status": batch.status.value},
            )
        if batch.rollback_executed_at is not None:
            raise BatchStateError(
                f"Import batch {batch_id} was rolled back and cannot be executed again.",
                details={"status": batch.status.value},
            )
        params = self._parameters(batch, mappings_payload, settings_payload, resolutions_payload)
        ensure_minimum_mapping(params.mappings)

        params.store_on(batch)
        self.session.flush()
        if not self.store.transition(
            batch.id,
            from_statuses=EXECUTABLE_BATCH_STATUSES,
            to_status=ImportBatchStatus.PENDING,
        ):
            self.session.rollback()
            raise BatchStateError(f"Import batch {batch_id} is already being executed.")

        job = JobProgress(
            organization_id=organization_id,
            batch_id=batch.id,
            total=batch.total_rows,
            status=JobStatus.QUEUED,
        )
        self.session.add(job)
        self.session.commit()
        self.session.refresh(batch)

        handle = self._dispatch(job, actor_id)
        current_app.logger.info(
            "Import batch %s queued for execution",
            batch.id,
            extra={
                "importer_batch_id": batch.id,
                "importer_organization_id": organization_id,
                "importer_job_id": handle.job_id,
                "importer_worker_enabled": bool(self.config.get("IMPORTER_WORKER_ENABLED", False)),
            },
        )
        return handle

    def _dispatch(self, job: JobProgress, actor_id: int | None) -> JobHandle:
        if self.config.get("IMPORTER_WORKER_ENABLED", False):
            from casebook.importer.celery_app import get_celery_app

            celery_app = get_celery_app(current_app)
            if celery_app is None:
                raise RuntimeError("Importer worker is not configured.")
            async_result = celery_app.send_task(
                EXECUTE_TASK_NAME,
                kwargs={"job_id": job.id, "actor_id": actor_id},
            )
            job.celery_task_id = async_result.id
            self.session.commit()
            return JobHandle(job_id=job.id, batch_id=job.batch_id, status=job.status.value)

        try:
            self.run_job(job.id, actor_id=actor_id)
        except (ImporterError, SQLAlchemyError) as exc:
            # Recorded on the batch and job; the caller polls for it.
            current_app.logger.warning(
                "Inline execution of job %s failed: %s", job.id, exc, extra={"importer_job_id": job.id}
            )
        job = self.session.get(JobProgress, job.id)
        return JobHandle(job_id=job.id, batch_id=job.batch_id, status=job.status.value)

    def run_job(self, job_id: str, *, actor_id: int | None = None) -> ExecutionResult:
        job = self.session.get(JobProgress, job_id)
        if job is None:
            raise NotFoundError(f"Import job {job_id} not found.")
        executor = BatchExecutor.from_config(
            self.config,
            session=self.session,
            sink=DatabaseProgressSink(job.id, self.session),
            scorer=self.scorer,
        )
        return executor.run(job.batch_id, job.organization_id, actor_id=actor_id)

    # ------------------------------------------------------------------
    # Read side / rollback
    # ------------------------------------------------------------------

    def get_job(self, job_id: str, organization_id: int | None) -> JobProgress:
        job = self.session.get(JobProgress, job_id)
        if job is None or job.organization_id != organization_id:
            raise NotFoundError(f"Import job {job_id} not found.")
        return job

    def batch_detail(self, batch_id: int, organization_id: int | None, *, record_limit: int | None = None) -> dict:
        self.store.get_organization(organization_id)
        limit = record_limit or int(self.config.get("IMPORTER_DETAIL_RECORD_LIMIT", 100))
        return ImportBatchService(self.session).batch_detail(batch_id, organization_id, record_limit=limit)

    def list_batches(self, organization_id: int | None, filters: BatchFilters) -> BatchListResult:
        self.store.get_organization(organization_id)
        return ImportBatchService(self.session).list_batches(organization_id, filters)

    def rollback(self, batch_id: int, organization_id: int | None, *, actor_id: int | None = None) -> RollbackResult:
        self.store.get_organization(organization_id)
        return RollbackEngine(self.session).rollback(batch_id, organization_id, actor_id=actor_id)
