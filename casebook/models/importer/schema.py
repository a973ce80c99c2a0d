"""
SQLAlchemy models for the bulk client importer.

An ``ImportBatch`` is one uploaded file; each of its source rows is an
``ImportRecord`` whose lifecycle only moves forward, with the single exception
of ``applied`` -> ``rolled_back``. ``JobProgress`` is the polled record that
exposes execution progress to callers.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImportBatchStatus(str, enum.Enum):
    """Lifecycle states for an import batch."""

    MAPPING = "mapping"
    READY = "ready"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class ImportRecordStatus(str, enum.Enum):
    """Per-row processing state."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    SKIPPED = "skipped"
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"


class ImportAction(str, enum.Enum):
    """Mutation taken for a row."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class DuplicateVerdict(str, enum.Enum):
    """Duplicate-detection outcome for a row."""

    NEW = "new"
    PROBABLE = "probable"
    CERTAIN = "certain"


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Rows in these states are never touched again by the executor.
TERMINAL_RECORD_STATUSES = frozenset(
    {
        ImportRecordStatus.VALID,
        ImportRecordStatus.INVALID,
        ImportRecordStatus.SKIPPED,
        ImportRecordStatus.APPLIED,
        ImportRecordStatus.ROLLED_BACK,
    }
)

EXECUTABLE_BATCH_STATUSES = frozenset(
    {ImportBatchStatus.MAPPING, ImportBatchStatus.READY, ImportBatchStatus.FAILED}
)


class ImportBatch(BaseModel):
    """One uploaded file and its execution parameters."""

    __tablename__ = "import_batches"

    id: Mapped[int] = mapped_column(primary_key=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    uploaded_by_user_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    file_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    file_format: Mapped[str] = mapped_column(db.String(10), nullable=False)
    file_size: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    detected_columns: Mapped[list] = mapped_column(db.JSON, nullable=False, default=list)
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    status: Mapped[ImportBatchStatus] = mapped_column(
        Enum(ImportBatchStatus, name="import_batch_status_enum"),
        nullable=False,
        default=ImportBatchStatus.MAPPING,
        index=True,
    )
    parse_warnings: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    suggested_mappings: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    field_mappings: Mapped[list | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Mappings confirmed by the most recent preview or execute call.",
    )
    duplicate_settings: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    duplicate_resolutions: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    rollback_available_until: Mapped[datetime | None] = mapped_column(
        db.DateTime(timezone=True),
        nullable=True,
        comment="Set only while status is completed.",
    )
    rollback_executed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    rollback_summary: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)

    records = relationship(
        "ImportRecord",
        back_populates="batch",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ImportRecord.row_number",
        lazy="dynamic",
    )
    jobs = relationship(
        "JobProgress",
        back_populates="batch",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (Index("idx_import_batches_org_status", "organization_id", "status"),)

    def rollback_available(self, now: datetime | None = None) -> bool:
        if self.status != ImportBatchStatus.COMPLETED or self.rollback_available_until is None:
            return False
        if self.rollback_executed_at is not None:
            return False
        now = now or _utcnow()
        deadline = self.rollback_available_until
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        return now < deadline


class ImportRecord(BaseModel):
    """A single source row within a batch."""

    __tablename__ = "import_records"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("import_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    row_number: Mapped[int] = mapped_column(db.Integer, nullable=False)
    source_json: Mapped[list] = mapped_column(
        db.JSON,
        nullable=False,
        comment="Ordered typed cells: [{column, kind, value}, ...]",
    )
    mapped_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    status: Mapped[ImportRecordStatus] = mapped_column(
        Enum(ImportRecordStatus, name="import_record_status_enum"),
        nullable=False,
        default=ImportRecordStatus.PENDING,
        index=True,
    )
    action: Mapped[ImportAction | None] = mapped_column(
        Enum(ImportAction, name="import_action_enum"),
        nullable=True,
    )
    validation_errors: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    duplicate_verdict: Mapped[DuplicateVerdict | None] = mapped_column(
        Enum(DuplicateVerdict, name="duplicate_verdict_enum"),
        nullable=True,
    )
    duplicate_score: Mapped[float | None] = mapped_column(db.Float, nullable=True)
    matched_client_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    created_client_id: Mapped[int | None] = mapped_column(
        ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    updated_client_id: Mapped[int | None] = mapped_column(
        ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    rolled_back_client_id: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    pre_image_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    post_apply_checksum: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    rollback_note: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    batch = relationship("ImportBatch", back_populates="records")

    __table_args__ = (
        UniqueConstraint("batch_id", "row_number", name="uq_import_records_batch_row"),
        Index("idx_import_records_batch_status", "batch_id", "status"),
    )

    @property
    def client_id(self) -> int | None:
        return self.created_client_id or self.updated_client_id


class JobProgress(BaseModel):
    """Externally polled progress for an asynchronous import job."""

    __tablename__ = "import_job_progress"

    id: Mapped[str] = mapped_column(db.String(32), primary_key=True, default=lambda: uuid4().hex)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("import_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    job_type: Mapped[str] = mapped_column(db.String(50), nullable=False, default="import")
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="import_job_status_enum"),
        nullable=False,
        default=JobStatus.QUEUED,
        index=True,
    )
    total: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    processed: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    percent: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    result_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    celery_task_id: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    batch = relationship("ImportBatch", back_populates="jobs")
