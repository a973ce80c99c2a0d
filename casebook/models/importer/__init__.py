"""
Importer-specific SQLAlchemy models: batches, per-row records and job progress.
"""

from .schema import (
    EXECUTABLE_BATCH_STATUSES,
    TERMINAL_RECORD_STATUSES,
    DuplicateVerdict,
    ImportAction,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    JobProgress,
    JobStatus,
)

__all__ = [
    "DuplicateVerdict",
    "EXECUTABLE_BATCH_STATUSES",
    "ImportAction",
    "ImportBatch",
    "ImportBatchStatus",
    "ImportRecord",
    "ImportRecordStatus",
    "JobProgress",
    "JobStatus",
    "TERMINAL_RECORD_STATUSES",
]
