# casebook/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .client import CLIENT_SNAPSHOT_FIELDS, Client
from .importer import (
    DuplicateVerdict,
    ImportAction,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    JobProgress,
    JobStatus,
)
from .organization import Organization

__all__ = [
    "db",
    "BaseModel",
    "CLIENT_SNAPSHOT_FIELDS",
    "Client",
    "DuplicateVerdict",
    "ImportAction",
    "ImportBatch",
    "ImportBatchStatus",
    "ImportRecord",
    "ImportRecordStatus",
    "JobProgress",
    "JobStatus",
    "Organization",
]
