"""
Progress reporting boundary between the executor and its observers.

The executor only talks to a ``JobProgressSink``; ``DatabaseProgressSink``
writes the polled ``JobProgress`` row inside the executor's own session so a
row's progress tick commits together with that row.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from casebook.models import JobProgress, JobStatus, db


def _percent(processed: int, total: int) -> int:
    if total <= 0:
        return 100
    return max(0, min(100, int(processed * 100 / total)))


@runtime_checkable
class JobProgressSink(Protocol):
    def started(self, total: int) -> None:
        ...

    def advanced(self, processed: int, total: int, counts: Mapping[str, int]) -> None:
        ...

    def completed(self, result: Mapping[str, Any]) -> None:
        ...

    def failed(self, message: str) -> None:
        ...


class NullProgressSink:
    def started(self, total: int) -> None:
        return None

    def advanced(self, processed: int, total: int, counts: Mapping[str, int]) -> None:
        return None

    def completed(self, result: Mapping[str, Any]) -> None:
        return None

    def failed(self, message: str) -> None:
        return None


class DatabaseProgressSink:
    """Stage ``JobProgress`` updates; the caller owns the commit."""

    def __init__(self, job_id: str, session: Session | None = None) -> None:
        self.job_id = job_id
        self.session: Session = session or db.session

    def _job(self) -> JobProgress | None:
        return self.session.get(JobProgress, self.job_id)

    def started(self, total: int) -> None:
        job = self._job()
        if job is None:
            return
        job.status = JobStatus.RUNNING
        job.total = total
        job.started_at = job.started_at or datetime.now(timezone.utc)
        job.percent = _percent(job.processed, total)

    def advanced(self, processed: int, total: int, counts: Mapping[str, int]) -> None:
        job = self._job()
        if job is None:
            return
        job.processed = processed
        job.total = total
        job.percent = _percent(processed, total)
        job.result_json = {"counts": dict(counts)}

    def completed(self, result: Mapping[str, Any]) -> None:
        job = self._job()
        if job is None:
            return
        job.status = JobStatus.COMPLETED
        job.processed = job.total
        job.percent = 100
        job.result_json = dict(result)
        job.finished_at = datetime.now(timezone.utc)

    def failed(self, message: str) -> None:
        job = self._job()
        if job is None:
            return
        job.status = JobStatus.FAILED
        job.error_message = message
        job.finished_at = datetime.now(timezone.utc)


def serialize_job(job: JobProgress) -> dict[str, Any]:
    return {
        "job_id": job.id,
        "batch_id": job.batch_id,
        "job_type": job.job_type,
        "status": job.status.value if isinstance(job.status, JobStatus) else str(job.status),
        "total": job.total,
        "processed": job.processed,
        "percent": job.percent,
        "result": job.result_json,
        "error": job.error_message,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "finished_at": job.finished_at.isoformat() if job.finished_at else None,
    }
