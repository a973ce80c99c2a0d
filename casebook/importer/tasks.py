"""
Importer Celery tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from casebook.importer.errors import ImporterError


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """Heartbeat used by ``/importer/worker_health``."""

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="importer.pipeline.execute_batch", bind=True)
def execute_batch(self, *, job_id: str, actor_id: int | None = None) -> dict[str, Any]:
    """
    Run a queued import job.

    Importer errors have already been recorded on the batch and job by the
    executor, so they are reported in the task result rather than retried.
    """

    from casebook.importer.pipeline.service import ImportService

    current_app.logger.info(
        "Importer worker picked up job %s",
        job_id,
        extra={"importer_job_id": job_id, "importer_celery_task_id": self.request.id},
    )
    try:
        result = ImportService().run_job(job_id, actor_id=actor_id)
    except ImporterError as exc:
        return {"job_id": job_id, "status": "failed", "error": exc.to_dict()}
    return {"job_id": job_id, **result.to_dict()}
