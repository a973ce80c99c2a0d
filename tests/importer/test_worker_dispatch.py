from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from casebook.importer.celery_app import create_celery_app
from casebook.importer.pipeline.service import EXECUTE_TASK_NAME, ImportService
from casebook.importer.pipeline.snapshot import ClientSnapshot
from casebook.importer.tasks import execute_batch
from casebook.models import Client, ImportBatchStatus, JobProgress, JobStatus, Organization, db

NAME_PHONE_MAPPINGS = [
    {"source_column": "Name", "target_field": "client.fullName"},
    {"source_column": "Phone", "target_field": "client.phone"},
]


@pytest.fixture
def fake_celery(app, monkeypatch):
    celery_app = MagicMock()
    celery_app.send_task.return_value = MagicMock(id="celery-task-1")
    monkeypatch.setitem(app.config, "IMPORTER_WORKER_ENABLED", True)
    monkeypatch.setattr("casebook.importer.celery_app.get_celery_app", lambda flask_app: celery_app)
    return celery_app


def test_execute_with_worker_enqueues_job(name_phone_batch, fake_celery):
    batch, _ = name_phone_batch

    handle = ImportService().execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)

    assert handle.status == "queued"
    fake_celery.send_task.assert_called_once_with(
        EXECUTE_TASK_NAME,
        kwargs={"job_id": handle.job_id, "actor_id": 7},
    )
    job = db.session.get(JobProgress, handle.job_id)
    assert job.celery_task_id == "celery-task-1"
    assert job.status is JobStatus.QUEUED
    db.session.refresh(batch)
    assert batch.status is ImportBatchStatus.PENDING
    assert Client.query.count() == 1


def test_worker_task_runs_the_queued_job(name_phone_batch, fake_celery):
    batch, _ = name_phone_batch
    handle = ImportService().execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)

    outcome = execute_batch.run(job_id=handle.job_id, actor_id=7)

    assert outcome["job_id"] == handle.job_id
    assert outcome["status"] == "completed"
    assert outcome["counts"]["created"] == 2
    job = db.session.get(JobProgress, handle.job_id)
    assert job.status is JobStatus.COMPLETED
    assert Client.query.count() == 3


def test_worker_task_reports_importer_failures(name_phone_batch, fake_celery):
    batch, _ = name_phone_batch
    handle = ImportService().execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)
    db.session.get(Organization, batch.organization_id).is_active = False
    db.session.commit()

    outcome = execute_batch.run(job_id=handle.job_id, actor_id=7)

    assert outcome["status"] == "failed"
    assert outcome["error"]["code"] == "not_found"
    db.session.refresh(batch)
    assert batch.status is ImportBatchStatus.FAILED


def test_worker_task_for_unknown_job(app):
    outcome = execute_batch.run(job_id="does-not-exist")

    assert outcome == {
        "job_id": "does-not-exist",
        "status": "failed",
        "error": {"code": "not_found", "message": "Import job does-not-exist not found."},
    }


def test_missing_worker_app_is_an_error(name_phone_batch, app, monkeypatch):
    batch, _ = name_phone_batch
    monkeypatch.setitem(app.config, "IMPORTER_WORKER_ENABLED", True)
    monkeypatch.setattr("casebook.importer.celery_app.get_celery_app", lambda flask_app: None)

    with pytest.raises(RuntimeError, match="not configured"):
        ImportService().execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)


def test_eager_worker_runs_the_queued_job_inside_the_app_context(app, name_phone_batch, fake_celery, monkeypatch):
    batch, existing = name_phone_batch
    handle = ImportService().execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)
    monkeypatch.setitem(app.config, "CELERY_BROKER_URL", "memory://")
    monkeypatch.setitem(app.config, "CELERY_RESULT_BACKEND", "cache+memory://")
    monkeypatch.setitem(app.config, "CELERY_CONFIG", {"task_always_eager": True, "task_eager_propagates": True})
    worker = create_celery_app(app)

    outcome = worker.tasks[EXECUTE_TASK_NAME].apply(kwargs={"job_id": handle.job_id, "actor_id": 7}).get()

    assert outcome["status"] == "completed"
    assert outcome["counts"] == {"created": 2, "updated": 1, "skipped": 0, "invalid": 0, "failed": 0}
    db.session.expire_all()
    assert db.session.get(JobProgress, handle.job_id).status is JobStatus.COMPLETED
    assert db.session.get(Client, existing.id).last_name == "Jones"
    assert Client.query.filter_by(organization_id=batch.organization_id).count() == 3


def test_worker_task_marks_the_batch_failed_on_unexpected_errors(name_phone_batch, fake_celery, monkeypatch):
    batch, _ = name_phone_batch
    handle = ImportService().execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)

    def broken_load(cls, organization_id, session=None):
        raise RuntimeError("snapshot query crashed")

    monkeypatch.setattr(ClientSnapshot, "load", classmethod(broken_load))

    with pytest.raises(RuntimeError):
        execute_batch.run(job_id=handle.job_id, actor_id=7)

    db.session.refresh(batch)
    assert batch.status is ImportBatchStatus.FAILED
    assert db.session.get(JobProgress, handle.job_id).status is JobStatus.FAILED
