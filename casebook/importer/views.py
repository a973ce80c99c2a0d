"""
Importer blueprint: upload, preview, execute, job progress, batch detail,
rollback and history endpoints, plus health checks.

Tenant and actor come from ``flask.g`` (see ``casebook.middleware.org_context``).
"""

from __future__ import annotations

import time
from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from casebook.models import db
from casebook.utils.importer import is_importer_enabled
from config.monitoring import ImporterMonitoring

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .errors import ImporterError, NotFoundError, ValidationError, internal_error_payload
from .pipeline.batch_service import BatchFilters
from .pipeline.progress import serialize_job
from .pipeline.service import ImportService
from .utils import read_upload

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")


def _error_response(payload: dict, status: int):
    return jsonify({"error": payload}), status


@importer_blueprint.errorhandler(ImporterError)
def handle_importer_error(exc: ImporterError):
    db.session.rollback()
    current_app.logger.info(
        "Importer request rejected: %s",
        exc.code,
        extra={
            "importer_error_code": exc.code,
            "importer_error_details": exc.details,
            "importer_endpoint": request.endpoint,
        },
    )
    return _error_response(exc.to_dict(), int(exc.http_status))


@importer_blueprint.errorhandler(Exception)
def handle_unexpected_error(exc: Exception):
    if isinstance(exc, HTTPException):
        return exc
    db.session.rollback()
    current_app.logger.exception(
        "Importer request failed",
        extra={
            "importer_endpoint": request.endpoint,
            "importer_organization_id": getattr(g, "organization_id", None),
        },
    )
    return _error_response(internal_error_payload(), HTTPStatus.INTERNAL_SERVER_ERROR)


@importer_blueprint.before_request
def _ensure_importer_enabled():
    if request.endpoint in ("importer.importer_healthcheck", "importer.importer_worker_health"):
        return None
    if not is_importer_enabled(current_app):
        return _error_response({"code": NotFoundError.code, "message": "Importer is disabled."}, HTTPStatus.NOT_FOUND)
    return None


def _tenant() -> int | None:
    return getattr(g, "organization_id", None)


def _actor() -> int | None:
    return getattr(g, "actor_id", None)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _optional_int(value, *, field: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"'{field}' must be an integer.", field=field) from exc
    if number < 1:
        raise ValidationError(f"'{field}' must be positive.", field=field)
    return number


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------


@importer_blueprint.get("/health")
def importer_healthcheck():
    state = current_app.extensions.get("importer", {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "worker_enabled": state.get("worker_enabled", False),
            }
        ),
        200,
    )


@importer_blueprint.get("/worker_health")
def importer_worker_health():
    """Round-trip the heartbeat task through the worker queue."""

    state = current_app.extensions.get("importer", {})
    enabled = state.get("enabled", False)
    worker_enabled = state.get("worker_enabled", False)
    timeout_seconds = float(request.args.get("timeout", 5))
    payload = {
        "importer_enabled": enabled,
        "worker_enabled": worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }

    if not enabled or not worker_enabled:
        payload["status"] = "disabled"
        if enabled:
            payload["message"] = "Worker flag disabled; executions run inline. Set IMPORTER_WORKER_ENABLED=true."
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload.update(status="error", error="celery_app_unavailable")
        return jsonify(payload), 500

    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        payload.update(status="error", error="heartbeat_task_missing")
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504
    payload["status"] = "ok"
    return jsonify(payload), 200


# ----------------------------------------------------------------------
# Pipeline
# ----------------------------------------------------------------------


@importer_blueprint.post("/batches")
def upload_batch():
    max_bytes = int(current_app.config.get("IMPORTER_MAX_UPLOAD_MB", 10)) * 1024 * 1024
    file_name, payload = read_upload(request.files.get("file"), max_bytes)
    result = ImportService().upload(_tenant(), _actor(), file_name, payload)
    return jsonify(result.to_dict()), HTTPStatus.CREATED


@importer_blueprint.post("/batches/<int:batch_id>/preview")
def preview_batch(batch_id: int):
    body = _json_body()
    start_time = time.perf_counter()
    try:
        report = ImportService().preview(
            batch_id,
            _tenant(),
            body.get("mappings"),
            body.get("duplicate_settings"),
            body.get("resolutions"),
            limit=_optional_int(body.get("limit"), field="limit"),
        )
    except ImporterError as exc:
        ImporterMonitoring.record_preview(duration_seconds=time.perf_counter() - start_time, status=exc.code)
        raise
    ImporterMonitoring.record_preview(duration_seconds=time.perf_counter() - start_time, status="success")
    return jsonify(report.to_dict()), HTTPStatus.OK


@importer_blueprint.post("/batches/<int:batch_id>/execute")
def execute_batch(batch_id: int):
    body = _json_body()
    handle = ImportService().execute(
        batch_id,
        _tenant(),
        _actor(),
        body.get("mappings"),
        body.get("duplicate_settings"),
        body.get("resolutions"),
    )
    return jsonify(handle.to_dict()), HTTPStatus.ACCEPTED


@importer_blueprint.get("/jobs/<job_id>")
def job_progress(job_id: str):
    job = ImportService().get_job(job_id, _tenant())
    return jsonify(serialize_job(job)), HTTPStatus.OK


@importer_blueprint.get("/batches/<int:batch_id>")
def batch_detail(batch_id: int):
    start_time = time.perf_counter()
    try:
        detail = ImportService().batch_detail(
            batch_id,
            _tenant(),
            record_limit=_optional_int(request.args.get("record_limit"), field="record_limit"),
        )
    except ImporterError as exc:
        ImporterMonitoring.record_batch_detail(duration_seconds=time.perf_counter() - start_time, status=exc.code)
        raise
    ImporterMonitoring.record_batch_detail(duration_seconds=time.perf_counter() - start_time, status="success")
    return jsonify(detail), HTTPStatus.OK


@importer_blueprint.post("/batches/<int:batch_id>/rollback")
def rollback_batch(batch_id: int):
    result = ImportService().rollback(batch_id, _tenant(), actor_id=_actor())
    return jsonify(result.to_dict()), HTTPStatus.OK


@importer_blueprint.get("/batches")
def batch_history():
    raw = request.args
    try:
        filters = BatchFilters.coerce(
            page=raw.get("page"),
            page_size=raw.get("page_size") or raw.get("per_page"),
            sort=raw.get("sort"),
            statuses=raw.get("status"),
            default_page_size=int(current_app.config.get("IMPORTER_HISTORY_PAGE_SIZE_DEFAULT", 20)),
        )
    except ValueError as exc:
        ImporterMonitoring.record_batch_list(duration_seconds=0.0, status="invalid_request", result_count=0)
        raise ValidationError(str(exc), field="filters") from exc

    start_time = time.perf_counter()
    result = ImportService().list_batches(_tenant(), filters)
    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_batch_list(duration_seconds=duration, status="success", result_count=len(result.items))

    payload = result.to_dict()
    payload["filters"] = {
        "page": filters.page,
        "page_size": filters.page_size,
        "sort": filters.sort,
        "statuses": [status.value for status in filters.statuses],
    }
    current_app.logger.info(
        "Importer batch history retrieved",
        extra={
            "importer_organization_id": _tenant(),
            "importer_batch_count": len(result.items),
            "importer_total_batches": result.total,
            "importer_response_time_ms": round(duration * 1000, 2),
        },
    )
    return jsonify(payload), HTTPStatus.OK
