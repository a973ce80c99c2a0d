"""
Celery wiring for the importer worker.

Execution is at-least-once: tasks are acknowledged late and re-queued when a
worker dies, and the executor resumes from the first unfinished row. SQLite
transport is the default so a local worker needs no Redis.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"
TASK_MODULES = ("casebook.importer.tasks",)
NOISY_LOGGERS = ("celery.worker.strategy",)


def resolve_connection_urls(app: Flask) -> tuple[str, str]:
    """Return ``(broker_url, result_backend)``, filling gaps with a SQLite file in the instance folder."""

    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if broker_url and result_backend:
        return broker_url, result_backend

    sqlite_file = Path(app.config.get("CELERY_SQLITE_PATH") or DEFAULT_SQLITE_FILENAME)
    if not sqlite_file.is_absolute():
        sqlite_file = Path(app.instance_path) / sqlite_file
    sqlite_file.parent.mkdir(parents=True, exist_ok=True)
    location = sqlite_file.as_posix()
    return broker_url or f"sqla+sqlite:///{location}", result_backend or f"db+sqlite:///{location}"


def worker_settings(app: Flask) -> dict[str, Any]:
    """Celery settings for the imports queue, with ``CELERY_CONFIG`` overrides applied last."""

    settings: dict[str, Any] = {
        "task_default_queue": DEFAULT_QUEUE_NAME,
        "task_queues": [Queue(DEFAULT_QUEUE_NAME)],
        "task_default_exchange": DEFAULT_QUEUE_NAME,
        "task_default_routing_key": DEFAULT_QUEUE_NAME,
        "task_routes": {"importer.*": {"queue": DEFAULT_QUEUE_NAME}},
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,
        "task_track_started": True,
        "result_extended": True,
        "broker_connection_retry_on_startup": True,
        "task_time_limit": app.config.get("IMPORTER_TASK_TIME_LIMIT", 60 * 60),
        "task_soft_time_limit": app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", 55 * 60),
        "worker_hijack_root_logger": False,
    }

    overrides = app.config.get("CELERY_CONFIG")
    if isinstance(overrides, str):
        try:
            overrides = json.loads(overrides)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
            overrides = None
    if overrides:
        settings.update(overrides)
    return settings


def create_celery_app(app: Flask) -> Celery:
    """Build a Celery app whose tasks run inside ``app``'s context."""

    broker_url, result_backend = resolve_connection_urls(app)
    celery_app = Celery(app.import_name, broker=broker_url, backend=result_backend, include=TASK_MODULES)
    settings = worker_settings(app)
    celery_app.conf.update(settings)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()

    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.info(
        "Importer Celery configuration resolved",
        extra={
            "importer_celery_broker_url": broker_url,
            "importer_celery_result_backend": result_backend,
            "importer_celery_queue": settings["task_default_queue"],
            "importer_worker_enabled": app.config.get("IMPORTER_WORKER_ENABLED"),
        },
    )
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    if state.get("celery_app") is None:
        state["celery_app"] = create_celery_app(app)
    return state["celery_app"]


def get_celery_app(app: Flask) -> Celery | None:
    """Cached worker app; built on first use while the importer is enabled, ``None`` otherwise."""

    state = app.extensions.get("importer")
    if not state:
        return None
    if state.get("celery_app") is None and not state.get("enabled"):
        return None
    return ensure_celery_app(app, state)
