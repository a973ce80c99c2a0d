"""Importer feature-flag lookups, usable with an explicit app or inside an app context."""

from __future__ import annotations

from flask import Flask, current_app


def _flag(name: str, app: Flask | None) -> bool:
    config = app.config if app is not None else current_app.config
    return bool(config.get(name, False))


def is_importer_enabled(app: Flask | None = None) -> bool:
    return _flag("IMPORTER_ENABLED", app)


def is_worker_enabled(app: Flask | None = None) -> bool:
    """True when executions are queued for the Celery worker instead of run inline."""
    return _flag("IMPORTER_WORKER_ENABLED", app)
