"""
Bulk client importer.

``init_importer`` wires the HTTP blueprint, the ``flask importer`` command
group and, when execution is delegated to a worker, the Celery app. The
resulting state lives in ``app.extensions['importer']``.
"""

from __future__ import annotations

from flask import Flask

from casebook.utils.importer import is_importer_enabled, is_worker_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "get_celery_app",
    "init_importer",
]


def _extension_state(app: Flask) -> dict:
    if IMPORTER_EXTENSION_KEY not in app.extensions:
        app.extensions[IMPORTER_EXTENSION_KEY] = {"enabled": False, "worker_enabled": False, "celery_app": None}
    return app.extensions[IMPORTER_EXTENSION_KEY]


def _install_cli(app: Flask, group) -> None:
    # Re-initialising an app swaps the group instead of stacking a second one.
    app.cli.commands.pop(importer_cli.name, None)
    app.cli.add_command(group, name=importer_cli.name)


def _mount_blueprint(app: Flask) -> None:
    if importer_blueprint.name in app.blueprints:
        return
    if getattr(app, "_got_first_request", False):
        app.logger.warning("Importer blueprint not mounted: the app has already served a request.")
        return
    app.register_blueprint(importer_blueprint)


def init_importer(app: Flask) -> None:
    """Mount the importer when ``IMPORTER_ENABLED`` is set, else register a stub CLI group."""

    state = _extension_state(app)
    state["enabled"] = is_importer_enabled(app)
    state["worker_enabled"] = is_worker_enabled(app)

    if not state["enabled"]:
        _install_cli(app, get_disabled_importer_group())
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    if state["worker_enabled"]:
        ensure_celery_app(app, state)
    _mount_blueprint(app)
    _install_cli(app, importer_cli)
    app.logger.info("Importer enabled", extra={"importer_worker_enabled": state["worker_enabled"]})
