# app.py

import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from sqlalchemy import event

# .env must be loaded before the config classes read os.environ
load_dotenv()

from casebook.importer import init_importer  # noqa: E402
from casebook.importer.errors import internal_error_payload  # noqa: E402
from casebook.middleware.org_context import init_org_context_middleware  # noqa: E402
from casebook.models import db  # noqa: E402
from casebook.utils.logging_config import setup_logging  # noqa: E402
from config import DevelopmentConfig, ProductionConfig, TestingConfig  # noqa: E402
from config.monitoring import (  # noqa: E402
    DevelopmentMonitoringConfig,
    ProductionMonitoringConfig,
    TestingMonitoringConfig,
)
from config.validation import validate_and_exit  # noqa: E402

logger = logging.getLogger(__name__)

ENVIRONMENT_CONFIGS = {
    "production": (ProductionConfig, ProductionMonitoringConfig),
    "testing": (TestingConfig, TestingMonitoringConfig),
    "development": (DevelopmentConfig, DevelopmentMonitoringConfig),
}

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def load_config(flask_app, flask_env):
    if flask_env == "production":
        validate_and_exit(flask_env)
    for config_object in ENVIRONMENT_CONFIGS.get(flask_env, ENVIRONMENT_CONFIGS["development"]):
        flask_app.config.from_object(config_object)


def install_sqlite_pragmas(engine, *, foreign_keys):
    """Apply WAL and busy-timeout pragmas to every new SQLite connection."""

    if getattr(engine, "_casebook_pragmas", False):
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - instrumentation
        cursor = dbapi_connection.cursor()
        try:
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
            if foreign_keys:
                cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    engine._casebook_pragmas = True  # type: ignore[attr-defined]


app = Flask(__name__)
load_config(app, os.environ.get("FLASK_ENV", "development"))

db.init_app(app)
setup_logging(app)
init_org_context_middleware(app)

with app.app_context():
    if db.engine.url.drivername.startswith("sqlite"):
        # Test fixtures drop and recreate tables freely, so FK enforcement stays off there.
        install_sqlite_pragmas(db.engine, foreign_keys=not app.config.get("TESTING", False))
    if not app.config.get("TESTING", False):
        db.create_all()

init_importer(app)


@app.errorhandler(404)
def not_found_error(error):
    return jsonify({"error": {"code": "not_found", "message": "Resource not found."}}), 404


@app.errorhandler(500)
def internal_error(error):
    db.session.rollback()
    logger.error("Unhandled application error: %s", error)
    return jsonify({"error": internal_error_payload()}), 500


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
