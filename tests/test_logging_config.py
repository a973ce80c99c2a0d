import json
import logging
import sys

from flask import Flask

from casebook.utils.logging_config import JSONFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord("casebook.test", logging.INFO, __file__, 12, "Batch %s completed", (4,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields():
    payload = json.loads(JSONFormatter().format(_record(importer_batch_id=4, importer_counts={"created": 2})))

    assert payload["message"] == "Batch 4 completed"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "casebook.test"
    assert payload["line"] == 12
    assert payload["importer_batch_id"] == 4
    assert payload["importer_counts"] == {"created": 2}
    assert "exception" not in payload


def test_json_formatter_renders_exceptions():
    try:
        raise ValueError("bad row")
    except ValueError:
        record = logging.LogRecord("casebook.test", logging.ERROR, __file__, 30, "failed", (), sys.exc_info())

    payload = json.loads(JSONFormatter().format(record))

    assert "ValueError: bad row" in payload["exception"]


def test_setup_logging_writes_json_to_file(tmp_path):
    app = Flask("casebook_logging_test")
    app.config.update(
        LOG_LEVEL="INFO",
        LOG_FORMAT="json",
        LOG_DIR=str(tmp_path / "logs"),
        ENABLE_FILE_LOGGING=True,
        ENABLE_CONSOLE_LOGGING=False,
    )

    setup_logging(app)
    app.logger.info("Importer enabled", extra={"importer_worker_enabled": False})
    audit_logger = logging.getLogger("casebook.audit")
    for handler in app.logger.handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "casebook.log").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["message"] == "Importer enabled"
    assert entry["importer_worker_enabled"] is False
    assert audit_logger.handlers == app.logger.handlers
    assert audit_logger.level == logging.INFO

    for handler in list(app.logger.handlers):
        app.logger.removeHandler(handler)
        audit_logger.removeHandler(handler)
        handler.close()


def test_setup_logging_replaces_existing_handlers():
    app = Flask("casebook_logging_console_test")
    app.config.update(LOG_LEVEL="debug", LOG_FORMAT="text", ENABLE_FILE_LOGGING=False, ENABLE_CONSOLE_LOGGING=True)

    setup_logging(app)
    setup_logging(app)

    assert len(app.logger.handlers) == 1
    assert app.logger.level == logging.DEBUG
    assert not isinstance(app.logger.handlers[0].formatter, JSONFormatter)

    app.config["ENABLE_CONSOLE_LOGGING"] = False
    setup_logging(app)
    assert app.logger.handlers == []
