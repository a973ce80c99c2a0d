import pytest

from config import base as base_config
from config.base import _coerce_bool, _coerce_int
from config.validation import validate_and_exit, validate_environment


@pytest.mark.parametrize(
    "value, expected",
    [("1", True), ("Yes", True), (" on ", True), ("false", False), ("0", False), (True, True), (None, None)],
)
def test_coerce_bool(value, expected):
    assert _coerce_bool(value, default=None) is expected


def test_coerce_bool_falls_back_on_garbage():
    assert _coerce_bool("maybe", default=True) is True


@pytest.mark.parametrize(
    "value, expected",
    [("25", 25), ("", 10), ("ten", 10), ("0", 1), ("5000", 100)],
)
def test_coerce_int_clamps_and_defaults(value, expected):
    assert _coerce_int(value, 10, minimum=1, maximum=100) == expected


def test_testing_config_uses_memory_database_and_inline_execution():
    assert base_config.TestingConfig.SQLALCHEMY_DATABASE_URI == "sqlite:///:memory:"
    assert base_config.TestingConfig.IMPORTER_WORKER_ENABLED is False
    assert base_config.TestingConfig.IMPORTER_ROLLBACK_WINDOW_HOURS >= 1
    assert base_config.TestingConfig.IMPORTER_CLIENT_FIELDS_PATH.endswith("client_fields_v1.yaml")


def test_non_production_environments_skip_validation():
    assert validate_environment("development") == (True, [])


def test_production_requires_secret_and_database(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("IMPORTER_WORKER_ENABLED", raising=False)
    monkeypatch.delenv("IMPORTER_CLIENT_FIELDS_PATH", raising=False)

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert len(errors) == 2
    assert errors[0].startswith("SECRET_KEY is required")
    assert errors[1].startswith("DATABASE_URL is required")


def test_production_worker_requires_broker(monkeypatch, tmp_path):
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/casebook")
    monkeypatch.setenv("IMPORTER_WORKER_ENABLED", "true")
    monkeypatch.delenv("CELERY_BROKER_URL", raising=False)
    monkeypatch.setenv("CELERY_RESULT_BACKEND", "redis://localhost/1")
    monkeypatch.setenv("IMPORTER_CLIENT_FIELDS_PATH", str(tmp_path / "missing.yaml"))

    _, errors = validate_environment("production")

    assert errors == [
        "CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true in production",
        f"IMPORTER_CLIENT_FIELDS_PATH points to a missing file: {tmp_path / 'missing.yaml'}",
    ]


def test_validate_and_exit_stops_the_process(monkeypatch, capsys):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(SystemExit) as excinfo:
        validate_and_exit("production")

    assert excinfo.value.code == 1
    assert "ENVIRONMENT VALIDATION FAILED" in capsys.readouterr().err
