# config/base.py
import os
import warnings

_CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))
_INSTANCE_DIR = os.path.join(os.path.dirname(_CONFIG_DIR), "instance")
_SQLITE_CONNECT_ARGS = {"check_same_thread": False, "timeout": 5}
DEV_SECRET_KEY = "dev-secret-key-change-in-production"


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """
    Parse an integer setting, falling back to ``default`` on bad input and
    clamping into ``[minimum, maximum]`` when bounds are supplied.
    """
    if value in (None, ""):
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return number


def _env_int(name, default, **bounds):
    return _coerce_int(os.environ.get(name), default, **bounds)


def _resolve_secret_key(flask_env):
    """SECRET_KEY is mandatory in production; development falls back to a well-known key with a warning."""
    secret_key = os.environ.get("SECRET_KEY")
    if secret_key:
        return secret_key
    if flask_env == "production":
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if flask_env == "testing":
        return "test-secret-key-placeholder"
    warnings.warn(
        "SECRET_KEY not set. Using default for development only. "
        "Set SECRET_KEY environment variable before deploying.",
        UserWarning,
    )
    return DEV_SECRET_KEY


def _development_database_uri():
    os.makedirs(_INSTANCE_DIR, exist_ok=True)
    # sqlite:///absolute/path wants forward slashes on Windows too
    db_path = os.path.join(_INSTANCE_DIR, "casebook_dev.db").replace("\\", "/")
    return os.environ.get("DATABASE_URL", f"sqlite:///{db_path}")


class Config:
    SECRET_KEY = _resolve_secret_key(os.environ.get("FLASK_ENV", "development"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Feature flags
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=True)
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)

    # Worker transport
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")
    IMPORTER_TASK_TIME_LIMIT = _env_int("IMPORTER_TASK_TIME_LIMIT", 60 * 60, minimum=60)
    IMPORTER_TASK_SOFT_TIME_LIMIT = _env_int("IMPORTER_TASK_SOFT_TIME_LIMIT", 55 * 60, minimum=60)

    # Upload and preview limits
    IMPORTER_MAX_UPLOAD_MB = _env_int("IMPORTER_MAX_UPLOAD_MB", 10, minimum=1)
    IMPORTER_MAX_ROWS = _env_int("IMPORTER_MAX_ROWS", 10000, minimum=1)
    IMPORTER_PREVIEW_ROWS = _env_int("IMPORTER_PREVIEW_ROWS", 10, minimum=1, maximum=100)
    IMPORTER_SUGGEST_SAMPLE_ROWS = _env_int("IMPORTER_SUGGEST_SAMPLE_ROWS", 20, minimum=1, maximum=500)
    IMPORTER_CLIENT_FIELDS_PATH = os.environ.get(
        "IMPORTER_CLIENT_FIELDS_PATH",
        os.path.join(_CONFIG_DIR, "mappings", "client_fields_v1.yaml"),
    )
    IMPORTER_DEFAULT_PHONE_REGION = os.environ.get("IMPORTER_DEFAULT_PHONE_REGION", "1").strip().lstrip("+") or "1"

    # Execution and rollback
    IMPORTER_ROLLBACK_WINDOW_HOURS = _env_int("IMPORTER_ROLLBACK_WINDOW_HOURS", 24, minimum=1)
    IMPORTER_CAPTURE_PRE_IMAGES = _coerce_bool(os.environ.get("IMPORTER_CAPTURE_PRE_IMAGES"), default=True)

    # History and detail
    IMPORTER_DETAIL_RECORD_LIMIT = _env_int("IMPORTER_DETAIL_RECORD_LIMIT", 100, minimum=1, maximum=1000)
    IMPORTER_HISTORY_PAGE_SIZE_DEFAULT = _env_int("IMPORTER_HISTORY_PAGE_SIZE_DEFAULT", 20, minimum=1, maximum=100)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _development_database_uri()
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"connect_args": dict(_SQLITE_CONNECT_ARGS)} if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}
    )


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": dict(_SQLITE_CONNECT_ARGS)}
    IMPORTER_WORKER_ENABLED = False


class ProductionConfig(Config):
    DEBUG = False
    # SQLAlchemy rejects the legacy postgres:// scheme
    SQLALCHEMY_DATABASE_URI = (os.environ.get("DATABASE_URL") or "").replace("postgres://", "postgresql://", 1) or None
    SQLALCHEMY_ECHO = False
