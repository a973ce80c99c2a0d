# config/validation.py

"""
Startup checks for production deployments of the Casebook importer.

Only ``FLASK_ENV=production`` is validated; development and testing rely on
the defaults in ``config.base``.
"""

import os
import sys
from typing import List, Optional, Tuple

PLACEHOLDER_SECRETS = frozenset({"your-secret-key", "your_secret_key", "change-me"})


def _truthy(name: str) -> bool:
    return os.environ.get(name, "false").strip().lower() == "true"


def _secret_key_errors() -> List[str]:
    secret_key = os.environ.get("SECRET_KEY", "")
    if secret_key and secret_key not in PLACEHOLDER_SECRETS:
        return []
    return [
        "SECRET_KEY is required in production and must not be the default value. "
        'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
    ]


def _database_errors() -> List[str]:
    if os.environ.get("DATABASE_URL"):
        return []
    return ["DATABASE_URL is required in production. Set it to your PostgreSQL connection string."]


def _worker_errors() -> List[str]:
    if not _truthy("IMPORTER_WORKER_ENABLED"):
        return []
    return [
        f"{name} is required when IMPORTER_WORKER_ENABLED=true in production"
        for name in ("CELERY_BROKER_URL", "CELERY_RESULT_BACKEND")
        if not os.environ.get(name)
    ]


def _catalogue_errors() -> List[str]:
    path = os.environ.get("IMPORTER_CLIENT_FIELDS_PATH")
    if path and not os.path.exists(path):
        return [f"IMPORTER_CLIENT_FIELDS_PATH points to a missing file: {path}"]
    return []


CHECKS = (_secret_key_errors, _database_errors, _worker_errors, _catalogue_errors)


def validate_environment(flask_env: Optional[str] = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Returns ``(is_valid, errors)``; non-production environments always pass.
    """
    flask_env = flask_env or os.environ.get("FLASK_ENV", "development")
    if flask_env != "production":
        return True, []

    errors = [message for check in CHECKS for message in check()]
    return not errors, errors


def validate_and_exit(flask_env: Optional[str] = None) -> None:
    """Print every failed check to stderr and exit with status 1."""
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    rule = "=" * 80
    lines = [rule, "ENVIRONMENT VALIDATION FAILED", rule, ""]
    lines.extend(f"{number}. {error}" for number, error in enumerate(errors, 1))
    lines.extend(["", "Check your .env file or deployment environment.", rule])
    print("\n".join(lines), file=sys.stderr)
    sys.exit(1)
