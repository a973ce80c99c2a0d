# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py loads TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import app as flask_app  # noqa: E402
from casebook.models import Organization, db  # noqa: E402
from casebook.utils.logging_config import setup_logging  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Flask application with a freshly created schema for each test"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "LOG_LEVEL": "DEBUG",
            "LOG_FORMAT": "text",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": False,
            "IMPORTER_ROLLBACK_WINDOW_HOURS": 24,
            "IMPORTER_CAPTURE_PRE_IMAGES": True,
        }
    )
    setup_logging(flask_app)

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def test_organization(app):
    org = Organization(name="Test Organization", slug="test-organization", is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def other_organization(app):
    org = Organization(name="Other Organization", slug="other-organization", is_active=True)
    db.session.add(org)
    db.session.commit()
    return org


@pytest.fixture
def test_organization_inactive(app):
    org = Organization(name="Inactive Organization", slug="inactive-organization", is_active=False)
    db.session.add(org)
    db.session.commit()
    return org


def pytest_configure(config):
    os.environ["FLASK_ENV"] = "testing"
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
