import json

from flask import Flask

from casebook.importer import IMPORTER_EXTENSION_KEY, init_importer


def build_app(enabled=False, **overrides):
    app = Flask(__name__)
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        IMPORTER_ENABLED=enabled,
    )
    app.config.update(overrides)

    init_importer(app)
    return app


def test_importer_disabled_registers_stub_cli():
    app = build_app(enabled=False)

    assert "importer" not in app.blueprints
    assert app.extensions[IMPORTER_EXTENSION_KEY]["enabled"] is False

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])
    assert result.exit_code != 0
    assert "Importer commands are unavailable" in result.output


def test_importer_enabled_registers_blueprint_and_cli():
    app = build_app(enabled=True)

    assert "importer" in app.blueprints
    assert "importer.importer_healthcheck" in app.view_functions

    client = app.test_client()
    response = client.get("/importer/health")
    assert response.status_code == 200
    payload = json.loads(response.data)
    assert payload == {"status": "ok", "enabled": True, "worker_enabled": False}

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer", "--help"])
    assert result.exit_code == 0
    for command in ("upload", "execute", "rollback", "batches", "worker"):
        assert command in result.output

    importer_state = app.extensions[IMPORTER_EXTENSION_KEY]
    assert importer_state["enabled"] is True
    assert importer_state["worker_enabled"] is False
    assert importer_state["celery_app"] is None


def test_reinitialising_replaces_the_cli_group():
    app = build_app(enabled=True)
    app.config["IMPORTER_ENABLED"] = False

    init_importer(app)

    result = app.test_cli_runner().invoke(args=["importer"])
    assert "Importer commands are unavailable" in result.output
    assert app.extensions[IMPORTER_EXTENSION_KEY]["enabled"] is False
