import pytest
from flask import g


def _run_before_request(app, headers):
    with app.test_request_context("/importer/batches", headers=headers):
        app.preprocess_request()
        return g.organization_id, g.actor_id


class TestOrganizationContextMiddleware:
    """Tenant and actor headers are copied onto ``g``"""

    def test_headers_are_parsed(self, app):
        assert _run_before_request(app, {"X-Organization-Id": "12", "X-User-Id": " 7 "}) == (12, 7)

    def test_missing_headers_leave_context_empty(self, app):
        assert _run_before_request(app, {}) == (None, None)

    @pytest.mark.parametrize(
        "headers, expected",
        [
            ({"X-Organization-Id": "acme", "X-User-Id": "7"}, (None, 7)),
            ({"X-Organization-Id": "3", "X-User-Id": "admin"}, (3, None)),
            ({"X-Organization-Id": "", "X-User-Id": ""}, (None, None)),
        ],
    )
    def test_non_numeric_headers_are_ignored(self, app, headers, expected):
        assert _run_before_request(app, headers) == expected

    def test_non_numeric_header_is_logged(self, app, caplog):
        with caplog.at_level("WARNING", logger=app.logger.name):
            _run_before_request(app, {"X-Organization-Id": "acme"})

        assert "Ignoring non-numeric X-Organization-Id header" in caplog.text
