# casebook/middleware/org_context.py

from flask import current_app, g, request

ORGANIZATION_HEADER = "X-Organization-Id"
ACTOR_HEADER = "X-User-Id"


def _header_int(name):
    raw = request.headers.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw.strip())
    except ValueError:
        current_app.logger.warning(f"Ignoring non-numeric {name} header: {raw!r}")
        return None


def init_org_context_middleware(app):
    """Initialize tenant and actor context middleware"""

    @app.before_request
    def set_request_context():
        """Copy the tenant and acting user from request headers onto ``g``"""
        g.organization_id = None
        g.actor_id = None

        if request.endpoint == "static":
            return

        g.organization_id = _header_int(ORGANIZATION_HEADER)
        g.actor_id = _header_int(ACTOR_HEADER)
