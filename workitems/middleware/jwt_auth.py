"""
JWT Auth Middleware — Parses the bearer token and sets ``g.principal``.

Every /api/v1/ route except the health checks requires a valid access
token. Blueprints read ``g.principal`` and pass it explicitly to the
service layer.

Token sources (first match wins):
  1. Authorization: Bearer <token>
  2. ?token=<token> query parameter

When ALLOW_DEMO_TOKEN is enabled (development), the literal token
``demo-token`` authenticates as the demo CEO principal.
"""

import logging

import jwt as pyjwt
from flask import g, request

from workitems.core.principal import Principal
from workitems.services.jwt_service import principal_from_token
from workitems.utils.errors import E, api_error

logger = logging.getLogger(__name__)

DEMO_TOKEN = "demo-token"
DEMO_PRINCIPAL = Principal(
    id="00000000-0000-0000-0000-000000000002",
    email="demo@example.com",
    tenant_id="00000000-0000-0000-0000-000000000001",
    roles=frozenset({"CEO", "admin", "user"}),
)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _extract_token():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]  # Strip "Bearer "
    return request.args.get("token") or None


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.principal = None

        # Skip non-API routes and health checks
        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        token = _extract_token()
        if not token:
            return api_error(E.UNAUTHORIZED, "Authentication token is required")

        if token == DEMO_TOKEN and app.config.get("ALLOW_DEMO_TOKEN"):
            g.principal = DEMO_PRINCIPAL
            g.tenant_id = DEMO_PRINCIPAL.tenant_id
            logger.debug("Demo user authenticated user=%s", DEMO_PRINCIPAL.id)
            return None

        try:
            g.principal = principal_from_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.warning("Token expired path=%s", path)
            return api_error(E.UNAUTHORIZED, "Authentication token is invalid or expired")
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Token verification failed path=%s error=%s", path, exc)
            return api_error(E.UNAUTHORIZED, "Authentication token is invalid or expired")

        g.tenant_id = g.principal.tenant_id
        return None
