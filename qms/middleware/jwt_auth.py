"""
JWT Auth Middleware — parses the Bearer token and attaches ``g.caller``.

``g.caller`` is an immutable ``Caller`` (user id, roles, client address and
agent) or None. Views never read it directly: ``require_auth`` injects it.
Invalid and expired tokens leave ``g.caller`` unset so the decorator answers
401 for protected endpoints while public ones keep working.
"""

import logging

import jwt as pyjwt
from flask import g, request

from qms.core.caller import Caller
from qms.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def client_ip() -> str | None:
    """First hop of X-Forwarded-For, else the socket peer address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.caller = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid access token on %s: %s", path, exc)
            return

        try:
            user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            logger.warning("Access token without numeric subject on %s", path)
            return

        g.caller = Caller(
            user_id=user_id,
            roles=frozenset(payload.get("roles", [])),
            email=payload.get("email"),
            ip_address=client_ip(),
            user_agent=(request.headers.get("User-Agent") or "")[:500] or None,
        )
