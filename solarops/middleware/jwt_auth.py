"""
JWT Auth Middleware — parses the bearer token and sets ``g.caller_id``.

The middleware never rejects a request by itself.  A missing or invalid
token leaves ``g.caller_id = None``; the Access Guard raises
UnauthorizedError when an operation needs a caller.

    Authorization: Bearer <token>  →  g.caller_id, g.caller_role
"""

import logging

import jwt as pyjwt
from flask import g, request

from solarops.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.caller_id = None
        g.caller_role = None

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
        except pyjwt.InvalidTokenError:
            logger.info("Invalid access token on %s", path)
            return

        try:
            g.caller_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            logger.info("Access token with non-numeric subject on %s", path)
            return
        g.caller_role = payload.get("role")
