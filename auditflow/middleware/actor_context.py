"""
Actor Context Middleware — parses the Bearer JWT and sets ``g.actor``.

Every /api/v1/ request (except health) is evaluated; a missing, expired or
invalid token leaves ``g.actor`` as None and the route decides (the audit
plan routes answer 401 from their ``_require_actor`` hook).
"""

import logging

import jwt as pyjwt
from flask import g, request

from auditflow.services.jwt_service import actor_from_claims, decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip actor resolution entirely
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_actor_middleware(app):
    """Register actor resolution as a before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.actor = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in ACTOR_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            g.actor = actor_from_claims(decode_access_token(token))
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired token on %s", path, extra={"path": path})
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Rejected token on %s: %s", path, exc, extra={"path": path})
