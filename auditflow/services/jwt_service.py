"""
JWT Service — access tokens that carry the acting user.

Access token:  15 minutes (configurable via JWT_ACCESS_EXPIRES)
Algorithm:     HS256

Token payload:
{
    "sub": <user_id>,
    "role": "Auditor" | "LeadAuditor" | "Director" | "AuditeeOwner" | "System",
    "dept_id": <department id or null>,
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}

Tokens are issued by the identity provider in front of this service; the
generator here is used by tests and local tooling.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from auditflow.core.enums import ActorRole
from auditflow.core.records import Actor
from auditflow.services.normalization import as_id


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
ALGORITHM = "HS256"


def _get_secret():
    """Get the JWT secret key from app config."""
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _get_access_expires():
    return current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES)


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: str, role, dept_id: str | None = None) -> str:
    """Generate a short-lived access token for ``user_id`` acting as ``role``."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": ActorRole(role).value,
        "dept_id": None if dept_id is None else str(dept_id),
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=_get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError(f"Expected access token, got {payload.get('type')}")
    return payload


def actor_from_claims(payload: dict) -> Actor:
    """Build the Actor a verified token speaks for."""
    try:
        role = ActorRole(payload.get("role"))
    except ValueError as exc:
        raise jwt.InvalidTokenError(f"Unknown role claim: {payload.get('role')!r}") from exc
    user_id = payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("Token has no subject")
    return Actor(user_id=as_id(user_id), role=role, department_id=as_id(payload.get("dept_id")))
