"""Standardised API error responses.

Usage
-----
    from auditflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "AuditPlan not found")
    return api_error(E.CONCURRENT_MODIFICATION, str(exc), details={"current_status": "Approved"})
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from auditflow.core.exceptions import (
    ConcurrentModification,
    ConflictError,
    DuplicatePending,
    ForbiddenActor,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Validation – HTTP 400 (malformed) / 422 (business rule)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / state – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    DUPLICATE_PENDING = "ERR_DUPLICATE_PENDING"
    CONCURRENT_MODIFICATION = "ERR_CONCURRENT_MODIFICATION"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.UNAUTHENTICATED: 401,
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_TRANSITION: 409,
    E.DUPLICATE_PENDING: 409,
    E.CONCURRENT_MODIFICATION: 409,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, pending request id, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Blueprint error handlers ──────────────────────────────────────────
def register_error_handlers(blueprint) -> None:
    """Map the workflow exception taxonomy to HTTP responses on ``blueprint``."""
    logger = logging.getLogger(blueprint.import_name)

    @blueprint.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @blueprint.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @blueprint.errorhandler(ForbiddenActor)
    def _handle_forbidden(error: ForbiddenActor):
        return api_error(E.FORBIDDEN, str(error), details={"action": error.action})

    @blueprint.errorhandler(InvalidTransition)
    def _handle_invalid_transition(error: InvalidTransition):
        return api_error(
            E.INVALID_TRANSITION, str(error),
            details={"action": error.action, "current_status": error.current_status},
        )

    @blueprint.errorhandler(DuplicatePending)
    def _handle_duplicate_pending(error: DuplicatePending):
        return api_error(
            E.DUPLICATE_PENDING, str(error),
            details={"audit_id": error.audit_id, "pending_request_id": error.pending_request_id},
        )

    @blueprint.errorhandler(ConcurrentModification)
    def _handle_concurrent(error: ConcurrentModification):
        return api_error(
            E.CONCURRENT_MODIFICATION, str(error),
            details={"expected_status": error.expected_status, "current_status": error.actual_status},
        )

    @blueprint.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error),
                         details={"field": error.field, "value": error.value})

    @blueprint.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return {"error": error.description or error.name}, error.code

    @blueprint.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error in %s endpoint=%s", blueprint.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
