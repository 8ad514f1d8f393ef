"""
Error taxonomy for the audit-plan workflow.

All services raise (and the pure components return) these types.  The
blueprint registers one handler per type and gets consistent HTTP status
codes everywhere.

Usage:
    from auditflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="AuditPlan", resource_id=plan_id)
    raise ValidationError("comment is required", details={"comment": "empty"})
"""


class AuditFlowError(Exception):
    """Base class for every expected business failure."""


class NotFoundError(AuditFlowError):
    """Raised when a requested resource does not exist or is not visible.

    Used for BOTH genuinely missing records AND plans the actor is not allowed
    to see, so a caller cannot discover that other plans exist.

    Args:
        resource: Human-readable entity name (e.g. "AuditPlan", "RevisionRequest").
        resource_id: The identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(AuditFlowError):
    """Raised when well-formed input violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(AuditFlowError):
    """Raised when a plan would clash with another live plan (period or department).

    Args:
        resource: Entity name.
        field: The field whose value clashes.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class InvalidTransition(AuditFlowError):
    """The action is not defined for the plan's (or request's) current status."""

    def __init__(self, action: str, current_status: str, reason: str | None = None) -> None:
        self.action = action
        self.current_status = current_status
        self.reason = reason
        msg = f"Cannot '{action}' from status '{current_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ForbiddenActor(AuditFlowError):
    """The actor's role or team membership does not authorize the action."""

    def __init__(self, user_id: str, action: str, reason: str | None = None) -> None:
        self.user_id = user_id
        self.action = action
        self.reason = reason
        msg = f"User {user_id} is not permitted to '{action}'"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class DuplicatePending(AuditFlowError):
    """A revision request is already outstanding for the audit."""

    def __init__(self, audit_id: str, pending_request_id: str | None = None) -> None:
        self.audit_id = audit_id
        self.pending_request_id = pending_request_id
        super().__init__(f"Audit {audit_id} already has a pending revision request")


class ConcurrentModification(AuditFlowError):
    """The stored status changed between read and write."""

    def __init__(self, resource_id: str, expected_status: str, actual_status: str | None) -> None:
        self.resource_id = resource_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"{resource_id} changed under you: expected status '{expected_status}', "
            f"found '{actual_status}'"
        )
