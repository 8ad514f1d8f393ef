"""
Normalization adapter — the only place raw payload shapes are understood.

Upstream payloads arrive with aliased keys (``auditId`` / ``audit_id`` /
``id``), list wrappers (``{"$values": [...]}``) and legacy status labels.
This module turns them into the closed enums and immutable records of
``auditflow.core``; nothing past this boundary sees a raw shape.

Parsing is strict: known aliases come from explicit tables, anything else
is a ValidationError.  Identifiers are stringified and otherwise left as-is.

Usage:
    from auditflow.services.normalization import parse_plan_status, plan_draft_from_payload

    status = parse_plan_status("Pending Director Approval")
    draft = plan_draft_from_payload(request.get_json())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from auditflow.core.enums import (
    AuditScope,
    PlanAction,
    PlanStatus,
    RevisionDecision,
    RevisionStatus,
    TeamRole,
)
from auditflow.core.exceptions import ValidationError
from auditflow.core.records import ScopeDepartment, TeamMember
from auditflow.utils.helpers import parse_date_input

# ── Alias tables ─────────────────────────────────────────────────────────────

_STATUS_ALIASES: dict[str, PlanStatus] = {
    "Pending": PlanStatus.PENDING_REVIEW,
    "Pending Review": PlanStatus.PENDING_REVIEW,
    "Pending Director Approval": PlanStatus.PENDING_DIRECTOR_APPROVAL,
    "In Progress": PlanStatus.IN_PROGRESS,
    "Declined Plan": PlanStatus.DECLINED,
}

_ACTION_ALIASES: dict[str, PlanAction] = {
    "submit-to-lead": PlanAction.SUBMIT_TO_LEAD,
    "submit-to-lead-auditor": PlanAction.SUBMIT_TO_LEAD,
    "forward-to-director": PlanAction.FORWARD_TO_DIRECTOR,
    "approve-forward-director": PlanAction.FORWARD_TO_DIRECTOR,
    "decline-by-lead": PlanAction.DECLINE_BY_LEAD,
    "request-revision": PlanAction.REQUEST_REVISION,
    "approve-by-director": PlanAction.APPROVE_BY_DIRECTOR,
    "approve-plan": PlanAction.APPROVE_BY_DIRECTOR,
    "reject-by-director": PlanAction.REJECT_BY_DIRECTOR,
    "begin-execution": PlanAction.BEGIN_EXECUTION,
    "archive-plan": PlanAction.ARCHIVE_PLAN,
}

_SCOPE_ALIASES: dict[str, AuditScope] = {
    "department": AuditScope.DEPARTMENT,
    "academy": AuditScope.ENTIRE_ORGANIZATION,
}

_TEAM_ROLE_ALIASES: dict[str, TeamRole] = {
    "Lead Auditor": TeamRole.LEAD_AUDITOR,
}

_DECISION_ALIASES: dict[str, RevisionDecision] = {
    "approve": RevisionDecision.APPROVE,
    "reject": RevisionDecision.REJECT,
}


def _parse_enum(enum_cls, value, aliases: dict, field_name: str):
    if isinstance(value, enum_cls):
        return value
    if value is None:
        raise ValidationError(f"{field_name} is required", details={field_name: "required"})
    text = str(value)
    try:
        return enum_cls(text)
    except ValueError:
        pass
    if text in aliases:
        return aliases[text]
    allowed = sorted(m.value for m in enum_cls)
    raise ValidationError(
        f"Unknown {field_name} {text!r}",
        details={field_name: f"must be one of {', '.join(allowed)}"},
    )


def parse_plan_status(value) -> PlanStatus:
    return _parse_enum(PlanStatus, value, _STATUS_ALIASES, "status")


def parse_action(value) -> PlanAction:
    return _parse_enum(PlanAction, value, _ACTION_ALIASES, "action")


def parse_scope(value) -> AuditScope:
    if value is None:
        return AuditScope.DEPARTMENT
    return _parse_enum(AuditScope, value, _SCOPE_ALIASES, "scope")


def parse_team_role(value) -> TeamRole:
    return _parse_enum(TeamRole, value, _TEAM_ROLE_ALIASES, "roleInTeam")


def parse_revision_status(value) -> RevisionStatus:
    return _parse_enum(RevisionStatus, value, {}, "status")


def parse_decision(value) -> RevisionDecision:
    return _parse_enum(RevisionDecision, value, _DECISION_ALIASES, "decision")


# ── Shape helpers ────────────────────────────────────────────────────────────

def unwrap(payload) -> list:
    """Return the list inside a bare list, ``$values``, ``values`` or ``data`` wrapper."""
    if not payload:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("$values", "values"):
            if isinstance(payload.get(key), list):
                return payload[key]
        if "data" in payload:
            return unwrap(payload["data"])
    return []


def first_of(raw: dict, *keys, default=None):
    """Value of the first key present (and not None) in ``raw``."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def as_id(value) -> str | None:
    """Stringify an identifier without trimming or case folding."""
    if value is None:
        return None
    return str(value)


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.lower() in ("1", "true", "yes")
    return bool(value)


def _parse_date_field(raw: dict, name: str, *keys) -> date | None:
    try:
        return parse_date_input(first_of(raw, *keys))
    except ValueError as exc:
        raise ValidationError(str(exc), details={name: "invalid date"}) from exc


# ── Records from payloads ────────────────────────────────────────────────────

def team_from_payload(audit_id: str, payload) -> list[TeamMember]:
    members = []
    for raw in unwrap(payload):
        user_id = as_id(first_of(raw, "userId", "user_id"))
        if user_id is None:
            raise ValidationError("Team member userId is required", details={"userId": "required"})
        members.append(TeamMember(
            audit_id=audit_id,
            user_id=user_id,
            role_in_team=parse_team_role(first_of(raw, "roleInTeam", "role_in_team", default="Auditor")),
            is_lead=_as_bool(first_of(raw, "isLead", "is_lead", default=False)),
        ))
    return members


def departments_from_payload(audit_id: str, payload) -> list[ScopeDepartment]:
    departments = []
    for raw in unwrap(payload):
        if not isinstance(raw, dict):
            raw = {"deptId": raw}
        dept_id = as_id(first_of(raw, "deptId", "dept_id", "departmentId"))
        if dept_id is None:
            raise ValidationError("Scope department deptId is required", details={"deptId": "required"})
        areas = first_of(raw, "sensitiveAreas", "sensitive_areas", default=[])
        if isinstance(areas, str):
            areas = [areas]
        areas = tuple(str(a) for a in unwrap(areas))
        departments.append(ScopeDepartment(
            audit_id=audit_id,
            dept_id=dept_id,
            dept_name=str(first_of(raw, "deptName", "dept_name", "name", default="")),
            sensitive_flag=_as_bool(first_of(raw, "sensitiveFlag", "sensitive_flag", default=bool(areas))),
            sensitive_areas=areas,
        ))
    return departments


@dataclass(frozen=True)
class PlanDraft:
    """Authoring input for a new (or edited) Draft plan."""

    title: str
    objective: str = ""
    scope: AuditScope = AuditScope.DEPARTMENT
    start_date: date | None = None
    end_date: date | None = None
    template_ids: frozenset[str] = field(default_factory=frozenset)
    team: tuple[TeamMember, ...] = ()
    departments: tuple[ScopeDepartment, ...] = ()


def plan_draft_from_payload(raw: dict, audit_id: str = "") -> PlanDraft:
    """Build a PlanDraft from a create-plan body.

    Team and department records carry ``audit_id`` (empty until the plan row
    exists; the gateway fills it in on insert).
    """
    if not isinstance(raw, dict):
        raise ValidationError("Request body must be a JSON object")
    title = str(first_of(raw, "title", default="")).strip()
    templates = first_of(raw, "templateIds", "template_ids", "checklistTemplateIds", default=[])
    return PlanDraft(
        title=title,
        objective=str(first_of(raw, "objective", default="")),
        scope=parse_scope(first_of(raw, "scope", "scopeLevel")),
        start_date=_parse_date_field(raw, "startDate", "startDate", "start_date"),
        end_date=_parse_date_field(raw, "endDate", "endDate", "end_date"),
        template_ids=frozenset(as_id(t) for t in unwrap(templates)),
        team=tuple(team_from_payload(audit_id, first_of(raw, "auditTeams", "team", default=[]))),
        departments=tuple(departments_from_payload(
            audit_id, first_of(raw, "scopeDepartments", "departments", "departmentIds", default=[]),
        )),
    )


def plan_changes_from_payload(raw: dict) -> dict:
    """Editable Draft fields present in an update body, keyed by record field name."""
    if not isinstance(raw, dict):
        raise ValidationError("Request body must be a JSON object")
    changes: dict = {}
    if "title" in raw:
        changes["title"] = str(raw["title"] or "").strip()
    if "objective" in raw:
        changes["objective"] = str(raw["objective"] or "")
    if any(k in raw for k in ("startDate", "start_date")):
        changes["start_date"] = _parse_date_field(raw, "startDate", "startDate", "start_date")
    if any(k in raw for k in ("endDate", "end_date")):
        changes["end_date"] = _parse_date_field(raw, "endDate", "endDate", "end_date")
    templates = first_of(raw, "templateIds", "template_ids", "checklistTemplateIds")
    if templates is not None:
        changes["template_ids"] = frozenset(as_id(t) for t in unwrap(templates))
    return changes
