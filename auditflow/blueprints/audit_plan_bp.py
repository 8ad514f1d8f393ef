"""
Audit Plan Blueprint — plan authoring, lifecycle actions and read views.

Routes:
  GET    /audit-plans                                  – plans visible to the caller
  POST   /audit-plans                                  – create a Draft plan
  GET    /audit-plans/<pid>                            – plan detail (team, scope, marks, requests)
  PUT    /audit-plans/<pid>                            – edit Draft fields
  GET    /audit-plans/<pid>/allowed-actions            – actions offered to the caller
  POST   /audit-plans/<pid>/actions/<action>           – apply a lifecycle action
  GET    /audit-plans/<pid>/history                    – history trail (newest first)
  PUT    /audit-plans/<pid>/team                       – replace the team
  PUT    /audit-plans/<pid>/scope-departments          – replace the scope departments
  POST   /audit-plans/<pid>/recreate                   – new Draft from a Declined/Rejected plan
  GET    /audit-plans/<pid>/checklist-marks            – checklist marks
  PUT    /audit-plans/<pid>/checklist-marks/<item_id>  – mark / unmark a checklist item

Every route needs an authenticated actor (``g.actor``, set by the actor
middleware).  Plans the caller may not see answer 404.
"""

import dataclasses
import logging

from flask import Blueprint, g, jsonify, request

from auditflow.services.audit_plan_service import AuditPlanService
from auditflow.services.normalization import (
    departments_from_payload,
    first_of,
    parse_plan_status,
    plan_changes_from_payload,
    plan_draft_from_payload,
    team_from_payload,
)
from auditflow.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

audit_plan_bp = Blueprint("audit_plan_bp", __name__, url_prefix="/api/v1")
register_error_handlers(audit_plan_bp)


# ── helpers ──────────────────────────────────────────────────────────────

@audit_plan_bp.before_request
def _require_actor():
    if g.get("actor") is None:
        return api_error(E.UNAUTHENTICATED, "Authentication required")
    return None


def _svc() -> AuditPlanService:
    return AuditPlanService.from_app()


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _detail_dict(detail: dict) -> dict:
    return {
        **detail["plan"].to_dict(),
        "team": [m.to_dict() for m in detail["team"]],
        "lead_user_id": detail["lead"].user_id if detail["lead"] else None,
        "scope_departments": [d.to_dict() for d in detail["departments"]],
        "checklist_marks": [m.to_dict() for m in detail["checklist_marks"]],
        "revision_requests": [r.to_dict() for r in detail["revision_requests"]],
        "allowed_actions": detail["allowed_actions"],
    }


# ═════════════════════════════════════════════════════════════════════════════
# PLANS
# ═════════════════════════════════════════════════════════════════════════════

@audit_plan_bp.route("/audit-plans", methods=["GET"])
def list_plans():
    """Plans visible to the caller; optional ``?status=`` filter."""
    plans = _svc().visible_plans_for(g.actor)
    status = request.args.get("status")
    if status:
        wanted = parse_plan_status(status)
        plans = [p for p in plans if p.status == wanted]
    return jsonify([p.to_dict() for p in plans])


@audit_plan_bp.route("/audit-plans", methods=["POST"])
def create_plan():
    """Create a Draft plan.

    Body: { title, objective?, scope?, startDate?, endDate?, templateIds?,
            auditTeams: [{userId, roleInTeam, isLead}], scopeDepartments: [...] }
    """
    draft = plan_draft_from_payload(_body())
    plan = _svc().create_plan(g.actor, draft)
    return jsonify(plan.to_dict()), 201


@audit_plan_bp.route("/audit-plans/<pid>", methods=["GET"])
def get_plan(pid):
    return jsonify(_detail_dict(_svc().plan_detail(pid, g.actor)))


@audit_plan_bp.route("/audit-plans/<pid>", methods=["PUT"])
def update_plan(pid):
    plan = _svc().update_draft(g.actor, pid, plan_changes_from_payload(_body()))
    return jsonify(plan.to_dict())


@audit_plan_bp.route("/audit-plans/<pid>/allowed-actions", methods=["GET"])
def allowed_actions(pid):
    svc = _svc()
    plan = svc.get_plan(pid, g.actor)
    actions = svc.allowed_actions(plan, g.actor)
    return jsonify({"plan_id": pid, "status": plan.status.value,
                    "allowed_actions": sorted(a.value for a in actions)})


@audit_plan_bp.route("/audit-plans/<pid>/actions/<action>", methods=["POST"])
def apply_action(pid, action):
    """Apply a lifecycle action.

    Body: { comment?, expected_status? }
    ``expected_status`` is the status the caller's view showed; when it is
    stale the request fails with 409 and nothing is written.  Plans the
    caller may not see answer 404 before any transition check runs.
    """
    data = _body()
    svc = _svc()
    plan = svc.get_plan(pid, g.actor)
    expected = first_of(data, "expected_status", "expectedStatus")
    if expected is not None:
        plan = dataclasses.replace(plan, status=parse_plan_status(expected))
    updated = svc.apply_action(plan, g.actor, action, {"comment": data.get("comment")})
    return jsonify(updated.to_dict())


@audit_plan_bp.route("/audit-plans/<pid>/history", methods=["GET"])
def plan_history(pid):
    return jsonify(_svc().plan_history(pid, g.actor))


# ═════════════════════════════════════════════════════════════════════════════
# TEAM / SCOPE / RECREATE
# ═════════════════════════════════════════════════════════════════════════════

def _list_body(*keys):
    """The list sent as the whole body or under one of ``keys``; None when absent."""
    data = request.get_json(silent=True)
    raw = first_of(data, *keys) if isinstance(data, dict) else data
    if isinstance(raw, dict) and ("$values" in raw or "values" in raw):
        return raw
    return raw if isinstance(raw, list) else None


@audit_plan_bp.route("/audit-plans/<pid>/team", methods=["PUT"])
def replace_team(pid):
    """Body: { auditTeams: [{userId, roleInTeam, isLead}] } or a bare list."""
    raw = _list_body("auditTeams", "team")
    if raw is None:
        return api_error(E.VALIDATION_REQUIRED, "auditTeams (list) is required",
                         details={"auditTeams": "required"})
    members = _svc().amend_team(g.actor, pid, team_from_payload(pid, raw))
    return jsonify([m.to_dict() for m in members])


@audit_plan_bp.route("/audit-plans/<pid>/scope-departments", methods=["PUT"])
def replace_scope_departments(pid):
    """Body: { scopeDepartments: [...] } or a bare list of departments / ids."""
    raw = _list_body("scopeDepartments", "departments", "departmentIds")
    if raw is None:
        return api_error(E.VALIDATION_REQUIRED, "scopeDepartments (list) is required",
                         details={"scopeDepartments": "required"})
    departments = _svc().replace_scope_departments(g.actor, pid, departments_from_payload(pid, raw))
    return jsonify([d.to_dict() for d in departments])


@audit_plan_bp.route("/audit-plans/<pid>/recreate", methods=["POST"])
def recreate_plan(pid):
    plan = _svc().recreate_from(g.actor, pid)
    return jsonify(plan.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════════
# CHECKLIST MARKS
# ═════════════════════════════════════════════════════════════════════════════

@audit_plan_bp.route("/audit-plans/<pid>/checklist-marks", methods=["GET"])
def list_checklist_marks(pid):
    return jsonify([m.to_dict() for m in _svc().checklist_marks(g.actor, pid)])


@audit_plan_bp.route("/audit-plans/<pid>/checklist-marks/<item_id>", methods=["PUT"])
def set_checklist_mark(pid, item_id):
    """Body: { isMarked: bool }"""
    data = _body()
    is_marked = first_of(data, "isMarked", "is_marked")
    if not isinstance(is_marked, bool):
        return api_error(E.VALIDATION_REQUIRED, "isMarked (boolean) is required",
                         details={"isMarked": "required"})
    mark = _svc().set_checklist_mark(g.actor, pid, item_id, is_marked)
    return jsonify(mark.to_dict())
