"""
Revision Request Blueprint — extension/revision requests on in-progress plans.

Routes:
  POST   /revision-requests                        – lead auditor raises a request
  GET    /revision-requests/<rid>                  – one request
  GET    /revision-requests/audit/<audit_id>       – requests of one plan
  GET    /revision-requests/my-requests            – requests raised by the caller
  GET    /revision-requests/pending-for-director   – all Pending requests (Director)
  PUT    /revision-requests/<rid>/approve          – Director approves
  PUT    /revision-requests/<rid>/reject           – Director rejects

The per-plan and my-requests lists take an optional
``?status=Pending|Approved|Rejected`` filter.
"""

from flask import Blueprint, g, jsonify, request

from auditflow.core.enums import RevisionDecision
from auditflow.services.audit_plan_service import AuditPlanService
from auditflow.services.normalization import as_id, first_of, parse_revision_status
from auditflow.utils.errors import E, api_error, register_error_handlers

revision_request_bp = Blueprint("revision_request_bp", __name__, url_prefix="/api/v1/revision-requests")
register_error_handlers(revision_request_bp)


@revision_request_bp.before_request
def _require_actor():
    if g.get("actor") is None:
        return api_error(E.UNAUTHENTICATED, "Authentication required")
    return None


def _svc() -> AuditPlanService:
    return AuditPlanService.from_app()


def _filtered(requests_):
    status = request.args.get("status")
    if status:
        wanted = parse_revision_status(status)
        requests_ = [r for r in requests_ if r.status == wanted]
    return jsonify([r.to_dict() for r in requests_])


@revision_request_bp.route("", methods=["POST"])
def create_request():
    """Body: { auditId, comment? }"""
    data = request.get_json(silent=True) or {}
    audit_id = as_id(first_of(data, "auditId", "audit_id", "id"))
    if not audit_id:
        return api_error(E.VALIDATION_REQUIRED, "auditId is required", details={"auditId": "required"})
    req = _svc().request_revision(g.actor, audit_id, data.get("comment"))
    return jsonify(req.to_dict()), 201


@revision_request_bp.route("/my-requests", methods=["GET"])
def my_requests():
    return _filtered(_svc().my_revision_requests(g.actor))


@revision_request_bp.route("/pending-for-director", methods=["GET"])
def pending_for_director():
    return jsonify([r.to_dict() for r in _svc().pending_for_director(g.actor)])


@revision_request_bp.route("/audit/<audit_id>", methods=["GET"])
def requests_for_audit(audit_id):
    return _filtered(_svc().revision_requests_for_audit(g.actor, audit_id))


@revision_request_bp.route("/<rid>", methods=["GET"])
def get_request(rid):
    return jsonify(_svc().get_revision_request(g.actor, rid).to_dict())


def _resolve(rid, decision: RevisionDecision):
    data = request.get_json(silent=True) or {}
    comment = first_of(data, "comment", "responseComment")
    resolved, unmarked = _svc().resolve_revision(g.actor, rid, decision, comment)
    return jsonify({**resolved.to_dict(), "unmarked_item_ids": list(unmarked),
                    "unmarked_count": len(unmarked)})


@revision_request_bp.route("/<rid>/approve", methods=["PUT"])
def approve_request(rid):
    return _resolve(rid, RevisionDecision.APPROVE)


@revision_request_bp.route("/<rid>/reject", methods=["PUT"])
def reject_request(rid):
    return _resolve(rid, RevisionDecision.REJECT)
