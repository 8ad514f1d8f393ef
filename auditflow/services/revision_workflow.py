"""
Revision Request Workflow — extension/revision requests on in-progress plans.

    create   Lead auditor of an InProgress plan raises a request.
             At most one Pending request per audit (DuplicatePending).
    resolve  Director approves or rejects a Pending request.  The status
             change and the bulk unmark of the audit's checklist items are
             committed as one unit by the gateway.

Pending → Approved | Rejected; both are terminal.

Usage:
    workflow = RevisionRequestWorkflow(SqlPlanGateway())
    req = workflow.create(plan_id, lead_actor, "need two more weeks for evidence")
    resolved, unmarked = workflow.resolve(req.id, RevisionDecision.APPROVE, director, "ok")
"""

from __future__ import annotations

import logging

from auditflow.core.enums import ActorRole, PlanStatus, RevisionDecision, RevisionStatus
from auditflow.core.exceptions import (
    DuplicatePending,
    ForbiddenActor,
    InvalidTransition,
)
from auditflow.core.records import Actor, RevisionRequest
from auditflow.services import plan_events
from auditflow.services.plan_gateway import PlanGateway
from auditflow.services.team_roster import TeamRoster

logger = logging.getLogger(__name__)

_DECISION_LABEL = {
    RevisionDecision.APPROVE: RevisionStatus.APPROVED.value,
    RevisionDecision.REJECT: RevisionStatus.REJECTED.value,
}


class RevisionRequestWorkflow:
    """Create and resolve revision requests through a PlanGateway."""

    def __init__(self, gateway: PlanGateway):
        self.gateway = gateway

    def pending_for(self, audit_id: str) -> RevisionRequest | None:
        pending = self.gateway.fetch_revision_requests(audit_id=audit_id, status=RevisionStatus.PENDING)
        return pending[0] if pending else None

    def create(self, audit_id: str, requested_by: Actor, comment: str | None = None) -> RevisionRequest:
        """
        Raise a revision request for an InProgress plan.

        Raises:
            NotFoundError: unknown plan.
            InvalidTransition: the plan is not InProgress.
            ForbiddenActor: the requester is not the plan's lead auditor.
            DuplicatePending: a Pending request already exists for the audit.
        """
        plan = self.gateway.fetch_plan(audit_id)
        if plan.status != PlanStatus.IN_PROGRESS:
            raise InvalidTransition("CreateRevisionRequest", plan.status.value,
                                    "revision requests are raised during execution")
        roster = TeamRoster(self.gateway.fetch_team(audit_id))
        if requested_by.role != ActorRole.LEAD_AUDITOR or not roster.is_lead_of(audit_id, requested_by.user_id):
            raise ForbiddenActor(requested_by.user_id, "CreateRevisionRequest",
                                 "only the plan's lead auditor may request a revision")

        existing = self.pending_for(audit_id)
        if existing is not None:
            raise DuplicatePending(audit_id, existing.id)

        text = (comment or "").strip()
        request = self.gateway.insert_revision_request(
            audit_id, requested_by.user_id, text,
            audit={
                "action": "revision_request.create",
                "actor": requested_by.user_id,
                "actor_role": requested_by.role.value,
                "diff": {"audit_id": audit_id, "comment": text},
            },
        )
        logger.info(
            "Revision request created",
            extra={"plan_id": audit_id, "actor_id": requested_by.user_id, "action": "revision_request.create"},
        )
        plan_events.publish_revision_changed(request, event="created")
        return request

    def resolve(self, request_id: str, decision: RevisionDecision, responder: Actor,
                comment: str | None = None) -> tuple[RevisionRequest, tuple[str, ...]]:
        """
        Approve or reject a Pending request and clear the audit's checklist marks.

        Returns:
            (resolved request, ids of checklist items that were unmarked)

        Raises:
            ForbiddenActor: responder is not a Director.
            NotFoundError: unknown request.
            InvalidTransition: the request already left Pending.
        """
        if responder.role != ActorRole.DIRECTOR:
            raise ForbiddenActor(responder.user_id, f"{decision.value}RevisionRequest",
                                 "only a Director may resolve revision requests")
        current = self.gateway.fetch_revision_request(request_id)
        if current.status != RevisionStatus.PENDING:
            raise InvalidTransition(decision.value, current.status.value,
                                    "revision request is no longer pending")

        text = (comment or "").strip() or None
        resolution = self.gateway.commit_revision_resolution(
            request_id, decision, text, responder.user_id,
            audit={
                "action": f"revision_request.{decision.value}",
                "actor": responder.user_id,
                "actor_role": responder.role.value,
                "diff": {"status": {"old": current.status.value, "new": _DECISION_LABEL[decision]}, "comment": text},
            },
        )
        logger.info(
            "Revision request %s %s; %d checklist item(s) unmarked",
            request_id, resolution.request.status.value, resolution.unmarked_count,
            extra={"plan_id": current.audit_id, "actor_id": responder.user_id},
        )
        plan_events.publish_revision_changed(
            resolution.request, event="resolved", unmarked_count=resolution.unmarked_count,
        )
        return resolution.request, resolution.unmarked_item_ids
