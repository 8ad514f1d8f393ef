"""
Status Engine — the audit-plan lifecycle as a pure transition function.

8 actions over 8 statuses:

    SubmitToLead        Draft                    → PendingReview             Auditor (creator)
    ForwardToDirector   PendingReview            → PendingDirectorApproval   LeadAuditor (team lead)
    DeclineByLead       PendingReview            → Declined                  LeadAuditor (team lead)
    RequestRevision     PendingReview            → Draft                     LeadAuditor (team lead)
    ApproveByDirector   PendingDirectorApproval  → Approved                  Director
    RejectByDirector    PendingDirectorApproval  → Rejected                  Director
    BeginExecution      Approved                 → InProgress                System / Auditor on the plan
    ArchivePlan         InProgress|Declined|Rejected → Archived              System

The engine performs no I/O and never raises for business conditions: it
returns a ``TransitionOutcome`` carrying either the new record or the error.
Persisting the result is the caller's job.

Usage:
    from auditflow.services.status_engine import transition

    outcome = transition(plan, PlanAction.DECLINE_BY_LEAD, actor, roster,
                         {"comment": "incomplete scope"})
    if not outcome.ok:
        raise outcome.error
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone

from auditflow.core.enums import (
    ActorRole,
    PlanAction,
    PlanStatus,
    RejectedBy,
)
from auditflow.core.exceptions import (
    AuditFlowError,
    ForbiddenActor,
    InvalidTransition,
    ValidationError,
)
from auditflow.core.records import Actor, PlanRecord, Rejection
from auditflow.services.team_roster import TeamRoster

# Comment requirement per action: "none" | "optional" | "required"
PLAN_TRANSITIONS: dict[PlanAction, dict] = {
    PlanAction.SUBMIT_TO_LEAD: {
        "from": {PlanStatus.DRAFT}, "to": PlanStatus.PENDING_REVIEW, "comment": "none",
    },
    PlanAction.FORWARD_TO_DIRECTOR: {
        "from": {PlanStatus.PENDING_REVIEW}, "to": PlanStatus.PENDING_DIRECTOR_APPROVAL,
        "comment": "optional",
    },
    PlanAction.DECLINE_BY_LEAD: {
        "from": {PlanStatus.PENDING_REVIEW}, "to": PlanStatus.DECLINED, "comment": "required",
    },
    PlanAction.REQUEST_REVISION: {
        "from": {PlanStatus.PENDING_REVIEW}, "to": PlanStatus.DRAFT, "comment": "required",
    },
    PlanAction.APPROVE_BY_DIRECTOR: {
        "from": {PlanStatus.PENDING_DIRECTOR_APPROVAL}, "to": PlanStatus.APPROVED,
        "comment": "optional",
    },
    PlanAction.REJECT_BY_DIRECTOR: {
        "from": {PlanStatus.PENDING_DIRECTOR_APPROVAL}, "to": PlanStatus.REJECTED,
        "comment": "required",
    },
    PlanAction.BEGIN_EXECUTION: {
        "from": {PlanStatus.APPROVED}, "to": PlanStatus.IN_PROGRESS, "comment": "none",
    },
    PlanAction.ARCHIVE_PLAN: {
        "from": {PlanStatus.IN_PROGRESS, PlanStatus.DECLINED, PlanStatus.REJECTED},
        "to": PlanStatus.ARCHIVED, "comment": "none",
    },
}

# Only these two actions ever set a rejection.
_REJECTION_SOURCE = {
    PlanAction.DECLINE_BY_LEAD: RejectedBy.LEAD_AUDITOR,
    PlanAction.REJECT_BY_DIRECTOR: RejectedBy.DIRECTOR,
}

_LEAD_ACTIONS = frozenset({
    PlanAction.FORWARD_TO_DIRECTOR,
    PlanAction.DECLINE_BY_LEAD,
    PlanAction.REQUEST_REVISION,
})
_DIRECTOR_ACTIONS = frozenset({PlanAction.APPROVE_BY_DIRECTOR, PlanAction.REJECT_BY_DIRECTOR})


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of one transition attempt."""

    action: PlanAction
    previous_status: PlanStatus
    plan: PlanRecord | None = None
    comment: str | None = None
    error: AuditFlowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "action": self.action.value,
            "previous_status": self.previous_status.value,
            "new_status": self.plan.status.value if self.plan else None,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
        }


def check_status(plan: PlanRecord, action: PlanAction) -> InvalidTransition | None:
    """Return an InvalidTransition if ``action`` is not defined from the plan's status."""
    rule = PLAN_TRANSITIONS.get(action)
    if rule is None:
        return InvalidTransition(str(action), plan.status.value, "unknown action")
    if plan.status not in rule["from"]:
        return InvalidTransition(action.value, plan.status.value)
    return None


def authorize(plan: PlanRecord, action: PlanAction, actor: Actor,
              roster: TeamRoster) -> ForbiddenActor | None:
    """Return a ForbiddenActor if the actor may not perform ``action`` on this plan."""
    if action == PlanAction.SUBMIT_TO_LEAD:
        if actor.role != ActorRole.AUDITOR:
            return ForbiddenActor(actor.user_id, action.value, "only an Auditor may submit")
        if plan.created_by != actor.user_id:
            return ForbiddenActor(actor.user_id, action.value, "only the plan's creator may submit")
        return None

    if action in _LEAD_ACTIONS:
        if actor.role != ActorRole.LEAD_AUDITOR:
            return ForbiddenActor(actor.user_id, action.value, "requires LeadAuditor")
        if not roster.is_lead_of(plan.id, actor.user_id):
            return ForbiddenActor(actor.user_id, action.value, "not the lead of this plan's team")
        return None

    if action in _DIRECTOR_ACTIONS:
        if actor.role != ActorRole.DIRECTOR:
            return ForbiddenActor(actor.user_id, action.value, "requires Director")
        return None

    if action == PlanAction.BEGIN_EXECUTION:
        if actor.role == ActorRole.SYSTEM:
            return None
        if actor.role == ActorRole.AUDITOR and (
            plan.created_by == actor.user_id or roster.is_member_of(plan.id, actor.user_id)
        ):
            return None
        return ForbiddenActor(actor.user_id, action.value, "requires System or an Auditor on the plan")

    if action == PlanAction.ARCHIVE_PLAN:
        if actor.role != ActorRole.SYSTEM:
            return ForbiddenActor(actor.user_id, action.value, "requires System")
        return None

    return ForbiddenActor(actor.user_id, str(action), "unknown action")


def _clean_comment(payload: dict | None) -> str | None:
    raw = (payload or {}).get("comment")
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def transition(
    plan: PlanRecord,
    action: PlanAction,
    actor: Actor,
    roster: TeamRoster,
    payload: dict | None = None,
    *,
    now: datetime | None = None,
) -> TransitionOutcome:
    """
    Compute the result of applying ``action`` to ``plan``.

    Checks run in order: status (InvalidTransition), actor (ForbiddenActor),
    payload (ValidationError).  On success the returned plan carries the new
    status and a rejection set or cleared to match it.

    Args:
        plan: Snapshot the transition is computed against.
        action: PlanAction member.
        actor: Authenticated caller.
        roster: Team roster containing at least this plan's members.
        payload: Optional ``{"comment": str}``.
        now: Timestamp recorded on a rejection (defaults to current UTC time).
    """
    previous = plan.status

    error = check_status(plan, action)
    if error is None:
        error = authorize(plan, action, actor, roster)
    rule = PLAN_TRANSITIONS.get(action)
    comment = _clean_comment(payload)
    if error is None and rule["comment"] == "required" and not comment:
        error = ValidationError(
            f"A non-empty comment is required for '{action.value}'",
            details={"comment": "required"},
        )
    if error is not None:
        return TransitionOutcome(action=action, previous_status=previous, error=error)

    new_status = rule["to"]
    rejected_by = _REJECTION_SOURCE.get(action)
    if rejected_by is not None:
        rejection = Rejection(
            comment=comment,
            by=rejected_by,
            at=now or datetime.now(timezone.utc),
        )
    else:
        rejection = None

    new_plan = dataclasses.replace(plan, status=new_status, rejection=rejection)
    return TransitionOutcome(
        action=action,
        previous_status=previous,
        plan=new_plan,
        comment=comment if rule["comment"] != "none" else None,
    )


def available_actions(plan: PlanRecord) -> list[PlanAction]:
    """Actions defined for the plan's current status, regardless of actor."""
    return [action for action, rule in PLAN_TRANSITIONS.items() if plan.status in rule["from"]]
