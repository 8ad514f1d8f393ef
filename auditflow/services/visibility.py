"""
Visibility Policy — which plans an actor sees and which actions it may take.

Composed from the status engine (status + authorization checks), the team
roster and the scope registry.  Pure and total: the same plans, roster,
registry and actor always produce the same answer, with no clock or network
involved.  Every screen and endpoint asks this module instead of filtering
plans on its own.

Rules:
    Auditor        creator of the plan, or a member of its team
    LeadAuditor    lead (is_lead) of the plan's team
    Director       PendingDirectorApproval | Approved | InProgress | Rejected
    AuditeeOwner   Approved | InProgress, and the plan's scope covers the
                   actor's department (EntireOrganization covers all)
    System         everything

Usage:
    policy = VisibilityPolicy(roster, registry)
    plans = policy.visible_plans(all_plans, actor)
    actions = policy.allowed_actions(plan, actor)
"""

from __future__ import annotations

from collections.abc import Iterable

from auditflow.core.enums import ActorRole, PlanAction, PlanStatus, PUBLISHED_STATUSES
from auditflow.core.records import Actor, PlanRecord
from auditflow.services import status_engine
from auditflow.services.scope_registry import ScopeRegistry
from auditflow.services.team_roster import TeamRoster

DIRECTOR_VISIBLE_STATUSES = frozenset({
    PlanStatus.PENDING_DIRECTOR_APPROVAL,
    PlanStatus.APPROVED,
    PlanStatus.IN_PROGRESS,
    PlanStatus.REJECTED,
})


class VisibilityPolicy:
    """Stateless rules evaluated over an immutable roster and registry."""

    def __init__(self, roster: TeamRoster, registry: ScopeRegistry):
        self.roster = roster
        self.registry = registry

    # ── Visibility ───────────────────────────────────────────────────────

    def is_visible(self, plan: PlanRecord, actor: Actor) -> bool:
        role = actor.role
        if role == ActorRole.SYSTEM:
            return True
        if role == ActorRole.AUDITOR:
            return plan.created_by == actor.user_id or self.roster.is_member_of(plan.id, actor.user_id)
        if role == ActorRole.LEAD_AUDITOR:
            return self.roster.is_lead_of(plan.id, actor.user_id)
        if role == ActorRole.DIRECTOR:
            return plan.status in DIRECTOR_VISIBLE_STATUSES
        if role == ActorRole.AUDITEE_OWNER:
            return plan.status in PUBLISHED_STATUSES and self.registry.covers(plan, actor.department_id)
        return False

    def visible_plans(self, all_plans: Iterable[PlanRecord], actor: Actor) -> list[PlanRecord]:
        """Subset of ``all_plans`` the actor may see, in input order."""
        return [plan for plan in all_plans if self.is_visible(plan, actor)]

    # ── Actions ──────────────────────────────────────────────────────────

    def allowed_actions(self, plan: PlanRecord, actor: Actor) -> frozenset[PlanAction]:
        """Actions the actor may perform on the plan right now.

        A plan the actor cannot see offers no actions.  AuditeeOwner never
        gets a mutating action.  Payload requirements (e.g. a mandatory
        comment) are not part of this check; they are enforced when the
        action is applied.
        """
        if actor.role == ActorRole.AUDITEE_OWNER or not self.is_visible(plan, actor):
            return frozenset()
        return frozenset(
            action
            for action in status_engine.available_actions(plan)
            if status_engine.authorize(plan, action, actor, self.roster) is None
        )

    def can_act(self, plan: PlanRecord, actor: Actor, action: PlanAction) -> bool:
        return action in self.allowed_actions(plan, actor)
