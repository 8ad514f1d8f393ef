"""
Audit Plan Service — the entry point UI and automation callers use.

Wires the pure core (status engine, visibility policy, roster, registry)
to the persistence gateway:

    1. VisibilityPolicy answers "is this plan / action offered to the actor".
    2. The status engine validates the action and computes the new record.
    3. The authoritative status is re-read and the write is issued with the
       status it was computed against (optimistic concurrency).
    4. Only after a confirmed commit is a plan-changed event published.

Also owns Draft authoring (create, edit, team and scope changes, re-creation
of declined/rejected plans), checklist marks and the revision-request queries.

Entry points that take a plan id resolve it through the visibility policy
first: a plan the actor may not see raises NotFoundError, never a status or
permission error.  ``apply_action`` works on a snapshot the caller already
holds, so its refusals come from the status engine.

Usage:
    from auditflow.services.audit_plan_service import AuditPlanService

    svc = AuditPlanService.from_app()
    plans = svc.visible_plans_for(actor)
    plan = svc.apply_action(plan, actor, "ForwardToDirector", {"comment": "ok"})
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import date

from flask import current_app, has_app_context

from auditflow.core.enums import (
    ActorRole,
    AuditScope,
    LIVE_STATUSES,
    PlanAction,
    PlanStatus,
    REJECTION_STATUSES,
    RevisionStatus,
)
from auditflow.core.exceptions import (
    ConcurrentModification,
    ConflictError,
    ForbiddenActor,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from auditflow.core.records import (
    Actor,
    ChecklistItemMark,
    PlanRecord,
    RevisionRequest,
    ScopeDepartment,
    TeamMember,
)
from auditflow.services import plan_events, status_engine
from auditflow.services.normalization import PlanDraft, parse_action, parse_decision
from auditflow.services.plan_gateway import PlanGateway, SqlPlanGateway
from auditflow.services.revision_workflow import RevisionRequestWorkflow
from auditflow.services.scope_registry import ScopeRegistry
from auditflow.services.team_roster import TeamRoster, validate_team
from auditflow.services.visibility import VisibilityPolicy

logger = logging.getLogger(__name__)

DEFAULT_MAX_AUDITS_PER_PERIOD = 5

_TEAM_EDITABLE_AFTER_APPROVAL = frozenset({PlanStatus.APPROVED, PlanStatus.IN_PROGRESS})


def _overlaps(a: PlanRecord, start, end) -> bool:
    if not (a.start_date and a.end_date and start and end):
        return False
    return a.start_date <= end and start <= a.end_date


def _jsonable(value):
    if isinstance(value, frozenset):
        return sorted(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class AuditPlanService:
    """Facade over the audit-plan lifecycle."""

    def __init__(
        self,
        gateway: PlanGateway | None = None,
        *,
        max_audits_per_period: int = DEFAULT_MAX_AUDITS_PER_PERIOD,
        enforce_department_uniqueness: bool = True,
    ):
        self.gateway = gateway or SqlPlanGateway()
        self.revisions = RevisionRequestWorkflow(self.gateway)
        self.max_audits_per_period = max_audits_per_period
        self.enforce_department_uniqueness = enforce_department_uniqueness

    @classmethod
    def from_app(cls, gateway: PlanGateway | None = None) -> AuditPlanService:
        """Build a service configured from the current Flask app's config."""
        cfg = current_app.config if has_app_context() else {}
        return cls(
            gateway,
            max_audits_per_period=cfg.get("MAX_AUDITS_PER_PERIOD", DEFAULT_MAX_AUDITS_PER_PERIOD),
            enforce_department_uniqueness=cfg.get("ENFORCE_DEPARTMENT_UNIQUENESS", True),
        )

    # ── Policy context ───────────────────────────────────────────────────

    def _policy(self, audit_id: str | None = None) -> VisibilityPolicy:
        roster = TeamRoster(self.gateway.fetch_team(audit_id))
        registry = ScopeRegistry(self.gateway.fetch_scope_departments(audit_id))
        return VisibilityPolicy(roster, registry)

    def _visible_plan(self, plan_id: str, actor: Actor) -> PlanRecord:
        """Fetch a plan the actor may see; invisible plans are reported as missing."""
        plan = self.gateway.fetch_plan(plan_id)
        if not self._policy(plan_id).is_visible(plan, actor):
            raise NotFoundError(resource="AuditPlan", resource_id=plan_id)
        return plan

    # ── Exposed core operations ──────────────────────────────────────────

    def visible_plans_for(self, actor: Actor) -> list[PlanRecord]:
        return self._policy().visible_plans(self.gateway.fetch_plans(), actor)

    def allowed_actions(self, plan: PlanRecord, actor: Actor) -> frozenset[PlanAction]:
        return self._policy(plan.id).allowed_actions(plan, actor)

    def can_act(self, plan: PlanRecord, actor: Actor, action) -> bool:
        try:
            parsed = parse_action(action)
        except ValidationError:
            return False
        return parsed in self.allowed_actions(plan, actor)

    def refresh(self, plan_id: str) -> PlanRecord:
        """Authoritative current state of a plan."""
        return self.gateway.fetch_plan(plan_id)

    def get_plan(self, plan_id: str, actor: Actor) -> PlanRecord:
        return self._visible_plan(plan_id, actor)

    def apply_action(self, plan: PlanRecord, actor: Actor, action, payload: dict | None = None) -> PlanRecord:
        """
        Validate ``action`` against ``plan`` and commit it.

        ``plan`` is the snapshot the caller acted on.  If the stored status no
        longer matches it, nothing is written.

        Raises:
            InvalidTransition, ForbiddenActor, ValidationError,
            ConcurrentModification, NotFoundError
        """
        parsed = parse_action(action)
        roster = TeamRoster(self.gateway.fetch_team(plan.id))
        outcome = status_engine.transition(plan, parsed, actor, roster, payload)
        if not outcome.ok:
            logger.info(
                "Transition refused: %s",
                outcome.error,
                extra={"plan_id": plan.id, "actor_id": actor.user_id, "action": parsed.value},
            )
            raise outcome.error

        authoritative = self.gateway.fetch_plan(plan.id)
        if authoritative.status != plan.status:
            raise ConcurrentModification(plan.id, plan.status.value, authoritative.status.value)

        new_plan = outcome.plan
        diff = {"status": {"old": plan.status.value, "new": new_plan.status.value}}
        if outcome.comment:
            diff["comment"] = outcome.comment
        committed = self.gateway.commit_transition(
            plan.id, plan.status, new_plan.status, new_plan.rejection,
            audit={
                "action": f"audit_plan.{parsed.value}",
                "actor": actor.user_id,
                "actor_role": actor.role.value,
                "diff": diff,
            },
        )
        logger.info(
            "Plan %s: %s -> %s",
            plan.id, plan.status.value, committed.status.value,
            extra={"plan_id": plan.id, "actor_id": actor.user_id, "action": parsed.value},
        )
        plan_events.publish_plan_changed(
            committed, event=parsed.value, actor_id=actor.user_id, comment=outcome.comment,
        )
        return committed

    def plan_detail(self, plan_id: str, actor: Actor) -> dict:
        """Read-only bundle for a plan detail view."""
        plan = self._visible_plan(plan_id, actor)
        policy = self._policy(plan_id)
        return {
            "plan": plan,
            "team": list(policy.roster.members_of(plan_id)),
            "lead": policy.roster.lead_of(plan_id),
            "departments": list(policy.registry.departments_of(plan_id)),
            "checklist_marks": self.gateway.fetch_checklist_marks(plan_id),
            "revision_requests": self.gateway.fetch_revision_requests(audit_id=plan_id),
            "allowed_actions": sorted(a.value for a in policy.allowed_actions(plan, actor)),
        }

    def plan_history(self, plan_id: str, actor: Actor) -> list[dict]:
        self._visible_plan(plan_id, actor)
        return self.gateway.fetch_plan_history(plan_id)

    # ── Authoring ────────────────────────────────────────────────────────

    def _check_schedule(self, start, end, scope: AuditScope, dept_ids: frozenset[str],
                        exclude_plan_id: str | None = None) -> None:
        """Date order, per-period plan limit and department uniqueness."""
        if start and end and start > end:
            raise ValidationError("startDate must not be after endDate",
                                  details={"startDate": str(start), "endDate": str(end)})
        if not (start and end):
            return

        overlapping = [
            p for p in self.gateway.fetch_plans()
            if p.id != exclude_plan_id and p.status in LIVE_STATUSES and _overlaps(p, start, end)
        ]
        if len(overlapping) >= self.max_audits_per_period:
            raise ConflictError(
                "AuditPlan", "period", f"{start}..{end}",
                message=f"Maximum {self.max_audits_per_period} audits allowed in period "
                        f"{start} to {end}. Current count: {len(overlapping)}.",
            )

        if not self.enforce_department_uniqueness or scope != AuditScope.DEPARTMENT:
            return
        for other in overlapping:
            clash = dept_ids & frozenset(d.dept_id for d in self.gateway.fetch_scope_departments(other.id))
            if clash:
                raise ConflictError(
                    "AuditScopeDepartment", "deptId", ", ".join(sorted(clash)),
                    message=f"Department(s) {', '.join(sorted(clash))} already in scope of "
                            f"'{other.title}' in an overlapping period",
                )

    @staticmethod
    def _check_scope(scope: AuditScope, departments) -> None:
        if scope == AuditScope.DEPARTMENT and not departments:
            raise ValidationError("A Department-scoped plan needs at least one department",
                                  details={"scopeDepartments": "required"})
        seen: set[str] = set()
        for d in departments:
            if d.dept_id in seen:
                raise ValidationError(f"Department {d.dept_id} listed more than once",
                                      details={"deptId": d.dept_id})
            seen.add(d.dept_id)

    def create_plan(self, actor: Actor, draft: PlanDraft, *, revised_from_id: str | None = None) -> PlanRecord:
        """Create a Draft plan with its team and scope departments (Auditor only)."""
        if actor.role != ActorRole.AUDITOR:
            raise ForbiddenActor(actor.user_id, "CreatePlan", "only an Auditor may create plans")
        if not draft.title:
            raise ValidationError("title is required", details={"title": "required"})
        self._check_scope(draft.scope, draft.departments)
        validate_team(draft.team)
        self._check_schedule(
            draft.start_date, draft.end_date, draft.scope,
            frozenset(d.dept_id for d in draft.departments),
        )

        plan = PlanRecord(
            id="",
            title=draft.title,
            objective=draft.objective,
            scope=draft.scope,
            status=PlanStatus.DRAFT,
            created_by=actor.user_id,
            start_date=draft.start_date,
            end_date=draft.end_date,
            template_ids=draft.template_ids,
            revised_from_id=revised_from_id,
        )
        created = self.gateway.create_plan(
            plan, draft.team, draft.departments,
            audit={
                "action": "audit_plan.recreate" if revised_from_id else "audit_plan.create",
                "actor": actor.user_id,
                "actor_role": actor.role.value,
                "diff": {"title": draft.title, "revised_from_id": revised_from_id},
            },
        )
        logger.info("Plan created", extra={"plan_id": created.id, "actor_id": actor.user_id})
        plan_events.publish_plan_changed(created, event="created", actor_id=actor.user_id)
        return created

    def _draft_owned_by(self, plan_id: str, actor: Actor, operation: str) -> PlanRecord:
        plan = self._visible_plan(plan_id, actor)
        if actor.role != ActorRole.AUDITOR or plan.created_by != actor.user_id:
            raise ForbiddenActor(actor.user_id, operation, "only the plan's creator may edit it")
        if plan.status != PlanStatus.DRAFT:
            raise InvalidTransition(operation, plan.status.value, "plans are editable only in Draft")
        return plan

    def update_draft(self, actor: Actor, plan_id: str, changes: dict) -> PlanRecord:
        plan = self._draft_owned_by(plan_id, actor, "UpdatePlan")
        if "title" in changes and not changes["title"]:
            raise ValidationError("title is required", details={"title": "required"})
        if not changes:
            return plan
        proposed = dataclasses.replace(plan, **changes)
        if (proposed.start_date, proposed.end_date) != (plan.start_date, plan.end_date):
            self._check_schedule(
                proposed.start_date, proposed.end_date, proposed.scope,
                frozenset(d.dept_id for d in self.gateway.fetch_scope_departments(plan_id)),
                exclude_plan_id=plan_id,
            )
        diff = {
            key: {"old": _jsonable(getattr(plan, key)), "new": _jsonable(value)}
            for key, value in changes.items()
            if getattr(plan, key) != value
        }
        updated = self.gateway.update_plan_fields(
            plan_id, plan.status, changes,
            audit={"action": "audit_plan.update", "actor": actor.user_id,
                   "actor_role": actor.role.value, "diff": diff},
        )
        plan_events.publish_plan_changed(updated, event="updated", actor_id=actor.user_id)
        return updated

    def replace_scope_departments(self, actor: Actor, plan_id: str,
                                  departments: list[ScopeDepartment]) -> list[ScopeDepartment]:
        plan = self._draft_owned_by(plan_id, actor, "ReplaceScopeDepartments")
        departments = [dataclasses.replace(d, audit_id=plan_id) for d in departments]
        self._check_scope(plan.scope, departments)
        self._check_schedule(
            plan.start_date, plan.end_date, plan.scope,
            frozenset(d.dept_id for d in departments),
            exclude_plan_id=plan_id,
        )
        result = self.gateway.replace_scope_departments(
            plan_id, plan.status, departments,
            audit={"action": "audit_plan.scope_replace", "actor": actor.user_id,
                   "actor_role": actor.role.value,
                   "diff": {"dept_ids": [d.dept_id for d in departments]}},
        )
        plan_events.publish_plan_changed(plan, event="scope_replaced", actor_id=actor.user_id)
        return result

    def _has_approved_revision(self, plan_id: str) -> bool:
        return bool(self.gateway.fetch_revision_requests(audit_id=plan_id, status=RevisionStatus.APPROVED))

    def amend_team(self, actor: Actor, plan_id: str, members: list[TeamMember]) -> list[TeamMember]:
        """
        Replace a plan's team.

        Draft: the creator may edit freely.  Approved/InProgress: allowed only
        once a revision request on the plan has been approved, for the plan's
        lead auditor or a Director.
        """
        plan = self._visible_plan(plan_id, actor)
        roster = TeamRoster(self.gateway.fetch_team(plan_id))
        if plan.status == PlanStatus.DRAFT:
            if actor.role != ActorRole.AUDITOR or plan.created_by != actor.user_id:
                raise ForbiddenActor(actor.user_id, "AmendTeam", "only the plan's creator may edit a Draft team")
        elif plan.status in _TEAM_EDITABLE_AFTER_APPROVAL:
            if not self._has_approved_revision(plan_id):
                raise InvalidTransition("AmendTeam", plan.status.value,
                                        "team changes after approval need an approved revision request")
            is_lead = actor.role == ActorRole.LEAD_AUDITOR and roster.is_lead_of(plan_id, actor.user_id)
            if not (is_lead or actor.role == ActorRole.DIRECTOR):
                raise ForbiddenActor(actor.user_id, "AmendTeam", "requires the plan's lead auditor or a Director")
        else:
            raise InvalidTransition("AmendTeam", plan.status.value)

        members = [dataclasses.replace(m, audit_id=plan_id) for m in members]
        validate_team(members)
        result = self.gateway.replace_team(
            plan_id, plan.status, members,
            audit={
                "action": "audit_plan.team_amend",
                "actor": actor.user_id,
                "actor_role": actor.role.value,
                "diff": {
                    "old": [m.user_id for m in roster.members_of(plan_id)],
                    "new": [m.user_id for m in members],
                },
            },
        )
        plan_events.publish_plan_changed(plan, event="team_amended", actor_id=actor.user_id)
        return result

    def recreate_from(self, actor: Actor, plan_id: str) -> PlanRecord:
        """Start a new Draft from a Declined/Rejected plan; the source is left untouched."""
        source = self._visible_plan(plan_id, actor)
        if source.status not in REJECTION_STATUSES:
            raise InvalidTransition("Recreate", source.status.value,
                                    "only Declined or Rejected plans can be re-created")
        if actor.role != ActorRole.AUDITOR or source.created_by != actor.user_id:
            raise ForbiddenActor(actor.user_id, "Recreate", "only the plan's creator may re-create it")
        draft = PlanDraft(
            title=source.title,
            objective=source.objective,
            scope=source.scope,
            start_date=source.start_date,
            end_date=source.end_date,
            template_ids=source.template_ids,
            team=tuple(self.gateway.fetch_team(plan_id)),
            departments=tuple(self.gateway.fetch_scope_departments(plan_id)),
        )
        return self.create_plan(actor, draft, revised_from_id=source.id)

    # ── Checklist marks ──────────────────────────────────────────────────

    def checklist_marks(self, actor: Actor, plan_id: str) -> list[ChecklistItemMark]:
        self._visible_plan(plan_id, actor)
        return self.gateway.fetch_checklist_marks(plan_id)

    def set_checklist_mark(self, actor: Actor, plan_id: str, item_id: str, is_marked: bool) -> ChecklistItemMark:
        plan = self._visible_plan(plan_id, actor)
        roster = TeamRoster(self.gateway.fetch_team(plan_id))
        on_plan = plan.created_by == actor.user_id or roster.is_member_of(plan_id, actor.user_id)
        if actor.role not in (ActorRole.AUDITOR, ActorRole.LEAD_AUDITOR) or not on_plan:
            raise ForbiddenActor(actor.user_id, "SetChecklistMark", "requires an auditor on the plan")
        if plan.status != PlanStatus.IN_PROGRESS:
            raise InvalidTransition("SetChecklistMark", plan.status.value,
                                    "checklist items are marked during execution")
        return self.gateway.set_checklist_mark(
            item_id, is_marked, audit_id=plan_id,
            audit={"action": "checklist_mark.set", "actor": actor.user_id,
                   "actor_role": actor.role.value,
                   "diff": {"audit_id": plan_id, "is_marked": bool(is_marked)}},
        )

    # ── Revision requests ────────────────────────────────────────────────

    def request_revision(self, actor: Actor, audit_id: str, comment: str | None = None) -> RevisionRequest:
        self._visible_plan(audit_id, actor)
        return self.revisions.create(audit_id, actor, comment)

    def resolve_revision(self, actor: Actor, request_id: str, decision,
                         comment: str | None = None) -> tuple[RevisionRequest, tuple[str, ...]]:
        return self.revisions.resolve(request_id, parse_decision(decision), actor, comment)

    def get_revision_request(self, actor: Actor, request_id: str) -> RevisionRequest:
        request = self.gateway.fetch_revision_request(request_id)
        if actor.role != ActorRole.DIRECTOR:
            try:
                self._visible_plan(request.audit_id, actor)
            except NotFoundError:
                raise NotFoundError(resource="RevisionRequest", resource_id=request_id) from None
        return request

    def revision_requests_for_audit(self, actor: Actor, audit_id: str) -> list[RevisionRequest]:
        self._visible_plan(audit_id, actor)
        return self.gateway.fetch_revision_requests(audit_id=audit_id)

    def my_revision_requests(self, actor: Actor) -> list[RevisionRequest]:
        return self.gateway.fetch_revision_requests(requested_by=actor.user_id)

    def pending_for_director(self, actor: Actor) -> list[RevisionRequest]:
        if actor.role != ActorRole.DIRECTOR:
            raise ForbiddenActor(actor.user_id, "ListPendingRevisionRequests", "requires Director")
        return self.gateway.fetch_revision_requests(status=RevisionStatus.PENDING)
