"""
Tests: Visibility Policy — who sees which plan and which actions are offered.
"""

import pytest

from auditflow.core.enums import ActorRole, AuditScope, PlanAction, PlanStatus, TeamRole
from auditflow.core.records import Actor, PlanRecord, ScopeDepartment, TeamMember
from auditflow.services.scope_registry import ScopeRegistry
from auditflow.services.team_roster import TeamRoster
from auditflow.services.visibility import DIRECTOR_VISIBLE_STATUSES, VisibilityPolicy

# ── Helpers ──────────────────────────────────────────────────────────────────

U1 = Actor("U1", ActorRole.AUDITOR)
U2 = Actor("U2", ActorRole.AUDITOR)
U3 = Actor("U3", ActorRole.AUDITOR)
L1 = Actor("L1", ActorRole.LEAD_AUDITOR)
L2 = Actor("L2", ActorRole.LEAD_AUDITOR)
D1 = Actor("D1", ActorRole.DIRECTOR)
O_FIN = Actor("O1", ActorRole.AUDITEE_OWNER, department_id="D-FIN")
O_HR = Actor("O2", ActorRole.AUDITEE_OWNER, department_id="D-HR")
O_NONE = Actor("O3", ActorRole.AUDITEE_OWNER)


def _plan(pid, status, created_by="U1", scope=AuditScope.DEPARTMENT) -> PlanRecord:
    return PlanRecord(id=pid, title=f"Plan {pid}", status=status, created_by=created_by, scope=scope)


def _policy() -> VisibilityPolicy:
    roster = TeamRoster([
        TeamMember("P1", "U1", TeamRole.AUDITOR),
        TeamMember("P1", "U2", TeamRole.AUDITOR),
        TeamMember("P1", "L1", TeamRole.LEAD_AUDITOR, is_lead=True),
        TeamMember("P1", "L2", TeamRole.LEAD_AUDITOR),
        TeamMember("P2", "L2", TeamRole.LEAD_AUDITOR, is_lead=True),
    ])
    registry = ScopeRegistry([
        ScopeDepartment("P1", "D-FIN", "Finance"),
        ScopeDepartment("P2", "D-HR", "Human Resources", sensitive_flag=True, sensitive_areas=("Payroll",)),
    ])
    return VisibilityPolicy(roster, registry)


# ── Visibility ───────────────────────────────────────────────────────────────


def test_auditor_sees_created_and_member_plans_only():
    policy = _policy()
    p1 = _plan("P1", PlanStatus.DRAFT)
    p2 = _plan("P2", PlanStatus.DRAFT, created_by="U3")
    assert policy.is_visible(p1, U1)
    assert policy.is_visible(p1, U2)           # team member
    assert not policy.is_visible(p2, U1)
    assert policy.is_visible(p2, U3)           # creator, not on team
    assert not policy.is_visible(p1, U3)


def test_lead_auditor_sees_only_plans_they_lead():
    policy = _policy()
    p1 = _plan("P1", PlanStatus.PENDING_REVIEW)
    assert policy.is_visible(p1, L1)
    assert not policy.is_visible(p1, L2)       # member with lead role but not the lead
    assert policy.is_visible(_plan("P2", PlanStatus.DRAFT), L2)


@pytest.mark.parametrize("status", list(PlanStatus))
def test_director_visibility_by_status(status):
    assert _policy().is_visible(_plan("P1", status), D1) is (status in DIRECTOR_VISIBLE_STATUSES)


@pytest.mark.parametrize("status,visible", [
    (PlanStatus.DRAFT, False),
    (PlanStatus.PENDING_REVIEW, False),
    (PlanStatus.PENDING_DIRECTOR_APPROVAL, False),
    (PlanStatus.APPROVED, True),
    (PlanStatus.IN_PROGRESS, True),
    (PlanStatus.DECLINED, False),
    (PlanStatus.REJECTED, False),
    (PlanStatus.ARCHIVED, False),
])
def test_auditee_owner_sees_published_plans_covering_their_department(status, visible):
    policy = _policy()
    assert policy.is_visible(_plan("P1", status), O_FIN) is visible
    assert not policy.is_visible(_plan("P1", status), O_HR)


def test_entire_organization_covers_every_department():
    policy = _policy()
    plan = _plan("P9", PlanStatus.APPROVED, scope=AuditScope.ENTIRE_ORGANIZATION)
    assert policy.is_visible(plan, O_FIN)
    assert policy.is_visible(plan, O_HR)
    assert not policy.is_visible(plan, O_NONE)


def test_system_sees_everything():
    policy = _policy()
    assert all(policy.is_visible(_plan("PX", s), Actor.system()) for s in PlanStatus)


def test_visible_plans_keeps_input_order_and_is_deterministic():
    policy = _policy()
    plans = [
        _plan("P2", PlanStatus.APPROVED, created_by="U3"),
        _plan("P1", PlanStatus.IN_PROGRESS),
        _plan("P3", PlanStatus.DRAFT, created_by="U1"),
    ]
    first = policy.visible_plans(plans, U1)
    assert [p.id for p in first] == ["P1", "P3"]
    assert policy.visible_plans(plans, U1) == first
    assert [p.id for p in policy.visible_plans(plans, D1)] == ["P2", "P1"]


# ── Allowed actions ──────────────────────────────────────────────────────────


def test_lead_gets_review_actions_on_pending_review():
    actions = _policy().allowed_actions(_plan("P1", PlanStatus.PENDING_REVIEW), L1)
    assert actions == {
        PlanAction.FORWARD_TO_DIRECTOR, PlanAction.DECLINE_BY_LEAD, PlanAction.REQUEST_REVISION,
    }


def test_director_gets_decision_actions():
    actions = _policy().allowed_actions(_plan("P1", PlanStatus.PENDING_DIRECTOR_APPROVAL), D1)
    assert actions == {PlanAction.APPROVE_BY_DIRECTOR, PlanAction.REJECT_BY_DIRECTOR}


def test_creator_gets_submit_on_draft():
    policy = _policy()
    assert policy.allowed_actions(_plan("P1", PlanStatus.DRAFT), U1) == {PlanAction.SUBMIT_TO_LEAD}
    assert policy.allowed_actions(_plan("P1", PlanStatus.DRAFT), U2) == frozenset()


def test_auditor_on_team_may_begin_execution():
    assert _policy().allowed_actions(_plan("P1", PlanStatus.APPROVED), U2) == {PlanAction.BEGIN_EXECUTION}


def test_director_gets_nothing_on_approved_plan():
    assert _policy().allowed_actions(_plan("P1", PlanStatus.APPROVED), D1) == frozenset()


def test_auditee_owner_never_gets_actions():
    policy = _policy()
    for status in PlanStatus:
        assert policy.allowed_actions(_plan("P1", status), O_FIN) == frozenset()


def test_invisible_plan_offers_no_actions():
    policy = _policy()
    assert policy.allowed_actions(_plan("P1", PlanStatus.PENDING_REVIEW), L2) == frozenset()
    assert not policy.can_act(_plan("P1", PlanStatus.PENDING_REVIEW), L2, PlanAction.FORWARD_TO_DIRECTOR)


def test_can_act_matches_allowed_actions():
    policy = _policy()
    plan = _plan("P1", PlanStatus.PENDING_REVIEW)
    for action in PlanAction:
        assert policy.can_act(plan, L1, action) is (action in policy.allowed_actions(plan, L1))
