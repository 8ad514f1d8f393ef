"""
Tests: normalization adapter — raw payload shapes into enums and records.
"""

from datetime import date

import pytest

from auditflow.core.enums import AuditScope, PlanAction, PlanStatus, RevisionDecision, TeamRole
from auditflow.core.exceptions import ValidationError
from auditflow.services.normalization import (
    departments_from_payload,
    parse_action,
    parse_decision,
    parse_plan_status,
    parse_scope,
    parse_team_role,
    plan_changes_from_payload,
    plan_draft_from_payload,
    team_from_payload,
    unwrap,
)


@pytest.mark.parametrize("raw,expected", [
    ("Draft", PlanStatus.DRAFT),
    ("PendingReview", PlanStatus.PENDING_REVIEW),
    ("Pending", PlanStatus.PENDING_REVIEW),
    ("Pending Director Approval", PlanStatus.PENDING_DIRECTOR_APPROVAL),
    ("In Progress", PlanStatus.IN_PROGRESS),
    ("Declined Plan", PlanStatus.DECLINED),
    (PlanStatus.ARCHIVED, PlanStatus.ARCHIVED),
])
def test_parse_plan_status_aliases(raw, expected):
    assert parse_plan_status(raw) is expected


@pytest.mark.parametrize("raw", ["draft", "Approved ", "Closed", ""])
def test_parse_plan_status_rejects_unknown(raw):
    with pytest.raises(ValidationError):
        parse_plan_status(raw)


def test_parse_plan_status_requires_value():
    with pytest.raises(ValidationError) as exc:
        parse_plan_status(None)
    assert exc.value.details == {"status": "required"}


@pytest.mark.parametrize("raw,expected", [
    ("ForwardToDirector", PlanAction.FORWARD_TO_DIRECTOR),
    ("forward-to-director", PlanAction.FORWARD_TO_DIRECTOR),
    ("approve-plan", PlanAction.APPROVE_BY_DIRECTOR),
    ("archive-plan", PlanAction.ARCHIVE_PLAN),
])
def test_parse_action(raw, expected):
    assert parse_action(raw) is expected


def test_parse_scope_defaults_to_department():
    assert parse_scope(None) is AuditScope.DEPARTMENT
    assert parse_scope("academy") is AuditScope.ENTIRE_ORGANIZATION
    assert parse_scope("EntireOrganization") is AuditScope.ENTIRE_ORGANIZATION


def test_parse_team_role_and_decision():
    assert parse_team_role("Lead Auditor") is TeamRole.LEAD_AUDITOR
    assert parse_decision("approve") is RevisionDecision.APPROVE
    assert parse_decision("Reject") is RevisionDecision.REJECT
    with pytest.raises(ValidationError):
        parse_decision("maybe")


@pytest.mark.parametrize("payload,expected", [
    (None, []),
    ([1, 2], [1, 2]),
    ({"$values": [1]}, [1]),
    ({"values": [2]}, [2]),
    ({"data": {"$values": [3]}}, [3]),
    ({"other": 1}, []),
])
def test_unwrap(payload, expected):
    assert unwrap(payload) == expected


def test_team_from_payload_keeps_ids_verbatim():
    members = team_from_payload("A1", {"$values": [
        {"userId": " U1", "roleInTeam": "Auditor"},
        {"user_id": 42, "roleInTeam": "LeadAuditor", "isLead": "true"},
    ]})
    assert [m.user_id for m in members] == [" U1", "42"]
    assert members[1].is_lead is True
    assert all(m.audit_id == "A1" for m in members)


def test_team_from_payload_requires_user_id():
    with pytest.raises(ValidationError):
        team_from_payload("A1", [{"roleInTeam": "Auditor"}])


def test_departments_from_payload_accepts_bare_ids_and_objects():
    depts = departments_from_payload("A1", [
        "D-FIN",
        {"deptId": "D-IT", "deptName": "IT", "sensitiveAreas": {"$values": ["Access"]}},
    ])
    assert [d.dept_id for d in depts] == ["D-FIN", "D-IT"]
    assert depts[0].sensitive_flag is False
    assert depts[1].sensitive_flag is True
    assert depts[1].sensitive_areas == ("Access",)


def test_plan_draft_from_payload():
    draft = plan_draft_from_payload({
        "title": "  Payroll audit ",
        "scope": "Department",
        "startDate": "01.03.2026",
        "endDate": "2026-03-31",
        "templateIds": ["T1", 2],
        "auditTeams": [{"userId": "L1", "roleInTeam": "LeadAuditor", "isLead": True}],
        "scopeDepartments": ["D-FIN"],
    })
    assert draft.title == "Payroll audit"
    assert draft.start_date == date(2026, 3, 1)
    assert draft.end_date == date(2026, 3, 31)
    assert draft.template_ids == {"T1", "2"}
    assert draft.team[0].is_lead
    assert draft.departments[0].dept_id == "D-FIN"


def test_plan_draft_rejects_bad_date():
    with pytest.raises(ValidationError) as exc:
        plan_draft_from_payload({"title": "x", "startDate": "31/02/2026"})
    assert exc.value.details == {"startDate": "invalid date"}


def test_plan_changes_only_include_present_fields():
    changes = plan_changes_from_payload({"title": " New ", "endDate": "2026-04-30"})
    assert changes == {"title": "New", "end_date": date(2026, 4, 30)}
    assert plan_changes_from_payload({}) == {}
