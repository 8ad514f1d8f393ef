"""
Tests: audit plan and revision request HTTP API.

Covers authentication, the error envelope ({"error", "code", "details"}),
status-code mapping of the workflow exceptions and the main routes.
"""

import pytest

# ── Helpers ──────────────────────────────────────────────────────────────────

PLAN_BODY = {
    "title": "Payroll audit",
    "scope": "Department",
    "startDate": "2026-03-01",
    "endDate": "2026-03-31",
    "auditTeams": {"$values": [
        {"userId": "U1", "roleInTeam": "Auditor"},
        {"userId": "L1", "roleInTeam": "LeadAuditor", "isLead": True},
    ]},
    "scopeDepartments": [{"deptId": "D-FIN", "deptName": "Finance"}],
}


@pytest.fixture()
def hdr(auth_headers):
    return {
        "U1": auth_headers("U1", "Auditor"),
        "U2": auth_headers("U2", "Auditor"),
        "L1": auth_headers("L1", "LeadAuditor"),
        "D1": auth_headers("D1", "Director"),
        "O1": auth_headers("O1", "AuditeeOwner", dept_id="D-FIN"),
        "SYS": auth_headers("system", "System"),
    }


def _create(client, hdr, body=None):
    res = client.post("/api/v1/audit-plans", json=body or PLAN_BODY, headers=hdr["U1"])
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _act(client, headers, pid, action, **body):
    return client.post(f"/api/v1/audit-plans/{pid}/actions/{action}", json=body, headers=headers)


def _in_progress(client, hdr):
    plan = _create(client, hdr)
    for who, action in [("U1", "SubmitToLead"), ("L1", "ForwardToDirector"),
                        ("D1", "ApproveByDirector"), ("U1", "BeginExecution")]:
        res = _act(client, hdr[who], plan["id"], action)
        assert res.status_code == 200, res.get_json()
    return plan


# ── Auth & health ────────────────────────────────────────────────────────────


def test_health_needs_no_token(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_missing_token_is_401(client):
    res = client.get("/api/v1/audit-plans")
    assert res.status_code == 401
    assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"


def test_garbage_token_is_401(client):
    res = client.get("/api/v1/audit-plans", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


def test_revision_routes_need_token(client):
    assert client.get("/api/v1/revision-requests/my-requests").status_code == 401


# ── Plans ────────────────────────────────────────────────────────────────────


def test_create_and_list(client, hdr):
    plan = _create(client, hdr)
    assert plan["status"] == "Draft"
    assert plan["created_by"] == "U1"
    assert plan["start_date"] == "2026-03-01"

    mine = client.get("/api/v1/audit-plans", headers=hdr["U1"]).get_json()
    assert [p["id"] for p in mine] == [plan["id"]]
    assert client.get("/api/v1/audit-plans", headers=hdr["U2"]).get_json() == []
    assert client.get("/api/v1/audit-plans?status=Pending", headers=hdr["U1"]).get_json() == []


def test_create_validation_error_envelope(client, hdr):
    res = client.post("/api/v1/audit-plans", json={**PLAN_BODY, "scopeDepartments": []}, headers=hdr["U1"])
    assert res.status_code == 422
    body = res.get_json()
    assert body["code"] == "ERR_VALIDATION_RULE"
    assert body["details"] == {"scopeDepartments": "required"}


def test_create_forbidden_for_director(client, hdr):
    res = client.post("/api/v1/audit-plans", json=PLAN_BODY, headers=hdr["D1"])
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


def test_department_conflict_is_409(client, hdr):
    _create(client, hdr)
    res = client.post("/api/v1/audit-plans", json=PLAN_BODY, headers=hdr["U1"])
    assert res.status_code == 409
    assert res.get_json()["details"]["field"] == "deptId"


def test_plan_detail(client, hdr):
    plan = _create(client, hdr)
    res = client.get(f"/api/v1/audit-plans/{plan['id']}", headers=hdr["U1"])
    assert res.status_code == 200
    body = res.get_json()
    assert {m["user_id"] for m in body["team"]} == {"U1", "L1"}
    assert body["scope_departments"][0]["dept_name"] == "Finance"
    assert body["lead_user_id"] == "L1"
    assert body["allowed_actions"] == ["SubmitToLead"]


def test_invisible_plan_is_404(client, hdr):
    plan = _create(client, hdr)
    for who in ("U2", "D1", "O1"):
        res = client.get(f"/api/v1/audit-plans/{plan['id']}", headers=hdr[who])
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_update_draft(client, hdr):
    plan = _create(client, hdr)
    res = client.put(f"/api/v1/audit-plans/{plan['id']}", json={"objective": "Check payroll controls"},
                     headers=hdr["U1"])
    assert res.status_code == 200
    assert res.get_json()["objective"] == "Check payroll controls"


def test_allowed_actions_route(client, hdr):
    plan = _create(client, hdr)
    _act(client, hdr["U1"], plan["id"], "submit-to-lead")
    res = client.get(f"/api/v1/audit-plans/{plan['id']}/allowed-actions", headers=hdr["L1"])
    assert res.get_json()["allowed_actions"] == ["DeclineByLead", "ForwardToDirector", "RequestRevision"]


# ── Actions ──────────────────────────────────────────────────────────────────


def test_full_lifecycle_over_http(client, hdr):
    plan = _in_progress(client, hdr)
    res = client.get(f"/api/v1/audit-plans/{plan['id']}/history", headers=hdr["U1"])
    assert [h["action"] for h in res.get_json()][0] == "audit_plan.BeginExecution"

    visible = client.get("/api/v1/audit-plans", headers=hdr["O1"]).get_json()
    assert [p["id"] for p in visible] == [plan["id"]]

    res = _act(client, hdr["SYS"], plan["id"], "ArchivePlan")
    assert res.get_json()["status"] == "Archived"


def test_decline_requires_comment(client, hdr):
    plan = _create(client, hdr)
    _act(client, hdr["U1"], plan["id"], "SubmitToLead")
    res = _act(client, hdr["L1"], plan["id"], "DeclineByLead", comment="  ")
    assert res.status_code == 422
    assert res.get_json()["details"] == {"comment": "required"}

    res = _act(client, hdr["L1"], plan["id"], "DeclineByLead", comment="scope unclear")
    body = res.get_json()
    assert body["status"] == "Declined"
    assert body["rejection"]["by"] == "LeadAuditor"
    assert body["rejection"]["comment"] == "scope unclear"


def test_invalid_transition_is_409(client, hdr):
    plan = _create(client, hdr)
    res = _act(client, hdr["U1"], plan["id"], "ApproveByDirector")
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_INVALID_TRANSITION"
    assert body["details"]["current_status"] == "Draft"


def test_wrong_role_on_visible_plan_is_403(client, hdr):
    plan = _create(client, hdr)
    _act(client, hdr["U1"], plan["id"], "SubmitToLead")
    res = _act(client, hdr["U1"], plan["id"], "ForwardToDirector")
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


@pytest.mark.parametrize("who, action", [
    ("U2", "SubmitToLead"),
    ("D1", "ApproveByDirector"),
    ("O1", "ApproveByDirector"),
    ("O1", "ArchivePlan"),
])
def test_action_on_invisible_plan_is_404(client, hdr, who, action):
    plan = _create(client, hdr)
    res = _act(client, hdr[who], plan["id"], action, expected_status="Draft")
    assert res.status_code == 404
    body = res.get_json()
    assert body["code"] == "ERR_NOT_FOUND"
    assert "details" not in body
    assert "Draft" not in body["error"]

    detail = client.get(f"/api/v1/audit-plans/{plan['id']}", headers=hdr["U1"]).get_json()
    assert detail["status"] == "Draft"


def test_unknown_action_is_422(client, hdr):
    plan = _create(client, hdr)
    assert _act(client, hdr["U1"], plan["id"], "Teleport").status_code == 422


def test_stale_expected_status_is_409(client, hdr):
    plan = _create(client, hdr)
    _act(client, hdr["U1"], plan["id"], "SubmitToLead")
    _act(client, hdr["L1"], plan["id"], "ForwardToDirector")

    res = _act(client, hdr["L1"], plan["id"], "DeclineByLead", comment="late", expected_status="PendingReview")
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_CONCURRENT_MODIFICATION"
    assert body["details"]["current_status"] == "PendingDirectorApproval"


def test_unknown_plan_is_404(client, hdr):
    assert _act(client, hdr["U1"], "missing", "SubmitToLead").status_code == 404


def test_recreate_route(client, hdr):
    plan = _create(client, hdr)
    _act(client, hdr["U1"], plan["id"], "SubmitToLead")
    _act(client, hdr["L1"], plan["id"], "DeclineByLead", comment="no")
    res = client.post(f"/api/v1/audit-plans/{plan['id']}/recreate", headers=hdr["U1"])
    assert res.status_code == 201
    assert res.get_json()["revised_from_id"] == plan["id"]


def test_team_and_scope_routes(client, hdr):
    plan = _create(client, hdr)
    res = client.put(f"/api/v1/audit-plans/{plan['id']}/team", headers=hdr["U1"], json=[
        {"userId": "U1", "roleInTeam": "Auditor"},
        {"userId": "L2", "roleInTeam": "Lead Auditor", "isLead": True},
    ])
    assert res.status_code == 200
    assert {m["user_id"] for m in res.get_json()} == {"U1", "L2"}

    res = client.put(f"/api/v1/audit-plans/{plan['id']}/scope-departments", headers=hdr["U1"],
                     json={"scopeDepartments": ["D-IT", "D-HR"]})
    assert res.status_code == 200
    assert [d["dept_id"] for d in res.get_json()] == ["D-IT", "D-HR"]


@pytest.mark.parametrize("kwargs", [
    {},
    {"json": {"title": "no team here"}},
    {"data": "not json", "content_type": "text/plain"},
    {"json": {"auditTeams": "U1"}},
])
def test_team_route_requires_a_list(client, hdr, kwargs):
    plan = _create(client, hdr)
    res = client.put(f"/api/v1/audit-plans/{plan['id']}/team", headers=hdr["U1"], **kwargs)
    assert res.status_code == 400
    assert res.get_json()["details"] == {"auditTeams": "required"}

    detail = client.get(f"/api/v1/audit-plans/{plan['id']}", headers=hdr["U1"]).get_json()
    assert {m["user_id"] for m in detail["team"]} == {"U1", "L1"}


def test_scope_route_requires_a_list(client, hdr):
    plan = _create(client, hdr)
    res = client.put(f"/api/v1/audit-plans/{plan['id']}/scope-departments", headers=hdr["U1"], json={})
    assert res.status_code == 400
    assert res.get_json()["details"] == {"scopeDepartments": "required"}


def test_team_route_on_invisible_plan_is_404(client, hdr):
    plan = _create(client, hdr)
    res = client.put(f"/api/v1/audit-plans/{plan['id']}/team", headers=hdr["U2"],
                     json=[{"userId": "U2", "roleInTeam": "Auditor"}])
    assert res.status_code == 404


# ── Checklist & revision requests ────────────────────────────────────────────


def test_checklist_mark_route(client, hdr):
    plan = _in_progress(client, hdr)
    url = f"/api/v1/audit-plans/{plan['id']}/checklist-marks/I1"
    assert client.put(url, json={}, headers=hdr["U1"]).status_code == 400
    res = client.put(url, json={"isMarked": True}, headers=hdr["U1"])
    assert res.status_code == 200
    assert res.get_json()["is_marked"] is True

    marks = client.get(f"/api/v1/audit-plans/{plan['id']}/checklist-marks", headers=hdr["L1"]).get_json()
    assert marks == [{"item_id": "I1", "audit_id": plan["id"], "is_marked": True}]


def test_revision_request_flow(client, hdr):
    plan = _in_progress(client, hdr)
    client.put(f"/api/v1/audit-plans/{plan['id']}/checklist-marks/I1", json={"isMarked": True},
               headers=hdr["U1"])

    res = client.post("/api/v1/revision-requests", json={"auditId": plan["id"], "comment": "extend"},
                      headers=hdr["L1"])
    assert res.status_code == 201
    req = res.get_json()
    assert req["status"] == "Pending"

    dup = client.post("/api/v1/revision-requests", json={"auditId": plan["id"]}, headers=hdr["L1"])
    assert dup.status_code == 409
    assert dup.get_json()["details"]["pending_request_id"] == req["id"]

    pending = client.get("/api/v1/revision-requests/pending-for-director", headers=hdr["D1"]).get_json()
    assert [r["id"] for r in pending] == [req["id"]]
    assert client.get("/api/v1/revision-requests/pending-for-director", headers=hdr["L1"]).status_code == 403

    mine = client.get("/api/v1/revision-requests/my-requests", headers=hdr["L1"]).get_json()
    assert [r["id"] for r in mine] == [req["id"]]

    res = client.put(f"/api/v1/revision-requests/{req['id']}/approve", json={"comment": "granted"},
                     headers=hdr["D1"])
    assert res.status_code == 200
    body = res.get_json()
    assert body["status"] == "Approved"
    assert body["unmarked_item_ids"] == ["I1"]

    again = client.put(f"/api/v1/revision-requests/{req['id']}/reject", headers=hdr["D1"])
    assert again.status_code == 409

    by_audit = client.get(f"/api/v1/revision-requests/audit/{plan['id']}", headers=hdr["U1"]).get_json()
    assert [r["status"] for r in by_audit] == ["Approved"]
    url = f"/api/v1/revision-requests/audit/{plan['id']}"
    assert client.get(f"{url}?status=Pending", headers=hdr["U1"]).get_json() == []
    assert client.get(f"{url}?status=Bogus", headers=hdr["U1"]).status_code == 422
    approved = client.get("/api/v1/revision-requests/my-requests?status=Approved", headers=hdr["L1"]).get_json()
    assert [r["id"] for r in approved] == [req["id"]]
    assert client.get(f"/api/v1/revision-requests/{req['id']}", headers=hdr["U2"]).status_code == 404


def test_revision_request_requires_audit_id(client, hdr):
    res = client.post("/api/v1/revision-requests", json={}, headers=hdr["L1"])
    assert res.status_code == 400
    assert res.get_json()["details"] == {"auditId": "required"}
