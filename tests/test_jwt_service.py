"""
Tests: JWT service and actor context — token claims to Actor.
"""

import jwt
import pytest
from flask import current_app

from auditflow.core.enums import ActorRole
from auditflow.services.jwt_service import (
    actor_from_claims,
    decode_access_token,
    generate_access_token,
)


def test_round_trip_carries_role_and_department():
    actor = actor_from_claims(decode_access_token(generate_access_token("O1", "AuditeeOwner", "D-FIN")))
    assert actor.user_id == "O1"
    assert actor.role == ActorRole.AUDITEE_OWNER
    assert actor.department_id == "D-FIN"


def test_numeric_claims_become_string_ids():
    actor = actor_from_claims({"sub": 42, "role": "AuditeeOwner", "dept_id": 7})
    assert actor.user_id == "42"
    assert actor.department_id == "7"


def test_missing_department_stays_none():
    assert actor_from_claims({"sub": "U1", "role": "Auditor"}).department_id is None


@pytest.mark.parametrize("claims", [
    {"sub": "U1", "role": "Superuser"},
    {"sub": "", "role": "Auditor"},
    {"role": "Auditor"},
])
def test_bad_claims_are_invalid_tokens(claims):
    with pytest.raises(jwt.InvalidTokenError):
        actor_from_claims(claims)


def test_non_access_token_is_rejected():
    token = jwt.encode({"sub": "U1", "role": "Auditor", "type": "refresh"},
                       current_app.config["JWT_SECRET_KEY"], algorithm="HS256")
    with pytest.raises(jwt.InvalidTokenError):
        decode_access_token(token)


def test_numeric_department_claim_sees_published_plan(client, auth_headers):
    """A token minted elsewhere with an integer dept_id still matches stored ids."""
    body = {
        "title": "Payroll audit",
        "auditTeams": [
            {"userId": "U1", "roleInTeam": "Auditor"},
            {"userId": "L1", "roleInTeam": "LeadAuditor", "isLead": True},
        ],
        "scopeDepartments": ["7"],
    }
    plan = client.post("/api/v1/audit-plans", json=body, headers=auth_headers("U1", "Auditor")).get_json()
    for who, role, action in [("U1", "Auditor", "SubmitToLead"), ("L1", "LeadAuditor", "ForwardToDirector"),
                              ("D1", "Director", "ApproveByDirector")]:
        res = client.post(f"/api/v1/audit-plans/{plan['id']}/actions/{action}", json={},
                          headers=auth_headers(who, role))
        assert res.status_code == 200, res.get_json()

    token = jwt.encode({"sub": "O7", "role": "AuditeeOwner", "dept_id": 7, "type": "access"},
                       current_app.config["JWT_SECRET_KEY"], algorithm="HS256")
    visible = client.get("/api/v1/audit-plans", headers={"Authorization": f"Bearer {token}"}).get_json()
    assert [p["id"] for p in visible] == [plan["id"]]
