"""
Shared pytest fixtures for the audit plan workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context + table recreate (autouse)
    - client: Flask test client (function-scoped)
    - auth_headers: Bearer header factory for a user/role
    - events: captured plan-changed events for the duration of a test
    - revision_events: captured revision-request events
"""

import pytest

from auditflow import create_app
from auditflow.models import db as _db
from auditflow.services import plan_events
from auditflow.services.jwt_service import generate_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def auth_headers():
    """Return a factory: auth_headers("U1", "Auditor", dept_id=None) -> headers dict."""

    def _make(user_id, role, dept_id=None):
        token = generate_access_token(user_id, role, dept_id)
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture()
def events():
    """Collect every plan-changed event published during the test."""
    received = []

    def _receiver(plan_id, **event):
        received.append({"plan_id": plan_id, **event})

    plan_events.subscribe(_receiver)
    yield received
    plan_events.unsubscribe(_receiver)


@pytest.fixture()
def revision_events():
    """Collect every revision-request event published during the test."""
    received = []

    def _receiver(audit_id, **event):
        received.append({"audit_id": audit_id, **event})

    plan_events.subscribe_revisions(_receiver)
    yield received
    plan_events.unsubscribe_revisions(_receiver)
