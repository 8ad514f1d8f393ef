"""
History trail model.

Models:
    - AuditLog: immutable, append-only record of every plan lifecycle event,
      authoring change and revision-request resolution.
"""

import json
from datetime import UTC, datetime

from auditflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"audit_plan", "revision_request", "checklist_mark"}

AUDIT_ACTIONS = {
    # Plan lifecycle (one per PlanAction)
    "audit_plan.SubmitToLead",
    "audit_plan.ForwardToDirector",
    "audit_plan.DeclineByLead",
    "audit_plan.RequestRevision",
    "audit_plan.ApproveByDirector",
    "audit_plan.RejectByDirector",
    "audit_plan.BeginExecution",
    "audit_plan.ArchivePlan",
    # Authoring
    "audit_plan.create",
    "audit_plan.update",
    "audit_plan.team_amend",
    "audit_plan.scope_replace",
    "audit_plan.recreate",
    # Revision requests
    "revision_request.create",
    "revision_request.Approve",
    "revision_request.Reject",
    # Checklist
    "checklist_mark.set",
}


class AuditLog(db.Model):
    """
    Immutable history row for one lifecycle event.

    ``diff_json`` carries an old→new snapshot for field-level changes and the
    free-text comment attached to review decisions.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_log_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_log_actor", "actor"),
        db.Index("idx_audit_log_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="audit_plan | revision_request | checklist_mark",
    )
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(
        db.String(60), nullable=False,
        comment="audit_plan.ForwardToDirector | revision_request.Approve | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")
    actor_role = db.Column(db.String(30), nullable=True)

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_role": self.actor_role,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: str = "system",
    actor_role: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single history row.  Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back with the change
    it describes.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_role=actor_role,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
