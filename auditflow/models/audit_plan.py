"""
Audit plan domain tables.

Models:
    - AuditPlan: the plan record and its lifecycle status.
    - AuditTeamMember: per-plan roster (single lead per plan).
    - AuditScopeDepartment: departments in scope, with sensitive areas.
    - RevisionRequest: extension/revision requests raised during execution.
    - ChecklistItemMark: "under extension consideration" flag per checklist item.

Status columns hold the canonical enum values only.  Rows are turned into
immutable records (``auditflow.core.records``) by ``to_record``; business
logic never works on ORM instances directly.
"""

import uuid
from datetime import datetime, timezone

from auditflow.core.enums import (
    AuditScope,
    PlanStatus,
    RejectedBy,
    RevisionStatus,
    TeamRole,
)
from auditflow.core.records import (
    ChecklistItemMark as ChecklistItemMarkRecord,
    PlanRecord,
    Rejection,
    RevisionRequest as RevisionRequestRecord,
    ScopeDepartment as ScopeDepartmentRecord,
    TeamMember as TeamMemberRecord,
)
from auditflow.models import db

__all__ = [
    "AuditPlan",
    "AuditTeamMember",
    "AuditScopeDepartment",
    "RevisionRequest",
    "ChecklistItemMark",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# AuditPlan
# ═════════════════════════════════════════════════════════════════════════════

class AuditPlan(db.Model):
    """
    Audit plan.  Never physically deleted: terminal plans are archived, and a
    declined/rejected plan is revised by creating a new Draft that points back
    through ``revised_from_id``.

    Invariant: the rejection_* columns are set iff status is Declined or
    Rejected (enforced by the status engine, not the database).
    """

    __tablename__ = "audit_plans"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(255), nullable=False)
    objective = db.Column(db.Text, nullable=False, default="")
    scope = db.Column(
        db.String(30), nullable=False, default=AuditScope.DEPARTMENT.value,
        comment="Department | EntireOrganization",
    )
    status = db.Column(
        db.String(40), nullable=False, default=PlanStatus.DRAFT.value, index=True,
        comment="Draft | PendingReview | PendingDirectorApproval | Approved | InProgress | "
                "Declined | Rejected | Archived",
    )
    created_by = db.Column(db.String(64), nullable=False, index=True)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    template_ids = db.Column(db.JSON, nullable=False, default=list)

    rejection_comment = db.Column(db.Text, nullable=True)
    rejection_by = db.Column(db.String(20), nullable=True, comment="LeadAuditor | Director")
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    revised_from_id = db.Column(
        db.String(36),
        db.ForeignKey("audit_plans.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    team_members = db.relationship(
        "AuditTeamMember", backref="plan", lazy="select", cascade="all, delete-orphan",
    )
    scope_departments = db.relationship(
        "AuditScopeDepartment", backref="plan", lazy="select", cascade="all, delete-orphan",
    )

    def to_record(self) -> PlanRecord:
        rejection = None
        if self.rejection_by:
            rejection = Rejection(
                comment=self.rejection_comment or "",
                by=RejectedBy(self.rejection_by),
                at=self.rejected_at,
            )
        return PlanRecord(
            id=self.id,
            title=self.title,
            objective=self.objective or "",
            scope=AuditScope(self.scope),
            status=PlanStatus(self.status),
            created_by=self.created_by,
            start_date=self.start_date,
            end_date=self.end_date,
            rejection=rejection,
            template_ids=frozenset(str(t) for t in (self.template_ids or [])),
            revised_from_id=self.revised_from_id,
        )

    def __repr__(self):
        return f"<AuditPlan {self.id} [{self.status}] {self.title!r}>"


# ═════════════════════════════════════════════════════════════════════════════
# Team & scope
# ═════════════════════════════════════════════════════════════════════════════

class AuditTeamMember(db.Model):
    """One user on one plan's team.  At most one row per plan has is_lead."""

    __tablename__ = "audit_team_members"
    __table_args__ = (
        db.UniqueConstraint("audit_id", "user_id", name="uq_team_member_per_audit"),
        db.Index(
            "uq_single_lead_per_audit", "audit_id", unique=True,
            sqlite_where=db.text("is_lead"),
            postgresql_where=db.text("is_lead"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.String(36),
        db.ForeignKey("audit_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(db.String(64), nullable=False, index=True)
    role_in_team = db.Column(db.String(20), nullable=False, comment="Auditor | LeadAuditor | AuditeeOwner")
    is_lead = db.Column(db.Boolean, nullable=False, default=False)

    def to_record(self) -> TeamMemberRecord:
        return TeamMemberRecord(
            audit_id=self.audit_id,
            user_id=self.user_id,
            role_in_team=TeamRole(self.role_in_team),
            is_lead=bool(self.is_lead),
        )


class AuditScopeDepartment(db.Model):
    """Department in a plan's scope."""

    __tablename__ = "audit_scope_departments"
    __table_args__ = (
        db.UniqueConstraint("audit_id", "dept_id", name="uq_scope_dept_per_audit"),
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.String(36),
        db.ForeignKey("audit_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    dept_id = db.Column(db.String(64), nullable=False, index=True)
    dept_name = db.Column(db.String(255), nullable=False, default="")
    sensitive_flag = db.Column(db.Boolean, nullable=False, default=False)
    sensitive_areas = db.Column(db.JSON, nullable=False, default=list, comment="Ordered list of area names")

    def to_record(self) -> ScopeDepartmentRecord:
        return ScopeDepartmentRecord(
            audit_id=self.audit_id,
            dept_id=self.dept_id,
            dept_name=self.dept_name or "",
            sensitive_flag=bool(self.sensitive_flag),
            sensitive_areas=tuple(self.sensitive_areas or ()),
        )


# ═════════════════════════════════════════════════════════════════════════════
# Revision requests & checklist marks
# ═════════════════════════════════════════════════════════════════════════════

class RevisionRequest(db.Model):
    """
    Extension/revision request on an in-progress plan.

    The partial unique index keeps at most one Pending request per audit even
    when two sessions race past the service-level check.
    """

    __tablename__ = "revision_requests"
    __table_args__ = (
        db.Index(
            "uq_pending_revision_per_audit", "audit_id", unique=True,
            sqlite_where=db.text("status = 'Pending'"),
            postgresql_where=db.text("status = 'Pending'"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    audit_id = db.Column(
        db.String(36),
        db.ForeignKey("audit_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_by = db.Column(db.String(64), nullable=False, index=True)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    status = db.Column(db.String(20), nullable=False, default=RevisionStatus.PENDING.value)
    comment = db.Column(db.Text, nullable=False, default="")
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    responded_by = db.Column(db.String(64), nullable=True)
    response_comment = db.Column(db.Text, nullable=True)

    def to_record(self) -> RevisionRequestRecord:
        return RevisionRequestRecord(
            id=self.id,
            audit_id=self.audit_id,
            requested_by=self.requested_by,
            requested_at=self.requested_at,
            status=RevisionStatus(self.status),
            comment=self.comment or "",
            responded_at=self.responded_at,
            responded_by=self.responded_by,
            response_comment=self.response_comment,
        )


class ChecklistItemMark(db.Model):
    """Mark on a checklist item; cleared in bulk when a revision request resolves."""

    __tablename__ = "checklist_item_marks"

    item_id = db.Column(db.String(36), primary_key=True)
    audit_id = db.Column(
        db.String(36),
        db.ForeignKey("audit_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_marked = db.Column(db.Boolean, nullable=False, default=False)

    def to_record(self) -> ChecklistItemMarkRecord:
        return ChecklistItemMarkRecord(
            item_id=self.item_id,
            audit_id=self.audit_id,
            is_marked=bool(self.is_marked),
        )
