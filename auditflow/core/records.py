"""
Immutable records the core reasons about.

These are snapshots handed out by the persistence gateway.  Nothing in the
core mutates them: transitions return a new ``PlanRecord`` via
``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from auditflow.core.enums import (
    ActorRole,
    AuditScope,
    PlanStatus,
    RejectedBy,
    RevisionStatus,
    TeamRole,
)


@dataclass(frozen=True)
class Rejection:
    comment: str
    by: RejectedBy
    at: datetime

    def to_dict(self) -> dict:
        return {
            "comment": self.comment,
            "by": self.by.value,
            "at": self.at.isoformat() if self.at else None,
        }


@dataclass(frozen=True)
class PlanRecord:
    """Canonical audit plan snapshot."""

    id: str
    title: str
    status: PlanStatus
    created_by: str
    scope: AuditScope = AuditScope.DEPARTMENT
    objective: str = ""
    start_date: date | None = None
    end_date: date | None = None
    rejection: Rejection | None = None
    template_ids: frozenset[str] = field(default_factory=frozenset)
    revised_from_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "objective": self.objective,
            "scope": self.scope.value,
            "status": self.status.value,
            "created_by": self.created_by,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "rejection": self.rejection.to_dict() if self.rejection else None,
            "template_ids": sorted(self.template_ids),
            "revised_from_id": self.revised_from_id,
        }


@dataclass(frozen=True)
class TeamMember:
    audit_id: str
    user_id: str
    role_in_team: TeamRole
    is_lead: bool = False

    def to_dict(self) -> dict:
        return {
            "audit_id": self.audit_id,
            "user_id": self.user_id,
            "role_in_team": self.role_in_team.value,
            "is_lead": self.is_lead,
        }


@dataclass(frozen=True)
class ScopeDepartment:
    audit_id: str
    dept_id: str
    dept_name: str = ""
    sensitive_flag: bool = False
    sensitive_areas: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "audit_id": self.audit_id,
            "dept_id": self.dept_id,
            "dept_name": self.dept_name,
            "sensitive_flag": self.sensitive_flag,
            "sensitive_areas": list(self.sensitive_areas),
        }


@dataclass(frozen=True)
class RevisionRequest:
    id: str
    audit_id: str
    requested_by: str
    requested_at: datetime
    status: RevisionStatus = RevisionStatus.PENDING
    comment: str = ""
    responded_at: datetime | None = None
    responded_by: str | None = None
    response_comment: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "requested_by": self.requested_by,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "status": self.status.value,
            "comment": self.comment,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
            "responded_by": self.responded_by,
            "response_comment": self.response_comment,
        }


@dataclass(frozen=True)
class ChecklistItemMark:
    item_id: str
    audit_id: str
    is_marked: bool = False

    def to_dict(self) -> dict:
        return {"item_id": self.item_id, "audit_id": self.audit_id, "is_marked": self.is_marked}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, resolved once by the session layer."""

    user_id: str
    role: ActorRole
    department_id: str | None = None

    @classmethod
    def system(cls) -> Actor:
        return cls(user_id="system", role=ActorRole.SYSTEM)
