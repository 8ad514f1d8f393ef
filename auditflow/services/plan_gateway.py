"""
Plan Gateway — the persistence collaborator behind the core.

``PlanGateway`` is the contract the workflow needs from storage;
``SqlPlanGateway`` implements it over Flask-SQLAlchemy.  Every method
returns immutable records, never ORM rows.

Write rules:
    - Each commit_* / replace_* method is one transaction.  History rows
      (AuditLog) are flushed inside it, so a change and its trail commit or
      roll back together.
    - Status-dependent writes carry the status the caller computed against.
      The UPDATE is guarded with ``WHERE status = :expected``; zero affected
      rows means somebody else moved the plan and the write fails with
      ConcurrentModification instead of overwriting.
    - Revision resolution and the bulk checklist unmark share one transaction.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from auditflow.core.enums import PlanStatus, RevisionDecision, RevisionStatus
from auditflow.core.exceptions import (
    ConcurrentModification,
    DuplicatePending,
    InvalidTransition,
    NotFoundError,
)
from auditflow.core.records import (
    ChecklistItemMark,
    PlanRecord,
    Rejection,
    RevisionRequest,
    ScopeDepartment,
    TeamMember,
)
from auditflow.models import db
from auditflow.models.audit_log import AuditLog, write_audit
from auditflow.models.audit_plan import (
    AuditPlan,
    AuditScopeDepartment,
    AuditTeamMember,
    ChecklistItemMark as ChecklistItemMarkRow,
    RevisionRequest as RevisionRequestRow,
)

logger = logging.getLogger(__name__)

_DECISION_STATUS = {
    RevisionDecision.APPROVE: RevisionStatus.APPROVED,
    RevisionDecision.REJECT: RevisionStatus.REJECTED,
}


@dataclass(frozen=True)
class RevisionResolution:
    request: RevisionRequest
    unmarked_item_ids: tuple[str, ...]

    @property
    def unmarked_count(self) -> int:
        return len(self.unmarked_item_ids)


# ═════════════════════════════════════════════════════════════════════════════
# Contract
# ═════════════════════════════════════════════════════════════════════════════

class PlanGateway(ABC):
    """Operations the workflow consumes from storage."""

    # Reads
    @abstractmethod
    def fetch_plans(self) -> list[PlanRecord]: ...

    @abstractmethod
    def fetch_plan(self, plan_id: str) -> PlanRecord: ...

    @abstractmethod
    def fetch_team(self, audit_id: str | None = None) -> list[TeamMember]: ...

    @abstractmethod
    def fetch_scope_departments(self, audit_id: str | None = None) -> list[ScopeDepartment]: ...

    @abstractmethod
    def fetch_checklist_marks(self, audit_id: str) -> list[ChecklistItemMark]: ...

    @abstractmethod
    def fetch_revision_requests(self, *, audit_id: str | None = None,
                                status: RevisionStatus | None = None,
                                requested_by: str | None = None) -> list[RevisionRequest]: ...

    @abstractmethod
    def fetch_revision_request(self, request_id: str) -> RevisionRequest: ...

    @abstractmethod
    def fetch_plan_history(self, plan_id: str) -> list[dict]:
        """History entries of a plan, newest first."""

    # Writes
    @abstractmethod
    def commit_transition(self, plan_id: str, expected_status: PlanStatus, new_status: PlanStatus,
                          rejection: Rejection | None = None, *, audit: dict | None = None) -> PlanRecord: ...

    @abstractmethod
    def create_plan(self, plan: PlanRecord, team: Iterable[TeamMember],
                    departments: Iterable[ScopeDepartment], *, audit: dict | None = None) -> PlanRecord:
        """Insert a plan with its team and departments; the stored id replaces ``plan.id``."""

    @abstractmethod
    def update_plan_fields(self, plan_id: str, expected_status: PlanStatus, changes: dict,
                           *, audit: dict | None = None) -> PlanRecord: ...

    @abstractmethod
    def replace_team(self, plan_id: str, expected_status: PlanStatus, members: Iterable[TeamMember],
                     *, audit: dict | None = None) -> list[TeamMember]: ...

    @abstractmethod
    def replace_scope_departments(self, plan_id: str, expected_status: PlanStatus,
                                  departments: Iterable[ScopeDepartment],
                                  *, audit: dict | None = None) -> list[ScopeDepartment]: ...

    @abstractmethod
    def insert_revision_request(self, audit_id: str, requested_by: str, comment: str,
                                *, audit: dict | None = None) -> RevisionRequest:
        """Insert a Pending request; raises DuplicatePending if one already exists."""

    @abstractmethod
    def commit_revision_resolution(self, request_id: str, decision: RevisionDecision,
                                   comment: str | None, responder: str, *,
                                   audit: dict | None = None) -> RevisionResolution: ...

    @abstractmethod
    def set_checklist_mark(self, item_id: str, is_marked: bool, *,
                           audit_id: str | None = None, audit: dict | None = None) -> ChecklistItemMark: ...


# ═════════════════════════════════════════════════════════════════════════════
# SQLAlchemy implementation
# ═════════════════════════════════════════════════════════════════════════════

class SqlPlanGateway(PlanGateway):
    """Gateway over the Flask-SQLAlchemy session of the current app context."""

    # ── Reads ────────────────────────────────────────────────────────────

    def fetch_plans(self) -> list[PlanRecord]:
        rows = db.session.execute(
            select(AuditPlan).order_by(AuditPlan.created_at, AuditPlan.id)
        ).scalars().all()
        return [r.to_record() for r in rows]

    def fetch_plan(self, plan_id: str) -> PlanRecord:
        row = db.session.get(AuditPlan, plan_id, populate_existing=True)
        if row is None:
            raise NotFoundError(resource="AuditPlan", resource_id=plan_id)
        return row.to_record()

    def fetch_team(self, audit_id: str | None = None) -> list[TeamMember]:
        stmt = select(AuditTeamMember).order_by(AuditTeamMember.id)
        if audit_id is not None:
            stmt = stmt.where(AuditTeamMember.audit_id == audit_id)
        return [r.to_record() for r in db.session.execute(stmt).scalars()]

    def fetch_scope_departments(self, audit_id: str | None = None) -> list[ScopeDepartment]:
        stmt = select(AuditScopeDepartment).order_by(AuditScopeDepartment.id)
        if audit_id is not None:
            stmt = stmt.where(AuditScopeDepartment.audit_id == audit_id)
        return [r.to_record() for r in db.session.execute(stmt).scalars()]

    def fetch_checklist_marks(self, audit_id: str) -> list[ChecklistItemMark]:
        stmt = (
            select(ChecklistItemMarkRow)
            .where(ChecklistItemMarkRow.audit_id == audit_id)
            .order_by(ChecklistItemMarkRow.item_id)
        )
        return [r.to_record() for r in db.session.execute(stmt).scalars()]

    def fetch_revision_requests(self, *, audit_id=None, status=None, requested_by=None) -> list[RevisionRequest]:
        stmt = select(RevisionRequestRow).order_by(RevisionRequestRow.requested_at, RevisionRequestRow.id)
        if audit_id is not None:
            stmt = stmt.where(RevisionRequestRow.audit_id == audit_id)
        if status is not None:
            stmt = stmt.where(RevisionRequestRow.status == status.value)
        if requested_by is not None:
            stmt = stmt.where(RevisionRequestRow.requested_by == requested_by)
        return [r.to_record() for r in db.session.execute(stmt).scalars()]

    def fetch_revision_request(self, request_id: str) -> RevisionRequest:
        row = db.session.get(RevisionRequestRow, request_id, populate_existing=True)
        if row is None:
            raise NotFoundError(resource="RevisionRequest", resource_id=request_id)
        return row.to_record()

    def fetch_plan_history(self, plan_id: str) -> list[dict]:
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == "audit_plan", AuditLog.entity_id == plan_id)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        )
        return [r.to_dict() for r in db.session.execute(stmt).scalars()]

    # ── Plan writes ──────────────────────────────────────────────────────

    def _guarded_update(self, plan_id: str, expected_status: PlanStatus, values: dict) -> None:
        """UPDATE the plan only if its stored status is still ``expected_status``."""
        result = db.session.execute(
            update(AuditPlan)
            .where(AuditPlan.id == plan_id, AuditPlan.status == expected_status.value)
            .values(updated_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        actual = db.session.execute(
            select(AuditPlan.status).where(AuditPlan.id == plan_id)
        ).scalar_one_or_none()
        if actual is None:
            raise NotFoundError(resource="AuditPlan", resource_id=plan_id)
        raise ConcurrentModification(plan_id, expected_status.value, actual)

    def _commit(self) -> None:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Commit failed")
            raise

    def commit_transition(self, plan_id, expected_status, new_status, rejection=None, *, audit=None) -> PlanRecord:
        try:
            self._guarded_update(plan_id, expected_status, {
                "status": new_status.value,
                "rejection_comment": rejection.comment if rejection else None,
                "rejection_by": rejection.by.value if rejection else None,
                "rejected_at": rejection.at if rejection else None,
            })
            if audit:
                write_audit(entity_type="audit_plan", entity_id=plan_id, **audit)
        except Exception:
            db.session.rollback()
            raise
        self._commit()
        return self.fetch_plan(plan_id)

    def create_plan(self, plan: PlanRecord, team: Iterable[TeamMember],
                    departments: Iterable[ScopeDepartment], *, audit: dict | None = None) -> PlanRecord:
        row = AuditPlan(
            title=plan.title,
            objective=plan.objective,
            scope=plan.scope.value,
            status=plan.status.value,
            created_by=plan.created_by,
            start_date=plan.start_date,
            end_date=plan.end_date,
            template_ids=sorted(plan.template_ids),
            revised_from_id=plan.revised_from_id,
        )
        try:
            db.session.add(row)
            db.session.flush()
            self._insert_team(row.id, team)
            self._insert_departments(row.id, departments)
            if audit:
                write_audit(entity_type="audit_plan", entity_id=row.id, **audit)
        except Exception:
            db.session.rollback()
            raise
        plan_id = row.id
        self._commit()
        return self.fetch_plan(plan_id)

    def update_plan_fields(self, plan_id: str, expected_status: PlanStatus, changes: dict,
                           *, audit: dict | None = None) -> PlanRecord:
        values = dict(changes)
        if "template_ids" in values:
            values["template_ids"] = sorted(values["template_ids"])
        try:
            self._guarded_update(plan_id, expected_status, values)
            if audit:
                write_audit(entity_type="audit_plan", entity_id=plan_id, **audit)
        except Exception:
            db.session.rollback()
            raise
        self._commit()
        return self.fetch_plan(plan_id)

    def replace_team(self, plan_id: str, expected_status: PlanStatus, members: Iterable[TeamMember],
                     *, audit: dict | None = None) -> list[TeamMember]:
        try:
            self._guarded_update(plan_id, expected_status, {})
            db.session.query(AuditTeamMember).filter_by(audit_id=plan_id).delete(synchronize_session=False)
            db.session.flush()
            self._insert_team(plan_id, members)
            if audit:
                write_audit(entity_type="audit_plan", entity_id=plan_id, **audit)
        except Exception:
            db.session.rollback()
            raise
        self._commit()
        return self.fetch_team(plan_id)

    def replace_scope_departments(self, plan_id: str, expected_status: PlanStatus,
                                  departments: Iterable[ScopeDepartment],
                                  *, audit: dict | None = None) -> list[ScopeDepartment]:
        try:
            self._guarded_update(plan_id, expected_status, {})
            db.session.query(AuditScopeDepartment).filter_by(audit_id=plan_id).delete(synchronize_session=False)
            db.session.flush()
            self._insert_departments(plan_id, departments)
            if audit:
                write_audit(entity_type="audit_plan", entity_id=plan_id, **audit)
        except Exception:
            db.session.rollback()
            raise
        self._commit()
        return self.fetch_scope_departments(plan_id)

    def _insert_team(self, plan_id: str, members: Iterable[TeamMember]) -> None:
        for m in members:
            db.session.add(AuditTeamMember(
                audit_id=plan_id,
                user_id=m.user_id,
                role_in_team=m.role_in_team.value,
                is_lead=m.is_lead,
            ))
        db.session.flush()

    def _insert_departments(self, plan_id: str, departments: Iterable[ScopeDepartment]) -> None:
        for d in departments:
            db.session.add(AuditScopeDepartment(
                audit_id=plan_id,
                dept_id=d.dept_id,
                dept_name=d.dept_name,
                sensitive_flag=d.sensitive_flag,
                sensitive_areas=list(d.sensitive_areas),
            ))
        db.session.flush()

    # ── Revision requests ────────────────────────────────────────────────

    def insert_revision_request(self, audit_id: str, requested_by: str, comment: str,
                                *, audit: dict | None = None) -> RevisionRequest:
        row = RevisionRequestRow(
            audit_id=audit_id,
            requested_by=requested_by,
            comment=comment,
            status=RevisionStatus.PENDING.value,
        )
        try:
            db.session.add(row)
            db.session.flush()
            if audit:
                write_audit(entity_type="revision_request", entity_id=row.id, **audit)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            logger.info("Pending revision request already exists for audit %s: %s", audit_id, exc.orig)
            pending = self.fetch_revision_requests(audit_id=audit_id, status=RevisionStatus.PENDING)
            raise DuplicatePending(audit_id, pending[0].id if pending else None) from exc
        except Exception:
            db.session.rollback()
            raise
        return row.to_record()

    def _unmark_all(self, audit_id: str) -> tuple[str, ...]:
        """Clear every checklist mark of the audit; returns the ids that were marked."""
        marked = db.session.execute(
            select(ChecklistItemMarkRow.item_id)
            .where(ChecklistItemMarkRow.audit_id == audit_id, ChecklistItemMarkRow.is_marked.is_(True))
            .order_by(ChecklistItemMarkRow.item_id)
        ).scalars().all()
        db.session.execute(
            update(ChecklistItemMarkRow)
            .where(ChecklistItemMarkRow.audit_id == audit_id)
            .values(is_marked=False)
            .execution_options(synchronize_session=False)
        )
        return tuple(marked)

    def commit_revision_resolution(self, request_id, decision, comment, responder, *, audit=None) -> RevisionResolution:
        new_status = _DECISION_STATUS[decision]
        try:
            row = db.session.get(RevisionRequestRow, request_id, populate_existing=True)
            if row is None:
                raise NotFoundError(resource="RevisionRequest", resource_id=request_id)
            result = db.session.execute(
                update(RevisionRequestRow)
                .where(
                    RevisionRequestRow.id == request_id,
                    RevisionRequestRow.status == RevisionStatus.PENDING.value,
                )
                .values(
                    status=new_status.value,
                    responded_at=datetime.now(timezone.utc),
                    responded_by=responder,
                    response_comment=comment,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = db.session.execute(
                    select(RevisionRequestRow.status).where(RevisionRequestRow.id == request_id)
                ).scalar_one()
                raise InvalidTransition(decision.value, current, "revision request is no longer pending")
            unmarked = self._unmark_all(row.audit_id)
            if audit:
                write_audit(entity_type="revision_request", entity_id=request_id, **audit)
        except Exception:
            db.session.rollback()
            raise
        self._commit()
        return RevisionResolution(
            request=self.fetch_revision_request(request_id),
            unmarked_item_ids=unmarked,
        )

    # ── Checklist marks ──────────────────────────────────────────────────

    def set_checklist_mark(self, item_id, is_marked, *, audit_id=None, audit=None) -> ChecklistItemMark:
        try:
            row = db.session.get(ChecklistItemMarkRow, item_id)
            if row is None:
                if audit_id is None:
                    raise NotFoundError(resource="ChecklistItemMark", resource_id=item_id)
                row = ChecklistItemMarkRow(item_id=item_id, audit_id=audit_id)
                db.session.add(row)
            elif audit_id is not None and row.audit_id != audit_id:
                raise NotFoundError(resource="ChecklistItemMark", resource_id=item_id)
            row.is_marked = bool(is_marked)
            db.session.flush()
            if audit:
                write_audit(entity_type="checklist_mark", entity_id=item_id, **audit)
        except Exception:
            db.session.rollback()
            raise
        self._commit()
        return row.to_record()
