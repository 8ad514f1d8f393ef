"""Scope Registry — per-plan department associations (exact-match lookups)."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from auditflow.core.enums import AuditScope
from auditflow.core.records import PlanRecord, ScopeDepartment


class ScopeRegistry:
    """Immutable index of ScopeDepartment rows keyed by audit id."""

    def __init__(self, departments: Iterable[ScopeDepartment] = ()):
        by_audit: dict[str, list[ScopeDepartment]] = defaultdict(list)
        for dept in departments:
            by_audit[dept.audit_id].append(dept)
        self._by_audit = {audit_id: tuple(rows) for audit_id, rows in by_audit.items()}

    def departments_of(self, audit_id: str) -> tuple[ScopeDepartment, ...]:
        return self._by_audit.get(audit_id, ())

    def dept_ids_of(self, audit_id: str) -> frozenset[str]:
        return frozenset(d.dept_id for d in self.departments_of(audit_id))

    def covers(self, plan: PlanRecord, dept_id: str | None) -> bool:
        """True when ``dept_id`` is in the plan's scope.

        EntireOrganization plans implicitly cover every department, with or
        without explicit rows.
        """
        if dept_id is None:
            return False
        if plan.scope == AuditScope.ENTIRE_ORGANIZATION:
            return True
        return dept_id in self.dept_ids_of(plan.id)
