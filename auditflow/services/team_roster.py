"""
Team Roster — per-plan membership lookups.

Identifiers are opaque: lookups are exact equality on the stored value.
No case folding, trimming or "looks like the same user" matching happens
here or anywhere downstream.

Usage:
    roster = TeamRoster(gateway.fetch_team_for(plan_ids))
    roster.is_lead_of(plan.id, actor.user_id)
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from auditflow.core.enums import TeamRole
from auditflow.core.exceptions import ValidationError
from auditflow.core.records import TeamMember


class TeamRoster:
    """Immutable index of TeamMember rows keyed by audit id."""

    def __init__(self, members: Iterable[TeamMember] = ()):
        by_audit: dict[str, list[TeamMember]] = defaultdict(list)
        for member in members:
            by_audit[member.audit_id].append(member)
        self._by_audit = {audit_id: tuple(rows) for audit_id, rows in by_audit.items()}

    def members_of(self, audit_id: str) -> tuple[TeamMember, ...]:
        """All members of an audit; empty for unknown ids."""
        return self._by_audit.get(audit_id, ())

    def member(self, audit_id: str, user_id: str) -> TeamMember | None:
        for m in self.members_of(audit_id):
            if m.user_id == user_id:
                return m
        return None

    def is_member_of(self, audit_id: str, user_id: str) -> bool:
        return self.member(audit_id, user_id) is not None

    def is_lead_of(self, audit_id: str, user_id: str) -> bool:
        m = self.member(audit_id, user_id)
        return m is not None and m.is_lead

    def lead_of(self, audit_id: str) -> TeamMember | None:
        for m in self.members_of(audit_id):
            if m.is_lead:
                return m
        return None


def validate_team(members: Iterable[TeamMember]) -> None:
    """Check a proposed team before it is written.

    Raises:
        ValidationError: duplicate user, more than one lead, or a lead whose
            role in the team is not LeadAuditor.
    """
    seen: set[str] = set()
    leads = []
    errors: dict[str, str] = {}
    for m in members:
        if m.user_id in seen:
            errors[m.user_id] = "listed more than once"
        seen.add(m.user_id)
        if m.is_lead:
            leads.append(m.user_id)
            if m.role_in_team != TeamRole.LEAD_AUDITOR:
                errors[m.user_id] = "lead must have roleInTeam LeadAuditor"
    if len(leads) > 1:
        errors["is_lead"] = f"at most one lead per plan, got {len(leads)}"
    if errors:
        raise ValidationError("Invalid audit team", details=errors)
