"""
Closed vocabularies for the audit-plan lifecycle.

Every status, action and role used by the core is one of these members.
Raw strings from the persistence boundary are parsed into them exactly once
(see ``auditflow.services.normalization``); nothing downstream compares
free-form strings.
"""

from enum import Enum


class PlanStatus(str, Enum):
    DRAFT = "Draft"
    PENDING_REVIEW = "PendingReview"
    PENDING_DIRECTOR_APPROVAL = "PendingDirectorApproval"
    APPROVED = "Approved"
    IN_PROGRESS = "InProgress"
    DECLINED = "Declined"
    REJECTED = "Rejected"
    ARCHIVED = "Archived"


class PlanAction(str, Enum):
    SUBMIT_TO_LEAD = "SubmitToLead"
    FORWARD_TO_DIRECTOR = "ForwardToDirector"
    DECLINE_BY_LEAD = "DeclineByLead"
    REQUEST_REVISION = "RequestRevision"
    APPROVE_BY_DIRECTOR = "ApproveByDirector"
    REJECT_BY_DIRECTOR = "RejectByDirector"
    BEGIN_EXECUTION = "BeginExecution"
    ARCHIVE_PLAN = "ArchivePlan"


class ActorRole(str, Enum):
    """Role of the authenticated caller (not the role inside a team)."""
    AUDITOR = "Auditor"
    LEAD_AUDITOR = "LeadAuditor"
    DIRECTOR = "Director"
    AUDITEE_OWNER = "AuditeeOwner"
    SYSTEM = "System"


class TeamRole(str, Enum):
    AUDITOR = "Auditor"
    LEAD_AUDITOR = "LeadAuditor"
    AUDITEE_OWNER = "AuditeeOwner"


class AuditScope(str, Enum):
    DEPARTMENT = "Department"
    ENTIRE_ORGANIZATION = "EntireOrganization"


class RejectedBy(str, Enum):
    LEAD_AUDITOR = "LeadAuditor"
    DIRECTOR = "Director"


class RevisionStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class RevisionDecision(str, Enum):
    APPROVE = "Approve"
    REJECT = "Reject"


# Statuses in which a plan still occupies its period and departments.
LIVE_STATUSES = frozenset({
    PlanStatus.DRAFT,
    PlanStatus.PENDING_REVIEW,
    PlanStatus.PENDING_DIRECTOR_APPROVAL,
    PlanStatus.APPROVED,
    PlanStatus.IN_PROGRESS,
})

# "Published" plans are the ones auditee owners may read.
PUBLISHED_STATUSES = frozenset({PlanStatus.APPROVED, PlanStatus.IN_PROGRESS})

REJECTION_STATUSES = frozenset({PlanStatus.DECLINED, PlanStatus.REJECTED})
