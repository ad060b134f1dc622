#tender_engine/models/enums.py
from __future__ import annotations
from enum import Enum


class ActorRole(str, Enum):
    FREELANCER = "freelancer"
    CANDIDATE = "candidate"
    COMPANY = "company"
    ORGANIZATION = "organization"
    ADMIN = "admin"
    # internal only: expiry sweeps and cascades
    SYSTEM = "system"


class TenderStatus(str, Enum):
    draft = "draft"
    published = "published"
    open = "open"
    completed = "completed"
    cancelled = "cancelled"


class ProposalStatus(str, Enum):
    submitted = "submitted"
    under_review = "under_review"
    shortlisted = "shortlisted"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"


class Visibility(str, Enum):
    public = "public"
    invite_only = "invite_only"


class TenderCategory(str, Enum):
    construction = "construction"
    IT = "IT"
    consulting = "consulting"
    supplies = "supplies"
    design = "design"
    writing = "writing"
    marketing = "marketing"
    other = "other"


class ExperienceLevel(str, Enum):
    entry = "entry"
    intermediate = "intermediate"
    expert = "expert"


class EstimatedTimeline(str, Enum):
    one_to_two_weeks = "1-2 weeks"
    two_to_four_weeks = "2-4 weeks"
    one_to_two_months = "1-2 months"
    two_to_three_months = "2-3 months"
    three_plus_months = "3+ months"


TERMINAL_TENDER_STATES = frozenset({TenderStatus.completed, TenderStatus.cancelled})
ACCEPTING_TENDER_STATES = frozenset({TenderStatus.published, TenderStatus.open})

TERMINAL_PROPOSAL_STATES = frozenset(
    {ProposalStatus.accepted, ProposalStatus.rejected, ProposalStatus.withdrawn}
)
OPEN_PROPOSAL_STATES = frozenset(
    {ProposalStatus.submitted, ProposalStatus.under_review, ProposalStatus.shortlisted}
)
