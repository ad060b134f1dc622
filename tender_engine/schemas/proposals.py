from __future__ import annotations

import uuid
from typing import Annotated, List, Optional

from pydantic import BaseModel, Field

from tender_engine.models.enums import EstimatedTimeline, ProposalStatus
from tender_engine.models.proposal import NOTES_MAX_LENGTH
from tender_engine.schemas.common import Money, StrictModel, VersionedRequest

# references into the external blob store; only the shape is checked
AttachmentUrl = Annotated[str, Field(pattern=r"^https?://.+\..+$", max_length=2048)]


class ProposalCreateRequest(StrictModel):
    tenderId: uuid.UUID
    bidAmount: Money
    # length bounds are enforced by the validator (TextLengthInvalid)
    proposalText: str
    estimatedTimeline: EstimatedTimeline
    attachments: List[AttachmentUrl] = Field(default_factory=list, max_length=20)


class ProposalPatchRequest(VersionedRequest):
    bidAmount: Optional[Money] = None
    proposalText: Optional[str] = None
    estimatedTimeline: Optional[EstimatedTimeline] = None
    attachments: Optional[List[AttachmentUrl]] = Field(default=None, max_length=20)


class ProposalStatusRequest(VersionedRequest):
    status: ProposalStatus
    notes: Optional[str] = Field(default=None, max_length=NOTES_MAX_LENGTH)


class ProposalResponse(BaseModel):
    proposalId: str
    tenderId: str
    bidderId: str
    bidAmount: str
    proposalText: str
    estimatedTimeline: str
    attachments: List[str]
    status: ProposalStatus
    companyNotes: Optional[str] = None
    withdrawalReason: Optional[str] = None
    version: int

    createdAtIso: Optional[str] = None
    updatedAtIso: Optional[str] = None
    submittedAtIso: Optional[str] = None
    decidedAtIso: Optional[str] = None


class ProposalListResponse(BaseModel):
    items: List[ProposalResponse]
    total: int
