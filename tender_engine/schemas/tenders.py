from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from tender_engine.models.enums import (
    ExperienceLevel,
    TenderCategory,
    TenderStatus,
    Visibility,
)
from tender_engine.schemas.common import Money, StrictModel, VersionedRequest


class BudgetIn(StrictModel):
    # sign and ordering are checked by the validator so every issue is reported
    min: Money
    max: Money
    currency: str = Field(default="ETB", min_length=1, max_length=8)
    isNegotiable: bool = False


class BudgetPatch(StrictModel):
    min: Optional[Money] = None
    max: Optional[Money] = None
    currency: Optional[str] = Field(default=None, min_length=1, max_length=8)
    isNegotiable: Optional[bool] = None


class TenderCreateRequest(StrictModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    category: TenderCategory = TenderCategory.other
    skillsRequired: List[str] = Field(default_factory=list, max_length=50)
    experienceLevel: ExperienceLevel = ExperienceLevel.intermediate
    location: str = Field(default="anywhere", max_length=128)
    budget: BudgetIn
    deadline: datetime
    duration: int
    visibility: Visibility = Visibility.public
    invitedParties: List[str] = Field(default_factory=list, max_length=500)


class TenderPatchRequest(VersionedRequest):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    category: Optional[TenderCategory] = None
    skillsRequired: Optional[List[str]] = None
    experienceLevel: Optional[ExperienceLevel] = None
    location: Optional[str] = Field(default=None, max_length=128)
    budget: Optional[BudgetPatch] = None
    deadline: Optional[datetime] = None
    duration: Optional[int] = None
    visibility: Optional[Visibility] = None
    invitedParties: Optional[List[str]] = None


class TenderTransitionRequest(VersionedRequest):
    pass


class TenderCancelRequest(VersionedRequest):
    reason: Optional[str] = Field(default=None, max_length=500)


class BudgetOut(BaseModel):
    min: str
    max: str
    currency: str
    isNegotiable: bool


class TenderResponse(BaseModel):
    tenderId: str
    ownerId: str
    createdBy: str
    title: str
    description: str
    category: str
    skillsRequired: List[str]
    experienceLevel: str
    location: str
    status: TenderStatus
    budget: BudgetOut
    deadlineIso: str
    duration: int
    visibility: Visibility
    # owner/admin only
    invitedParties: Optional[List[str]] = None
    proposalIds: Optional[List[str]] = None
    cancellationReason: Optional[str] = None

    proposalCount: int
    savedCount: int = 0
    savedByMe: bool = False
    views: int
    version: int

    createdAtIso: Optional[str] = None
    updatedAtIso: Optional[str] = None
    publishedAtIso: Optional[str] = None
    openedAtIso: Optional[str] = None
    closedAtIso: Optional[str] = None


class TenderListResponse(BaseModel):
    items: List[TenderResponse]
    page: int
    limit: int
    total: int
    pages: int


class TenderTransitionResponse(BaseModel):
    tender: TenderResponse
    withdrawnProposalIds: List[str] = Field(default_factory=list)
    unconvertedProposalIds: List[str] = Field(default_factory=list)
    degraded: bool = False


class SaveToggleResponse(BaseModel):
    tenderId: str
    saved: bool
    totalSaves: int
