# /tender_engine/models/tender.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import (
    String,
    Text,
    DateTime,
    Integer,
    Numeric,
    Boolean,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tender_engine.db.base import Base
from tender_engine.models.enums import TenderStatus, Visibility


def _now():
    return datetime.now(timezone.utc)


class Tender(Base):
    __tablename__ = "tenders"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    # owning company/organization; created_by is the individual user
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    skills_required: Mapped[List[str]] = mapped_column(sa.JSON, nullable=False, default=list)
    experience_level: Mapped[str] = mapped_column(
        String(16), nullable=False, default="intermediate"
    )
    location: Mapped[str] = mapped_column(String(128), nullable=False, default="anywhere")

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TenderStatus.draft.value
    )

    budget_min: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    budget_max: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ETB")
    is_negotiable: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa.false()
    )

    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)

    visibility: Mapped[str] = mapped_column(
        String(16), nullable=False, default=Visibility.public.value
    )

    # denormalized cache of proposals.tender_id, in submission order
    proposal_ids: Mapped[List[str]] = mapped_column(sa.JSON, nullable=False, default=list)

    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # optimistic concurrency guard; bumped on every ORM UPDATE
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    opened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    invitations = relationship(
        "TenderInvitation",
        back_populates="tender",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("budget_min >= 0", name="budget_min_nonnegative"),
        CheckConstraint("budget_max >= budget_min", name="budget_ordered"),
        CheckConstraint("duration_days >= 1", name="duration_positive"),
        CheckConstraint("views >= 0", name="views_nonnegative"),
        Index("ix_tenders_owner_status", "owner_id", "status"),
        Index("ix_tenders_status_deadline", "status", "deadline"),
        Index("ix_tenders_category", "category"),
    )

    @property
    def invited_parties(self) -> List[str]:
        return sorted(inv.party_id for inv in self.invitations)

    @property
    def status_enum(self) -> TenderStatus:
        return TenderStatus(self.status)
