#tender_engine/models/proposal.py
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
    ForeignKey,
    CheckConstraint,
    Index,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tender_engine.db.base import Base
from tender_engine.models.enums import ProposalStatus


# company notes and withdrawal reasons share one column width
NOTES_MAX_LENGTH = 1000


def _now():
    return datetime.now(timezone.utc)


class Proposal(Base):
    __tablename__ = "proposals"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    # immutable after creation
    tender_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False
    )
    bidder_id: Mapped[str] = mapped_column(String(128), nullable=False)

    bid_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    proposal_text: Mapped[str] = mapped_column(Text, nullable=False)
    estimated_timeline: Mapped[str] = mapped_column(String(16), nullable=False)

    # opaque blob-store URLs, in upload order
    attachments: Mapped[List[str]] = mapped_column(sa.JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ProposalStatus.submitted.value
    )

    company_notes: Mapped[Optional[str]] = mapped_column(String(NOTES_MAX_LENGTH), nullable=True)
    withdrawal_reason: Mapped[Optional[str]] = mapped_column(String(NOTES_MAX_LENGTH), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, server_default=func.now()
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("bid_amount >= 0", name="bid_nonnegative"),
        # one live bid per (tender, bidder); a withdrawn bid frees the slot
        Index(
            "uq_proposals_active_bidder",
            "tender_id",
            "bidder_id",
            unique=True,
            sqlite_where=text("status != 'withdrawn'"),
            postgresql_where=text("status != 'withdrawn'"),
        ),
        # at most one accepted proposal per tender
        Index(
            "uq_proposals_single_accepted",
            "tender_id",
            unique=True,
            sqlite_where=text("status = 'accepted'"),
            postgresql_where=text("status = 'accepted'"),
        ),
        Index("ix_proposals_tender_status", "tender_id", "status"),
        Index("ix_proposals_bidder", "bidder_id"),
    )

    @property
    def status_enum(self) -> ProposalStatus:
        return ProposalStatus(self.status)
