from __future__ import annotations

import uuid

import sqlalchemy as sa
from sqlalchemy import String, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tender_engine.db.base import Base


class TenderInvitation(Base):
    """
    One invited party of an invite_only tender.
    Rows for public tenders are kept but ignored by the visibility rules.
    """
    __tablename__ = "tender_invitations"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    tender_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False
    )
    party_id: Mapped[str] = mapped_column(String(128), nullable=False)

    tender = relationship("Tender", back_populates="invitations")

    __table_args__ = (
        UniqueConstraint("tender_id", "party_id", name="uq_tender_invitation"),
        Index("ix_tender_invitations_party", "party_id"),
    )
