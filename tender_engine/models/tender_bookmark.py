from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import String, DateTime, ForeignKey, UniqueConstraint, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from tender_engine.db.base import Base


class TenderBookmark(Base):
    """
    savedBy membership: (tender, user). Presence of the row means "saved".
    """
    __tablename__ = "tender_bookmarks"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    tender_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, ForeignKey("tenders.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("tender_id", "user_id", name="uq_tender_bookmark"),
        Index("ix_tender_bookmarks_user", "user_id"),
    )
