from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

import sqlalchemy as sa
from sqlalchemy import String, DateTime, UniqueConstraint, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from tender_engine.db.base import Base


class IdempotencyKeyRecord(Base):
    """
    Stores response for a create request carrying an Idempotency-Key header,
    so a client retrying after a dropped connection does not create twice.

    Scope is strict:
      (actor_id, endpoint_key, idem_key) must be unique.
    """
    __tablename__ = "idempotency_key_records"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)

    endpoint_key: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "POST:/api/v1/proposals"
    idem_key: Mapped[str] = mapped_column(String(128), nullable=False)

    request_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    response_status: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=200)
    response_json: Mapped[Dict[str, Any]] = mapped_column(sa.JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("actor_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
        Index("ix_idem_lookup", "actor_id", "endpoint_key"),
    )
