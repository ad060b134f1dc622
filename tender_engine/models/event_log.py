#tender_engine/models/event_log.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

import sqlalchemy as sa
from sqlalchemy import String, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from tender_engine.db.base import Base


class EventLog(Base):
    """
    Domain-event outbox. Rows are written in the same transaction as the
    change that produced them; external consumers read forward by created_at.
    """
    __tablename__ = "event_logs"

    id: Mapped[uuid.UUID] = mapped_column(sa.Uuid, primary_key=True, default=uuid.uuid4)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate: Mapped[str] = mapped_column(String(16), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
    payload_json: Mapped[Dict[str, Any]] = mapped_column(sa.JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_event_logs_aggregate", "aggregate", "aggregate_id"),
        Index("ix_event_logs_type", "event_type"),
        Index("ix_event_logs_created", "created_at"),
    )
