from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from tender_engine.core.events import DomainEvent, EventSink
from tender_engine.models.event_log import EventLog

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    """
    Convert payload into JSON-safe structure for payload_json.
    """
    if isinstance(value, Decimal):
        return str(value)  # preserve precision
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    return value


def stage_event(db: Session, event: DomainEvent) -> None:
    """
    Write the event into event_logs inside the caller's transaction.
    It becomes visible exactly when the change that produced it commits.
    """
    db.add(
        EventLog(
            event_type=event.event_type,
            aggregate=event.aggregate,
            aggregate_id=event.aggregate_id,
            actor_id=event.actor_id,
            created_at=event.occurred_at,
            payload_json=_json_safe(event.payload),
        )
    )


def publish_committed(sink: EventSink, events: Iterable[DomainEvent]) -> None:
    """
    Hand committed events to the injected sink. Sink failures are logged:
    the event row is already durable in event_logs for the outbox reader.
    """
    for event in events:
        try:
            sink.publish(event)
        except Exception:
            logger.exception(
                "event sink failed",
                extra={"event_type": event.event_type, "aggregate_id": event.aggregate_id},
            )
