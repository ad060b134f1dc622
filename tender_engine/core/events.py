from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol

logger = logging.getLogger(__name__)


class EventType:
    # Tender lifecycle
    TENDER_CREATED = "TenderCreated"
    TENDER_UPDATED = "TenderUpdated"
    TENDER_PUBLISHED = "TenderPublished"
    TENDER_OPENED = "TenderOpened"
    TENDER_COMPLETED = "TenderCompleted"
    TENDER_CANCELLED = "TenderCancelled"

    # Proposal lifecycle
    PROPOSAL_SUBMITTED = "ProposalSubmitted"
    PROPOSAL_UPDATED = "ProposalUpdated"
    PROPOSAL_UNDER_REVIEW = "ProposalUnderReview"
    PROPOSAL_SHORTLISTED = "ProposalShortlisted"
    PROPOSAL_ACCEPTED = "ProposalAccepted"
    PROPOSAL_REJECTED = "ProposalRejected"
    PROPOSAL_WITHDRAWN = "ProposalWithdrawn"

    # Bookmarks
    TENDER_SAVED = "TenderSaved"
    TENDER_UNSAVED = "TenderUnsaved"


@dataclass(frozen=True)
class DomainEvent:
    event_type: str
    aggregate: str
    aggregate_id: str
    actor_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventSink(Protocol):
    """
    Consumer of committed domain events (notifications, search indexer...).
    Called after commit only; an exception here never undoes the change.
    """

    def publish(self, event: DomainEvent) -> None: ...


class LoggingEventSink:
    def publish(self, event: DomainEvent) -> None:
        logger.info(
            "domain event",
            extra={
                "event_type": event.event_type,
                "aggregate": event.aggregate,
                "aggregate_id": event.aggregate_id,
                "actor_id": event.actor_id,
            },
        )


class InMemoryEventSink:
    """Collects events in memory; used by tests and local tooling."""

    def __init__(self) -> None:
        self._events: List[DomainEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[DomainEvent]:
        with self._lock:
            return list(self._events)

    def types(self) -> List[str]:
        return [e.event_type for e in self.events]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
