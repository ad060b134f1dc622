#tender_engine/services/marketplace.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session

from tender_engine.core.errors import StaleState
from tender_engine.core.events import EventSink, LoggingEventSink
from tender_engine.models.enums import EstimatedTimeline, ProposalStatus, TenderStatus
from tender_engine.models.proposal import Proposal
from tender_engine.models.tender import Tender
from tender_engine.policies.rbac import Actor
from tender_engine.services.bookmark_service import BookmarkStore
from tender_engine.services.proposal_lifecycle import ProposalLifecycleManager
from tender_engine.services.tender_lifecycle import (
    Page,
    TenderFilters,
    TenderLifecycleManager,
    TenderPatch,
    TenderTerms,
    TransitionResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_stale(
    fn: Callable[[], T], *, attempts: int = 3, db: Optional[Session] = None
) -> T:
    """
    Call `fn` until it stops raising StaleState, at most `attempts` times.
    Each retry starts from a clean session so `fn` re-reads current state.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except StaleState as e:
            if attempt == attempts:
                raise
            logger.info(
                "stale state, retrying",
                extra={"attempt": attempt, "entity_id": e.extra.get("entityId")},
            )
            if db is not None:
                db.rollback()
                db.expire_all()
    raise AssertionError("unreachable")


class MarketplaceFacade:
    """Single entry point for the API layer; one instance per app."""

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink or LoggingEventSink()
        self.proposals = ProposalLifecycleManager(self.sink)
        self.tenders = TenderLifecycleManager(self.proposals, self.sink)
        self.bookmarks = BookmarkStore(self.sink)

    # ---- tenders ----

    def create_tender(self, db: Session, actor: Actor, terms: TenderTerms) -> Tender:
        return self.tenders.create(db, actor=actor, terms=terms)

    def update_tender(
        self,
        db: Session,
        actor: Actor,
        tender_id: uuid.UUID,
        patch: TenderPatch,
        expected_version: Optional[int] = None,
    ) -> Tender:
        return self.tenders.update(
            db,
            actor=actor,
            tender_id=tender_id,
            patch=patch,
            expected_version=expected_version,
        )

    def publish_tender(
        self,
        db: Session,
        actor: Actor,
        tender_id: uuid.UUID,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Tender:
        return self.tenders.transition(
            db,
            actor=actor,
            tender_id=tender_id,
            target=TenderStatus.published,
            expected_version=expected_version,
            now=now,
        ).tender

    def open_tender(
        self,
        db: Session,
        actor: Actor,
        tender_id: uuid.UUID,
        expected_version: Optional[int] = None,
    ) -> Tender:
        return self.tenders.transition(
            db,
            actor=actor,
            tender_id=tender_id,
            target=TenderStatus.open,
            expected_version=expected_version,
        ).tender

    def complete_tender(
        self,
        db: Session,
        actor: Actor,
        tender_id: uuid.UUID,
        expected_version: Optional[int] = None,
    ) -> Tender:
        return self.tenders.transition(
            db,
            actor=actor,
            tender_id=tender_id,
            target=TenderStatus.completed,
            expected_version=expected_version,
        ).tender

    def cancel_tender(
        self,
        db: Session,
        actor: Actor,
        tender_id: uuid.UUID,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> TransitionResult:
        return self.tenders.transition(
            db,
            actor=actor,
            tender_id=tender_id,
            target=TenderStatus.cancelled,
            reason=reason,
            expected_version=expected_version,
        )

    def reconcile_cancelled_tender(
        self, db: Session, actor: Actor, tender_id: uuid.UUID
    ) -> TransitionResult:
        return self.tenders.reconcile_cancelled(db, actor=actor, tender_id=tender_id)

    def get_tender(self, db: Session, actor: Actor, tender_id: uuid.UUID) -> Tender:
        return self.tenders.get_for_viewer(db, actor=actor, tender_id=tender_id)

    def list_tenders(
        self, db: Session, actor: Actor, filters: Optional[TenderFilters] = None
    ) -> Page:
        return self.tenders.list_visible(db, actor=actor, filters=filters)

    def list_my_tenders(self, db: Session, actor: Actor) -> List[Tender]:
        return self.tenders.list_owned(db, actor=actor)

    def list_expired_tenders(self, db: Session, now: Optional[datetime] = None) -> List[Tender]:
        return self.tenders.list_expired(db, now=now)

    # ---- bookmarks ----

    def toggle_save_tender(self, db: Session, actor: Actor, tender_id: uuid.UUID) -> bool:
        return self.bookmarks.toggle_save(db, actor=actor, tender_id=tender_id)

    def list_saved_tenders(self, db: Session, actor: Actor) -> List[Tender]:
        return self.bookmarks.list_saved(db, actor=actor)

    # ---- proposals ----

    def create_proposal(
        self,
        db: Session,
        actor: Actor,
        tender_id: uuid.UUID,
        bid_amount: Decimal,
        proposal_text: str,
        estimated_timeline: EstimatedTimeline,
        attachments: Optional[Sequence[str]] = None,
    ) -> Proposal:
        return self.proposals.create(
            db,
            actor=actor,
            tender_id=tender_id,
            bid_amount=bid_amount,
            proposal_text=proposal_text,
            estimated_timeline=estimated_timeline,
            attachments=attachments,
        )

    def get_proposal(self, db: Session, actor: Actor, proposal_id: uuid.UUID) -> Proposal:
        return self.proposals.get(db, actor=actor, proposal_id=proposal_id)

    def update_proposal(
        self,
        db: Session,
        actor: Actor,
        proposal_id: uuid.UUID,
        *,
        bid_amount: Optional[Decimal] = None,
        proposal_text: Optional[str] = None,
        estimated_timeline: Optional[EstimatedTimeline] = None,
        attachments: Optional[Sequence[str]] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        return self.proposals.update(
            db,
            actor=actor,
            proposal_id=proposal_id,
            bid_amount=bid_amount,
            proposal_text=proposal_text,
            estimated_timeline=estimated_timeline,
            attachments=attachments,
            expected_version=expected_version,
        )

    def update_proposal_status(
        self,
        db: Session,
        actor: Actor,
        proposal_id: uuid.UUID,
        target: ProposalStatus,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        return self.proposals.update_status(
            db,
            actor=actor,
            proposal_id=proposal_id,
            target=target,
            notes=notes,
            expected_version=expected_version,
        )

    def list_proposals_for_tender(
        self, db: Session, actor: Actor, tender_id: uuid.UUID
    ) -> List[Proposal]:
        return self.proposals.list_for_tender(db, actor=actor, tender_id=tender_id)

    def list_proposals_for_user(self, db: Session, actor: Actor) -> List[Proposal]:
        return self.proposals.list_for_user(db, actor=actor)
