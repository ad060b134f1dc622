#tender_engine/services/bookmark_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tender_engine.core.errors import NotFound
from tender_engine.core.events import DomainEvent, EventSink, EventType, LoggingEventSink
from tender_engine.models.tender import Tender
from tender_engine.models.tender_bookmark import TenderBookmark
from tender_engine.policies.rbac import ACTION_SAVE_TENDER, Actor, require_action
from tender_engine.policies.visibility import can_view, ensure_can_view
from tender_engine.services.outbox import publish_committed, stage_event

logger = logging.getLogger(__name__)


class BookmarkStore:
    """
    Per-user "saved tenders". Saving needs view access only; terminal
    tenders may still be saved and unsaved.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink or LoggingEventSink()

    def _row(self, db: Session, user_id: str, tender_id: uuid.UUID) -> Optional[TenderBookmark]:
        return db.execute(
            select(TenderBookmark).where(
                TenderBookmark.tender_id == tender_id,
                TenderBookmark.user_id == user_id,
            )
        ).scalar_one_or_none()

    def is_saved(self, db: Session, *, user_id: str, tender_id: uuid.UUID) -> bool:
        return self._row(db, user_id, tender_id) is not None

    def saved_by(self, db: Session, *, tender_id: uuid.UUID) -> List[str]:
        return list(
            db.execute(
                select(TenderBookmark.user_id)
                .where(TenderBookmark.tender_id == tender_id)
                .order_by(TenderBookmark.created_at.asc(), TenderBookmark.user_id.asc())
            ).scalars()
        )

    def saved_counts(self, db: Session, tender_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
        ids = list(tender_ids)
        if not ids:
            return {}
        rows = db.execute(
            select(TenderBookmark.tender_id, func.count())
            .where(TenderBookmark.tender_id.in_(ids))
            .group_by(TenderBookmark.tender_id)
        ).all()
        return {tid: int(n) for tid, n in rows}

    def saved_subset(
        self, db: Session, *, user_id: str, tender_ids: Iterable[uuid.UUID]
    ) -> Set[uuid.UUID]:
        """Which of `tender_ids` the user has saved."""
        ids = list(tender_ids)
        if not ids:
            return set()
        return set(
            db.execute(
                select(TenderBookmark.tender_id).where(
                    TenderBookmark.user_id == user_id,
                    TenderBookmark.tender_id.in_(ids),
                )
            ).scalars()
        )

    def toggle_save(self, db: Session, *, actor: Actor, tender_id: uuid.UUID) -> bool:
        """Flip membership; returns True when the tender is now saved."""
        require_action(actor, ACTION_SAVE_TENDER)

        tender = db.execute(select(Tender).where(Tender.id == tender_id)).scalar_one_or_none()
        if not tender:
            raise NotFound("Tender not found.")
        ensure_can_view(actor, tender)

        now = datetime.now(timezone.utc)
        if self._row(db, actor.actor_id, tender_id) is not None:
            db.execute(
                delete(TenderBookmark).where(
                    TenderBookmark.tender_id == tender_id,
                    TenderBookmark.user_id == actor.actor_id,
                )
            )
            saved = False
        else:
            db.add(TenderBookmark(tender_id=tender_id, user_id=actor.actor_id, created_at=now))
            saved = True

        events = [
            DomainEvent(
                event_type=EventType.TENDER_SAVED if saved else EventType.TENDER_UNSAVED,
                aggregate="tender",
                aggregate_id=str(tender_id),
                actor_id=actor.actor_id,
                occurred_at=now,
            )
        ]
        for event in events:
            stage_event(db, event)

        try:
            db.commit()
        except IntegrityError:
            # a concurrent save landed first; membership is what we wanted
            db.rollback()
            return True

        publish_committed(self.sink, events)
        logger.debug(
            "bookmark toggled",
            extra={"tender_id": str(tender_id), "user_id": actor.actor_id, "saved": saved},
        )
        return saved

    def list_saved(self, db: Session, *, actor: Actor) -> List[Tender]:
        """Saved tenders the actor can still see, most recently saved first."""
        tenders = db.execute(
            select(Tender)
            .join(TenderBookmark, TenderBookmark.tender_id == Tender.id)
            .where(TenderBookmark.user_id == actor.actor_id)
            .order_by(TenderBookmark.created_at.desc(), Tender.id.desc())
        ).scalars()
        return [t for t in tenders if can_view(actor, t)]
