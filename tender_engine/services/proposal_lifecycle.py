#tender_engine/services/proposal_lifecycle.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tender_engine.core.errors import (
    AlreadyAccepted,
    DuplicateProposal,
    InvalidTransition,
    NotAuthorized,
    NotFound,
    StaleState,
    TenderNotOpen,
    raise_first_issue,
)
from tender_engine.core.events import DomainEvent, EventSink, EventType, LoggingEventSink
from tender_engine.models.enums import (
    ACCEPTING_TENDER_STATES,
    OPEN_PROPOSAL_STATES,
    TERMINAL_PROPOSAL_STATES,
    TERMINAL_TENDER_STATES,
    EstimatedTimeline,
    ProposalStatus,
)
from tender_engine.models.proposal import Proposal
from tender_engine.models.tender import Tender
from tender_engine.policies.rbac import SYSTEM_ACTOR, Actor, is_owner_or_admin
from tender_engine.policies.visibility import ensure_can_propose, ensure_can_view
from tender_engine.services.outbox import publish_committed, stage_event
from tender_engine.services.validator import validate_bid, validate_proposal_text

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


PROPOSAL_TRANSITIONS: Dict[ProposalStatus, FrozenSet[ProposalStatus]] = {
    ProposalStatus.submitted: frozenset(
        {ProposalStatus.under_review, ProposalStatus.withdrawn}
    ),
    ProposalStatus.under_review: frozenset(
        {ProposalStatus.shortlisted, ProposalStatus.rejected, ProposalStatus.withdrawn}
    ),
    ProposalStatus.shortlisted: frozenset(
        {ProposalStatus.accepted, ProposalStatus.rejected, ProposalStatus.withdrawn}
    ),
    ProposalStatus.accepted: frozenset(),
    ProposalStatus.rejected: frozenset(),
    ProposalStatus.withdrawn: frozenset(),
}

_STATUS_EVENTS = {
    ProposalStatus.under_review: EventType.PROPOSAL_UNDER_REVIEW,
    ProposalStatus.shortlisted: EventType.PROPOSAL_SHORTLISTED,
    ProposalStatus.accepted: EventType.PROPOSAL_ACCEPTED,
    ProposalStatus.rejected: EventType.PROPOSAL_REJECTED,
    ProposalStatus.withdrawn: EventType.PROPOSAL_WITHDRAWN,
}

CANCELLATION_WITHDRAWAL_REASON = "Tender was cancelled by its owner."


class ProposalLifecycleManager:
    """
    Bid creation and the proposal state machine.

    Owner-driven moves (review, shortlist, accept, reject) belong to the
    tender owner or an admin; withdrawal belongs to the bidder alone, plus
    the system cascade when a tender is cancelled.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink or LoggingEventSink()

    # -----------------------------------------------------------------
    # reads
    # -----------------------------------------------------------------

    def _get_tender(self, db: Session, tender_id: uuid.UUID, *, lock: bool = False) -> Tender:
        stmt = select(Tender).where(Tender.id == tender_id)
        if lock:
            stmt = stmt.with_for_update()
        tender = db.execute(stmt).scalar_one_or_none()
        if not tender:
            raise NotFound("Tender not found.")
        return tender

    def _get_proposal(
        self, db: Session, proposal_id: uuid.UUID, *, lock: bool = False
    ) -> Proposal:
        stmt = select(Proposal).where(Proposal.id == proposal_id)
        if lock:
            stmt = stmt.with_for_update()
        proposal = db.execute(stmt).scalar_one_or_none()
        if not proposal:
            raise NotFound("Proposal not found.")
        return proposal

    def get(self, db: Session, *, actor: Actor, proposal_id: uuid.UUID) -> Proposal:
        proposal = self._get_proposal(db, proposal_id)
        if proposal.bidder_id == actor.actor_id:
            return proposal
        tender = self._get_tender(db, proposal.tender_id)
        if not is_owner_or_admin(actor, tender.owner_id):
            raise NotFound("Proposal not found.")
        return proposal

    def pending_for_tender(self, db: Session, tender_id: uuid.UUID) -> List[Proposal]:
        """Proposals on the tender still awaiting a decision."""
        return list(
            db.execute(
                select(Proposal)
                .where(
                    Proposal.tender_id == tender_id,
                    Proposal.status.in_([s.value for s in OPEN_PROPOSAL_STATES]),
                )
                .order_by(Proposal.submitted_at.asc(), Proposal.id.asc())
            ).scalars()
        )

    def list_for_tender(
        self, db: Session, *, actor: Actor, tender_id: uuid.UUID
    ) -> List[Proposal]:
        tender = self._get_tender(db, tender_id)
        ensure_can_view(actor, tender)
        if not is_owner_or_admin(actor, tender.owner_id):
            raise NotAuthorized("Only the tender owner or an admin may list its proposals.")
        return list(
            db.execute(
                select(Proposal)
                .where(Proposal.tender_id == tender_id)
                .order_by(Proposal.submitted_at.asc(), Proposal.id.asc())
            ).scalars()
        )

    def list_for_user(self, db: Session, *, actor: Actor) -> List[Proposal]:
        return list(
            db.execute(
                select(Proposal)
                .where(Proposal.bidder_id == actor.actor_id)
                .order_by(Proposal.submitted_at.desc(), Proposal.id.desc())
            ).scalars()
        )

    # -----------------------------------------------------------------
    # create / edit
    # -----------------------------------------------------------------

    def create(
        self,
        db: Session,
        *,
        actor: Actor,
        tender_id: uuid.UUID,
        bid_amount: Decimal,
        proposal_text: str,
        estimated_timeline: EstimatedTimeline,
        attachments: Optional[Sequence[str]] = None,
    ) -> Proposal:
        tender = self._get_tender(db, tender_id, lock=True)

        if tender.status_enum not in ACCEPTING_TENDER_STATES:
            # a closed tender the actor cannot see answers like a missing one
            ensure_can_view(actor, tender)
            raise TenderNotOpen(tender.status)

        ensure_can_propose(actor, tender)

        live = db.execute(
            select(Proposal.id).where(
                Proposal.tender_id == tender.id,
                Proposal.bidder_id == actor.actor_id,
                Proposal.status != ProposalStatus.withdrawn.value,
            )
        ).first()
        if live:
            raise DuplicateProposal(
                "You already have an active proposal for this tender.",
                proposalId=str(live[0]),
            )

        raise_first_issue(validate_bid(Decimal(bid_amount), tender.budget_max))
        raise_first_issue(validate_proposal_text(proposal_text))

        now = _now()
        proposal = Proposal(
            id=uuid.uuid4(),
            tender_id=tender.id,
            bidder_id=actor.actor_id,
            bid_amount=Decimal(bid_amount),
            proposal_text=proposal_text,
            estimated_timeline=EstimatedTimeline(estimated_timeline).value,
            attachments=list(attachments or []),
            status=ProposalStatus.submitted.value,
            created_at=now,
            updated_at=now,
            submitted_at=now,
        )
        db.add(proposal)

        # new list object so the JSON column is flagged dirty and the
        # tender version moves with the proposal insert
        tender.proposal_ids = [*(tender.proposal_ids or []), str(proposal.id)]
        tender.updated_at = now

        events = [
            DomainEvent(
                event_type=EventType.PROPOSAL_SUBMITTED,
                aggregate="proposal",
                aggregate_id=str(proposal.id),
                actor_id=actor.actor_id,
                payload={
                    "tenderId": tender.id,
                    "ownerId": tender.owner_id,
                    "bidAmount": proposal.bid_amount,
                    "currency": tender.currency,
                },
                occurred_at=now,
            )
        ]
        for event in events:
            stage_event(db, event)

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise DuplicateProposal("You already have an active proposal for this tender.")
        except StaleDataError:
            db.rollback()
            raise StaleState("Tender", tender_id)

        db.refresh(proposal)
        publish_committed(self.sink, events)

        logger.info(
            "proposal submitted",
            extra={
                "proposal_id": str(proposal.id),
                "tender_id": str(tender_id),
                "bidder_id": actor.actor_id,
            },
        )
        return proposal

    def update(
        self,
        db: Session,
        *,
        actor: Actor,
        proposal_id: uuid.UUID,
        bid_amount: Optional[Decimal] = None,
        proposal_text: Optional[str] = None,
        estimated_timeline: Optional[EstimatedTimeline] = None,
        attachments: Optional[Sequence[str]] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        """Bidder edits their own bid while it is undecided and the tender accepts bids."""
        proposal = self._get_proposal(db, proposal_id, lock=True)
        if proposal.bidder_id != actor.actor_id:
            raise NotAuthorized("Only the bidder may edit this proposal.")

        if expected_version is not None and proposal.version != expected_version:
            raise StaleState("Proposal", proposal_id)

        if proposal.status_enum in TERMINAL_PROPOSAL_STATES:
            raise InvalidTransition("Proposal", proposal.status, "edited")

        tender = self._get_tender(db, proposal.tender_id)
        if tender.status_enum not in ACCEPTING_TENDER_STATES:
            raise TenderNotOpen(tender.status)

        # validate everything before touching the row
        if bid_amount is not None:
            raise_first_issue(validate_bid(Decimal(bid_amount), tender.budget_max))
        if proposal_text is not None:
            raise_first_issue(validate_proposal_text(proposal_text))

        changed: List[str] = []
        if bid_amount is not None:
            proposal.bid_amount = Decimal(bid_amount)
            changed.append("bidAmount")
        if proposal_text is not None:
            proposal.proposal_text = proposal_text
            changed.append("proposalText")
        if estimated_timeline is not None:
            proposal.estimated_timeline = EstimatedTimeline(estimated_timeline).value
            changed.append("estimatedTimeline")
        if attachments is not None:
            proposal.attachments = list(attachments)
            changed.append("attachments")

        if not changed:
            return proposal

        now = _now()
        proposal.updated_at = now
        events = [
            DomainEvent(
                event_type=EventType.PROPOSAL_UPDATED,
                aggregate="proposal",
                aggregate_id=str(proposal.id),
                actor_id=actor.actor_id,
                payload={"tenderId": tender.id, "fields": changed},
                occurred_at=now,
            )
        ]
        for event in events:
            stage_event(db, event)

        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise StaleState("Proposal", proposal_id)

        db.refresh(proposal)
        publish_committed(self.sink, events)
        return proposal

    # -----------------------------------------------------------------
    # state machine
    # -----------------------------------------------------------------

    def update_status(
        self,
        db: Session,
        *,
        actor: Actor,
        proposal_id: uuid.UUID,
        target: ProposalStatus,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Proposal:
        target = ProposalStatus(target)
        proposal = self._get_proposal(db, proposal_id, lock=True)
        tender = self._get_tender(db, proposal.tender_id)
        current = proposal.status_enum

        if target == ProposalStatus.withdrawn:
            if proposal.bidder_id != actor.actor_id:
                if is_owner_or_admin(actor, tender.owner_id):
                    raise NotAuthorized("Only the bidder may withdraw a proposal.")
                raise NotFound("Proposal not found.")
            if current == ProposalStatus.withdrawn:
                # repeat withdrawals converge
                return proposal
        elif not is_owner_or_admin(actor, tender.owner_id):
            if proposal.bidder_id == actor.actor_id:
                raise NotAuthorized("Only the tender owner or an admin may decide on proposals.")
            raise NotFound("Proposal not found.")

        if expected_version is not None and proposal.version != expected_version:
            raise StaleState("Proposal", proposal_id)

        if target not in PROPOSAL_TRANSITIONS[current]:
            raise InvalidTransition("Proposal", current.value, target.value)

        if target != ProposalStatus.withdrawn and tender.status_enum in TERMINAL_TENDER_STATES:
            raise TenderNotOpen(tender.status)

        if target == ProposalStatus.accepted:
            accepted = db.execute(
                select(Proposal.id).where(
                    Proposal.tender_id == tender.id,
                    Proposal.status == ProposalStatus.accepted.value,
                    Proposal.id != proposal.id,
                )
            ).first()
            if accepted:
                raise AlreadyAccepted(
                    "Another proposal for this tender has already been accepted.",
                    acceptedProposalId=str(accepted[0]),
                )

        now = _now()
        proposal.status = target.value
        proposal.updated_at = now
        if target in TERMINAL_PROPOSAL_STATES:
            proposal.decided_at = now
        if notes is not None:
            if target == ProposalStatus.withdrawn:
                proposal.withdrawal_reason = notes
            else:
                proposal.company_notes = notes

        events = [
            DomainEvent(
                event_type=_STATUS_EVENTS[target],
                aggregate="proposal",
                aggregate_id=str(proposal.id),
                actor_id=actor.actor_id,
                payload={
                    "tenderId": tender.id,
                    "bidderId": proposal.bidder_id,
                    "from": current.value,
                    "to": target.value,
                },
                occurred_at=now,
            )
        ]
        for event in events:
            stage_event(db, event)

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if target == ProposalStatus.accepted:
                raise AlreadyAccepted(
                    "Another proposal for this tender has already been accepted."
                )
            raise
        except StaleDataError:
            db.rollback()
            raise StaleState("Proposal", proposal_id)

        db.refresh(proposal)
        publish_committed(self.sink, events)

        logger.info(
            "proposal transition",
            extra={
                "proposal_id": str(proposal.id),
                "tender_id": str(tender.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor_id": actor.actor_id,
            },
        )
        return proposal

    def withdraw_for_cancellation(
        self,
        db: Session,
        proposal_id: uuid.UUID,
        *,
        reason: str = CANCELLATION_WITHDRAWAL_REASON,
        attempts: int = 2,
    ) -> Proposal:
        """
        System withdrawal used by the tender cancel cascade.

        A proposal that is already terminal (the bidder withdrew it first, or
        it was decided) is returned untouched. A version race is re-read and
        retried; StaleState escapes only when every attempt lost.
        """
        for _ in range(attempts):
            proposal = db.get(Proposal, proposal_id, populate_existing=True, with_for_update=True)
            if proposal is None:
                raise NotFound("Proposal not found.")
            if proposal.status_enum in TERMINAL_PROPOSAL_STATES:
                return proposal

            now = _now()
            previous = proposal.status
            proposal.status = ProposalStatus.withdrawn.value
            proposal.withdrawal_reason = reason
            proposal.decided_at = now
            proposal.updated_at = now

            events = [
                DomainEvent(
                    event_type=EventType.PROPOSAL_WITHDRAWN,
                    aggregate="proposal",
                    aggregate_id=str(proposal.id),
                    actor_id=SYSTEM_ACTOR.actor_id,
                    payload={
                        "tenderId": proposal.tender_id,
                        "bidderId": proposal.bidder_id,
                        "from": previous,
                        "to": ProposalStatus.withdrawn.value,
                        "reason": reason,
                    },
                    occurred_at=now,
                )
            ]
            for event in events:
                stage_event(db, event)

            try:
                db.commit()
            except StaleDataError:
                db.rollback()
                continue

            db.refresh(proposal)
            publish_committed(self.sink, events)
            return proposal

        raise StaleState("Proposal", proposal_id)
