#tender_engine/services/tender_lifecycle.py
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Sequence

from sqlalchemy import String, and_, cast, exists, false, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tender_engine.core.errors import (
    BidOutOfRange,
    InvalidTransition,
    MarketplaceError,
    NotAuthorized,
    NotFound,
    PendingDecisions,
    StaleState,
    raise_if_issues,
)
from tender_engine.core.events import DomainEvent, EventSink, EventType, LoggingEventSink
from tender_engine.models.enums import (
    ACCEPTING_TENDER_STATES,
    TERMINAL_TENDER_STATES,
    ExperienceLevel,
    ProposalStatus,
    TenderCategory,
    TenderStatus,
    Visibility,
)
from tender_engine.models.proposal import Proposal
from tender_engine.models.tender import Tender
from tender_engine.models.tender_invitation import TenderInvitation
from tender_engine.policies.rbac import (
    ACTION_CREATE_TENDER,
    BIDDER_ROLES,
    Actor,
    is_owner_or_admin,
    require_action,
)
from tender_engine.policies.visibility import ensure_can_view
from tender_engine.services.outbox import publish_committed, stage_event
from tender_engine.services.proposal_lifecycle import (
    CANCELLATION_WITHDRAWAL_REASON,
    ProposalLifecycleManager,
)
from tender_engine.services.validator import (
    BID_CAP_MULTIPLIER,
    as_utc,
    validate_budget,
    validate_schedule,
    validate_tender_terms,
)

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


TENDER_TRANSITIONS: Dict[TenderStatus, FrozenSet[TenderStatus]] = {
    TenderStatus.draft: frozenset({TenderStatus.published, TenderStatus.cancelled}),
    TenderStatus.published: frozenset({TenderStatus.open, TenderStatus.cancelled}),
    TenderStatus.open: frozenset({TenderStatus.completed, TenderStatus.cancelled}),
    TenderStatus.completed: frozenset(),
    TenderStatus.cancelled: frozenset(),
}

# targets an external sweep (system actor) may drive
SYSTEM_TARGETS = frozenset({TenderStatus.open, TenderStatus.cancelled})

_TRANSITION_EVENTS = {
    TenderStatus.published: EventType.TENDER_PUBLISHED,
    TenderStatus.open: EventType.TENDER_OPENED,
    TenderStatus.completed: EventType.TENDER_COMPLETED,
    TenderStatus.cancelled: EventType.TENDER_CANCELLED,
}

SORT_COLUMNS = {
    "created_at": Tender.created_at,
    "deadline": Tender.deadline,
    "budget_max": Tender.budget_max,
    "views": Tender.views,
}

MAX_PAGE_SIZE = 100


@dataclass
class TenderTerms:
    title: str
    description: str
    budget_min: Decimal
    budget_max: Decimal
    deadline: datetime
    duration_days: int
    currency: str = "ETB"
    is_negotiable: bool = False
    category: TenderCategory = TenderCategory.other
    skills_required: List[str] = field(default_factory=list)
    experience_level: ExperienceLevel = ExperienceLevel.intermediate
    location: str = "anywhere"
    visibility: Visibility = Visibility.public
    invited_parties: List[str] = field(default_factory=list)


@dataclass
class TenderPatch:
    """Partial update; a None field is left unchanged."""

    title: Optional[str] = None
    description: Optional[str] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    deadline: Optional[datetime] = None
    duration_days: Optional[int] = None
    currency: Optional[str] = None
    is_negotiable: Optional[bool] = None
    category: Optional[TenderCategory] = None
    skills_required: Optional[List[str]] = None
    experience_level: Optional[ExperienceLevel] = None
    location: Optional[str] = None
    visibility: Optional[Visibility] = None
    invited_parties: Optional[List[str]] = None

    def provided(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass
class TenderFilters:
    category: Optional[TenderCategory] = None
    min_budget: Optional[Decimal] = None
    max_budget: Optional[Decimal] = None
    skills: List[str] = field(default_factory=list)
    search: Optional[str] = None
    status: Optional[TenderStatus] = None
    sort: str = "created_at"
    order: str = "desc"
    page: int = 1
    limit: int = 20


@dataclass
class Page:
    items: List[Tender]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class TransitionResult:
    """
    Outcome of a tender transition. For a cancel, the proposals the cascade
    withdrew and the ones it could not convert (degraded success).
    """

    tender: Tender
    withdrawn_proposal_ids: List[str] = field(default_factory=list)
    unconverted_proposal_ids: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.unconverted_proposal_ids)


# what a cancel returns
CancellationReport = TransitionResult


def _clean_parties(parties: Optional[Sequence[str]]) -> List[str]:
    seen: List[str] = []
    for p in parties or []:
        p = (p or "").strip()
        if p and p not in seen:
            seen.append(p)
    return seen


def _clean_skills(skills: Optional[Sequence[str]]) -> List[str]:
    return [s.strip() for s in skills or [] if s and s.strip()]


class TenderLifecycleManager:
    def __init__(
        self,
        proposals: Optional[ProposalLifecycleManager] = None,
        sink: Optional[EventSink] = None,
    ):
        self.sink = sink or LoggingEventSink()
        self.proposals = proposals or ProposalLifecycleManager(self.sink)

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

    def _bids_over_cap(
        self, db: Session, tender: Tender, budget_max: Decimal
    ) -> List[BidOutOfRange]:
        """Live bids must stay within the cap the new maximum implies."""
        highest = db.execute(
            select(func.max(Proposal.bid_amount)).where(
                Proposal.tender_id == tender.id,
                Proposal.status != ProposalStatus.withdrawn.value,
            )
        ).scalar()
        if highest is None:
            return []
        highest = Decimal(str(highest))
        cap = BID_CAP_MULTIPLIER * budget_max
        if highest <= cap:
            return []
        return [
            BidOutOfRange(
                f"A live bid of {highest} exceeds {cap} (twice the new budget maximum).",
                field="budget.max",
                cap=str(cap),
                highestBid=str(highest),
            )
        ]

    def _require_manager(self, actor: Actor, tender: Tender) -> None:
        # outsiders get the same answer as for a missing tender
        ensure_can_view(actor, tender)
        if not is_owner_or_admin(actor, tender.owner_id):
            raise NotAuthorized("Only the tender owner or an admin may do this.")

    def get(self, db: Session, *, actor: Actor, tender_id: uuid.UUID) -> Tender:
        tender = self._get_tender(db, tender_id)
        ensure_can_view(actor, tender)
        return tender

    def get_for_viewer(self, db: Session, *, actor: Actor, tender_id: uuid.UUID) -> Tender:
        """Visibility-checked detail read; counts a view."""
        tender = self.get(db, actor=actor, tender_id=tender_id)

        # plain SQL increment: no version bump, no lost updates
        db.execute(
            update(Tender)
            .where(Tender.id == tender.id)
            .values(views=Tender.views + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(tender)
        return tender

    def _visible_clause(self, actor: Actor, now: datetime):
        party_ids = sorted({actor.actor_id, actor.party_id})
        owned = Tender.owner_id.in_(party_ids)

        invited = exists(
            select(TenderInvitation.id).where(
                TenderInvitation.tender_id == Tender.id,
                TenderInvitation.party_id.in_(party_ids),
            )
        )
        public_ok = (
            Tender.visibility == Visibility.public.value
            if actor.role in BIDDER_ROLES
            else false()
        )
        listed = and_(
            Tender.status.in_([s.value for s in ACCEPTING_TENDER_STATES]),
            Tender.deadline > now,
            or_(
                public_ok,
                and_(Tender.visibility == Visibility.invite_only.value, invited),
            ),
        )
        return or_(owned, listed)

    def list_visible(
        self,
        db: Session,
        *,
        actor: Actor,
        filters: Optional[TenderFilters] = None,
        now: Optional[datetime] = None,
    ) -> Page:
        filters = filters or TenderFilters()
        now = as_utc(now or _now())

        page = max(1, int(filters.page))
        limit = min(MAX_PAGE_SIZE, max(1, int(filters.limit)))

        stmt = select(Tender)
        if not actor.is_admin:
            stmt = stmt.where(self._visible_clause(actor, now))

        if filters.status is not None:
            stmt = stmt.where(Tender.status == TenderStatus(filters.status).value)
        if filters.category is not None:
            stmt = stmt.where(Tender.category == TenderCategory(filters.category).value)
        if filters.min_budget is not None:
            stmt = stmt.where(Tender.budget_min >= filters.min_budget)
        if filters.max_budget is not None:
            stmt = stmt.where(Tender.budget_max <= filters.max_budget)

        skills = _clean_skills(filters.skills)
        if skills:
            # substring match on the serialized list works for JSON and JSONB alike
            skills_text = cast(Tender.skills_required, String)
            stmt = stmt.where(
                or_(*[skills_text.icontains(s, autoescape=True) for s in skills])
            )

        if filters.search:
            q = filters.search.strip()
            stmt = stmt.where(
                or_(
                    Tender.title.icontains(q, autoescape=True),
                    Tender.description.icontains(q, autoescape=True),
                )
            )

        total = db.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()

        column = SORT_COLUMNS.get(filters.sort, Tender.created_at)
        if filters.order == "asc":
            stmt = stmt.order_by(column.asc(), Tender.id.asc())
        else:
            stmt = stmt.order_by(column.desc(), Tender.id.desc())

        items = list(db.execute(stmt.offset((page - 1) * limit).limit(limit)).scalars())
        return Page(items=items, page=page, limit=limit, total=int(total))

    def list_owned(self, db: Session, *, actor: Actor) -> List[Tender]:
        return list(
            db.execute(
                select(Tender)
                .where(Tender.owner_id.in_(sorted({actor.actor_id, actor.party_id})))
                .order_by(Tender.created_at.desc(), Tender.id.desc())
            ).scalars()
        )

    def list_expired(self, db: Session, *, now: Optional[datetime] = None) -> List[Tender]:
        """Published/open tenders past their deadline, for an external sweep."""
        now = as_utc(now or _now())
        return list(
            db.execute(
                select(Tender)
                .where(
                    Tender.status.in_([s.value for s in ACCEPTING_TENDER_STATES]),
                    Tender.deadline <= now,
                )
                .order_by(Tender.deadline.asc(), Tender.id.asc())
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
        terms: TenderTerms,
        now: Optional[datetime] = None,
    ) -> Tender:
        require_action(actor, ACTION_CREATE_TENDER)
        now = as_utc(now or _now())

        raise_if_issues(
            validate_tender_terms(
                budget_min=Decimal(terms.budget_min),
                budget_max=Decimal(terms.budget_max),
                currency=terms.currency,
                deadline=terms.deadline,
                duration_days=terms.duration_days,
                now=now,
            )
        )

        tender = Tender(
            id=uuid.uuid4(),
            owner_id=actor.party_id,
            created_by=actor.actor_id,
            title=terms.title.strip(),
            description=terms.description.strip(),
            category=TenderCategory(terms.category).value,
            skills_required=_clean_skills(terms.skills_required),
            experience_level=ExperienceLevel(terms.experience_level).value,
            location=(terms.location or "anywhere").strip(),
            status=TenderStatus.draft.value,
            budget_min=Decimal(terms.budget_min),
            budget_max=Decimal(terms.budget_max),
            currency=terms.currency,
            is_negotiable=bool(terms.is_negotiable),
            deadline=as_utc(terms.deadline),
            duration_days=int(terms.duration_days),
            visibility=Visibility(terms.visibility).value,
            proposal_ids=[],
            views=0,
            created_at=now,
            updated_at=now,
        )
        for party_id in _clean_parties(terms.invited_parties):
            tender.invitations.append(TenderInvitation(party_id=party_id))
        db.add(tender)

        events = [
            DomainEvent(
                event_type=EventType.TENDER_CREATED,
                aggregate="tender",
                aggregate_id=str(tender.id),
                actor_id=actor.actor_id,
                payload={"ownerId": tender.owner_id, "visibility": tender.visibility},
                occurred_at=now,
            )
        ]
        for event in events:
            stage_event(db, event)

        db.commit()
        db.refresh(tender)
        publish_committed(self.sink, events)

        logger.info(
            "tender created",
            extra={"tender_id": str(tender.id), "owner_id": tender.owner_id},
        )
        return tender

    def update(
        self,
        db: Session,
        *,
        actor: Actor,
        tender_id: uuid.UUID,
        patch: TenderPatch,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Tender:
        now = as_utc(now or _now())
        tender = self._get_tender(db, tender_id, lock=True)
        self._require_manager(actor, tender)

        if expected_version is not None and tender.version != expected_version:
            raise StaleState("Tender", tender_id)

        if tender.status_enum in TERMINAL_TENDER_STATES:
            raise InvalidTransition("Tender", tender.status, "updated")

        changes = patch.provided()
        if not changes:
            return tender

        budget_min = Decimal(changes.get("budget_min", tender.budget_min))
        budget_max = Decimal(changes.get("budget_max", tender.budget_max))
        currency = changes.get("currency", tender.currency)
        deadline = changes.get("deadline", tender.deadline)
        duration_days = changes.get("duration_days", tender.duration_days)

        issues = validate_budget(budget_min, budget_max, currency)
        if budget_max != tender.budget_max:
            issues += self._bids_over_cap(db, tender, budget_max)
        schedule_touched = "deadline" in changes or "duration_days" in changes
        if schedule_touched or tender.status_enum != TenderStatus.draft:
            issues += validate_schedule(deadline, duration_days, now)
        raise_if_issues(issues)

        tender.budget_min = budget_min
        tender.budget_max = budget_max
        tender.currency = currency
        tender.deadline = as_utc(deadline)
        tender.duration_days = int(duration_days)

        if "title" in changes:
            tender.title = changes["title"].strip()
        if "description" in changes:
            tender.description = changes["description"].strip()
        if "category" in changes:
            tender.category = TenderCategory(changes["category"]).value
        if "skills_required" in changes:
            tender.skills_required = _clean_skills(changes["skills_required"])
        if "experience_level" in changes:
            tender.experience_level = ExperienceLevel(changes["experience_level"]).value
        if "location" in changes:
            tender.location = changes["location"].strip() or "anywhere"
        if "is_negotiable" in changes:
            tender.is_negotiable = bool(changes["is_negotiable"])
        if "visibility" in changes:
            tender.visibility = Visibility(changes["visibility"]).value
        if "invited_parties" in changes:
            wanted = _clean_parties(changes["invited_parties"])
            for inv in list(tender.invitations):
                if inv.party_id not in wanted:
                    tender.invitations.remove(inv)
            have = {inv.party_id for inv in tender.invitations}
            for party_id in wanted:
                if party_id not in have:
                    tender.invitations.append(TenderInvitation(party_id=party_id))

        tender.updated_at = now

        events = [
            DomainEvent(
                event_type=EventType.TENDER_UPDATED,
                aggregate="tender",
                aggregate_id=str(tender.id),
                actor_id=actor.actor_id,
                payload={"fields": sorted(changes)},
                occurred_at=now,
            )
        ]
        for event in events:
            stage_event(db, event)

        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise StaleState("Tender", tender_id)

        db.refresh(tender)
        publish_committed(self.sink, events)
        return tender

    # -----------------------------------------------------------------
    # state machine
    # -----------------------------------------------------------------

    def _authorize_transition(self, actor: Actor, tender: Tender, target: TenderStatus) -> None:
        if actor.is_system:
            if target not in SYSTEM_TARGETS:
                raise NotAuthorized(f"System actor may not move a tender to '{target.value}'.")
            return
        self._require_manager(actor, tender)

    def transition(
        self,
        db: Session,
        *,
        actor: Actor,
        tender_id: uuid.UUID,
        target: TenderStatus,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        target = TenderStatus(target)
        now = as_utc(now or _now())

        tender = self._get_tender(db, tender_id, lock=True)
        self._authorize_transition(actor, tender, target)

        if expected_version is not None and tender.version != expected_version:
            raise StaleState("Tender", tender_id)

        current = tender.status_enum
        if target not in TENDER_TRANSITIONS[current]:
            raise InvalidTransition("Tender", current.value, target.value)

        if target == TenderStatus.published:
            # a draft may have sat for a while; the deadline is checked again
            raise_if_issues(
                validate_tender_terms(
                    budget_min=tender.budget_min,
                    budget_max=tender.budget_max,
                    currency=tender.currency,
                    deadline=tender.deadline,
                    duration_days=tender.duration_days,
                    now=now,
                )
            )
            tender.published_at = now
        elif target == TenderStatus.open:
            tender.opened_at = now
        elif target == TenderStatus.completed:
            pending = self.proposals.pending_for_tender(db, tender.id)
            if pending:
                raise PendingDecisions([p.id for p in pending])
            tender.closed_at = now
        elif target == TenderStatus.cancelled:
            tender.closed_at = now
            tender.cancellation_reason = reason

        tender.status = target.value
        tender.updated_at = now

        events = [
            DomainEvent(
                event_type=_TRANSITION_EVENTS[target],
                aggregate="tender",
                aggregate_id=str(tender.id),
                actor_id=actor.actor_id,
                payload={"from": current.value, "to": target.value, "reason": reason},
                occurred_at=now,
            )
        ]
        for event in events:
            stage_event(db, event)

        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise StaleState("Tender", tender_id)

        db.refresh(tender)
        publish_committed(self.sink, events)

        logger.info(
            "tender transition",
            extra={
                "tender_id": str(tender.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor_id": actor.actor_id,
            },
        )

        result = TransitionResult(tender=tender)
        if target == TenderStatus.cancelled:
            self._cascade_withdraw(db, result)
        return result

    def _cascade_withdraw(self, db: Session, result: TransitionResult) -> None:
        tender = result.tender
        pending_ids = [p.id for p in self.proposals.pending_for_tender(db, tender.id)]

        for proposal_id in pending_ids:
            try:
                proposal = self.proposals.withdraw_for_cancellation(
                    db, proposal_id, reason=CANCELLATION_WITHDRAWAL_REASON
                )
            except (MarketplaceError, SQLAlchemyError):
                db.rollback()
                logger.warning(
                    "cascade withdrawal failed",
                    extra={"tender_id": str(tender.id), "proposal_id": str(proposal_id)},
                    exc_info=True,
                )
                result.unconverted_proposal_ids.append(str(proposal_id))
                continue

            if proposal.status == ProposalStatus.withdrawn.value:
                result.withdrawn_proposal_ids.append(str(proposal_id))

        db.refresh(tender)

    def reconcile_cancelled(
        self, db: Session, *, actor: Actor, tender_id: uuid.UUID
    ) -> TransitionResult:
        """
        Re-run the withdrawal cascade of a cancelled tender, converging any
        proposal an earlier cancel reported as unconverted.
        """
        tender = self._get_tender(db, tender_id)
        if not actor.is_system:
            self._require_manager(actor, tender)
        if tender.status_enum != TenderStatus.cancelled:
            raise InvalidTransition("Tender", tender.status, TenderStatus.cancelled.value)

        result = TransitionResult(tender=tender)
        self._cascade_withdraw(db, result)
        return result
