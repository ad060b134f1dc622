# tender_engine/api/v1/tenders.py
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Set

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tender_engine.api.v1.deps import get_marketplace, http_error, run_transition
from tender_engine.api.v1.proposals import proposal_to_schema
from tender_engine.core.auth_deps import get_current_actor
from tender_engine.core.deps_idempotency import idempotency_guard, store_idempotent_response
from tender_engine.core.errors import MarketplaceError
from tender_engine.db.session import get_db
from tender_engine.models.enums import TenderCategory, TenderStatus
from tender_engine.models.tender import Tender
from tender_engine.policies.rbac import Actor, is_owner_or_admin
from tender_engine.schemas.common import iso
from tender_engine.schemas.proposals import ProposalListResponse
from tender_engine.schemas.tenders import (
    BudgetOut,
    SaveToggleResponse,
    TenderCancelRequest,
    TenderCreateRequest,
    TenderListResponse,
    TenderPatchRequest,
    TenderResponse,
    TenderTransitionRequest,
    TenderTransitionResponse,
)
from tender_engine.services.marketplace import MarketplaceFacade
from tender_engine.services.tender_lifecycle import (
    TenderFilters,
    TenderPatch,
    TenderTerms,
    TransitionResult,
)

router = APIRouter(prefix="/tenders")


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────


def _money(value) -> str:
    return str(Decimal(value).quantize(Decimal("0.01")))


def _tender_to_schema(
    t: Tender, actor: Actor, *, saved_count: int = 0, saved_by_me: bool = False
) -> TenderResponse:
    manager = is_owner_or_admin(actor, t.owner_id)
    proposal_ids = list(t.proposal_ids or [])
    return TenderResponse(
        tenderId=str(t.id),
        ownerId=t.owner_id,
        createdBy=t.created_by,
        title=t.title,
        description=t.description,
        category=t.category,
        skillsRequired=list(t.skills_required or []),
        experienceLevel=t.experience_level,
        location=t.location,
        status=TenderStatus(t.status),
        budget=BudgetOut(
            min=_money(t.budget_min),
            max=_money(t.budget_max),
            currency=t.currency,
            isNegotiable=bool(t.is_negotiable),
        ),
        deadlineIso=iso(t.deadline),
        duration=t.duration_days,
        visibility=t.visibility,
        # competitors never see who else bid or who was invited
        invitedParties=t.invited_parties if manager else None,
        proposalIds=proposal_ids if manager else None,
        cancellationReason=t.cancellation_reason,
        proposalCount=len(proposal_ids),
        savedCount=saved_count,
        savedByMe=saved_by_me,
        views=t.views,
        version=t.version,
        createdAtIso=iso(t.created_at),
        updatedAtIso=iso(t.updated_at),
        publishedAtIso=iso(t.published_at),
        openedAtIso=iso(t.opened_at),
        closedAtIso=iso(t.closed_at),
    )


def _tenders_to_schema(
    db: Session, facade: MarketplaceFacade, actor: Actor, tenders: List[Tender]
) -> List[TenderResponse]:
    ids = [t.id for t in tenders]
    counts: Dict[uuid.UUID, int] = facade.bookmarks.saved_counts(db, ids)
    mine: Set[uuid.UUID] = facade.bookmarks.saved_subset(db, user_id=actor.actor_id, tender_ids=ids)
    return [
        _tender_to_schema(t, actor, saved_count=counts.get(t.id, 0), saved_by_me=t.id in mine)
        for t in tenders
    ]


def _detail(db: Session, facade: MarketplaceFacade, actor: Actor, t: Tender) -> TenderResponse:
    return _tenders_to_schema(db, facade, actor, [t])[0]


def _transition_to_schema(
    db: Session, facade: MarketplaceFacade, actor: Actor, result: TransitionResult
) -> TenderTransitionResponse:
    return TenderTransitionResponse(
        tender=_detail(db, facade, actor, result.tender),
        withdrawnProposalIds=result.withdrawn_proposal_ids,
        unconvertedProposalIds=result.unconverted_proposal_ids,
        degraded=result.degraded,
    )


def _split_csv(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


# ─────────────────────────────────────────────────────────────
# CREATE
# ─────────────────────────────────────────────────────────────


@router.post("", response_model=TenderResponse, status_code=201)
def create_tender(
    req: TenderCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
    _idem: Optional[str] = Depends(idempotency_guard),
):
    if request.state.idempotency_replay_json is not None:
        return JSONResponse(
            status_code=request.state.idempotency_replay_status,
            content=request.state.idempotency_replay_json,
        )

    terms = TenderTerms(
        title=req.title,
        description=req.description,
        budget_min=req.budget.min,
        budget_max=req.budget.max,
        currency=req.budget.currency,
        is_negotiable=req.budget.isNegotiable,
        deadline=req.deadline,
        duration_days=req.duration,
        category=req.category,
        skills_required=req.skillsRequired,
        experience_level=req.experienceLevel,
        location=req.location,
        visibility=req.visibility,
        invited_parties=req.invitedParties,
    )
    try:
        tender = facade.create_tender(db, actor, terms)
    except MarketplaceError as e:
        raise http_error(e)

    body = _detail(db, facade, actor, tender).model_dump(mode="json")
    store_idempotent_response(request, db, actor, body, 201)
    return body


# ─────────────────────────────────────────────────────────────
# LISTS (declared before /{tender_id})
# ─────────────────────────────────────────────────────────────


@router.get("", response_model=TenderListResponse)
def list_tenders(
    category: Optional[TenderCategory] = None,
    min_budget: Optional[Decimal] = Query(default=None, ge=0),
    max_budget: Optional[Decimal] = Query(default=None, ge=0),
    skills: Optional[str] = Query(default=None, description="comma separated, any-of"),
    search: Optional[str] = Query(default=None, max_length=200),
    status: Optional[TenderStatus] = None,
    sort: str = Query(default="created_at", pattern="^(created_at|deadline|budget_max|views)$"),
    order: str = Query(default="desc", pattern="^(asc|desc)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    filters = TenderFilters(
        category=category,
        min_budget=min_budget,
        max_budget=max_budget,
        skills=_split_csv(skills),
        search=search,
        status=status,
        sort=sort,
        order=order,
        page=page,
        limit=limit,
    )
    result = facade.list_tenders(db, actor, filters)
    return TenderListResponse(
        items=_tenders_to_schema(db, facade, actor, result.items),
        page=result.page,
        limit=result.limit,
        total=result.total,
        pages=result.pages,
    )


@router.get("/mine", response_model=List[TenderResponse])
def list_my_tenders(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    return _tenders_to_schema(db, facade, actor, facade.list_my_tenders(db, actor))


@router.get("/saved", response_model=List[TenderResponse])
def list_saved_tenders(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    return _tenders_to_schema(db, facade, actor, facade.list_saved_tenders(db, actor))


# ─────────────────────────────────────────────────────────────
# DETAIL / EDIT
# ─────────────────────────────────────────────────────────────


@router.get("/{tender_id}", response_model=TenderResponse)
def get_tender(
    tender_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    try:
        tender = facade.get_tender(db, actor, tender_id)
    except MarketplaceError as e:
        raise http_error(e)
    return _detail(db, facade, actor, tender)


@router.patch("/{tender_id}", response_model=TenderResponse)
def update_tender(
    tender_id: uuid.UUID,
    req: TenderPatchRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    budget = req.budget
    patch = TenderPatch(
        title=req.title,
        description=req.description,
        category=req.category,
        skills_required=req.skillsRequired,
        experience_level=req.experienceLevel,
        location=req.location,
        budget_min=budget.min if budget else None,
        budget_max=budget.max if budget else None,
        currency=budget.currency if budget else None,
        is_negotiable=budget.isNegotiable if budget else None,
        deadline=req.deadline,
        duration_days=req.duration,
        visibility=req.visibility,
        invited_parties=req.invitedParties,
    )
    try:
        tender = run_transition(
            db,
            lambda: facade.update_tender(
                db, actor, tender_id, patch, expected_version=req.expectedVersion
            ),
            req.expectedVersion,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return _detail(db, facade, actor, tender)


# ─────────────────────────────────────────────────────────────
# TRANSITIONS
# ─────────────────────────────────────────────────────────────


@router.post("/{tender_id}/publish", response_model=TenderResponse)
def publish_tender(
    tender_id: uuid.UUID,
    req: Optional[TenderTransitionRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    version = req.expectedVersion if req else None
    try:
        tender = run_transition(
            db,
            lambda: facade.publish_tender(db, actor, tender_id, expected_version=version),
            version,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return _detail(db, facade, actor, tender)


@router.post("/{tender_id}/open", response_model=TenderResponse)
def open_tender(
    tender_id: uuid.UUID,
    req: Optional[TenderTransitionRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    version = req.expectedVersion if req else None
    try:
        tender = run_transition(
            db,
            lambda: facade.open_tender(db, actor, tender_id, expected_version=version),
            version,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return _detail(db, facade, actor, tender)


@router.post("/{tender_id}/complete", response_model=TenderResponse)
def complete_tender(
    tender_id: uuid.UUID,
    req: Optional[TenderTransitionRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    version = req.expectedVersion if req else None
    try:
        tender = run_transition(
            db,
            lambda: facade.complete_tender(db, actor, tender_id, expected_version=version),
            version,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return _detail(db, facade, actor, tender)


@router.post("/{tender_id}/cancel", response_model=TenderTransitionResponse)
def cancel_tender(
    tender_id: uuid.UUID,
    req: Optional[TenderCancelRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    version = req.expectedVersion if req else None
    reason = req.reason if req else None
    try:
        result = run_transition(
            db,
            lambda: facade.cancel_tender(
                db, actor, tender_id, reason=reason, expected_version=version
            ),
            version,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return _transition_to_schema(db, facade, actor, result)


# ─────────────────────────────────────────────────────────────
# BOOKMARKS / PROPOSALS OF A TENDER
# ─────────────────────────────────────────────────────────────


@router.post("/{tender_id}/save", response_model=SaveToggleResponse)
def toggle_save_tender(
    tender_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    try:
        saved = facade.toggle_save_tender(db, actor, tender_id)
    except MarketplaceError as e:
        raise http_error(e)
    total = facade.bookmarks.saved_counts(db, [tender_id]).get(tender_id, 0)
    return SaveToggleResponse(tenderId=str(tender_id), saved=saved, totalSaves=total)


@router.get("/{tender_id}/proposals", response_model=ProposalListResponse)
def list_tender_proposals(
    tender_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    try:
        proposals = facade.list_proposals_for_tender(db, actor, tender_id)
    except MarketplaceError as e:
        raise http_error(e)
    items = [proposal_to_schema(p) for p in proposals]
    return ProposalListResponse(items=items, total=len(items))
