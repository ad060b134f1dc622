# tender_engine/api/v1/proposals.py
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tender_engine.api.v1.deps import get_marketplace, http_error, run_transition
from tender_engine.core.auth_deps import get_current_actor
from tender_engine.core.deps_idempotency import idempotency_guard, store_idempotent_response
from tender_engine.core.deps_rate_limit import proposal_rate_limit
from tender_engine.core.errors import MarketplaceError
from tender_engine.db.session import get_db
from tender_engine.models.proposal import Proposal
from tender_engine.policies.rbac import Actor
from tender_engine.schemas.common import iso
from tender_engine.schemas.proposals import (
    ProposalCreateRequest,
    ProposalListResponse,
    ProposalPatchRequest,
    ProposalResponse,
    ProposalStatusRequest,
)
from tender_engine.services.marketplace import MarketplaceFacade

router = APIRouter(prefix="/proposals")


def proposal_to_schema(p: Proposal) -> ProposalResponse:
    return ProposalResponse(
        proposalId=str(p.id),
        tenderId=str(p.tender_id),
        bidderId=p.bidder_id,
        bidAmount=str(Decimal(p.bid_amount).quantize(Decimal("0.01"))),
        proposalText=p.proposal_text,
        estimatedTimeline=p.estimated_timeline,
        attachments=list(p.attachments or []),
        status=p.status,
        companyNotes=p.company_notes,
        withdrawalReason=p.withdrawal_reason,
        version=p.version,
        createdAtIso=iso(p.created_at),
        updatedAtIso=iso(p.updated_at),
        submittedAtIso=iso(p.submitted_at),
        decidedAtIso=iso(p.decided_at),
    )


@router.post(
    "",
    response_model=ProposalResponse,
    status_code=201,
    dependencies=[Depends(proposal_rate_limit)],
)
def create_proposal(
    req: ProposalCreateRequest,
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

    try:
        proposal = run_transition(
            db,
            lambda: facade.create_proposal(
                db,
                actor,
                req.tenderId,
                bid_amount=req.bidAmount,
                proposal_text=req.proposalText,
                estimated_timeline=req.estimatedTimeline,
                attachments=req.attachments,
            ),
            None,
        )
    except MarketplaceError as e:
        raise http_error(e)

    body = proposal_to_schema(proposal).model_dump(mode="json")
    store_idempotent_response(request, db, actor, body, 201)
    return body


@router.get("/me", response_model=ProposalListResponse)
def my_proposals(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    items = [proposal_to_schema(p) for p in facade.list_proposals_for_user(db, actor)]
    return ProposalListResponse(items=items, total=len(items))


@router.get("/{proposal_id}", response_model=ProposalResponse)
def get_proposal(
    proposal_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    try:
        proposal = facade.get_proposal(db, actor, proposal_id)
    except MarketplaceError as e:
        raise http_error(e)
    return proposal_to_schema(proposal)


@router.patch("/{proposal_id}", response_model=ProposalResponse)
def update_proposal(
    proposal_id: uuid.UUID,
    req: ProposalPatchRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    try:
        proposal = run_transition(
            db,
            lambda: facade.update_proposal(
                db,
                actor,
                proposal_id,
                bid_amount=req.bidAmount,
                proposal_text=req.proposalText,
                estimated_timeline=req.estimatedTimeline,
                attachments=req.attachments,
                expected_version=req.expectedVersion,
            ),
            req.expectedVersion,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return proposal_to_schema(proposal)


@router.post("/{proposal_id}/status", response_model=ProposalResponse)
def update_proposal_status(
    proposal_id: uuid.UUID,
    req: ProposalStatusRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    facade: MarketplaceFacade = Depends(get_marketplace),
):
    try:
        proposal = run_transition(
            db,
            lambda: facade.update_proposal_status(
                db,
                actor,
                proposal_id,
                req.status,
                notes=req.notes,
                expected_version=req.expectedVersion,
            ),
            req.expectedVersion,
        )
    except MarketplaceError as e:
        raise http_error(e)
    return proposal_to_schema(proposal)
