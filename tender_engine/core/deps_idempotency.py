from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from tender_engine.core.auth_deps import get_current_actor
from tender_engine.db.session import get_db
from tender_engine.policies.rbac import Actor
from tender_engine.services.idempotency_service import (
    IdempotencyConflict,
    IdempotencyService,
)


async def optional_idempotency_key(request: Request) -> Optional[str]:
    key = request.headers.get("Idempotency-Key")
    if key is None:
        return None
    key = key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="Empty Idempotency-Key header.")
    if len(key) > 128:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long.")
    return key


async def idempotency_guard(
    request: Request,
    idem_key: Optional[str] = Depends(optional_idempotency_key),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Optional[str]:
    """
    Use on create endpoints. Without the header the request runs normally.

    Stores in request.state:
      - idempotency_key
      - idempotency_endpoint_key
      - idempotency_request_hash
      - idempotency_replay_json / idempotency_replay_status (on replay)
    """
    request.state.idempotency_key = idem_key
    request.state.idempotency_replay_json = None
    request.state.idempotency_replay_status = None
    if idem_key is None:
        return None

    endpoint_key = f"{request.method}:{request.url.path}"

    # Read JSON body once and cache it
    try:
        payload = await request.json()
    except ValueError:
        payload = {}

    svc = IdempotencyService()
    try:
        replay_json, replay_status, req_hash = svc.reserve_or_replay(
            db,
            actor_id=actor.actor_id,
            endpoint_key=endpoint_key,
            idem_key=idem_key,
            request_payload=payload if isinstance(payload, dict) else {"_": payload},
        )
    except IdempotencyConflict as e:
        raise HTTPException(
            status_code=409, detail={"code": "IdempotencyConflict", "message": str(e)}
        )

    request.state.idempotency_endpoint_key = endpoint_key
    request.state.idempotency_request_hash = req_hash
    request.state.idempotency_replay_json = replay_json
    request.state.idempotency_replay_status = replay_status

    return idem_key


def store_idempotent_response(
    request: Request, db: Session, actor: Actor, body: dict, status_code: int
) -> None:
    if not getattr(request.state, "idempotency_key", None):
        return
    IdempotencyService().store_response(
        db,
        actor_id=actor.actor_id,
        endpoint_key=request.state.idempotency_endpoint_key,
        idem_key=request.state.idempotency_key,
        request_hash=request.state.idempotency_request_hash,
        response_json=body,
        response_status=status_code,
    )
