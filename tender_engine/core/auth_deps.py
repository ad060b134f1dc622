#tender_engine/core/auth_deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from tender_engine.core.security import decode_token
from tender_engine.models.enums import ActorRole
from tender_engine.policies.rbac import Actor

bearer = HTTPBearer(auto_error=True)


def get_current_actor(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Actor:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid
    - sub and role are present
    - role is a valid ActorRole (the internal `system` role is never
      accepted from a token)
    """

    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    actor_id = payload.get("sub")
    role = payload.get("role")
    org_id = payload.get("org_id")
    display_name = payload.get("display_name") or "Unknown"

    if not role or not actor_id:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        role_enum = ActorRole(role)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    if role_enum == ActorRole.SYSTEM:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    actor = Actor(
        actor_id=str(actor_id),
        role=role_enum,
        organization_id=str(org_id) if org_id else None,
        display_name=str(display_name),
    )

    # Make actor available to downstream dependencies / handlers
    request.state.actor = actor

    return actor
