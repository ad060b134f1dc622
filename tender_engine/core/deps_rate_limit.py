from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, Request

from tender_engine.core.auth_deps import get_current_actor
from tender_engine.core.config import get_settings
from tender_engine.core.rate_limit import InMemoryRateLimiter
from tender_engine.policies.rbac import Actor


@lru_cache(maxsize=1)
def get_proposal_limiter() -> InMemoryRateLimiter:
    # default: 10 submissions per minute per actor
    settings = get_settings()
    return InMemoryRateLimiter(
        capacity=settings.proposal_rate_capacity,
        refill_per_sec=settings.proposal_rate_per_minute / 60.0,
    )


async def proposal_rate_limit(
    request: Request,
    actor: Actor = Depends(get_current_actor),
) -> None:
    """
    Applies to proposal submission only; keyed by actor, not IP.
    """
    route_key = f"{request.method}:{request.url.path}"
    if not get_proposal_limiter().allow(actor.actor_id, route_key):
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded for proposal submission.",
            headers={"Retry-After": "60"},
        )
