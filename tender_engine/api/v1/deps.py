from __future__ import annotations

from typing import Callable, Optional, TypeVar

from fastapi import HTTPException, Request

from tender_engine.core.config import get_settings
from tender_engine.core.errors import MarketplaceError
from tender_engine.services.marketplace import MarketplaceFacade, retry_on_stale

T = TypeVar("T")


def get_marketplace(request: Request) -> MarketplaceFacade:
    return request.app.state.marketplace


def http_error(e: MarketplaceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.to_detail())


def run_transition(db, fn: Callable[[], T], expected_version: Optional[int]) -> T:
    """
    A client that sent expectedVersion gets StaleState back as-is; otherwise
    the server re-reads and retries a bounded number of times.
    """
    if expected_version is not None:
        return fn()
    return retry_on_stale(fn, attempts=get_settings().stale_retry_attempts, db=db)
