from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field

from tender_engine.services.validator import as_utc


# --- Numeric primitives ---
Money = Annotated[Decimal, Field(max_digits=14, decimal_places=2)]


class StrictModel(BaseModel):
    """Request bodies: unknown fields are rejected, never passed through."""

    model_config = ConfigDict(extra="forbid")


class VersionedRequest(StrictModel):
    # last version the client read; omit to let the server retry on races
    expectedVersion: Optional[int] = Field(default=None, ge=1)


def iso(dt: Optional[datetime]) -> Optional[str]:
    return as_utc(dt).isoformat() if dt else None
