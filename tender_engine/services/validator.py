# tender_engine/services/validator.py
"""
Budget / deadline / bid checks.

Every function here is pure: it looks only at its arguments and returns a
list of issues (empty when valid). Nothing raises, so a caller can collect
all problems of a request in one pass and report them together.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from tender_engine.core.errors import (
    BidOutOfRange,
    DeadlineInPast,
    InvalidBudget,
    InvalidCurrency,
    InvalidDuration,
    TextLengthInvalid,
    ValidationIssue,
)

# ISO 4217 codes accepted for tender budgets
ALLOWED_CURRENCIES = frozenset(
    {
        "ETB",
        "USD",
        "EUR",
        "GBP",
        "KES",
        "NGN",
        "ZAR",
        "INR",
        "AED",
        "CAD",
        "AUD",
        "JPY",
        "CNY",
        "CHF",
    }
)

# a bid may exceed the posted range, but never by more than this factor of max
BID_CAP_MULTIPLIER = Decimal("2")

PROPOSAL_TEXT_MIN = 50
PROPOSAL_TEXT_MAX = 5000


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes (e.g. read back from SQLite) are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_budget(
    budget_min: Decimal, budget_max: Decimal, currency: Optional[str]
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []

    if budget_min < 0:
        issues.append(InvalidBudget("Budget minimum cannot be negative.", field="budget.min"))
    if budget_max < 0:
        issues.append(InvalidBudget("Budget maximum cannot be negative.", field="budget.max"))
    if budget_max < budget_min:
        issues.append(
            InvalidBudget(
                "Budget maximum must be greater than or equal to the minimum.",
                field="budget.max",
            )
        )

    # checked independently of the amounts
    if not currency or currency.upper() != currency or currency not in ALLOWED_CURRENCIES:
        issues.append(
            InvalidCurrency(
                f"Unsupported currency code: {currency!r}.",
                field="budget.currency",
            )
        )

    return issues


def validate_schedule(
    deadline: datetime, duration_days: int, now: datetime
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []

    if as_utc(deadline) <= as_utc(now):
        issues.append(DeadlineInPast("Deadline must be in the future.", field="deadline"))
    if duration_days is None or duration_days < 1:
        issues.append(
            InvalidDuration("Duration must be at least one day.", field="duration")
        )

    return issues


def validate_tender_terms(
    *,
    budget_min: Decimal,
    budget_max: Decimal,
    currency: Optional[str],
    deadline: datetime,
    duration_days: int,
    now: datetime,
) -> List[ValidationIssue]:
    return validate_budget(budget_min, budget_max, currency) + validate_schedule(
        deadline, duration_days, now
    )


def validate_bid(bid_amount: Decimal, budget_max: Decimal) -> List[ValidationIssue]:
    cap = BID_CAP_MULTIPLIER * Decimal(budget_max)
    if bid_amount < 0:
        return [BidOutOfRange("Bid amount cannot be negative.", field="bidAmount")]
    if bid_amount > cap:
        return [
            BidOutOfRange(
                f"Bid amount cannot exceed {cap} (twice the tender budget maximum).",
                field="bidAmount",
                cap=str(cap),
            )
        ]
    return []


def validate_proposal_text(text: Optional[str]) -> List[ValidationIssue]:
    n = len(text or "")
    if n < PROPOSAL_TEXT_MIN or n > PROPOSAL_TEXT_MAX:
        return [
            TextLengthInvalid(
                f"Proposal text must be {PROPOSAL_TEXT_MIN}-{PROPOSAL_TEXT_MAX} characters (got {n}).",
                field="proposalText",
                length=n,
            )
        ]
    return []
