from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence


class MarketplaceError(Exception):
    """
    Base for every failure the engine reports to its caller.

    `code` is the stable machine-readable kind, `status_code` the HTTP status
    the API layer maps it to, `extra` any structured detail (ids, states).
    """

    code = "MarketplaceError"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


# ---------------------------------------------------------------------
# access
# ---------------------------------------------------------------------


class NotAuthorized(MarketplaceError, PermissionError):
    code = "NotAuthorized"
    status_code = 403


class NotFound(MarketplaceError, LookupError):
    code = "NotFound"
    status_code = 404


# ---------------------------------------------------------------------
# state machine / concurrency
# ---------------------------------------------------------------------


class InvalidTransition(MarketplaceError):
    code = "InvalidTransition"
    status_code = 409

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"{entity} cannot move from '{current}' to '{requested}'.",
            entity=entity,
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class StaleState(MarketplaceError):
    code = "StaleState"
    status_code = 409
    retryable = True

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"{entity} {entity_id} changed since it was read; re-read and retry.",
            entity=entity,
            entityId=str(entity_id),
        )


class PendingDecisions(MarketplaceError):
    code = "PendingDecisions"
    status_code = 409

    def __init__(self, proposal_ids: Iterable[Any]):
        ids = [str(pid) for pid in proposal_ids]
        super().__init__(
            "Tender still has proposals awaiting a decision.",
            proposalIds=ids,
        )
        self.proposal_ids = ids


class TenderNotOpen(MarketplaceError):
    code = "TenderNotOpen"
    status_code = 409

    def __init__(self, status: str):
        super().__init__(
            f"Tender is '{status}' and is not accepting proposals.",
            status=status,
        )


class DuplicateProposal(MarketplaceError):
    code = "DuplicateProposal"
    status_code = 409


class AlreadyAccepted(MarketplaceError):
    code = "AlreadyAccepted"
    status_code = 409


# ---------------------------------------------------------------------
# validation
# ---------------------------------------------------------------------


class ValidationIssue(MarketplaceError, ValueError):
    """Base for the field-level problems the validator collects."""

    status_code = 422

    def __init__(self, message: str, field: str, **extra: Any):
        super().__init__(message, field=field, **extra)
        self.field = field


class InvalidBudget(ValidationIssue):
    code = "InvalidBudget"


class InvalidCurrency(ValidationIssue):
    code = "InvalidCurrency"


class DeadlineInPast(ValidationIssue):
    code = "DeadlineInPast"


class InvalidDuration(ValidationIssue):
    code = "InvalidDuration"


class BidOutOfRange(ValidationIssue):
    code = "BidOutOfRange"


class TextLengthInvalid(ValidationIssue):
    code = "TextLengthInvalid"


class ValidationFailed(MarketplaceError, ValueError):
    """Every issue found in one pass, so the caller can report them together."""

    code = "ValidationFailed"
    status_code = 422

    def __init__(self, issues: Sequence[ValidationIssue]):
        self.issues: List[ValidationIssue] = list(issues)
        super().__init__(
            "; ".join(i.message for i in self.issues) or "Validation failed.",
            issues=[i.to_detail() for i in self.issues],
        )

    @property
    def codes(self) -> List[str]:
        return [i.code for i in self.issues]


def raise_if_issues(issues: Sequence[ValidationIssue]) -> None:
    if issues:
        raise ValidationFailed(issues)


def raise_first_issue(issues: Sequence[ValidationIssue]) -> None:
    """Proposal fields are checked in a fixed order; the first failure is the answer."""
    if issues:
        raise issues[0]
