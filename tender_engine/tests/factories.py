"""Shared actors and builders for the test suite."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from jose import jwt

from tender_engine.core.config import get_settings
from tender_engine.models.enums import ActorRole
from tender_engine.policies.rbac import Actor
from tender_engine.services.tender_lifecycle import TenderTerms

PROPOSAL_TEXT = (
    "I have delivered a dozen similar projects on time and within budget. "
    "References are available on request."
)

COMPANY = Actor(actor_id="u-company-1", role=ActorRole.COMPANY, organization_id="org-acme")
COLLEAGUE = Actor(actor_id="u-company-2", role=ActorRole.COMPANY, organization_id="org-acme")
OTHER_COMPANY = Actor(actor_id="u-globex-1", role=ActorRole.COMPANY, organization_id="org-globex")
FREELANCER_A = Actor(actor_id="u-free-a", role=ActorRole.FREELANCER)
FREELANCER_B = Actor(actor_id="u-free-b", role=ActorRole.FREELANCER)
CANDIDATE = Actor(actor_id="u-cand-1", role=ActorRole.CANDIDATE)
ADMIN = Actor(actor_id="u-admin", role=ActorRole.ADMIN)


def future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def make_terms(**overrides) -> TenderTerms:
    values = dict(
        title="Office fit-out",
        description="Fit-out of a 400 m2 office floor including electrical works.",
        budget_min=Decimal("1000"),
        budget_max=Decimal("2000"),
        deadline=future(),
        duration_days=30,
        currency="ETB",
        skills_required=["Carpentry", "Electrical"],
    )
    values.update(overrides)
    return TenderTerms(**values)


def token_for(actor: Actor) -> str:
    settings = get_settings()
    claims = {"sub": actor.actor_id, "role": actor.role.value}
    if actor.organization_id:
        claims["org_id"] = actor.organization_id
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def auth(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {token_for(actor)}"}


def tender_payload(**overrides) -> dict:
    body = {
        "title": "Office fit-out",
        "description": "Fit-out of a 400 m2 office floor including electrical works.",
        "category": "construction",
        "skillsRequired": ["Carpentry", "Electrical"],
        "budget": {"min": "1000.00", "max": "2000.00", "currency": "ETB"},
        "deadline": future().isoformat(),
        "duration": 30,
    }
    body.update(overrides)
    return body
