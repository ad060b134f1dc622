#tender_engine/policies/visibility.py
from __future__ import annotations

from tender_engine.core.errors import NotAuthorized, NotFound
from tender_engine.models.enums import TenderStatus, Visibility
from tender_engine.models.tender import Tender
from tender_engine.policies.rbac import BIDDER_ROLES, Actor, is_owner_or_admin


def _is_invited(actor: Actor, tender: Tender) -> bool:
    invited = set(tender.invited_parties)
    return actor.actor_id in invited or actor.party_id in invited


def can_view(actor: Actor, tender: Tender) -> bool:
    """
    - owner / admin: always
    - drafts: nobody else
    - public: freelancer / candidate roles
    - invite_only: invited parties only
    """
    if is_owner_or_admin(actor, tender.owner_id):
        return True

    if tender.status == TenderStatus.draft.value:
        return False

    if tender.visibility == Visibility.invite_only.value:
        return _is_invited(actor, tender)

    return actor.role in BIDDER_ROLES


def can_propose(actor: Actor, tender: Tender) -> bool:
    if actor.role not in BIDDER_ROLES:
        return False
    if is_owner_or_admin(actor, tender.owner_id):
        return False
    if tender.visibility == Visibility.invite_only.value:
        return _is_invited(actor, tender)
    return True


def ensure_can_view(actor: Actor, tender: Tender) -> None:
    # same answer as a missing id: existence is not revealed
    if not can_view(actor, tender):
        raise NotFound("Tender not found.")


def ensure_can_propose(actor: Actor, tender: Tender) -> None:
    if not can_propose(actor, tender):
        raise NotAuthorized("Not authorized to submit a proposal for this tender.")
