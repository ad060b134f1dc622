#tender_engine/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Set

from tender_engine.core.errors import NotAuthorized
from tender_engine.models.enums import ActorRole


@dataclass(frozen=True)
class Actor:
    """
    Verified identity handed to the engine by the auth layer.

    `organization_id` is set for company/organization users; tenders they
    create are owned by that organization so colleagues share ownership.
    """
    actor_id: str
    role: ActorRole
    organization_id: Optional[str] = None
    display_name: str = "Unknown"

    @property
    def party_id(self) -> str:
        return self.organization_id or self.actor_id

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM


SYSTEM_ACTOR = Actor(actor_id="system", role=ActorRole.SYSTEM, display_name="system")


# --- Core action constants ---
ACTION_CREATE_TENDER = "CREATE_TENDER"
ACTION_SUBMIT_PROPOSAL = "SUBMIT_PROPOSAL"
ACTION_SAVE_TENDER = "SAVE_TENDER"

BIDDER_ROLES = frozenset({ActorRole.FREELANCER, ActorRole.CANDIDATE})
TENDERING_ROLES = frozenset({ActorRole.COMPANY, ActorRole.ORGANIZATION})


def allowed_actions(role: ActorRole) -> Set[str]:
    """
    Pure RBAC: which actions a role may attempt.
    """

    if role in BIDDER_ROLES:
        return {ACTION_SUBMIT_PROPOSAL, ACTION_SAVE_TENDER}

    if role in TENDERING_ROLES:
        return {ACTION_CREATE_TENDER, ACTION_SAVE_TENDER}

    if role == ActorRole.ADMIN:
        return {ACTION_CREATE_TENDER, ACTION_SAVE_TENDER}

    return set()


def require_action(actor: Actor, action: str) -> None:
    if action not in allowed_actions(actor.role):
        raise NotAuthorized(
            f"Role {actor.role.value} not permitted for action {action}."
        )


def is_owner(actor: Actor, owner_id: str) -> bool:
    return owner_id in {actor.party_id, actor.actor_id}


def is_owner_or_admin(actor: Actor, owner_id: str) -> bool:
    return actor.is_admin or is_owner(actor, owner_id)
