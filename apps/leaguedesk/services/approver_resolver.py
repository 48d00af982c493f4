"""
Approver resolution.

Answers "which users may approve a change to this entity?" by walking the
entity graph: sub-documents (sets, per-match statistics) resolve through
their parent match, a match resolves to its competition's administrators
or, when standalone, to its own, and relationships resolve to the
administrators of both owners, grouped by side.

Nothing is cached; administrator lists are read on every call.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.database.models import ENTITY_MODELS, RELATIONSHIP_KINDS, UserRole
from leaguedesk.services import approval_policies
from leaguedesk.services.approval_policies import (
    ApprovalPolicy,
    CLAIMED_ENTITY,
    COMPETITION_ADMIN,
    ENTITY_ADMIN,
    MATCH_ADMIN,
    NEW_RELATIONSHIP,
    ORGANIZATION_ADMIN,
    PLAYER_ADMIN,
    RELATIONSHIP,
    TEAM_ADMIN,
)
from leaguedesk.services.errors import (
    InvalidArgumentError,
    NotFoundError,
    UnsupportedChangeTypeError,
)

logger = logging.getLogger(__name__)

# Owner kind -> side role its administrators play
OWNER_SIDE_ROLES = {
    "team": TEAM_ADMIN,
    "player": PLAYER_ADMIN,
    "competition": COMPETITION_ADMIN,
    "organization": ORGANIZATION_ADMIN,
}

# Entity kinds that carry their own administrators list
ADMINISTERED_KINDS = ("organization", "competition", "team", "player", "match")


@dataclass
class ApproverSides:
    """User ids allowed to approve, grouped by the side they act for."""

    sides: Dict[str, Set[str]] = field(default_factory=dict)

    def add(self, role: str, user_ids: Iterable[str]) -> None:
        self.sides.setdefault(role, set()).update(u for u in user_ids if u)

    def merge(self, other: "ApproverSides") -> "ApproverSides":
        for role, users in other.sides.items():
            self.add(role, users)
        return self

    def all(self) -> Set[str]:
        """Union of every side."""
        result: Set[str] = set()
        for users in self.sides.values():
            result |= users
        return result

    def roles_of(self, user_id: str) -> Set[str]:
        """Side roles ``user_id`` belongs to."""
        return {role for role, users in self.sides.items() if user_id in users}

    def excluding_requester(self, requester_id: str) -> "ApproverSides":
        """Drop every side the requester belongs to."""
        return ApproverSides(
            {role: set(users) for role, users in self.sides.items() if requester_id not in users}
        )

    def without_user(self, user_id: str) -> "ApproverSides":
        """Same sides with ``user_id`` removed from each."""
        return ApproverSides(
            {role: users - {user_id} for role, users in self.sides.items()}
        )

    def to_dict(self) -> Dict[str, list]:
        return {role: sorted(users) for role, users in self.sides.items()}


def is_global_admin(user: Optional[dict]) -> bool:
    """Single check for the global administrator role."""
    return bool(user) and user.get("role") == UserRole.ADMIN.value


def entity_admins(entity: Any) -> Set[str]:
    """Creator plus listed administrators of an owning entity."""
    admins = {entity.created_by} if getattr(entity, "created_by", None) else set()
    admins.update(getattr(entity, "administrators", None) or [])
    return admins


async def load_entity(session: AsyncSession, kind: Optional[str], entity_id: Any):
    """
    Load an entity by kind name and id.

    Raises:
        InvalidArgumentError: If the kind is unknown or the id is missing
        NotFoundError: If no such entity exists
    """
    model = ENTITY_MODELS.get(kind or "")
    if model is None:
        raise InvalidArgumentError(f"Unknown entity kind: {kind}")
    if entity_id is None:
        raise InvalidArgumentError(f"Missing id for {kind}")
    entity = await session.get(model, entity_id)
    if entity is None:
        raise NotFoundError(f"{kind} {entity_id} not found")
    return entity


def relationship_kind(kind: Optional[str]) -> Tuple[str, str, str]:
    """
    Look up a relationship kind.

    Returns:
        (relationship entity kind, owner A kind, owner B kind)

    Raises:
        InvalidArgumentError: If the kind is unknown
    """
    try:
        return RELATIONSHIP_KINDS[kind]
    except KeyError:
        raise InvalidArgumentError(f"Unknown relationship kind: {kind}") from None


# ──────────────────────────────────────────────────────────────
# Resolver graph
# ──────────────────────────────────────────────────────────────

# Sub-entity kind -> function returning (parent kind, parent id)
PARENT_LOOKUPS: Dict[str, Callable[[Any], Tuple[str, Any]]] = {
    "matchSet": lambda row: ("match", row.match_id),
    "playerMatchStats": lambda row: ("match", row.match_id),
    "teamMatchStats": lambda row: ("match", row.match_id),
}

SideResolver = Callable[[AsyncSession, Any], Awaitable[ApproverSides]]


def _owner_resolver(kind: str) -> SideResolver:
    role = OWNER_SIDE_ROLES[kind]

    async def resolve(session: AsyncSession, entity: Any) -> ApproverSides:
        return ApproverSides({role: entity_admins(entity)})

    return resolve


async def _match_sides(session: AsyncSession, match: Any) -> ApproverSides:
    if match.competition_id is not None:
        competition = await load_entity(session, "competition", match.competition_id)
        return ApproverSides({COMPETITION_ADMIN: entity_admins(competition)})
    return ApproverSides({MATCH_ADMIN: entity_admins(match)})


def _relationship_resolver(owner_a: str, owner_b: str) -> SideResolver:
    async def resolve(session: AsyncSession, contract: Any) -> ApproverSides:
        a = await load_entity(session, owner_a, getattr(contract, f"{owner_a}_id"))
        b = await load_entity(session, owner_b, getattr(contract, f"{owner_b}_id"))
        return ApproverSides(
            {
                OWNER_SIDE_ROLES[owner_a]: entity_admins(a),
                OWNER_SIDE_ROLES[owner_b]: entity_admins(b),
            }
        )

    return resolve


SIDE_RESOLVERS: Dict[str, SideResolver] = {
    "organization": _owner_resolver("organization"),
    "competition": _owner_resolver("competition"),
    "team": _owner_resolver("team"),
    "player": _owner_resolver("player"),
    "match": _match_sides,
}
for _entity_kind, _owner_a, _owner_b in RELATIONSHIP_KINDS.values():
    SIDE_RESOLVERS[_entity_kind] = _relationship_resolver(_owner_a, _owner_b)


async def resolve_entity_sides(session: AsyncSession, kind: str, entity_id: Any) -> ApproverSides:
    """
    Resolve the approver sides of an existing entity.

    Raises:
        NotFoundError: If the entity or one of its parents is missing
        UnsupportedChangeTypeError: If no resolver is registered for the kind
    """
    entity = await load_entity(session, kind, entity_id)
    while kind in PARENT_LOOKUPS:
        kind, parent_id = PARENT_LOOKUPS[kind](entity)
        entity = await load_entity(session, kind, parent_id)
    resolver = SIDE_RESOLVERS.get(kind)
    if resolver is None:
        logger.error(f"No approver resolver registered for entity kind '{kind}'")
        raise UnsupportedChangeTypeError(f"No approver resolver for entity kind: {kind}")
    return await resolver(session, entity)


def target_kind_for(policy: ApprovalPolicy, proposed_data: Optional[dict]) -> str:
    """Concrete entity kind a request of this policy points at."""
    proposed_data = proposed_data or {}
    if policy.target_kind in (RELATIONSHIP, NEW_RELATIONSHIP):
        return relationship_kind(proposed_data.get("kind"))[0]
    if policy.target_kind == CLAIMED_ENTITY:
        kind = proposed_data.get("entity_kind")
        if kind not in ADMINISTERED_KINDS:
            raise InvalidArgumentError(f"Entity kind '{kind}' cannot be claimed")
        return kind
    return policy.target_kind


async def _new_relationship_sides(session: AsyncSession, proposed_data: dict) -> ApproverSides:
    _, owner_a, owner_b = relationship_kind(proposed_data.get("kind"))
    sides = ApproverSides()
    for owner in (owner_a, owner_b):
        sides.merge(await resolve_entity_sides(session, owner, proposed_data.get(f"{owner}_id")))
    return sides


async def resolve_approvers(
    session: AsyncSession,
    change_type: str,
    target_id: Any = None,
    proposed_data: Optional[dict] = None,
) -> ApproverSides:
    """
    Resolve everyone who may approve a change, grouped by side.

    Args:
        session: Database session
        change_type: Edit request change type
        target_id: Id of the entity being changed (None for creation requests)
        proposed_data: Proposed payload; names the owners for creation and
            claim requests and the relationship kind for relationship actions

    Returns:
        ApproverSides for the change

    Raises:
        UnsupportedChangeTypeError: If the change type has no policy
        InvalidArgumentError: If the request does not identify its target
        NotFoundError: If the target or a parent entity is missing
    """
    policy = approval_policies.require_policy(change_type)
    proposed_data = proposed_data or {}

    if policy.target_kind == NEW_RELATIONSHIP:
        return await _new_relationship_sides(session, proposed_data)
    if policy.target_kind == CLAIMED_ENTITY:
        kind = target_kind_for(policy, proposed_data)
        entity = await load_entity(session, kind, proposed_data.get("entity_id"))
        return ApproverSides({ENTITY_ADMIN: entity_admins(entity)})

    if target_id is None:
        raise InvalidArgumentError(f"Change type '{change_type}' requires a target id")
    return await resolve_entity_sides(session, target_kind_for(policy, proposed_data), target_id)


async def resolve_approvers_excluding_requester(
    session: AsyncSession,
    change_type: str,
    target_id: Any,
    requester_id: str,
    proposed_data: Optional[dict] = None,
) -> Set[str]:
    """Approvers on the side(s) the requester does not belong to."""
    sides = await resolve_approvers(session, change_type, target_id, proposed_data)
    return sides.excluding_requester(requester_id).all()


def eligible_sides(policy: ApprovalPolicy, sides: ApproverSides, creator_id: str) -> ApproverSides:
    """
    Sides whose members may decide a request created by ``creator_id``.

    The creator never decides their own request; policies that exclude the
    requester side also drop every side the creator administers. A side the
    creator administers alone is dropped as well: proposing the change is
    that side's confirmation.
    """
    if policy.excludes_requester_side:
        sides = sides.excluding_requester(creator_id)
    remaining = sides.without_user(creator_id)
    return ApproverSides(
        {
            role: users
            for role, users in remaining.sides.items()
            if users or creator_id not in sides.sides[role]
        }
    )
