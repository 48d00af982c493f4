"""
Entity service for the owning entities: organizations, competitions,
teams, players, matches, match sets and per-match statistics.

Only creation, lookup and administrator management live here; changes to
shared entities after creation go through edit requests.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.database.models import (
    Competition,
    Match,
    MatchSet,
    Organization,
    Player,
    PlayerMatchStats,
    Team,
    TeamMatchStats,
)
from leaguedesk.services import approver_resolver
from leaguedesk.services.approver_resolver import ADMINISTERED_KINDS, entity_admins, load_entity
from leaguedesk.services.errors import ConflictError, ForbiddenError, InvalidArgumentError

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, list):
        return list(value)
    return value


def format_entity(entity: Any) -> Dict:
    """Column values of an entity as a JSON-friendly dict."""
    return {c.name: _jsonable(getattr(entity, c.name)) for c in entity.__table__.columns}


async def _save(session: AsyncSession, entity: Any, what: str) -> Dict:
    try:
        async with session.begin_nested():
            session.add(entity)
            await session.flush()
    except IntegrityError as e:
        raise ConflictError(f"{what} already exists") from e
    await session.refresh(entity)
    return format_entity(entity)


async def _require_entity_admin(
    session: AsyncSession, kind: str, entity_id: int, actor_id: str, is_global_admin: bool
) -> None:
    """Raise ForbiddenError unless the actor may manage the entity."""
    if is_global_admin:
        return
    sides = await approver_resolver.resolve_entity_sides(session, kind, entity_id)
    if actor_id not in sides.all():
        raise ForbiddenError(f"Not authorized to manage this {kind}")


async def create_organization(session: AsyncSession, created_by: str, data: Dict) -> Dict:
    organization = Organization(created_by=created_by, administrators=[created_by], **data)
    result = await _save(session, organization, "Organization")
    logger.info(f"Organization {result['id']} created by {created_by}")
    return result


async def create_competition(
    session: AsyncSession, created_by: str, data: Dict, is_global_admin: bool = False
) -> Dict:
    """
    Create a competition under an organization.

    Raises:
        NotFoundError: If the organization does not exist
        ForbiddenError: If the creator does not administer the organization
    """
    await _require_entity_admin(
        session, "organization", data["organization_id"], created_by, is_global_admin
    )
    if data.get("start_date") and data.get("end_date") and data["end_date"] < data["start_date"]:
        raise InvalidArgumentError("end_date cannot be earlier than start_date")
    competition = Competition(created_by=created_by, administrators=[created_by], **data)
    result = await _save(session, competition, "Competition")
    logger.info(f"Competition {result['id']} created by {created_by}")
    return result


async def create_team(session: AsyncSession, created_by: str, data: Dict) -> Dict:
    team = Team(created_by=created_by, administrators=[created_by], **data)
    result = await _save(session, team, "Team")
    logger.info(f"Team {result['id']} created by {created_by}")
    return result


async def create_player(session: AsyncSession, created_by: str, data: Dict) -> Dict:
    player = Player(created_by=created_by, administrators=[created_by], **data)
    result = await _save(session, player, "Player")
    logger.info(f"Player {result['id']} created by {created_by}")
    return result


async def create_match(
    session: AsyncSession, created_by: str, data: Dict, is_global_admin: bool = False
) -> Dict:
    """
    Create a match. Matches inside a competition can only be created by the
    competition's administrators; friendly matches by anyone.

    Raises:
        NotFoundError: If a team or the competition does not exist
        ForbiddenError: If the creator does not administer the competition
        InvalidArgumentError: If both teams are the same
    """
    if data["home_team_id"] == data["away_team_id"]:
        raise InvalidArgumentError("A team cannot play against itself")
    await load_entity(session, "team", data["home_team_id"])
    await load_entity(session, "team", data["away_team_id"])
    if data.get("competition_id") is not None:
        await _require_entity_admin(
            session, "competition", data["competition_id"], created_by, is_global_admin
        )
    match = Match(created_by=created_by, administrators=[created_by], **data)
    result = await _save(session, match, "Match")
    logger.info(f"Match {result['id']} created by {created_by}")
    return result


async def _create_match_child(
    session: AsyncSession,
    model: Any,
    what: str,
    match_id: int,
    created_by: str,
    data: Dict,
    is_global_admin: bool,
) -> Dict:
    await _require_entity_admin(session, "match", match_id, created_by, is_global_admin)
    row = model(match_id=match_id, created_by=created_by, **data)
    return await _save(session, row, what)


async def create_match_set(
    session: AsyncSession, match_id: int, created_by: str, data: Dict, is_global_admin: bool = False
) -> Dict:
    """Add a set to a match. Only the match's approvers may do this."""
    return await _create_match_child(
        session, MatchSet, f"Set {data.get('set_number')}", match_id, created_by, data, is_global_admin
    )


async def create_team_match_stats(
    session: AsyncSession, match_id: int, created_by: str, data: Dict, is_global_admin: bool = False
) -> Dict:
    await load_entity(session, "team", data["team_id"])
    return await _create_match_child(
        session, TeamMatchStats, "Team statistics", match_id, created_by, data, is_global_admin
    )


async def create_player_match_stats(
    session: AsyncSession, match_id: int, created_by: str, data: Dict, is_global_admin: bool = False
) -> Dict:
    await load_entity(session, "player", data["player_id"])
    if data.get("team_id") is not None:
        await load_entity(session, "team", data["team_id"])
    return await _create_match_child(
        session, PlayerMatchStats, "Player statistics", match_id, created_by, data, is_global_admin
    )


async def get_entity(session: AsyncSession, kind: str, entity_id: int) -> Dict:
    """Get any entity by kind name. Raises NotFoundError if missing."""
    return format_entity(await load_entity(session, kind, entity_id))


def append_administrator(entity: Any, user_id: str) -> bool:
    """
    Add ``user_id`` to the entity's administrators.

    Returns:
        False if the user already administers the entity
    """
    if user_id in entity_admins(entity):
        return False
    # reassign so the JSON column is flagged dirty
    entity.administrators = list(entity.administrators or []) + [user_id]
    return True


async def add_administrator(
    session: AsyncSession,
    kind: str,
    entity_id: int,
    actor_id: str,
    user_id: str,
    is_global_admin: bool = False,
) -> Dict:
    """
    Grant another user administrator rights on an entity.

    Raises:
        InvalidArgumentError: If the kind has no administrators
        NotFoundError: If the entity does not exist
        ForbiddenError: If the actor does not administer the entity
    """
    if kind not in ADMINISTERED_KINDS:
        raise InvalidArgumentError(f"Entity kind '{kind}' has no administrators")
    entity = await load_entity(session, kind, entity_id)
    if not is_global_admin and actor_id not in entity_admins(entity):
        raise ForbiddenError(f"Not authorized to manage this {kind}")
    if append_administrator(entity, user_id):
        await session.flush()
        logger.info(f"{actor_id} added {user_id} as administrator of {kind} {entity_id}")
    await session.refresh(entity)
    return format_entity(entity)