"""Owning-entity route handlers (organizations, competitions, teams, players, matches)."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.api.auth_dependencies import require_user
from leaguedesk.api.routes import WRITE_RATE_LIMIT, http_error, limiter
from leaguedesk.database.db import get_db_session
from leaguedesk.models.schemas import (
    AdministratorAdd,
    CompetitionCreate,
    MatchCreate,
    MatchSetCreate,
    OrganizationCreate,
    PlayerCreate,
    PlayerMatchStatsCreate,
    TeamCreate,
    TeamMatchStatsCreate,
)
from leaguedesk.services import entity_service
from leaguedesk.services.approver_resolver import is_global_admin

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/organizations")
@limiter.limit(WRITE_RATE_LIMIT)
async def create_organization(
    request: Request,
    payload: OrganizationCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await entity_service.create_organization(session, user["id"], payload.model_dump())
    except Exception as e:
        raise http_error(e, "creating organization")


@router.post("/api/competitions")
@limiter.limit(WRITE_RATE_LIMIT)
async def create_competition(
    request: Request,
    payload: CompetitionCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a competition (organization administrators only)."""
    try:
        return await entity_service.create_competition(
            session, user["id"], payload.model_dump(), is_global_admin=is_global_admin(user)
        )
    except Exception as e:
        raise http_error(e, "creating competition")


@router.post("/api/teams")
@limiter.limit(WRITE_RATE_LIMIT)
async def create_team(
    request: Request,
    payload: TeamCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await entity_service.create_team(session, user["id"], payload.model_dump())
    except Exception as e:
        raise http_error(e, "creating team")


@router.post("/api/players")
@limiter.limit(WRITE_RATE_LIMIT)
async def create_player(
    request: Request,
    payload: PlayerCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await entity_service.create_player(session, user["id"], payload.model_dump())
    except Exception as e:
        raise http_error(e, "creating player")


@router.post("/api/matches")
@limiter.limit(WRITE_RATE_LIMIT)
async def create_match(
    request: Request,
    payload: MatchCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a match; competition matches need a competition administrator."""
    try:
        return await entity_service.create_match(
            session, user["id"], payload.model_dump(), is_global_admin=is_global_admin(user)
        )
    except Exception as e:
        raise http_error(e, "creating match")


@router.post("/api/matches/{match_id}/sets")
async def create_match_set(
    match_id: int,
    payload: MatchSetCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await entity_service.create_match_set(
            session, match_id, user["id"], payload.model_dump(), is_global_admin=is_global_admin(user)
        )
    except Exception as e:
        raise http_error(e, "creating match set")


@router.post("/api/matches/{match_id}/team-stats")
async def create_team_match_stats(
    match_id: int,
    payload: TeamMatchStatsCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await entity_service.create_team_match_stats(
            session, match_id, user["id"], payload.model_dump(), is_global_admin=is_global_admin(user)
        )
    except Exception as e:
        raise http_error(e, "recording team statistics")


@router.post("/api/matches/{match_id}/player-stats")
async def create_player_match_stats(
    match_id: int,
    payload: PlayerMatchStatsCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await entity_service.create_player_match_stats(
            session, match_id, user["id"], payload.model_dump(), is_global_admin=is_global_admin(user)
        )
    except Exception as e:
        raise http_error(e, "recording player statistics")


@router.get("/api/entities/{kind}/{entity_id}")
async def get_entity(
    kind: str,
    entity_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await entity_service.get_entity(session, kind, entity_id)
    except Exception as e:
        raise http_error(e, "fetching entity")


@router.post("/api/entities/{kind}/{entity_id}/administrators")
async def add_administrator(
    kind: str,
    entity_id: int,
    payload: AdministratorAdd,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Grant another user administrator rights on an entity."""
    try:
        return await entity_service.add_administrator(
            session, kind, entity_id, user["id"], payload.user_id,
            is_global_admin=is_global_admin(user),
        )
    except Exception as e:
        raise http_error(e, "adding administrator")
