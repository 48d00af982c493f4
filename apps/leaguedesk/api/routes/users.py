"""User route handlers."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.api.auth_dependencies import require_global_admin, require_user
from leaguedesk.api.routes import http_error
from leaguedesk.database.db import get_db_session
from leaguedesk.services import user_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/users/me")
async def get_me(user: dict = Depends(require_user)):
    """Current user, including the global role."""
    return user


@router.post("/api/users/{user_id}/global-admin")
async def grant_global_admin(
    user_id: str,
    admin: dict = Depends(require_global_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Grant the global admin role (global admins only)."""
    try:
        await user_service.set_global_admins(session, [user_id])
        logger.info(f"{admin['id']} granted global admin to {user_id}")
        return await user_service.get_user_by_id(session, user_id)
    except Exception as e:
        raise http_error(e, "granting global admin")
