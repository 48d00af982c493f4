"""Edit request route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.api.auth_dependencies import require_user
from leaguedesk.api.routes import WRITE_RATE_LIMIT, http_error, limiter
from leaguedesk.database.db import get_db_session
from leaguedesk.models.schemas import (
    EditRequestApproversResponse,
    EditRequestCreate,
    EditRequestDecision,
    EditRequestResponse,
)
from leaguedesk.services import edit_request_service
from leaguedesk.services.approver_resolver import is_global_admin

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/edit-requests", response_model=EditRequestResponse)
@limiter.limit(WRITE_RATE_LIMIT)
async def create_edit_request(
    request: Request,
    payload: EditRequestCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Propose a change to a shared entity."""
    try:
        return await edit_request_service.create_edit_request(
            session,
            payload.change_type,
            payload.proposed_data,
            created_by=user["id"],
            target_id=payload.target_id,
        )
    except Exception as e:
        raise http_error(e, "creating edit request")


@router.get("/api/edit-requests", response_model=List[EditRequestResponse])
async def list_edit_requests(
    change_type: Optional[str] = Query(None),
    state: Optional[str] = Query(None, pattern="^(pending|accepted|rejected|cancelled)$"),
    created_by: Optional[str] = Query(None),
    target_kind: Optional[str] = Query(None),
    target_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List edit requests (paginated, newest first)."""
    try:
        return await edit_request_service.list_edit_requests(
            session,
            change_type=change_type,
            state=state,
            created_by=created_by,
            target_kind=target_kind,
            target_id=target_id,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
    except Exception as e:
        raise http_error(e, "listing edit requests")


@router.get("/api/edit-requests/{request_id}", response_model=EditRequestResponse)
async def get_edit_request(
    request_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await edit_request_service.get_edit_request(session, request_id)
    except Exception as e:
        raise http_error(e, "fetching edit request")


@router.get("/api/edit-requests/{request_id}/approvers", response_model=EditRequestApproversResponse)
async def get_edit_request_approvers(
    request_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Users who can still decide the request, grouped by side."""
    try:
        return await edit_request_service.get_eligible_approvers(session, request_id)
    except Exception as e:
        raise http_error(e, "resolving edit request approvers")


@router.put("/api/edit-requests/{request_id}", response_model=EditRequestResponse)
async def decide_edit_request(
    request_id: int,
    payload: EditRequestDecision,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Accept or reject a pending edit request."""
    try:
        return await edit_request_service.decide_edit_request(
            session,
            request_id,
            user["id"],
            payload.decision,
            reason=payload.reason,
            payload_override=payload.payload_override,
            is_global_admin=is_global_admin(user),
        )
    except Exception as e:
        raise http_error(e, "deciding edit request")


@router.delete("/api/edit-requests/{request_id}", response_model=EditRequestResponse)
async def cancel_edit_request(
    request_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Withdraw a pending edit request."""
    try:
        return await edit_request_service.cancel_edit_request(
            session, request_id, user["id"], is_global_admin=is_global_admin(user)
        )
    except Exception as e:
        raise http_error(e, "cancelling edit request")
