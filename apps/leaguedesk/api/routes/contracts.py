"""Contract (team-player / team-competition relationship) route handlers."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.api.auth_dependencies import require_user
from leaguedesk.api.routes import WRITE_RATE_LIMIT, http_error, limiter
from leaguedesk.database.db import get_db_session
from leaguedesk.models.schemas import (
    ContractAmend,
    ContractEnd,
    ContractReason,
    ContractRequestCreate,
    ContractResponse,
)
from leaguedesk.services import contract_service
from leaguedesk.services.approver_resolver import is_global_admin

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/contracts/{kind}", response_model=ContractResponse)
@limiter.limit(WRITE_RATE_LIMIT)
async def request_contract(
    request: Request,
    kind: str,
    payload: ContractRequestCreate,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Request a contract on behalf of the origin side (team, player or competition)."""
    try:
        return await contract_service.request_contract(
            session,
            kind,
            payload.team_id,
            payload.counterpart_id,
            requested_by=user["id"],
            origin=payload.origin,
            is_global_admin=is_global_admin(user),
            fields=payload.fields,
        )
    except Exception as e:
        raise http_error(e, "requesting contract")


@router.get("/api/contracts/{kind}", response_model=List[ContractResponse])
async def list_contracts(
    kind: str,
    team_id: Optional[int] = Query(None),
    counterpart_id: Optional[int] = Query(None),
    state: Optional[str] = Query(None, pattern="^(pending|accepted|ended)$"),
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List contracts of a kind, filtered by team, counterpart and state."""
    try:
        return await contract_service.list_contracts(
            session, kind, owner_a_id=team_id, owner_b_id=counterpart_id, state=state
        )
    except Exception as e:
        raise http_error(e, "listing contracts")


@router.get("/api/contracts/{kind}/pending", response_model=List[ContractResponse])
async def list_pending_contracts(
    kind: str,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Pending contracts the current user can approve."""
    try:
        return await contract_service.list_pending_for_user(session, kind, user["id"])
    except Exception as e:
        raise http_error(e, "listing pending contracts")


@router.get("/api/contracts/{kind}/{contract_id}", response_model=ContractResponse)
async def get_contract(
    kind: str,
    contract_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        return await contract_service.get_contract(session, kind, contract_id)
    except Exception as e:
        raise http_error(e, "fetching contract")


@router.post("/api/contracts/{kind}/{contract_id}/approve", response_model=ContractResponse)
async def approve_contract(
    kind: str,
    contract_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Approve a pending contract (side opposite the requester)."""
    try:
        return await contract_service.approve_contract(
            session, kind, contract_id, user["id"], is_global_admin=is_global_admin(user)
        )
    except Exception as e:
        raise http_error(e, "approving contract")


@router.post("/api/contracts/{kind}/{contract_id}/reject", response_model=ContractResponse)
async def reject_contract(
    kind: str,
    contract_id: int,
    payload: ContractReason,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Reject a pending contract (deletes it so the pair can be requested again)."""
    try:
        return await contract_service.reject_contract(
            session, kind, contract_id, user["id"], payload.reason,
            is_global_admin=is_global_admin(user),
        )
    except Exception as e:
        raise http_error(e, "rejecting contract")


@router.post("/api/contracts/{kind}/{contract_id}/cancel", response_model=ContractResponse)
async def cancel_contract(
    kind: str,
    contract_id: int,
    payload: ContractReason,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Withdraw a pending contract request."""
    try:
        return await contract_service.cancel_contract(
            session, kind, contract_id, user["id"], payload.reason,
            is_global_admin=is_global_admin(user),
        )
    except Exception as e:
        raise http_error(e, "cancelling contract")


@router.post("/api/contracts/{kind}/{contract_id}/end", response_model=ContractResponse)
async def end_contract(
    kind: str,
    contract_id: int,
    payload: ContractEnd,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """End an accepted contract; it stays on record as inactive."""
    try:
        return await contract_service.end_contract(
            session, kind, contract_id, user["id"], end_date=payload.end_date,
            is_global_admin=is_global_admin(user),
        )
    except Exception as e:
        raise http_error(e, "ending contract")


@router.patch("/api/contracts/{kind}/{contract_id}", response_model=ContractResponse)
async def amend_contract(
    kind: str,
    contract_id: int,
    payload: ContractAmend,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Amend non-identity fields of an accepted or ended contract."""
    try:
        return await contract_service.amend_contract(
            session, kind, contract_id, user["id"], payload.fields,
            is_global_admin=is_global_admin(user),
        )
    except Exception as e:
        raise http_error(e, "amending contract")


@router.delete("/api/contracts/{kind}/{contract_id}")
async def delete_contract(
    kind: str,
    contract_id: int,
    user: dict = Depends(require_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a pending or ended contract. Accepted contracts must be ended first."""
    try:
        await contract_service.delete_contract(
            session, kind, contract_id, user["id"], is_global_admin=is_global_admin(user)
        )
        return {"status": "ok", "message": "Contract deleted"}
    except Exception as e:
        raise http_error(e, "deleting contract")
