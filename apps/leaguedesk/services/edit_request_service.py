"""
Edit request service.

Any authenticated user may propose a change to a shared entity (a contract
amendment, a match result, a new relationship, an administrator claim).
The approval policy of the change type decides who must sign off and
whether two independent confirmations are needed; once the request is
accepted the change is applied to the target in the same savepoint that
marks the request accepted, so a failing apply leaves the request pending
and nothing half-written.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.database.models import EditRequest, EditRequestState
from leaguedesk.models.schemas import PROPOSED_DATA_MODELS
from leaguedesk.services import approval_policies, approver_resolver, contract_service, entity_service
from leaguedesk.services.approval_policies import (
    APPROVER_COUNT,
    ApprovalPolicy,
    CLAIMED_ENTITY,
    NEW_RELATIONSHIP,
)
from leaguedesk.services.approver_resolver import ApproverSides, eligible_sides, load_entity
from leaguedesk.services.errors import (
    ApplyFailedError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    UnsupportedChangeTypeError,
)
from leaguedesk.utils.datetime_utils import isoformat_or_none, parse_date, utcnow

logger = logging.getLogger(__name__)

ACCEPT = "accept"
REJECT = "reject"

# Errors an apply handler may raise that describe a problem with the request
# itself; anything else is reported as an internal failure.
CLIENT_APPLY_ERRORS = (NotFoundError, InvalidArgumentError, ConflictError, InvalidStateError)

# Contract amendment change type -> contract kind
CONTRACT_CHANGE_KINDS = {
    "teamPlayerContract": "teamPlayer",
    "teamCompetitionContract": "teamCompetition",
}


def _format_edit_request(request: EditRequest) -> Dict:
    return {
        "id": request.id,
        "change_type": request.change_type,
        "target_kind": request.target_kind,
        "target_id": request.target_id,
        "proposed_data": dict(request.proposed_data or {}),
        "state": request.state,
        "approved_by": list(request.approved_by or []),
        "requires_double_confirmation": request.requires_double_confirmation,
        "rejection_reason": request.rejection_reason,
        "created_by": request.created_by,
        "final_approved_by": request.final_approved_by,
        "accepted_at": isoformat_or_none(request.accepted_at),
        "rejected_at": isoformat_or_none(request.rejected_at),
        "cancelled_at": isoformat_or_none(request.cancelled_at),
        "created_at": isoformat_or_none(request.created_at),
    }


def validate_proposed_data(change_type: str, proposed_data: Any) -> Dict:
    """
    Validate a payload against the shape registered for its change type.

    Returns:
        The normalized payload, containing only the fields that were given

    Raises:
        InvalidArgumentError: If the payload does not match the shape
        UnsupportedChangeTypeError: If no shape is registered
    """
    model = PROPOSED_DATA_MODELS.get(change_type)
    if model is None:
        logger.error(f"No proposed-data shape registered for change type '{change_type}'")
        raise UnsupportedChangeTypeError(f"Unsupported change type: {change_type}")
    if not isinstance(proposed_data, dict):
        raise InvalidArgumentError("proposed_data must be an object")
    try:
        validated = model.model_validate(proposed_data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'proposed_data'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidArgumentError(f"Invalid proposed_data for {change_type}: {problems}") from None
    return validated.model_dump(mode="json", exclude_unset=True)


def _identity_keys(policy: ApprovalPolicy) -> Sequence[str]:
    if policy.target_kind == NEW_RELATIONSHIP:
        return ("kind", "team_id", "player_id", "competition_id")
    if policy.target_kind == CLAIMED_ENTITY:
        return ("entity_kind", "entity_id")
    return ("kind",)


def confirmation_complete(
    policy: ApprovalPolicy, eligible: ApproverSides, approvals: Sequence[str]
) -> bool:
    """
    Whether the collected approvals satisfy a double-confirmation policy.

    ``distinct_sides`` needs every eligible side represented by a different
    approver; ``approver_count`` only needs as many distinct approvers as the
    policy requires.
    """
    if policy.counting_rule == APPROVER_COUNT:
        return len(set(approvals)) >= policy.required_approvals

    roles = list(eligible.sides)
    if not roles:
        return False

    def assign(index: int, used: Set[str]) -> bool:
        if index == len(roles):
            return True
        members = eligible.sides[roles[index]]
        for user_id in approvals:
            if user_id in members and user_id not in used and assign(index + 1, used | {user_id}):
                return True
        return False

    return assign(0, set())


async def _get_request_row(
    session: AsyncSession, request_id: int, for_update: bool = False
) -> EditRequest:
    query = select(EditRequest).where(EditRequest.id == request_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFoundError(f"Edit request {request_id} not found")
    return request


async def _eligible_for(session: AsyncSession, request: EditRequest, policy: ApprovalPolicy) -> ApproverSides:
    sides = await approver_resolver.resolve_approvers(
        session, request.change_type, request.target_id, request.proposed_data
    )
    return eligible_sides(policy, sides, request.created_by)


# ──────────────────────────────────────────────────────────────
# Apply handlers
# ──────────────────────────────────────────────────────────────

ApplyHandler = Callable[[AsyncSession, EditRequest], Awaitable[None]]


async def _apply_contract_amendment(session: AsyncSession, request: EditRequest) -> None:
    await contract_service.apply_contract_fields(
        session, CONTRACT_CHANGE_KINDS[request.change_type], request.target_id, request.proposed_data
    )


async def _apply_relationship_create(session: AsyncSession, request: EditRequest) -> None:
    data = request.proposed_data
    ck = contract_service.get_contract_kind(data["kind"])
    fields = {k: v for k, v in data.items() if k in ck.amendable_fields}
    contract = await contract_service.create_accepted_contract(
        session,
        ck.name,
        data[ck.owner_a_field],
        data[ck.owner_b_field],
        request.created_by,
        fields,
    )
    logger.info(f"Edit request {request.id} created {ck.name} contract {contract['id']}")


async def _apply_relationship_end(session: AsyncSession, request: EditRequest) -> None:
    data = request.proposed_data
    ended = await contract_service.end_contract_record(
        session, data["kind"], request.target_id, parse_date(data.get("end_date"))
    )
    if ended is None:
        logger.warning(
            f"Edit request {request.id}: {data['kind']} contract {request.target_id} "
            f"is no longer accepted, nothing to end"
        )


async def _apply_relationship_delete(session: AsyncSession, request: EditRequest) -> None:
    await contract_service.delete_contract_record(
        session, request.proposed_data["kind"], request.target_id
    )


def _field_update(kind: str, marks_override: bool = False) -> ApplyHandler:
    async def apply(session: AsyncSession, request: EditRequest) -> None:
        entity = await load_entity(session, kind, request.target_id)
        for name, value in request.proposed_data.items():
            setattr(entity, name, value)
        if marks_override and ({"home_score", "away_score"} & set(request.proposed_data)):
            entity.score_overridden = True
        await session.flush()

    return apply


async def _apply_administrator_claim(session: AsyncSession, request: EditRequest) -> None:
    data = request.proposed_data
    entity = await load_entity(session, data["entity_kind"], data["entity_id"])
    if entity_service.append_administrator(entity, request.created_by):
        await session.flush()


APPLY_HANDLERS: Dict[str, ApplyHandler] = {
    "teamPlayerContract": _apply_contract_amendment,
    "teamCompetitionContract": _apply_contract_amendment,
    "relationshipCreate": _apply_relationship_create,
    "relationshipEnd": _apply_relationship_end,
    "relationshipDelete": _apply_relationship_delete,
    "matchResult": _field_update("match", marks_override=True),
    "setResult": _field_update("matchSet"),
    "playerMatchStats": _field_update("playerMatchStats"),
    "teamMatchStats": _field_update("teamMatchStats"),
    "administratorClaim": _apply_administrator_claim,
}


async def _apply(session: AsyncSession, request: EditRequest) -> None:
    handler = APPLY_HANDLERS.get(request.change_type)
    if handler is None:
        logger.error(f"No apply handler registered for change type '{request.change_type}'")
        raise UnsupportedChangeTypeError(f"Unsupported change type: {request.change_type}")
    await handler(session, request)


# ──────────────────────────────────────────────────────────────
# Workflow
# ──────────────────────────────────────────────────────────────


async def create_edit_request(
    session: AsyncSession,
    change_type: str,
    proposed_data: Any,
    created_by: str,
    target_id: Optional[int] = None,
) -> Dict:
    """
    Propose a change.

    Args:
        session: Database session
        change_type: Change type from the approval policy table
        proposed_data: Payload, validated against the change type's shape
        created_by: Proposing user
        target_id: Entity being changed; None for creation requests

    Returns:
        Dict with the pending edit request

    Raises:
        InvalidArgumentError: Unknown change type, bad payload or target
        NotFoundError: If the target or a named owner does not exist
        ConflictError: If a relationship to create already exists
    """
    policy = approval_policies.get_policy(change_type)
    if policy is None:
        raise InvalidArgumentError(f"Unknown change type: {change_type}")
    data = validate_proposed_data(change_type, proposed_data)

    if policy.target_kind == NEW_RELATIONSHIP:
        if target_id is not None:
            raise InvalidArgumentError("relationshipCreate requests cannot name a target")
    elif policy.target_kind == CLAIMED_ENTITY:
        target_id = data["entity_id"]
    elif target_id is None:
        raise InvalidArgumentError(f"Change type '{change_type}' requires a target_id")

    target_kind = approver_resolver.target_kind_for(policy, data)
    sides = await approver_resolver.resolve_approvers(session, change_type, target_id, data)

    if policy.target_kind == NEW_RELATIONSHIP:
        ck = contract_service.get_contract_kind(data["kind"])
        if await contract_service.find_open_contract(
            session, ck, data[ck.owner_a_field], data[ck.owner_b_field]
        ):
            raise ConflictError(f"An active {ck.name} contract already exists for this pair")
    elif policy.target_kind == CLAIMED_ENTITY and created_by in sides.all():
        raise InvalidArgumentError(f"Already an administrator of this {target_kind}")

    request = EditRequest(
        change_type=change_type,
        target_kind=target_kind,
        target_id=target_id,
        proposed_data=data,
        state=EditRequestState.PENDING.value,
        approved_by=[],
        requires_double_confirmation=policy.needs_double_confirmation(data),
        created_by=created_by,
    )
    session.add(request)
    await session.flush()
    await session.refresh(request)
    logger.info(
        f"Edit request {request.id} ({change_type} on {target_kind} {target_id}) created by {created_by}"
    )
    return _format_edit_request(request)


async def decide_edit_request(
    session: AsyncSession,
    request_id: int,
    actor_id: str,
    decision: str,
    reason: Optional[str] = None,
    payload_override: Optional[Dict] = None,
    is_global_admin: bool = False,
) -> Dict:
    """
    Accept or reject a pending edit request.

    Rejecting closes the request. Accepting records the actor's approval;
    when the policy needs double confirmation and not enough sides have
    approved yet the request stays pending, otherwise the change is applied
    and the request is marked accepted. A payload override replaces the
    proposed data and restarts the approval count.

    Raises:
        NotFoundError: If the request or its target does not exist
        InvalidStateError: If the request is not pending
        UnsupportedChangeTypeError: If the stored change type is not configured
        ForbiddenError: If the actor is not an eligible approver
        InvalidArgumentError: Unknown decision or invalid override
        ConflictError: If applying would duplicate an active relationship
        ApplyFailedError: If applying the change failed; nothing was persisted
    """
    if decision not in (ACCEPT, REJECT):
        raise InvalidArgumentError(f"Decision must be '{ACCEPT}' or '{REJECT}'")

    request = await _get_request_row(session, request_id, for_update=True)
    if request.state != EditRequestState.PENDING.value:
        raise InvalidStateError(f"Edit request is {request.state}, only pending requests can be decided")

    policy = approval_policies.require_policy(request.change_type)
    eligible = await _eligible_for(session, request, policy)
    if not is_global_admin and actor_id not in eligible.all():
        raise ForbiddenError("Not authorized to decide this edit request")

    if decision == REJECT:
        request.state = EditRequestState.REJECTED.value
        request.rejection_reason = reason
        request.rejected_at = utcnow()
        request.final_approved_by = actor_id
        await session.flush()
        await session.refresh(request)
        logger.info(f"Edit request {request.id} rejected by {actor_id}: {reason or 'no reason given'}")
        return _format_edit_request(request)

    proposed = dict(request.proposed_data or {})
    approvals = list(request.approved_by or [])
    if payload_override is not None:
        override = validate_proposed_data(request.change_type, payload_override)
        for key in _identity_keys(policy):
            if override.get(key) != proposed.get(key):
                raise InvalidArgumentError(f"payload_override cannot change '{key}'")
        if override != proposed:
            proposed = override
            approvals = []
    if actor_id not in approvals:
        approvals.append(actor_id)

    if payload_override is not None:
        requires_double = policy.needs_double_confirmation(proposed)
    else:
        requires_double = request.requires_double_confirmation

    if requires_double and not is_global_admin and not confirmation_complete(policy, eligible, approvals):
        request.proposed_data = proposed
        request.approved_by = approvals
        request.requires_double_confirmation = True
        await session.flush()
        await session.refresh(request)
        logger.info(
            f"Edit request {request.id} approved by {actor_id}, waiting for more confirmations "
            f"({len(approvals)} so far)"
        )
        return _format_edit_request(request)

    try:
        async with session.begin_nested():
            request.proposed_data = proposed
            request.approved_by = approvals
            request.requires_double_confirmation = requires_double
            await _apply(session, request)
            request.state = EditRequestState.ACCEPTED.value
            request.accepted_at = utcnow()
            request.final_approved_by = actor_id
            await session.flush()
    except CLIENT_APPLY_ERRORS + (UnsupportedChangeTypeError,):
        raise
    except Exception as e:
        logger.error(f"Applying edit request {request_id} failed: {e}", exc_info=True)
        raise ApplyFailedError(f"Failed to apply edit request {request_id}") from e

    await session.refresh(request)
    logger.info(f"Edit request {request.id} accepted by {actor_id}")
    return _format_edit_request(request)


async def cancel_edit_request(
    session: AsyncSession,
    request_id: int,
    actor_id: str,
    is_global_admin: bool = False,
) -> Dict:
    """
    Withdraw a pending edit request. The creator, its eligible approvers and
    global administrators may cancel. The request is kept as cancelled.

    Raises:
        NotFoundError, InvalidStateError, ForbiddenError
    """
    request = await _get_request_row(session, request_id, for_update=True)
    if request.state != EditRequestState.PENDING.value:
        raise InvalidStateError(f"Edit request is {request.state}, only pending requests can be cancelled")

    if not is_global_admin and actor_id != request.created_by:
        policy = approval_policies.require_policy(request.change_type)
        eligible = await _eligible_for(session, request, policy)
        if actor_id not in eligible.all():
            raise ForbiddenError("Not authorized to cancel this edit request")

    request.state = EditRequestState.CANCELLED.value
    request.cancelled_at = utcnow()
    await session.flush()
    await session.refresh(request)
    logger.info(f"Edit request {request.id} cancelled by {actor_id}")
    return _format_edit_request(request)


# ──────────────────────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────────────────────


async def get_edit_request(session: AsyncSession, request_id: int) -> Dict:
    """Get one edit request. Raises NotFoundError if missing."""
    return _format_edit_request(await _get_request_row(session, request_id))


async def list_edit_requests(
    session: AsyncSession,
    change_type: Optional[str] = None,
    state: Optional[str] = None,
    created_by: Optional[str] = None,
    target_kind: Optional[str] = None,
    target_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict]:
    """List edit requests, newest first, with optional filters."""
    query = select(EditRequest)
    if change_type is not None:
        query = query.where(EditRequest.change_type == change_type)
    if state is not None:
        query = query.where(EditRequest.state == state)
    if created_by is not None:
        query = query.where(EditRequest.created_by == created_by)
    if target_kind is not None:
        query = query.where(EditRequest.target_kind == target_kind)
    if target_id is not None:
        query = query.where(EditRequest.target_id == target_id)
    query = query.order_by(EditRequest.id.desc()).limit(limit).offset(offset)
    result = await session.execute(query)
    return [_format_edit_request(r) for r in result.scalars().all()]


async def get_eligible_approvers(session: AsyncSession, request_id: int) -> Dict:
    """
    Who may decide a request, grouped by side, minus anyone already counted.

    Returns:
        Dict with request_id, sides and the flat eligible list
    """
    request = await _get_request_row(session, request_id)
    policy = approval_policies.require_policy(request.change_type)
    eligible = await _eligible_for(session, request, policy)
    already = set(request.approved_by or [])
    return {
        "request_id": request.id,
        "sides": eligible.to_dict(),
        "eligible": sorted(eligible.all() - already),
    }
