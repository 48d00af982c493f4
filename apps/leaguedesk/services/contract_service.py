"""
Contract service: dual-party relationships between independently
administered entities (team <-> player, team <-> competition).

A contract is requested by one side, stays pending until an administrator
of the other side approves it, and once accepted can be amended or ended by
either side. Rejected and cancelled requests are deleted so the pair can be
requested again; ended contracts are kept as history.

At most one pending or accepted contract may exist per owner pair. The
pre-check below gives a friendly error, the partial unique index on each
contract table is what actually guarantees it.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, FrozenSet, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from leaguedesk.database.models import (
    BLOCKING_CONTRACT_STATES,
    ContractState,
    RELATIONSHIP_KINDS,
    TeamCompetitionContract,
    TeamPlayerContract,
)
from leaguedesk.services.approver_resolver import entity_admins, load_entity
from leaguedesk.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from leaguedesk.utils.datetime_utils import isoformat_or_none, parse_date, utcnow, utctoday

logger = logging.getLogger(__name__)

DATE_FIELDS = frozenset({"valid_from", "valid_to"})


@dataclass(frozen=True)
class ContractKind:
    """A registered relationship kind and its two owner sides."""

    name: str
    model: Any
    owner_a: str
    owner_b: str
    amendable_fields: FrozenSet[str]

    @property
    def entity_kind(self) -> str:
        return RELATIONSHIP_KINDS[self.name][0]

    @property
    def owner_a_field(self) -> str:
        return f"{self.owner_a}_id"

    @property
    def owner_b_field(self) -> str:
        return f"{self.owner_b}_id"

    def other_side(self, side: str) -> str:
        return self.owner_b if side == self.owner_a else self.owner_a


CONTRACT_KINDS: Dict[str, ContractKind] = {
    "teamPlayer": ContractKind(
        name="teamPlayer",
        model=TeamPlayerContract,
        owner_a="team",
        owner_b="player",
        amendable_fields=frozenset(
            {"role", "jersey_number", "photo", "alias", "valid_from", "valid_to"}
        ),
    ),
    "teamCompetition": ContractKind(
        name="teamCompetition",
        model=TeamCompetitionContract,
        owner_a="team",
        owner_b="competition",
        amendable_fields=frozenset({"name", "valid_from", "valid_to"}),
    ),
}


def get_contract_kind(kind: str) -> ContractKind:
    """
    Look up a registered contract kind.

    Raises:
        InvalidArgumentError: If the kind is unknown
    """
    contract_kind = CONTRACT_KINDS.get(kind)
    if contract_kind is None:
        raise InvalidArgumentError(f"Unknown contract kind: {kind}")
    return contract_kind


def _format_contract(ck: ContractKind, contract: Any) -> Dict:
    data = {
        "id": contract.id,
        "kind": ck.name,
        ck.owner_a_field: getattr(contract, ck.owner_a_field),
        ck.owner_b_field: getattr(contract, ck.owner_b_field),
        "origin": contract.origin,
        "requested_by": contract.requested_by,
        "state": contract.state,
        "active": contract.active,
        "valid_from": isoformat_or_none(contract.valid_from),
        "valid_to": isoformat_or_none(contract.valid_to),
        "requested_at": isoformat_or_none(contract.requested_at),
        "accepted_at": isoformat_or_none(contract.accepted_at),
        "ended_at": isoformat_or_none(contract.ended_at),
        "rejection_reason": contract.rejection_reason,
        "created_by": contract.created_by,
        "administrators": list(contract.administrators or []),
    }
    for name in ck.amendable_fields - DATE_FIELDS:
        data[name] = getattr(contract, name)
    return data


def _clean_fields(ck: ContractKind, fields: Optional[Dict]) -> Dict:
    """Validate contract fields against the kind's amendable set and parse dates."""
    fields = dict(fields or {})
    unknown = set(fields) - ck.amendable_fields
    if unknown:
        raise InvalidArgumentError(
            f"Fields {sorted(unknown)} cannot be set on a {ck.name} contract"
        )
    for name in DATE_FIELDS & set(fields):
        try:
            fields[name] = parse_date(fields[name])
        except (TypeError, ValueError):
            raise InvalidArgumentError(f"Invalid date for {name}: {fields[name]!r}") from None
    return fields


def _check_window(valid_from: Optional[date], valid_to: Optional[date]) -> None:
    if valid_from and valid_to and valid_to < valid_from:
        raise InvalidArgumentError("valid_to cannot be earlier than valid_from")


async def _get_row(
    session: AsyncSession, ck: ContractKind, contract_id: int, for_update: bool = False
):
    query = select(ck.model).where(ck.model.id == contract_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    contract = result.scalar_one_or_none()
    if contract is None:
        raise NotFoundError(f"{ck.name} contract {contract_id} not found")
    return contract


async def _side_admins(session: AsyncSession, ck: ContractKind, contract: Any) -> Dict[str, Set[str]]:
    """Administrators of each owner, keyed by owner kind."""
    owner_a = await load_entity(session, ck.owner_a, getattr(contract, ck.owner_a_field))
    owner_b = await load_entity(session, ck.owner_b, getattr(contract, ck.owner_b_field))
    return {ck.owner_a: entity_admins(owner_a), ck.owner_b: entity_admins(owner_b)}


def _require_either_side(
    admins: Dict[str, Set[str]], actor_id: str, is_global_admin: bool, action: str
) -> None:
    if is_global_admin:
        return
    if not any(actor_id in users for users in admins.values()):
        raise ForbiddenError(f"Not authorized to {action} this contract")


async def find_open_contract(
    session: AsyncSession,
    ck: ContractKind,
    owner_a_id: int,
    owner_b_id: int,
    states=BLOCKING_CONTRACT_STATES,
    exclude_id: Optional[int] = None,
):
    """Return a contract for the pair in one of ``states``, if any."""
    model = ck.model
    query = select(model).where(
        getattr(model, ck.owner_a_field) == owner_a_id,
        getattr(model, ck.owner_b_field) == owner_b_id,
        model.state.in_(list(states)),
    )
    if exclude_id is not None:
        query = query.where(model.id != exclude_id)
    result = await session.execute(query.limit(1))
    return result.scalar_one_or_none()


async def _insert_contract(session: AsyncSession, ck: ContractKind, contract: Any) -> None:
    """Insert a contract, mapping a unique-index violation to ConflictError."""
    try:
        async with session.begin_nested():
            session.add(contract)
            await session.flush()
    except IntegrityError as e:
        logger.info(f"Duplicate {ck.name} contract rejected by unique index: {e.orig}")
        raise ConflictError(f"An active {ck.name} contract already exists for this pair") from e
    await session.refresh(contract)


# ──────────────────────────────────────────────────────────────
# State machine
# ──────────────────────────────────────────────────────────────


async def request_contract(
    session: AsyncSession,
    kind: str,
    owner_a_id: int,
    owner_b_id: int,
    requested_by: str,
    origin: str,
    is_global_admin: bool = False,
    fields: Optional[Dict] = None,
) -> Dict:
    """
    Request a new contract between two owners.

    Args:
        session: Database session
        kind: Contract kind ("teamPlayer" or "teamCompetition")
        owner_a_id: Team id
        owner_b_id: Player or competition id
        requested_by: User making the request
        origin: Owner kind the requester acts for ("team", "player", "competition")
        is_global_admin: Whether the requester is a global administrator
        fields: Optional contract fields (role, dates, ...)

    Returns:
        Dict with the pending contract

    Raises:
        InvalidArgumentError: Unknown kind/origin or bad fields
        NotFoundError: If either owner does not exist
        ForbiddenError: If the requester does not administer the origin side
        ConflictError: If a pending or accepted contract already exists for the pair
    """
    ck = get_contract_kind(kind)
    if origin not in (ck.owner_a, ck.owner_b):
        raise InvalidArgumentError(
            f"Origin must be '{ck.owner_a}' or '{ck.owner_b}' for a {ck.name} contract"
        )
    values = _clean_fields(ck, fields)
    _check_window(values.get("valid_from"), values.get("valid_to"))

    owner_a = await load_entity(session, ck.owner_a, owner_a_id)
    owner_b = await load_entity(session, ck.owner_b, owner_b_id)
    origin_entity = owner_a if origin == ck.owner_a else owner_b
    if not is_global_admin and requested_by not in entity_admins(origin_entity):
        raise ForbiddenError(f"Only {origin} administrators can request this contract")

    if await find_open_contract(session, ck, owner_a_id, owner_b_id):
        raise ConflictError(f"An active {ck.name} contract already exists for this pair")

    contract = ck.model(
        origin=origin,
        requested_by=requested_by,
        state=ContractState.PENDING.value,
        active=False,
        created_by=requested_by,
        administrators=[requested_by],
        **{ck.owner_a_field: owner_a_id, ck.owner_b_field: owner_b_id},
        **values,
    )
    await _insert_contract(session, ck, contract)
    logger.info(
        f"{ck.name} contract {contract.id} requested by {requested_by} "
        f"({ck.owner_a}={owner_a_id}, {ck.owner_b}={owner_b_id}, origin={origin})"
    )
    return _format_contract(ck, contract)


async def approve_contract(
    session: AsyncSession,
    kind: str,
    contract_id: int,
    approver_id: str,
    is_global_admin: bool = False,
) -> Dict:
    """
    Approve a pending contract. Only the side opposite the origin may approve.

    Raises:
        NotFoundError: If the contract does not exist
        InvalidStateError: If the contract is not pending
        ForbiddenError: If the approver does not administer the opposite side
        ConflictError: If another contract for the pair was accepted meanwhile
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id, for_update=True)
    if contract.state != ContractState.PENDING.value:
        raise InvalidStateError(f"Contract is {contract.state}, only pending contracts can be approved")

    admins = await _side_admins(session, ck, contract)
    approving_side = ck.other_side(contract.origin)
    if not is_global_admin and approver_id not in admins[approving_side]:
        raise ForbiddenError(f"Only {approving_side} administrators can approve this contract")

    duplicate = await find_open_contract(
        session,
        ck,
        getattr(contract, ck.owner_a_field),
        getattr(contract, ck.owner_b_field),
        states=(ContractState.ACCEPTED.value,),
        exclude_id=contract.id,
    )
    if duplicate is not None:
        raise ConflictError(f"Contract {duplicate.id} is already accepted for this pair")

    contract.state = ContractState.ACCEPTED.value
    contract.active = True
    contract.accepted_at = utcnow()
    if contract.valid_from is None:
        contract.valid_from = utctoday()
    await session.flush()
    await session.refresh(contract)
    logger.info(f"{ck.name} contract {contract.id} approved by {approver_id}")
    return _format_contract(ck, contract)


async def reject_contract(
    session: AsyncSession,
    kind: str,
    contract_id: int,
    actor_id: str,
    reason: Optional[str] = None,
    is_global_admin: bool = False,
) -> Dict:
    """
    Reject a pending contract. Either side's administrators may reject.

    The record is deleted so the pair can be requested again; the returned
    dict is the final snapshot. The rejection reason is not persisted: it
    only survives in that snapshot and in the log.

    Raises:
        NotFoundError, InvalidStateError, ForbiddenError
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id, for_update=True)
    if contract.state != ContractState.PENDING.value:
        raise InvalidStateError(f"Contract is {contract.state}, only pending contracts can be rejected")

    admins = await _side_admins(session, ck, contract)
    _require_either_side(admins, actor_id, is_global_admin, "reject")

    contract.state = ContractState.REJECTED.value
    contract.rejection_reason = reason
    snapshot = _format_contract(ck, contract)
    await session.delete(contract)
    await session.flush()
    logger.info(f"{ck.name} contract {contract_id} rejected by {actor_id}: {reason or 'no reason given'}")
    return snapshot


async def cancel_contract(
    session: AsyncSession,
    kind: str,
    contract_id: int,
    actor_id: str,
    reason: Optional[str] = None,
    is_global_admin: bool = False,
) -> Dict:
    """
    Cancel a pending contract. Only the requester or the origin side's
    administrators may cancel. The record is deleted.

    Raises:
        NotFoundError, InvalidStateError, ForbiddenError
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id, for_update=True)
    if contract.state != ContractState.PENDING.value:
        raise InvalidStateError(f"Contract is {contract.state}, only pending contracts can be cancelled")

    if not is_global_admin and actor_id != contract.requested_by:
        admins = await _side_admins(session, ck, contract)
        if actor_id not in admins[contract.origin]:
            raise ForbiddenError("Only the requesting side can cancel this contract")

    contract.state = ContractState.CANCELLED.value
    contract.rejection_reason = reason
    snapshot = _format_contract(ck, contract)
    await session.delete(contract)
    await session.flush()
    logger.info(f"{ck.name} contract {contract_id} cancelled by {actor_id}")
    return snapshot


async def apply_contract_fields(
    session: AsyncSession, kind: str, contract_id: int, fields: Dict
) -> Dict:
    """
    Update non-identity fields of an accepted or ended contract, without
    authorization checks. Used by ``amend_contract`` and by accepted edit
    requests.

    Raises:
        NotFoundError, InvalidStateError, InvalidArgumentError
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id, for_update=True)
    if contract.state not in (ContractState.ACCEPTED.value, ContractState.ENDED.value):
        raise InvalidStateError(
            f"Contract is {contract.state}, only accepted or ended contracts can be amended"
        )
    values = _clean_fields(ck, fields)
    _check_window(
        values.get("valid_from", contract.valid_from), values.get("valid_to", contract.valid_to)
    )
    for name, value in values.items():
        setattr(contract, name, value)
    await session.flush()
    await session.refresh(contract)
    return _format_contract(ck, contract)


async def amend_contract(
    session: AsyncSession,
    kind: str,
    contract_id: int,
    actor_id: str,
    fields: Dict,
    is_global_admin: bool = False,
) -> Dict:
    """
    Amend an accepted or ended contract. Either side's administrators may amend.

    Raises:
        NotFoundError, InvalidStateError, ForbiddenError, InvalidArgumentError
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id)
    admins = await _side_admins(session, ck, contract)
    _require_either_side(admins, actor_id, is_global_admin, "amend")
    result = await apply_contract_fields(session, kind, contract_id, fields)
    logger.info(f"{ck.name} contract {contract_id} amended by {actor_id}: {sorted(fields)}")
    return result


async def end_contract_record(
    session: AsyncSession, kind: str, contract_id: int, end_date: Optional[date] = None
) -> Optional[Dict]:
    """
    Move an accepted contract to ended, without authorization checks.

    Returns:
        The ended contract, or None if it was not accepted (nothing changed)
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id, for_update=True)
    if contract.state != ContractState.ACCEPTED.value:
        return None
    contract.state = ContractState.ENDED.value
    contract.active = False
    contract.ended_at = utcnow()
    if contract.valid_to is None:
        contract.valid_to = end_date or utctoday()
    await session.flush()
    await session.refresh(contract)
    return _format_contract(ck, contract)


async def end_contract(
    session: AsyncSession,
    kind: str,
    contract_id: int,
    actor_id: str,
    end_date: Optional[date] = None,
    is_global_admin: bool = False,
) -> Dict:
    """
    End an accepted contract. The record is kept with ``active=False``.

    Raises:
        NotFoundError, InvalidStateError, ForbiddenError
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id)
    if contract.state != ContractState.ACCEPTED.value:
        raise InvalidStateError(f"Contract is {contract.state}, only accepted contracts can be ended")
    admins = await _side_admins(session, ck, contract)
    _require_either_side(admins, actor_id, is_global_admin, "end")
    result = await end_contract_record(session, kind, contract_id, end_date)
    logger.info(f"{ck.name} contract {contract_id} ended by {actor_id}")
    return result


async def delete_contract_record(session: AsyncSession, kind: str, contract_id: int) -> Dict:
    """
    Delete a contract that is not accepted, without authorization checks.

    Raises:
        NotFoundError: If the contract does not exist
        InvalidStateError: If the contract is accepted (end it instead)
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id, for_update=True)
    if contract.state == ContractState.ACCEPTED.value:
        raise InvalidStateError("Accepted contracts cannot be deleted; end the contract instead")
    snapshot = _format_contract(ck, contract)
    await session.delete(contract)
    await session.flush()
    return snapshot


async def delete_contract(
    session: AsyncSession,
    kind: str,
    contract_id: int,
    actor_id: str,
    is_global_admin: bool = False,
) -> Dict:
    """
    Delete a pending or ended contract. Either side's administrators may delete.

    Raises:
        NotFoundError, InvalidStateError, ForbiddenError
    """
    ck = get_contract_kind(kind)
    contract = await _get_row(session, ck, contract_id)
    admins = await _side_admins(session, ck, contract)
    _require_either_side(admins, actor_id, is_global_admin, "delete")
    result = await delete_contract_record(session, kind, contract_id)
    logger.info(f"{ck.name} contract {contract_id} deleted by {actor_id}")
    return result


async def create_accepted_contract(
    session: AsyncSession,
    kind: str,
    owner_a_id: int,
    owner_b_id: int,
    created_by: str,
    fields: Optional[Dict] = None,
) -> Dict:
    """
    Create a contract directly in the accepted state (both sides already
    agreed through an edit request).

    Raises:
        NotFoundError: If either owner does not exist
        ConflictError: If a pending or accepted contract exists for the pair
    """
    ck = get_contract_kind(kind)
    values = _clean_fields(ck, fields)
    _check_window(values.get("valid_from"), values.get("valid_to"))
    owner_a = await load_entity(session, ck.owner_a, owner_a_id)
    await load_entity(session, ck.owner_b, owner_b_id)

    if await find_open_contract(session, ck, owner_a_id, owner_b_id):
        raise ConflictError(f"An active {ck.name} contract already exists for this pair")

    origin = ck.owner_a if created_by in entity_admins(owner_a) else ck.owner_b
    values.setdefault("valid_from", utctoday())
    contract = ck.model(
        origin=origin,
        requested_by=created_by,
        state=ContractState.ACCEPTED.value,
        active=True,
        accepted_at=utcnow(),
        created_by=created_by,
        administrators=[created_by],
        **{ck.owner_a_field: owner_a_id, ck.owner_b_field: owner_b_id},
        **values,
    )
    await _insert_contract(session, ck, contract)
    return _format_contract(ck, contract)


# ──────────────────────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────────────────────


async def get_contract(session: AsyncSession, kind: str, contract_id: int) -> Dict:
    """Get one contract. Raises NotFoundError if missing."""
    ck = get_contract_kind(kind)
    return _format_contract(ck, await _get_row(session, ck, contract_id))


async def list_contracts(
    session: AsyncSession,
    kind: str,
    owner_a_id: Optional[int] = None,
    owner_b_id: Optional[int] = None,
    state: Optional[str] = None,
) -> List[Dict]:
    """List contracts of a kind, optionally filtered by owner and state."""
    ck = get_contract_kind(kind)
    model = ck.model
    query = select(model)
    if owner_a_id is not None:
        query = query.where(getattr(model, ck.owner_a_field) == owner_a_id)
    if owner_b_id is not None:
        query = query.where(getattr(model, ck.owner_b_field) == owner_b_id)
    if state is not None:
        query = query.where(model.state == state)
    result = await session.execute(query.order_by(model.id.desc()))
    return [_format_contract(ck, c) for c in result.scalars().all()]


async def list_pending_for_user(session: AsyncSession, kind: str, user_id: str) -> List[Dict]:
    """Pending contracts that ``user_id`` is allowed to approve."""
    ck = get_contract_kind(kind)
    result = await session.execute(
        select(ck.model)
        .where(ck.model.state == ContractState.PENDING.value)
        .order_by(ck.model.id)
    )
    pending = []
    for contract in result.scalars().all():
        admins = await _side_admins(session, ck, contract)
        if user_id in admins[ck.other_side(contract.origin)]:
            pending.append(_format_contract(ck, contract))
    return pending
