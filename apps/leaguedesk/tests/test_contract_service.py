"""
Tests for the contract state machine (team-player and team-competition).
"""
from datetime import date

import pytest
from sqlalchemy import func, select, text

from leaguedesk.database.models import TeamPlayerContract
from leaguedesk.services import contract_service
from leaguedesk.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)


async def _request_team_player(db_session, league, requested_by="team-admin-1", origin="team", **fields):
    return await contract_service.request_contract(
        db_session,
        "teamPlayer",
        league.team_id,
        league.player_id,
        requested_by,
        origin,
        fields=fields or None,
    )


async def _accepted_team_player(db_session, league, **fields):
    contract = await _request_team_player(db_session, league, **fields)
    return await contract_service.approve_contract(db_session, "teamPlayer", contract["id"], "player-admin")


# ============================================================================
# Request / approve
# ============================================================================


@pytest.mark.asyncio
async def test_request_then_approve_by_other_side(db_session, league):
    """The requesting side cannot approve; the other side can."""
    contract = await _request_team_player(db_session, league, role="keeper", jersey_number=1)
    assert contract["state"] == "pending"
    assert contract["active"] is False
    assert contract["origin"] == "team"
    assert contract["requested_by"] == "team-admin-1"
    assert contract["role"] == "keeper"

    with pytest.raises(ForbiddenError):
        await contract_service.approve_contract(db_session, "teamPlayer", contract["id"], "team-admin-1")
    with pytest.raises(ForbiddenError):
        await contract_service.approve_contract(db_session, "teamPlayer", contract["id"], "team-admin-2")

    approved = await contract_service.approve_contract(
        db_session, "teamPlayer", contract["id"], "player-admin"
    )
    assert approved["state"] == "accepted"
    assert approved["active"] is True
    assert approved["accepted_at"] is not None
    assert approved["valid_from"] is not None


@pytest.mark.asyncio
async def test_player_side_request_is_approved_by_team(db_session, league):
    contract = await _request_team_player(db_session, league, requested_by="player-admin", origin="player")
    with pytest.raises(ForbiddenError):
        await contract_service.approve_contract(db_session, "teamPlayer", contract["id"], "player-admin")
    approved = await contract_service.approve_contract(
        db_session, "teamPlayer", contract["id"], "team-admin-2"
    )
    assert approved["state"] == "accepted"


@pytest.mark.asyncio
async def test_request_requires_origin_side_admin(db_session, league):
    with pytest.raises(ForbiddenError):
        await _request_team_player(db_session, league, requested_by="outsider")
    with pytest.raises(ForbiddenError):
        await _request_team_player(db_session, league, requested_by="team-admin-1", origin="player")


@pytest.mark.asyncio
async def test_global_admin_can_request_and_approve(db_session, league):
    contract = await contract_service.request_contract(
        db_session, "teamCompetition", league.team_id, league.competition_id, "root", "competition",
        is_global_admin=True,
    )
    approved = await contract_service.approve_contract(
        db_session, "teamCompetition", contract["id"], "root", is_global_admin=True
    )
    assert approved["state"] == "accepted"
    assert approved["competition_id"] == league.competition_id


@pytest.mark.asyncio
async def test_request_validation(db_session, league):
    with pytest.raises(InvalidArgumentError):
        await contract_service.request_contract(
            db_session, "playerPlayer", league.team_id, league.player_id, "team-admin-1", "team"
        )
    with pytest.raises(InvalidArgumentError):
        await _request_team_player(db_session, league, origin="competition")
    with pytest.raises(InvalidArgumentError):
        await _request_team_player(db_session, league, name="not a team-player field")
    with pytest.raises(InvalidArgumentError):
        await _request_team_player(db_session, league, valid_from="2026-05-01", valid_to="2026-01-01")
    with pytest.raises(NotFoundError):
        await contract_service.request_contract(
            db_session, "teamPlayer", league.team_id, 9999, "team-admin-1", "team"
        )


@pytest.mark.asyncio
async def test_approve_only_pending(db_session, league):
    contract = await _accepted_team_player(db_session, league)
    with pytest.raises(InvalidStateError):
        await contract_service.approve_contract(db_session, "teamPlayer", contract["id"], "player-admin")


# ============================================================================
# At most one pending/accepted contract per pair
# ============================================================================


@pytest.mark.asyncio
async def test_second_request_while_pending_conflicts(db_session, league):
    await _request_team_player(db_session, league)
    with pytest.raises(ConflictError):
        await _request_team_player(db_session, league, requested_by="player-admin", origin="player")


@pytest.mark.asyncio
async def test_second_request_while_accepted_conflicts(db_session, league):
    await _accepted_team_player(db_session, league)
    with pytest.raises(ConflictError):
        await _request_team_player(db_session, league)


@pytest.mark.asyncio
async def test_unique_index_guards_pair_without_precheck(db_session, league, monkeypatch):
    """Even if the pre-check misses a concurrent insert, the index rejects it."""
    await _request_team_player(db_session, league)

    async def no_open_contract(*args, **kwargs):
        return None

    monkeypatch.setattr(contract_service, "find_open_contract", no_open_contract)
    with pytest.raises(ConflictError):
        await _request_team_player(db_session, league, requested_by="team-admin-2")

    count = await db_session.execute(
        select(func.count()).select_from(TeamPlayerContract).where(
            TeamPlayerContract.team_id == league.team_id,
            TeamPlayerContract.player_id == league.player_id,
        )
    )
    assert count.scalar() == 1


@pytest.mark.asyncio
async def test_approve_rechecks_accepted_pair(db_session, league):
    """Approve refuses a pending contract when the pair already has an accepted one."""
    accepted = await _accepted_team_player(db_session, league)

    # a store without the partial index lets a second open row slip in
    await db_session.execute(text("DROP INDEX uq_team_player_contracts_open_pair"))
    duplicate = TeamPlayerContract(
        team_id=league.team_id,
        player_id=league.player_id,
        origin="team",
        requested_by="team-admin-2",
        state="pending",
        active=False,
        created_by="team-admin-2",
        administrators=["team-admin-2"],
    )
    db_session.add(duplicate)
    await db_session.flush()

    with pytest.raises(ConflictError):
        await contract_service.approve_contract(db_session, "teamPlayer", duplicate.id, "player-admin")

    pending = await contract_service.get_contract(db_session, "teamPlayer", duplicate.id)
    assert pending["state"] == "pending"
    assert pending["active"] is False
    still_accepted = await contract_service.get_contract(db_session, "teamPlayer", accepted["id"])
    assert still_accepted["state"] == "accepted"


@pytest.mark.asyncio
async def test_pair_can_be_requested_again_after_end(db_session, league):
    contract = await _accepted_team_player(db_session, league)
    await contract_service.end_contract(db_session, "teamPlayer", contract["id"], "team-admin-1")
    again = await _request_team_player(db_session, league)
    assert again["state"] == "pending"
    assert again["id"] != contract["id"]


# ============================================================================
# Reject / cancel
# ============================================================================


@pytest.mark.asyncio
async def test_reject_deletes_pending_contract(db_session, league):
    contract = await _request_team_player(db_session, league)
    with pytest.raises(ForbiddenError):
        await contract_service.reject_contract(db_session, "teamPlayer", contract["id"], "outsider")

    snapshot = await contract_service.reject_contract(
        db_session, "teamPlayer", contract["id"], "player-admin", reason="no thanks"
    )
    assert snapshot["state"] == "rejected"
    assert snapshot["rejection_reason"] == "no thanks"
    with pytest.raises(NotFoundError):
        await contract_service.get_contract(db_session, "teamPlayer", contract["id"])

    # the pair is free again
    again = await _request_team_player(db_session, league)
    assert again["state"] == "pending"


@pytest.mark.asyncio
async def test_reject_only_pending(db_session, league):
    contract = await _accepted_team_player(db_session, league)
    with pytest.raises(InvalidStateError):
        await contract_service.reject_contract(db_session, "teamPlayer", contract["id"], "player-admin")


@pytest.mark.asyncio
async def test_cancel_by_requesting_side(db_session, league):
    contract = await _request_team_player(db_session, league)
    with pytest.raises(ForbiddenError):
        await contract_service.cancel_contract(db_session, "teamPlayer", contract["id"], "player-admin")

    snapshot = await contract_service.cancel_contract(
        db_session, "teamPlayer", contract["id"], "team-admin-2"
    )
    assert snapshot["state"] == "cancelled"
    with pytest.raises(NotFoundError):
        await contract_service.get_contract(db_session, "teamPlayer", contract["id"])


# ============================================================================
# Amend / end / delete
# ============================================================================


@pytest.mark.asyncio
async def test_amend_accepted_contract(db_session, league):
    contract = await _accepted_team_player(db_session, league, jersey_number=9)
    amended = await contract_service.amend_contract(
        db_session, "teamPlayer", contract["id"], "player-admin", {"jersey_number": 10, "alias": "Ana"}
    )
    assert amended["jersey_number"] == 10
    assert amended["alias"] == "Ana"
    assert amended["state"] == "accepted"

    with pytest.raises(ForbiddenError):
        await contract_service.amend_contract(
            db_session, "teamPlayer", contract["id"], "outsider", {"alias": "x"}
        )
    with pytest.raises(InvalidArgumentError):
        await contract_service.amend_contract(
            db_session, "teamPlayer", contract["id"], "player-admin", {"player_id": 5}
        )


@pytest.mark.asyncio
async def test_amend_pending_contract_rejected(db_session, league):
    contract = await _request_team_player(db_session, league)
    with pytest.raises(InvalidStateError):
        await contract_service.amend_contract(
            db_session, "teamPlayer", contract["id"], "team-admin-1", {"alias": "x"}
        )


@pytest.mark.asyncio
async def test_end_keeps_record(db_session, league):
    """Ending never deletes; it only flips active off."""
    contract = await _accepted_team_player(db_session, league)
    ended = await contract_service.end_contract(
        db_session, "teamPlayer", contract["id"], "player-admin", end_date=date(2026, 6, 30)
    )
    assert ended["state"] == "ended"
    assert ended["active"] is False
    assert ended["valid_to"] == "2026-06-30"
    assert ended["ended_at"] is not None

    stored = await contract_service.get_contract(db_session, "teamPlayer", contract["id"])
    assert stored["state"] == "ended"

    with pytest.raises(InvalidStateError):
        await contract_service.end_contract(db_session, "teamPlayer", contract["id"], "player-admin")


@pytest.mark.asyncio
async def test_end_record_is_noop_when_not_accepted(db_session, league):
    contract = await _request_team_player(db_session, league)
    assert await contract_service.end_contract_record(db_session, "teamPlayer", contract["id"]) is None


@pytest.mark.asyncio
async def test_delete_refuses_accepted(db_session, league):
    contract = await _accepted_team_player(db_session, league)
    with pytest.raises(InvalidStateError):
        await contract_service.delete_contract(db_session, "teamPlayer", contract["id"], "team-admin-1")

    await contract_service.end_contract(db_session, "teamPlayer", contract["id"], "team-admin-1")
    deleted = await contract_service.delete_contract(
        db_session, "teamPlayer", contract["id"], "team-admin-1"
    )
    assert deleted["state"] == "ended"
    with pytest.raises(NotFoundError):
        await contract_service.get_contract(db_session, "teamPlayer", contract["id"])


# ============================================================================
# Queries
# ============================================================================


@pytest.mark.asyncio
async def test_list_contracts_filters(db_session, league):
    await _request_team_player(db_session, league)
    await contract_service.request_contract(
        db_session, "teamCompetition", league.team_id, league.competition_id, "team-admin-1", "team"
    )

    by_team = await contract_service.list_contracts(db_session, "teamPlayer", owner_a_id=league.team_id)
    assert len(by_team) == 1
    assert by_team[0]["player_id"] == league.player_id

    accepted = await contract_service.list_contracts(db_session, "teamPlayer", state="accepted")
    assert accepted == []


@pytest.mark.asyncio
async def test_list_pending_for_user(db_session, league):
    await _request_team_player(db_session, league)
    assert len(await contract_service.list_pending_for_user(db_session, "teamPlayer", "player-admin")) == 1
    assert await contract_service.list_pending_for_user(db_session, "teamPlayer", "team-admin-1") == []
