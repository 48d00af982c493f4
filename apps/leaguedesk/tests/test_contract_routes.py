"""
Unit tests for contract API routes.
Services are mocked; these tests cover request parsing, identity plumbing and
the mapping of service errors to HTTP status codes.
"""
import pytest
from fastapi.testclient import TestClient

from leaguedesk.api.main import app
from leaguedesk.database.db import get_db_session
from leaguedesk.services import auth_service, contract_service, user_service
from leaguedesk.services.errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)


def make_client_with_auth(monkeypatch, user_id="team-admin-1", role="reader"):
    """Create a test client with mocked authentication and no database."""
    def fake_verify_token(token):
        return {"sub": user_id}

    async def fake_get_user_by_id(session, uid):
        return {"id": user_id, "email": None, "display_name": "Test User", "role": role, "created_at": None}

    async def fake_db_session():
        yield None

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)
    monkeypatch.setitem(app.dependency_overrides, get_db_session, fake_db_session)

    return TestClient(app), {"Authorization": "Bearer dummy"}


def _contract(**overrides):
    contract = {
        "id": 1,
        "kind": "teamPlayer",
        "team_id": 10,
        "player_id": 20,
        "origin": "team",
        "requested_by": "team-admin-1",
        "state": "pending",
        "active": False,
        "created_by": "team-admin-1",
        "administrators": ["team-admin-1"],
    }
    contract.update(overrides)
    return contract


def test_request_contract(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = {}

    async def fake_request_contract(session, kind, owner_a_id, owner_b_id, requested_by, origin,
                                    is_global_admin=False, fields=None):
        calls.update(kind=kind, owner_a_id=owner_a_id, owner_b_id=owner_b_id,
                     requested_by=requested_by, origin=origin, fields=fields,
                     is_global_admin=is_global_admin)
        return _contract(jersey_number=9)

    monkeypatch.setattr(contract_service, "request_contract", fake_request_contract, raising=True)

    response = client.post(
        "/api/contracts/teamPlayer",
        json={"team_id": 10, "counterpart_id": 20, "origin": "team", "fields": {"jersey_number": 9}},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["state"] == "pending"
    assert response.json()["jersey_number"] == 9
    assert calls == {
        "kind": "teamPlayer",
        "owner_a_id": 10,
        "owner_b_id": 20,
        "requested_by": "team-admin-1",
        "origin": "team",
        "fields": {"jersey_number": 9},
        "is_global_admin": False,
    }


def test_request_contract_invalid_body(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    response = client.post(
        "/api/contracts/teamPlayer",
        json={"team_id": 10, "counterpart_id": 20, "origin": "referee"},
        headers=headers,
    )
    assert response.status_code == 422


@pytest.mark.parametrize(
    "error, status",
    [
        (NotFoundError("contract 1 not found"), 404),
        (ForbiddenError("not an approver"), 403),
        (ConflictError("already exists"), 409),
        (InvalidStateError("not pending"), 400),
        (InvalidArgumentError("unknown kind"), 400),
        (RuntimeError("database went away"), 500),
    ],
)
def test_approve_contract_error_mapping(monkeypatch, error, status):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_approve_contract(session, kind, contract_id, approver_id, is_global_admin=False):
        raise error

    monkeypatch.setattr(contract_service, "approve_contract", fake_approve_contract, raising=True)

    response = client.post("/api/contracts/teamPlayer/1/approve", headers=headers)
    assert response.status_code == status
    if status == 500:
        assert response.json()["detail"] == "Error approving contract"


def test_global_admin_flag_is_passed(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="root", role="admin")
    seen = {}

    async def fake_approve_contract(session, kind, contract_id, approver_id, is_global_admin=False):
        seen["is_global_admin"] = is_global_admin
        return _contract(state="accepted", active=True)

    monkeypatch.setattr(contract_service, "approve_contract", fake_approve_contract, raising=True)

    response = client.post("/api/contracts/teamPlayer/1/approve", headers=headers)
    assert response.status_code == 200
    assert seen["is_global_admin"] is True


def test_reject_and_end_contract(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="player-admin")

    async def fake_reject_contract(session, kind, contract_id, actor_id, reason=None, is_global_admin=False):
        return _contract(state="rejected", rejection_reason=reason)

    async def fake_end_contract(session, kind, contract_id, actor_id, end_date=None, is_global_admin=False):
        return _contract(state="ended", valid_to=end_date.isoformat())

    monkeypatch.setattr(contract_service, "reject_contract", fake_reject_contract, raising=True)
    monkeypatch.setattr(contract_service, "end_contract", fake_end_contract, raising=True)

    response = client.post("/api/contracts/teamPlayer/1/reject", json={"reason": "no"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["rejection_reason"] == "no"

    response = client.post("/api/contracts/teamPlayer/1/end", json={"end_date": "2026-06-30"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["valid_to"] == "2026-06-30"


def test_pending_route_is_not_a_contract_id(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="player-admin")

    async def fake_list_pending_for_user(session, kind, user_id):
        return [_contract()]

    monkeypatch.setattr(contract_service, "list_pending_for_user", fake_list_pending_for_user, raising=True)

    response = client.get("/api/contracts/teamPlayer/pending", headers=headers)
    assert response.status_code == 200
    assert len(response.json()) == 1


def test_delete_contract(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_delete_contract(session, kind, contract_id, actor_id, is_global_admin=False):
        raise InvalidStateError("Accepted contracts cannot be deleted; end the contract instead")

    monkeypatch.setattr(contract_service, "delete_contract", fake_delete_contract, raising=True)

    response = client.delete("/api/contracts/teamPlayer/1", headers=headers)
    assert response.status_code == 400
    assert "end the contract" in response.json()["detail"]


def test_contracts_require_authentication():
    client = TestClient(app)
    response = client.get("/api/contracts/teamPlayer")
    assert response.status_code in (401, 403)


def test_health():
    client = TestClient(app)
    assert client.get("/api/health").json() == {"status": "ok"}
