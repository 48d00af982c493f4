"""
Unit tests for edit request, entity and user API routes.
"""
import pytest
from fastapi.testclient import TestClient

from leaguedesk.api.main import app
from leaguedesk.database.db import get_db_session
from leaguedesk.services import auth_service, edit_request_service, entity_service, user_service
from leaguedesk.services.errors import (
    ApplyFailedError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateError,
    UnsupportedChangeTypeError,
)


def make_client_with_auth(monkeypatch, user_id="comp-admin-1", role="reader"):
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


def _edit_request(**overrides):
    request = {
        "id": 5,
        "change_type": "teamCompetitionContract",
        "target_kind": "teamCompetitionContract",
        "target_id": 3,
        "proposed_data": {"valid_to": "2026-12-31"},
        "state": "pending",
        "approved_by": [],
        "requires_double_confirmation": True,
        "created_by": "team-admin-1",
    }
    request.update(overrides)
    return request


def test_create_edit_request(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="team-admin-1")
    calls = {}

    async def fake_create_edit_request(session, change_type, proposed_data, created_by, target_id=None):
        calls.update(change_type=change_type, proposed_data=proposed_data,
                     created_by=created_by, target_id=target_id)
        return _edit_request()

    monkeypatch.setattr(edit_request_service, "create_edit_request", fake_create_edit_request, raising=True)

    response = client.post(
        "/api/edit-requests",
        json={
            "change_type": "teamCompetitionContract",
            "target_id": 3,
            "proposed_data": {"valid_to": "2026-12-31"},
        },
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["state"] == "pending"
    assert calls == {
        "change_type": "teamCompetitionContract",
        "proposed_data": {"valid_to": "2026-12-31"},
        "created_by": "team-admin-1",
        "target_id": 3,
    }


def test_create_edit_request_unknown_change_type(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_create_edit_request(session, change_type, proposed_data, created_by, target_id=None):
        raise InvalidArgumentError(f"Unknown change type: {change_type}")

    monkeypatch.setattr(edit_request_service, "create_edit_request", fake_create_edit_request, raising=True)

    response = client.post(
        "/api/edit-requests",
        json={"change_type": "seasonRename", "proposed_data": {"name": "x"}},
        headers=headers,
    )
    assert response.status_code == 400


def test_decide_edit_request(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = {}

    async def fake_decide(session, request_id, actor_id, decision, reason=None,
                          payload_override=None, is_global_admin=False):
        calls.update(request_id=request_id, actor_id=actor_id, decision=decision,
                     reason=reason, payload_override=payload_override)
        return _edit_request(approved_by=[actor_id])

    monkeypatch.setattr(edit_request_service, "decide_edit_request", fake_decide, raising=True)

    response = client.put(
        "/api/edit-requests/5",
        json={"decision": "accept", "payload_override": {"valid_to": "2026-11-30"}},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["approved_by"] == ["comp-admin-1"]
    assert calls == {
        "request_id": 5,
        "actor_id": "comp-admin-1",
        "decision": "accept",
        "reason": None,
        "payload_override": {"valid_to": "2026-11-30"},
    }


def test_decide_rejects_unknown_decision(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    response = client.put("/api/edit-requests/5", json={"decision": "maybe"}, headers=headers)
    assert response.status_code == 422


@pytest.mark.parametrize(
    "error, status",
    [
        (ForbiddenError("not an approver"), 403),
        (InvalidStateError("already rejected"), 400),
        (UnsupportedChangeTypeError("Unsupported change type: seasonRename"), 500),
        (ApplyFailedError("Failed to apply edit request 5"), 500),
    ],
)
def test_decide_error_mapping(monkeypatch, error, status):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_decide(session, request_id, actor_id, decision, reason=None,
                          payload_override=None, is_global_admin=False):
        raise error

    monkeypatch.setattr(edit_request_service, "decide_edit_request", fake_decide, raising=True)

    response = client.put("/api/edit-requests/5", json={"decision": "accept"}, headers=headers)
    assert response.status_code == status


def test_list_edit_requests_paging(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    seen = {}

    async def fake_list(session, change_type=None, state=None, created_by=None,
                        target_kind=None, target_id=None, limit=100, offset=0):
        seen.update(state=state, limit=limit, offset=offset)
        return [_edit_request()]

    monkeypatch.setattr(edit_request_service, "list_edit_requests", fake_list, raising=True)

    response = client.get("/api/edit-requests?state=pending&page=3&page_size=10", headers=headers)
    assert response.status_code == 200
    assert seen == {"state": "pending", "limit": 10, "offset": 20}

    response = client.get("/api/edit-requests?state=bogus", headers=headers)
    assert response.status_code == 422


def test_edit_request_approvers(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_eligible_approvers(session, request_id):
        return {
            "request_id": request_id,
            "sides": {"teamAdmin": ["team-admin-2"], "competitionAdmin": ["comp-admin-1"]},
            "eligible": ["team-admin-2"],
        }

    monkeypatch.setattr(
        edit_request_service, "get_eligible_approvers", fake_get_eligible_approvers, raising=True
    )

    response = client.get("/api/edit-requests/5/approvers", headers=headers)
    assert response.status_code == 200
    assert response.json()["eligible"] == ["team-admin-2"]


def test_cancel_edit_request(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="team-admin-1")

    async def fake_cancel(session, request_id, actor_id, is_global_admin=False):
        return _edit_request(state="cancelled")

    monkeypatch.setattr(edit_request_service, "cancel_edit_request", fake_cancel, raising=True)

    response = client.delete("/api/edit-requests/5", headers=headers)
    assert response.status_code == 200
    assert response.json()["state"] == "cancelled"


# ============================================================================
# Entity and user routes
# ============================================================================


def test_create_match_same_team_rejected(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    response = client.post("/api/matches", json={"home_team_id": 1, "away_team_id": 1}, headers=headers)
    assert response.status_code == 422


def test_create_team(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="coach")

    async def fake_create_team(session, created_by, data):
        return {"id": 1, "created_by": created_by, "administrators": [created_by], **data}

    monkeypatch.setattr(entity_service, "create_team", fake_create_team, raising=True)

    response = client.post("/api/teams", json={"name": "Bay Rovers"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["created_by"] == "coach"
    assert response.json()["kind"] == "club"


def test_get_me(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="someone")
    response = client.get("/api/users/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["id"] == "someone"


def test_grant_global_admin_requires_admin(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id="someone")
    response = client.post("/api/users/other/global-admin", headers=headers)
    assert response.status_code == 403
