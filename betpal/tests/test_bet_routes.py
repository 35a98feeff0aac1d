"""
Unit tests for bet, friend and user API routes.
Service calls are monkeypatched except in the end-to-end flow at the bottom.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from betpal.api.main import app
from betpal.database import db
from betpal.services import bet_service, friend_service, user_service
from betpal.services.errors import (
    AuthorizationError,
    ErrorKind,
    InsufficientFundsError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from betpal.utils.datetime_utils import utcnow


FAKE_BET = {
    "id": 7,
    "title": "Rain tomorrow",
    "description": None,
    "stake": 10,
    "deadline": "2030-01-01T00:00:00+00:00",
    "status": "pending",
    "resolution_type": "self",
    "created_by": 1,
    "creator_username": "alice",
    "judge_id": None,
    "judge_username": None,
    "winner_id": None,
    "winner_username": None,
    "participants": [{"user_id": 2, "username": "bob", "status": "invited"}],
    "created_at": "2029-12-01T00:00:00+00:00",
    "updated_at": "2029-12-01T00:00:00+00:00",
}


def make_client_with_auth(monkeypatch, user_id=1, username="alice"):
    """Create a test client with mocked authentication."""
    async def fake_get_user_by_id(session, uid):
        return {
            "id": user_id,
            "username": username,
            "email": f"{username}@example.com",
            "avatar_url": None,
            "token_balance": 100,
            "total_wins": 0,
            "total_losses": 0,
            "created_at": "2020-01-01T00:00:00Z",
        }

    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)

    return TestClient(app), {"X-User-Id": str(user_id)}


def _bet_payload(**overrides):
    payload = {
        "title": "Rain tomorrow",
        "stake": 10,
        "deadline": (utcnow() + timedelta(days=2)).isoformat(),
        "resolution_type": "self",
        "participant_usernames": ["bob"],
    }
    payload.update(overrides)
    return payload


# ──────────────────────────────────────────────────────────────
# Authentication
# ──────────────────────────────────────────────────────────────


def test_missing_identity_header_is_401():
    client = TestClient(app)
    response = client.get("/api/bets")
    assert response.status_code == 401


def test_unknown_user_is_401(monkeypatch):
    async def fake_get_user_by_id(session, uid):
        return None

    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)
    client = TestClient(app)

    assert client.get("/api/bets", headers={"X-User-Id": "5"}).status_code == 401
    assert client.get("/api/bets", headers={"X-User-Id": "abc"}).status_code == 401


def test_health():
    client = TestClient(app)
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_get_me(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id=3, username="carol")
    response = client.get("/api/users/me", headers=headers)
    assert response.status_code == 200
    assert response.json()["username"] == "carol"


# ──────────────────────────────────────────────────────────────
# Bets
# ──────────────────────────────────────────────────────────────


def test_create_bet(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    captured = {}

    async def fake_create_bet(session, **kwargs):
        captured.update(kwargs)
        return FAKE_BET

    monkeypatch.setattr(bet_service, "create_bet", fake_create_bet, raising=True)

    response = client.post("/api/bets", json=_bet_payload(), headers=headers)

    assert response.status_code == 201
    assert response.json()["id"] == 7
    assert captured["creator_id"] == 1
    assert captured["participant_usernames"] == ["bob"]
    assert captured["stake"] == 10


def test_create_bet_rejects_malformed_body(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    response = client.post("/api/bets", json={"title": "No stake"}, headers=headers)
    assert response.status_code == 422


@pytest.mark.parametrize(
    "error,status_code,kind",
    [
        (ValidationError(ErrorKind.INVALID_STAKE, "bad stake"), 400, "InvalidStake"),
        (AuthorizationError(ErrorKind.NOT_AUTHORIZED_JUDGE, "judge only"), 403, "NotAuthorizedJudge"),
        (StateConflictError(ErrorKind.ALREADY_JOINED, "joined"), 409, "AlreadyJoined"),
        (InsufficientFundsError(), 402, "InsufficientFunds"),
        (NotFoundError(ErrorKind.BET_NOT_FOUND, "missing"), 404, "BetNotFound"),
    ],
)
def test_domain_errors_map_to_status_codes(monkeypatch, error, status_code, kind):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_join_bet(session, acting_user_id, bet_id):
        raise error

    monkeypatch.setattr(bet_service, "join_bet", fake_join_bet, raising=True)

    response = client.post("/api/bets/7/join", headers=headers)

    assert response.status_code == status_code
    assert response.json()["detail"]["kind"] == kind


def _locked():
    return OperationalError("UPDATE bets SET status = ?", {}, Exception("database is locked"))


def test_lock_contention_is_retried(monkeypatch):
    """A locked store on the first attempt is retried in a fresh transaction."""
    client, headers = make_client_with_auth(monkeypatch)
    calls = []

    async def flaky_join_bet(session, acting_user_id, bet_id):
        calls.append(bet_id)
        if len(calls) == 1:
            raise _locked()
        return {**FAKE_BET, "status": "active"}

    monkeypatch.setattr(bet_service, "join_bet", flaky_join_bet, raising=True)

    response = client.post("/api/bets/7/join", headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "active"
    assert calls == [7, 7]


def test_persistent_lock_contention_is_503(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    monkeypatch.setattr(db, "TRANSACTION_MAX_ATTEMPTS", 2)
    calls = []

    async def locked_resolve(session, acting_user_id, bet_id, winner_id):
        calls.append(bet_id)
        raise _locked()

    monkeypatch.setattr(bet_service, "resolve_bet", locked_resolve, raising=True)

    response = client.post("/api/bets/7/resolve", json={"winner_id": 1}, headers=headers)

    assert response.status_code == 503
    assert response.json()["detail"]["kind"] == "TransientStoreError"
    assert len(calls) == 2


def test_permanent_store_error_is_500_without_retry(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    calls = []

    async def broken_invite(session, bet_id, inviter_id, target_username):
        calls.append(bet_id)
        raise OperationalError("INSERT", {}, Exception("no such table: bet_participants"))

    monkeypatch.setattr(bet_service, "invite_participant", broken_invite, raising=True)

    response = client.post("/api/bets/7/invite", json={"username": "carol"}, headers=headers)

    assert response.status_code == 500
    assert calls == [7]


def test_unexpected_error_is_500(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_bet(session, bet_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(bet_service, "get_bet", fake_get_bet, raising=True)

    response = client.get("/api/bets/7", headers=headers)
    assert response.status_code == 500


def test_respond_and_resolve_pass_arguments(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch, user_id=2, username="bob")
    calls = []

    async def fake_respond(session, acting_user_id, bet_id, accept):
        calls.append(("respond", acting_user_id, bet_id, accept))
        return FAKE_BET

    async def fake_resolve(session, acting_user_id, bet_id, winner_id):
        calls.append(("resolve", acting_user_id, bet_id, winner_id))
        return {**FAKE_BET, "status": "completed", "winner_id": winner_id}

    monkeypatch.setattr(bet_service, "respond_to_invitation", fake_respond, raising=True)
    monkeypatch.setattr(bet_service, "resolve_bet", fake_resolve, raising=True)

    assert client.post("/api/bets/7/respond", json={"accept": False}, headers=headers).status_code == 200
    response = client.post("/api/bets/7/resolve", json={"winner_id": 2}, headers=headers)

    assert response.json()["status"] == "completed"
    assert calls == [("respond", 2, 7, False), ("resolve", 2, 7, 2)]


def test_invite_participant_route(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_invite(session, bet_id, inviter_id, target_username):
        assert (bet_id, inviter_id, target_username) == (7, 1, "carol")
        return FAKE_BET

    monkeypatch.setattr(bet_service, "invite_participant", fake_invite, raising=True)

    response = client.post("/api/bets/7/invite", json={"username": "carol"}, headers=headers)
    assert response.status_code == 200


def test_list_bets_and_invitations(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_user_bets(session, user_id):
        return [FAKE_BET]

    async def fake_invitations(session, user_id):
        return []

    monkeypatch.setattr(bet_service, "get_user_bets", fake_user_bets, raising=True)
    monkeypatch.setattr(bet_service, "get_pending_invitations", fake_invitations, raising=True)

    assert [b["id"] for b in client.get("/api/bets", headers=headers).json()] == [7]
    assert client.get("/api/bets/invitations", headers=headers).json() == []


# ──────────────────────────────────────────────────────────────
# Friends
# ──────────────────────────────────────────────────────────────


def test_friend_request_route(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_add_friend(session, requester_id, username_or_email):
        if username_or_email == "alice":
            raise ValidationError(ErrorKind.SELF_FRIENDSHIP, "You cannot add yourself")
        return {
            "id": 3,
            "user_id": requester_id,
            "username": "alice",
            "friend_id": 2,
            "friend_username": username_or_email,
            "status": "pending",
            "created_at": None,
        }

    monkeypatch.setattr(friend_service, "add_friend", fake_add_friend, raising=True)

    ok = client.post("/api/friends/request", json={"username_or_email": "bob"}, headers=headers)
    assert ok.status_code == 200
    assert ok.json()["friend_username"] == "bob"

    bad = client.post("/api/friends/request", json={"username_or_email": "alice"}, headers=headers)
    assert bad.status_code == 400
    assert bad.json()["detail"]["kind"] == "SelfFriendship"


def test_remove_friend_route(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)
    removed = []

    async def fake_remove(session, friendship_id, acting_user_id):
        removed.append((friendship_id, acting_user_id))

    monkeypatch.setattr(friend_service, "remove_friend", fake_remove, raising=True)

    response = client.delete("/api/friends/3", headers=headers)
    assert response.status_code == 204
    assert removed == [(3, 1)]


# ──────────────────────────────────────────────────────────────
# End to end against the test database
# ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bet_lifecycle_over_http(db_session, session_factory):
    """Create, join and resolve through the API; balances settle correctly."""
    alice = await user_service.create_user(db_session, "alice", token_balance=100)
    bob = await user_service.create_user(db_session, "bob", token_balance=100)
    await db_session.commit()

    client = TestClient(app)
    as_alice = {"X-User-Id": str(alice)}
    as_bob = {"X-User-Id": str(bob)}

    created = client.post("/api/bets", json=_bet_payload(), headers=as_alice)
    assert created.status_code == 201
    bet_id = created.json()["id"]

    invitations = client.get("/api/bets/invitations", headers=as_bob).json()
    assert [b["id"] for b in invitations] == [bet_id]

    joined = client.post(f"/api/bets/{bet_id}/join", headers=as_bob)
    assert joined.json()["status"] == "active"

    again = client.post(f"/api/bets/{bet_id}/join", headers=as_bob)
    assert again.status_code == 409

    resolved = client.post(f"/api/bets/{bet_id}/resolve", json={"winner_id": bob}, headers=as_alice)
    assert resolved.status_code == 200
    assert resolved.json()["winner_username"] == "bob"

    assert client.get("/api/users/me", headers=as_bob).json()["token_balance"] == 110
    summary = client.get("/api/users/me/summary", headers=as_alice).json()
    assert summary["token_balance"] == 90
    assert summary["total_losses"] == 1

    unread = client.get("/api/notifications/unread-count", headers=as_bob).json()
    assert unread["count"] == 3  # invite, completed, tokens received
