"""
backend/tests/test_api.py

Purpose:
    HTTP surface through the real application object: route ordering under
    /api/bankrolls, auth guards, exception-to-status mapping and the
    request id echoed by the logging middleware.

Dependencies:
    - quantara.main
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import quantara.database as _db
from _fakes import FakeDB
from quantara.main import app
from quantara.services.auth_service import get_admin_user, get_current_user

USER_ID = ObjectId()
CURRENCY = {"code": "USD", "label": "US Dollar", "symbol": "$"}


@pytest.fixture
def db(monkeypatch):
    fake = FakeDB(users=[{"_id": USER_ID, "username": "alice", "role": "user"}])
    monkeypatch.setattr(_db, "db", fake, raising=False)
    return fake


@pytest.fixture
def client(db):
    async def _fake_user():
        return {"_id": USER_ID, "username": "alice", "role": "user"}

    app.dependency_overrides[get_current_user] = _fake_user
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _bankroll(**extra) -> dict:
    doc = {
        "_id": ObjectId(),
        "name": "Main",
        "starting_capital": 500,
        "visibility": "Public",
        "currency": CURRENCY,
        "user_id": str(USER_ID),
        "bet_ids": [],
        "is_shareable": False,
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }
    doc.update(extra)
    return doc


def test_create_and_list_bankrolls(client, db):
    response = client.post("/api/bankrolls/", json={
        "name": "Main", "starting_capital": 1000, "visibility": "Public", "currency": CURRENCY,
    })
    assert response.status_code == 201
    assert response.json()["bankroll"]["stats"]["roi"] == "0.00"

    duplicate = client.post("/api/bankrolls/", json={
        "name": "Second", "starting_capital": 10, "visibility": "Public", "currency": CURRENCY,
    })
    assert duplicate.status_code == 400
    assert duplicate.json()["detail"] == "You can only have one public bankroll at a time."

    listed = client.get("/api/bankrolls/")
    assert [b["name"] for b in listed.json()] == ["Main"]


def test_top_route_is_not_taken_for_an_id(client, db):
    db.leaderboard.docs = []
    response = client.get("/api/bankrolls/top")
    assert response.status_code == 200
    assert response.json() == []


def test_shared_bankroll_needs_no_token(db):
    db.bankrolls.docs = [_bankroll(is_shareable=True, shareable_link="abc123")]
    app.dependency_overrides.clear()

    response = TestClient(app).get("/api/bankrolls/shared/abc123")

    assert response.status_code == 200
    assert "user_id" not in response.json()
    assert TestClient(app).get("/api/bankrolls/").status_code == 401


def test_invalid_object_id_maps_to_400(client):
    response = client.get("/api/bankrolls/not-an-id")
    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid ID."}


def test_validation_errors_are_flattened(client):
    response = client.post("/api/bankrolls/", json={"name": "", "starting_capital": -1, "currency": CURRENCY})
    assert response.status_code == 422
    body = response.json()
    assert body["detail"] == "Validation error."
    assert {e["field"] for e in body["errors"]} == {"name", "starting_capital"}


def test_malformed_stored_bet_is_a_generic_500(client, db):
    bet = {"_id": ObjectId(), "status": "Won", "odds": 2.0, "verification_status": "Accepted"}
    db.bets.docs = [bet]
    db.bankrolls.docs = [_bankroll(bet_ids=[str(bet["_id"])])]

    response = client.get(f"/api/bankrolls/{db.bankrolls.docs[0]['_id']}")

    assert response.status_code == 500
    assert response.json() == {"detail": "An internal error occurred."}


def test_admin_routes_are_guarded(client):
    response = client.get("/api/bets/admin/all")
    assert response.status_code == 401

    async def _fake_admin():
        return {"_id": ObjectId(), "role": "admin"}

    app.dependency_overrides[get_admin_user] = _fake_admin
    response = client.get("/api/bets/admin/all")
    assert response.status_code == 200
    assert response.json()["total_bets"] == 0


def test_request_id_is_echoed(client):
    response = client.get("/api/bankrolls/", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"

    generated = client.get("/api/bankrolls/")
    assert len(generated.headers["X-Request-ID"]) == 8


def test_malformed_stored_user_is_a_generic_500(client):
    async def _odd_user():
        return {
            "_id": USER_ID, "username": "alice", "email": "alice@example.com",
            "role": "superuser", "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
        }

    app.dependency_overrides[get_current_user] = _odd_user
    response = client.get("/api/auth/profile")

    assert response.status_code == 500
    assert response.json() == {"detail": "An internal error occurred."}
