"""
backend/tests/test_background_jobs.py

Purpose:
    Startup and scheduled jobs: leaderboard materialization and the seeded
    admin account.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId

import quantara.database as _db
from _fakes import FakeDB
from quantara import seed
from quantara.services import bankroll_service
from quantara.workers import leaderboard as leaderboard_worker


@pytest.mark.asyncio
async def test_materialize_replaces_previous_board(monkeypatch):
    db = FakeDB(leaderboard=[{"rank": 1, "name": "Stale"}])
    monkeypatch.setattr(_db, "db", db, raising=False)
    quarter_start = datetime(2025, 4, 1, tzinfo=timezone.utc)

    async def _fake_compute(now=None):
        return [
            {"rank": 1, "name": "A", "quarter_start": quarter_start},
            {"rank": 2, "name": "B", "quarter_start": quarter_start},
        ]

    monkeypatch.setattr(leaderboard_worker, "compute_leaderboard", _fake_compute)

    await leaderboard_worker.materialize_leaderboard()

    assert [doc["name"] for doc in db.leaderboard.docs] == ["A", "B"]


@pytest.mark.asyncio
async def test_materialized_board_is_served_for_current_quarter(monkeypatch):
    now = datetime(2025, 5, 10, tzinfo=timezone.utc)
    current, previous = datetime(2025, 4, 1, tzinfo=timezone.utc), datetime(2025, 1, 1, tzinfo=timezone.utc)
    db = FakeDB(leaderboard=[
        {"rank": 2, "name": "B", "quarter_start": current},
        {"rank": 1, "name": "Old", "quarter_start": previous},
        {"rank": 1, "name": "A", "quarter_start": current},
    ])
    monkeypatch.setattr(_db, "db", db, raising=False)
    monkeypatch.setattr(bankroll_service, "utcnow", lambda: now)

    board = await bankroll_service.get_top_bankrolls()

    assert [entry["name"] for entry in board] == ["A", "B"]
    assert all("_id" not in entry and "quarter_start" not in entry for entry in board)


@pytest.mark.asyncio
async def test_seed_creates_admin_once(monkeypatch):
    db = FakeDB()
    monkeypatch.setattr(_db, "db", db, raising=False)
    monkeypatch.setattr(seed.settings, "SEED_ADMIN_EMAIL", "root@example.com")
    monkeypatch.setattr(seed.settings, "SEED_ADMIN_PASSWORD", "rootpass")

    await seed.seed_initial_admin()
    await seed.seed_initial_admin()

    [admin] = db.users.docs
    assert admin["role"] == "admin"
    assert admin["username"] == seed.settings.SEED_ADMIN_USERNAME


@pytest.mark.asyncio
async def test_seed_promotes_existing_user(monkeypatch):
    db = FakeDB(users=[{"_id": ObjectId(), "email": "root@example.com", "role": "user"}])
    monkeypatch.setattr(_db, "db", db, raising=False)
    monkeypatch.setattr(seed.settings, "SEED_ADMIN_EMAIL", "root@example.com")
    monkeypatch.setattr(seed.settings, "SEED_ADMIN_PASSWORD", "rootpass")

    await seed.seed_initial_admin()

    assert db.users.docs[0]["role"] == "admin"
