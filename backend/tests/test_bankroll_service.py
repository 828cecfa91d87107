"""
backend/tests/test_bankroll_service.py

Purpose:
    Bankroll CRUD against an in-memory collection: the one-public-bankroll
    rule, bet resolution order, sharing and the quarterly leaderboard.

Dependencies:
    - quantara.services.bankroll_service
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from bson import ObjectId
from fastapi import HTTPException
from pymongo.errors import DuplicateKeyError

from _fakes import FakeDB
from quantara.models.bankroll import BankrollCreate, BankrollUpdate
from quantara.services import bankroll_service

USER = str(ObjectId())
CURRENCY = {"code": "EUR", "label": "Euro", "symbol": "€"}
NOW = datetime(2025, 5, 10, tzinfo=timezone.utc)


def _install(monkeypatch, db: FakeDB) -> FakeDB:
    monkeypatch.setattr(bankroll_service._db, "db", db, raising=False)
    return db


def _bankroll(name="Main", visibility="Private", user_id=USER, bet_ids=None, **extra) -> dict:
    doc = {
        "_id": ObjectId(),
        "name": name,
        "starting_capital": 1000,
        "visibility": visibility,
        "currency": CURRENCY,
        "user_id": user_id,
        "bet_ids": bet_ids or [],
        "is_shareable": False,
        "created_at": NOW,
    }
    doc.update(extra)
    return doc


def _bet(status="Won", stake=100, odds=2.0, verified=True, date=NOW, **extra) -> dict:
    doc = {
        "_id": ObjectId(),
        "user_id": USER,
        "status": status,
        "stake": stake,
        "odds": odds,
        "date": date,
        "verification_status": "Accepted" if verified else "Pending",
        "is_verified": verified,
    }
    doc.update(extra)
    return doc


@pytest.mark.asyncio
async def test_create_second_public_bankroll_is_rejected(monkeypatch):
    db = _install(monkeypatch, FakeDB(bankrolls=[_bankroll(visibility="Public")]))

    body = BankrollCreate(name="Second", starting_capital=50, visibility="Public", currency=CURRENCY)
    with pytest.raises(HTTPException) as exc:
        await bankroll_service.create_bankroll(USER, body)

    assert exc.value.status_code == 400
    assert exc.value.detail == bankroll_service.ONE_PUBLIC_MESSAGE
    assert len(db.bankrolls.docs) == 1


@pytest.mark.asyncio
async def test_public_rule_is_per_user(monkeypatch):
    other = str(ObjectId())
    _install(monkeypatch, FakeDB(bankrolls=[_bankroll(visibility="Public", user_id=other)]))

    body = BankrollCreate(name="Mine", starting_capital=50, visibility="Public", currency=CURRENCY)
    created = await bankroll_service.create_bankroll(USER, body)

    assert created["visibility"] == "Public"
    assert created["bets"] == []
    assert created["stats"]["total_stakes"] == "0.00"
    assert "bet_ids" not in created


@pytest.mark.asyncio
async def test_update_to_public_excludes_the_bankroll_itself(monkeypatch):
    public = _bankroll(visibility="Public")
    _install(monkeypatch, FakeDB(bankrolls=[public]))

    updated = await bankroll_service.update_bankroll(
        USER, str(public["_id"]), BankrollUpdate(visibility="Public", name="Renamed"),
    )
    assert updated["name"] == "Renamed"


@pytest.mark.asyncio
async def test_update_private_to_public_with_existing_public_fails(monkeypatch):
    private = _bankroll(name="P")
    _install(monkeypatch, FakeDB(bankrolls=[_bankroll(visibility="Public"), private]))

    with pytest.raises(HTTPException) as exc:
        await bankroll_service.update_bankroll(USER, str(private["_id"]), BankrollUpdate(visibility="Public"))
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_update_foreign_bankroll_is_not_found(monkeypatch):
    foreign = _bankroll(user_id=str(ObjectId()))
    _install(monkeypatch, FakeDB(bankrolls=[foreign]))

    with pytest.raises(HTTPException) as exc:
        await bankroll_service.update_bankroll(USER, str(foreign["_id"]), BankrollUpdate(name="x"))
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_resolve_bets_keeps_bet_id_order_and_skips_missing(monkeypatch):
    first, second = _bet(stake=1), _bet(stake=2)
    missing = str(ObjectId())
    bankroll = _bankroll(bet_ids=[str(second["_id"]), missing, str(first["_id"])])
    _install(monkeypatch, FakeDB(bets=[first, second]))

    [resolved] = await bankroll_service.resolve_bets([bankroll])
    assert [b["stake"] for b in resolved["bets"]] == [2, 1]


@pytest.mark.asyncio
async def test_get_bankroll_attaches_stats(monkeypatch):
    won, lost = _bet("Won", 100, 2.0), _bet("Loss", 50)
    bankroll = _bankroll(bet_ids=[str(won["_id"]), str(lost["_id"])])
    _install(monkeypatch, FakeDB(bankrolls=[bankroll], bets=[won, lost]))

    result = await bankroll_service.get_bankroll(USER, str(bankroll["_id"]))

    assert result["id"] == str(bankroll["_id"])
    assert [b["profit"] for b in result["bets"]] == ["100.00", "-50.00"]
    assert result["stats"]["total_stakes"] == "150.00"
    assert result["stats"]["total_profit"] == "50.00"
    assert result["stats"]["progression"] == "5.00"


@pytest.mark.asyncio
async def test_delete_bankroll_cascades_to_bets(monkeypatch):
    bankroll = _bankroll()
    bets = [_bet(bankroll_id=str(bankroll["_id"])), _bet(bankroll_id="other")]
    db = _install(monkeypatch, FakeDB(bankrolls=[bankroll], bets=bets))

    await bankroll_service.delete_bankroll(USER, str(bankroll["_id"]))

    assert db.bankrolls.docs == []
    assert [b["bankroll_id"] for b in db.bets.docs] == ["other"]


@pytest.mark.asyncio
async def test_share_link_is_minted_once_and_hides_owner(monkeypatch):
    bankroll = _bankroll()
    _install(monkeypatch, FakeDB(bankrolls=[bankroll]))

    shared = await bankroll_service.set_shareable(USER, str(bankroll["_id"]), True)
    again = await bankroll_service.set_shareable(USER, str(bankroll["_id"]), True)
    assert shared["shareable_link"]
    assert again["shareable_link"] == shared["shareable_link"]

    public_view = await bankroll_service.get_shared_bankroll(shared["shareable_link"])
    assert "user_id" not in public_view
    assert public_view["name"] == "Main"

    await bankroll_service.set_shareable(USER, str(bankroll["_id"]), False)
    with pytest.raises(HTTPException) as exc:
        await bankroll_service.get_shared_bankroll(shared["shareable_link"])
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_leaderboard_ranks_by_profit_percentage_within_quarter(monkeypatch):
    owner_a, owner_b = ObjectId(), ObjectId()
    a_win = _bet("Won", 100, 3.0)                                # +200%
    a_old = _bet("Loss", 1000, date=datetime(2025, 3, 31, tzinfo=timezone.utc))
    b_win = _bet("Won", 100, 1.5)                                # +50%
    b_unverified = _bet("Won", 100, 10.0, verified=False)
    b_cashout = _bet("Cashout", 100, 2.0, cashout_amount=10)     # stakes only

    bankrolls = [
        _bankroll("B", "Public", str(owner_b), [str(b_win["_id"]), str(b_unverified["_id"]), str(b_cashout["_id"])]),
        _bankroll("A", "Public", str(owner_a), [str(a_win["_id"]), str(a_old["_id"])]),
        _bankroll("Hidden", "Private", USER, [str(a_win["_id"])]),
    ]
    users = [{"_id": owner_a, "username": "alice"}, {"_id": owner_b, "username": "bob"}]
    _install(monkeypatch, FakeDB(
        bankrolls=bankrolls, users=users, bets=[a_win, a_old, b_win, b_unverified, b_cashout],
    ))

    board = await bankroll_service.compute_leaderboard(now=NOW)

    assert [entry["name"] for entry in board] == ["A", "B"]
    assert [entry["rank"] for entry in board] == [1, 2]
    assert board[0]["username"] == "alice"
    assert board[0]["profit_percentage"] == "200.00"
    assert board[1]["total_stakes"] == "200.00"
    assert board[1]["total_profit"] == "50.00"
    assert board[1]["profit_percentage"] == "25.00"
    assert board[0]["quarter_start"] == datetime(2025, 4, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_leaderboard_is_capped(monkeypatch):
    bankrolls = [_bankroll(f"B{i}", "Public", str(ObjectId())) for i in range(4)]
    _install(monkeypatch, FakeDB(bankrolls=bankrolls))
    monkeypatch.setattr(bankroll_service.settings, "LEADERBOARD_SIZE", 3)

    board = await bankroll_service.compute_leaderboard(now=NOW)

    assert len(board) == 3
    assert all(entry["profit_percentage"] == "0.00" for entry in board)
    assert all(entry["username"] == "Anonymous" for entry in board)


@pytest.mark.asyncio
async def test_top_bankrolls_falls_back_to_live_computation(monkeypatch):
    _install(monkeypatch, FakeDB())
    calls = []

    async def _fake_compute(now=None):
        calls.append(now)
        return [{"rank": 1, "name": "Live", "quarter_start": NOW}]

    monkeypatch.setattr(bankroll_service, "compute_leaderboard", _fake_compute)

    board = await bankroll_service.get_top_bankrolls()
    assert calls == [None]
    assert board == [{"rank": 1, "name": "Live"}]


@pytest.mark.asyncio
async def test_created_bankroll_stores_no_share_link(monkeypatch):
    db = _install(monkeypatch, FakeDB())
    body = BankrollCreate(name="First", starting_capital=10, currency=CURRENCY)

    await bankroll_service.create_bankroll(USER, body)
    await bankroll_service.create_bankroll(str(ObjectId()), body)

    # a stored null would collide in the unique shareable_link index
    assert all("shareable_link" not in doc for doc in db.bankrolls.docs)


def test_bankroll_indexes_skip_unminted_links_and_extra_public():
    from quantara.database import _INDEXES

    specs = {model.document["name"]: model.document for model in _INDEXES["bankrolls"]}

    links = specs["shareable_link_unique"]
    assert links["unique"] is True
    assert "sparse" not in links
    assert links["partialFilterExpression"] == {"shareable_link": {"$type": "string"}}

    public = specs["one_public_per_user"]
    assert public["unique"] is True
    assert public["partialFilterExpression"] == {"visibility": "Public"}


@pytest.mark.asyncio
async def test_concurrent_public_create_maps_to_one_public_error(monkeypatch):
    db = _install(monkeypatch, FakeDB())

    async def _lost_race(doc):
        raise DuplicateKeyError("E11000 duplicate key error index: one_public_per_user")

    monkeypatch.setattr(db.bankrolls, "insert_one", _lost_race)
    body = BankrollCreate(name="Racing", starting_capital=10, visibility="Public", currency=CURRENCY)

    with pytest.raises(HTTPException) as exc:
        await bankroll_service.create_bankroll(USER, body)
    assert exc.value.status_code == 400
    assert exc.value.detail == bankroll_service.ONE_PUBLIC_MESSAGE


def _board_entry(bankroll: dict, rank: int) -> dict:
    return {
        "rank": rank,
        "bankroll_id": str(bankroll["_id"]),
        "name": bankroll["name"],
        "username": "alice",
        "currency": CURRENCY,
        "total_stakes": "100.00",
        "total_profit": "100.00",
        "profit_percentage": "100.00",
        "quarter_start": datetime(2025, 4, 1, tzinfo=timezone.utc),
    }


@pytest.mark.asyncio
async def test_making_bankroll_private_removes_it_from_board(monkeypatch):
    secret = _bankroll("Secret", "Public")
    other = _bankroll("Other", "Public", str(ObjectId()))
    db = _install(monkeypatch, FakeDB(
        bankrolls=[secret, other],
        leaderboard=[_board_entry(secret, 1), _board_entry(other, 2)],
    ))
    monkeypatch.setattr(bankroll_service, "utcnow", lambda: NOW)

    await bankroll_service.update_bankroll(USER, str(secret["_id"]), BankrollUpdate(visibility="Private"))
    board = await bankroll_service.get_top_bankrolls()

    assert [(entry["name"], entry["rank"]) for entry in board] == [("Other", 1)]
    assert len(db.leaderboard.docs) == 1


@pytest.mark.asyncio
async def test_renaming_public_bankroll_keeps_it_on_board(monkeypatch):
    public = _bankroll("Public one", "Public")
    db = _install(monkeypatch, FakeDB(bankrolls=[public], leaderboard=[_board_entry(public, 1)]))

    await bankroll_service.update_bankroll(USER, str(public["_id"]), BankrollUpdate(name="Renamed"))

    assert len(db.leaderboard.docs) == 1


@pytest.mark.asyncio
async def test_deleted_bankroll_leaves_board(monkeypatch):
    gone = _bankroll("Gone", "Public")
    db = _install(monkeypatch, FakeDB(bankrolls=[gone], leaderboard=[_board_entry(gone, 1)]))

    await bankroll_service.delete_bankroll(USER, str(gone["_id"]))

    assert db.leaderboard.docs == []
