"""
backend/quantara/services/bankroll_service.py

Purpose:
    Bankroll CRUD for the owning user, bet resolution for the statistics
    engine, shareable links and the quarterly leaderboard of public bankrolls.

Dependencies:
    - quantara.database
    - quantara.services.stats_service
"""

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from bson import ObjectId
from fastapi import HTTPException, status
from pymongo.errors import DuplicateKeyError

import quantara.database as _db
from quantara.config import settings
from quantara.models.bankroll import BankrollCreate, BankrollUpdate, Visibility
from quantara.models.bet import BetStatus
from quantara.services.stats_service import (
    ZERO, bet_returns, calculate_bankroll_stats, format_amount, to_decimal,
)
from quantara.utils import quarter_bounds, serialize_doc, utcnow

logger = logging.getLogger("quantara.bankrolls")

ONE_PUBLIC_MESSAGE = "You can only have one public bankroll at a time."


# ---------- Bet resolution ----------

async def resolve_bets(
    bankrolls: list[dict],
    date_range: Optional[tuple[datetime, datetime]] = None,
) -> list[dict]:
    """Attach ``bets`` to every bankroll, in ``bet_ids`` order.

    One query for all bankrolls. Ids whose bet no longer exists (or falls
    outside ``date_range``) are skipped.
    """
    wanted = [
        ObjectId(bet_id)
        for bankroll in bankrolls
        for bet_id in bankroll.get("bet_ids", [])
    ]
    by_id: dict[str, dict] = {}
    if wanted:
        query: dict[str, Any] = {"_id": {"$in": wanted}}
        if date_range:
            start, end = date_range
            query["date"] = {"$gte": start, "$lt": end}
        bets = await _db.db.bets.find(query).to_list(length=None)
        by_id = {str(bet["_id"]): bet for bet in bets}

    for bankroll in bankrolls:
        bankroll["bets"] = [
            by_id[bet_id] for bet_id in bankroll.get("bet_ids", []) if bet_id in by_id
        ]
    return bankrolls


def with_stats(bankroll: dict) -> dict:
    """Serialized bankroll with normalized bets and its ``stats`` object."""
    result = calculate_bankroll_stats(bankroll)
    doc = {k: v for k, v in bankroll.items() if k not in ("bets", "bet_ids")}
    doc["bets"] = result["bets"]
    doc["stats"] = result["stats"]
    return serialize_doc(doc)


async def _get_owned(user_id: str, bankroll_id: str) -> dict:
    bankroll = await _db.db.bankrolls.find_one(
        {"_id": ObjectId(bankroll_id), "user_id": user_id}
    )
    if not bankroll:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Bankroll not found.")
    return bankroll


async def _ensure_single_public(user_id: str, exclude_id: Optional[ObjectId] = None) -> None:
    query: dict[str, Any] = {"user_id": user_id, "visibility": Visibility.public.value}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if await _db.db.bankrolls.find_one(query, {"_id": 1}):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, ONE_PUBLIC_MESSAGE)


async def _drop_from_leaderboard(bankroll_id: str) -> None:
    """Pull a bankroll off the materialized board before the next refresh."""
    removed = await _db.db.leaderboard.delete_many({"bankroll_id": bankroll_id})
    if removed.deleted_count:
        logger.info("Bankroll %s removed from leaderboard", bankroll_id)


# ---------- CRUD ----------

async def list_bankrolls(user_id: str) -> list[dict]:
    bankrolls = await _db.db.bankrolls.find({"user_id": user_id}).sort("created_at", 1).to_list(length=None)
    await resolve_bets(bankrolls)
    return [with_stats(b) for b in bankrolls]


async def get_bankroll(user_id: str, bankroll_id: str) -> dict:
    bankroll = await _get_owned(user_id, bankroll_id)
    await resolve_bets([bankroll])
    return with_stats(bankroll)


async def create_bankroll(user_id: str, body: BankrollCreate) -> dict:
    if body.visibility == Visibility.public:
        await _ensure_single_public(user_id)

    now = utcnow()
    doc = {
        "name": body.name,
        "starting_capital": body.starting_capital,
        "visibility": body.visibility.value,
        "currency": body.currency.model_dump(),
        "user_id": user_id,
        "bet_ids": [],
        "is_shareable": False,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await _db.db.bankrolls.insert_one(doc)
    except DuplicateKeyError:
        # a concurrent create won the one_public_per_user index
        raise HTTPException(status.HTTP_400_BAD_REQUEST, ONE_PUBLIC_MESSAGE)
    doc["_id"] = result.inserted_id
    doc["bets"] = []

    logger.info("Bankroll created: user=%s bankroll=%s visibility=%s", user_id, result.inserted_id, doc["visibility"])
    return with_stats(doc)


async def update_bankroll(user_id: str, bankroll_id: str, body: BankrollUpdate) -> dict:
    oid = ObjectId(bankroll_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    if changes.get("visibility") == Visibility.public.value:
        await _ensure_single_public(user_id, exclude_id=oid)

    changes["updated_at"] = utcnow()
    try:
        result = await _db.db.bankrolls.update_one(
            {"_id": oid, "user_id": user_id},
            {"$set": changes},
        )
    except DuplicateKeyError:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, ONE_PUBLIC_MESSAGE)
    if result.matched_count == 0:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Bankroll not found.")

    if changes.get("visibility", Visibility.public.value) != Visibility.public.value:
        await _drop_from_leaderboard(bankroll_id)

    return await get_bankroll(user_id, bankroll_id)


async def delete_bankroll(user_id: str, bankroll_id: str) -> None:
    bankroll = await _get_owned(user_id, bankroll_id)
    deleted = await _db.db.bets.delete_many({"bankroll_id": bankroll_id})
    await _db.db.bankrolls.delete_one({"_id": bankroll["_id"]})
    await _drop_from_leaderboard(bankroll_id)
    logger.info(
        "Bankroll deleted: user=%s bankroll=%s bets=%d",
        user_id, bankroll_id, deleted.deleted_count,
    )


# ---------- Sharing ----------

async def set_shareable(user_id: str, bankroll_id: str, is_shareable: bool) -> dict:
    bankroll = await _get_owned(user_id, bankroll_id)
    update: dict[str, Any] = {"is_shareable": is_shareable, "updated_at": utcnow()}
    if is_shareable and not bankroll.get("shareable_link"):
        update["shareable_link"] = secrets.token_urlsafe(12)

    await _db.db.bankrolls.update_one({"_id": bankroll["_id"]}, {"$set": update})
    bankroll.update(update)
    return {
        "is_shareable": bankroll["is_shareable"],
        "shareable_link": bankroll.get("shareable_link"),
    }


async def get_shared_bankroll(link: str) -> dict:
    bankroll = await _db.db.bankrolls.find_one({"shareable_link": link, "is_shareable": True})
    if not bankroll:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Bankroll not found.")
    await resolve_bets([bankroll])
    shared = with_stats(bankroll)
    shared.pop("user_id", None)
    return shared


# ---------- Leaderboard ----------

def _leaderboard_figures(bets: list[dict]) -> tuple[Decimal, Decimal, Decimal]:
    """(stakes, profit, profit %) over verified bets; only Won/Loss move profit."""
    verified = [bet for bet in bets if bet.get("is_verified")]
    stakes = sum((to_decimal(bet.get("stake") or 0) for bet in verified), ZERO)
    profit = sum(
        (bet_returns(bet)[1] for bet in verified if bet.get("status") in (BetStatus.won, BetStatus.loss)),
        ZERO,
    )
    percentage = profit / stakes * 100 if stakes > 0 else ZERO
    return stakes, profit, percentage


async def compute_leaderboard(now: Optional[datetime] = None) -> list[dict]:
    """Rank public bankrolls by profit percentage over the current quarter."""
    quarter = quarter_bounds(now or utcnow())
    bankrolls = await _db.db.bankrolls.find({"visibility": Visibility.public.value}).to_list(length=None)
    await resolve_bets(bankrolls, date_range=quarter)

    owner_ids = list({ObjectId(b["user_id"]) for b in bankrolls if ObjectId.is_valid(b.get("user_id", ""))})
    owners = await _db.db.users.find({"_id": {"$in": owner_ids}}, {"username": 1}).to_list(length=None)
    usernames = {str(u["_id"]): u.get("username", "Anonymous") for u in owners}

    scored = []
    for bankroll in bankrolls:
        stakes, profit, percentage = _leaderboard_figures(bankroll["bets"])
        scored.append((percentage, bankroll, stakes, profit))
    scored.sort(key=lambda row: row[0], reverse=True)

    return [
        {
            "rank": i + 1,
            "bankroll_id": str(bankroll["_id"]),
            "name": bankroll["name"],
            "username": usernames.get(bankroll["user_id"], "Anonymous"),
            "currency": bankroll["currency"],
            "total_stakes": format_amount(stakes),
            "total_profit": format_amount(profit),
            "profit_percentage": format_amount(percentage),
            "quarter_start": quarter[0],
        }
        for i, (percentage, bankroll, stakes, profit) in enumerate(scored[: settings.LEADERBOARD_SIZE])
    ]


async def get_top_bankrolls() -> list[dict]:
    """Materialized board for the current quarter, live computation as fallback."""
    quarter_start, _ = quarter_bounds(utcnow())
    entries = (
        await _db.db.leaderboard.find({"quarter_start": quarter_start})
        .sort("rank", 1)
        .limit(settings.LEADERBOARD_SIZE)
        .to_list(length=settings.LEADERBOARD_SIZE)
    )
    if not entries:
        entries = await compute_leaderboard()

    # ranks are renumbered; entries may have been dropped since the last refresh
    return [
        {**{k: v for k, v in entry.items() if k not in ("_id", "quarter_start")}, "rank": i + 1}
        for i, entry in enumerate(entries)
    ]
