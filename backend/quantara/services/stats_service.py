"""
backend/quantara/services/stats_service.py

Purpose:
    Bankroll statistics engine. Derives gain/profit for every bet, selects the
    bets that count for the bankroll's visibility and reduces them to stake,
    profit, ROI, progression and verification figures.

    Pure and synchronous: no database access, no settings. Arithmetic runs on
    Decimal; amounts become "0.00" strings only when the result is serialized.

Dependencies:
    - decimal
    - quantara.models.bankroll
    - quantara.models.bet
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from quantara.models.bankroll import Visibility
from quantara.models.bet import BetStatus, VerificationStatus

CENT = Decimal("0.01")
ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Convert a stored number to Decimal through its shortest repr (2.3 -> Decimal("2.3"))."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal) -> str:
    """Fixed two-digit string; negative zero renders as "0.00"."""
    cents = to_cents(value)
    if cents.is_zero():
        cents = abs(cents)
    return str(cents)


@dataclass(frozen=True)
class BankrollStats:
    total_stakes: Decimal
    total_profit: Decimal
    roi: Decimal
    progression: Decimal
    pending_bets_count: int
    is_verified: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_stakes": format_amount(self.total_stakes),
            "total_profit": format_amount(self.total_profit),
            "roi": format_amount(self.roi),
            "progression": format_amount(self.progression),
            "pending_bets_count": self.pending_bets_count,
            "is_verified": self.is_verified,
        }


# ---------- Normalizer ----------

def bet_returns(bet: Mapping[str, Any]) -> tuple[Decimal, Decimal]:
    """Return (gain, profit) for a single bet, unrounded.

    Unknown statuses settle like Pending/Void: nothing gained, nothing lost.
    """
    status = bet.get("status")

    if status == BetStatus.won:
        stake = to_decimal(bet["stake"])
        gain = stake * to_decimal(bet["odds"])
        return gain, gain - stake

    if status == BetStatus.loss:
        return ZERO, -to_decimal(bet["stake"])

    if status == BetStatus.cashout:
        stake = to_decimal(bet["stake"])
        payout = stake * to_decimal(bet["odds"])
        cashout = to_decimal(bet.get("cashout_amount") or 0)
        return payout - cashout, (payout - stake) - cashout

    return ZERO, ZERO


def normalize_bets(bets: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Copy every bet with cent-rounded Decimal ``gain`` and ``profit`` attached.

    Same length and order as the input; the input mappings are not mutated.
    """
    normalized = []
    for bet in bets:
        gain, profit = bet_returns(bet)
        normalized.append({**bet, "gain": to_cents(gain), "profit": to_cents(profit)})
    return normalized


# ---------- Visibility filter ----------

def select_counted_bets(
    visibility: Any, bets: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Bets that feed the aggregate figures.

    Public bankrolls only count bets that a moderator accepted AND that carry
    the verified flag. The two fields are checked independently.
    """
    if visibility == Visibility.public:
        return [
            bet for bet in bets
            if bet.get("verification_status") == VerificationStatus.accepted
            and bet.get("is_verified") is True
        ]
    return list(bets)


# ---------- Aggregator ----------

def aggregate_stats(
    normalized: list[dict[str, Any]],
    counted: list[dict[str, Any]],
    starting_capital: Any,
    visibility: Any,
) -> BankrollStats:
    total_stakes = sum((to_decimal(bet.get("stake") or 0) for bet in counted), ZERO)
    total_profit = sum((bet["profit"] for bet in counted), ZERO)

    roi = total_profit / total_stakes * _HUNDRED if total_stakes > 0 else ZERO

    capital = to_decimal(starting_capital or 0)
    progression = total_profit / capital * _HUNDRED if capital > 0 else ZERO

    # Moderation backlog: counted over every bet, whatever the visibility.
    pending_bets_count = sum(
        1 for bet in normalized
        if bet.get("verification_status") != VerificationStatus.accepted
    )

    is_verified = (
        visibility == Visibility.public
        and pending_bets_count == 0
        and len(counted) > 0
    )

    return BankrollStats(
        total_stakes=total_stakes,
        total_profit=total_profit,
        roi=roi,
        progression=progression,
        pending_bets_count=pending_bets_count,
        is_verified=is_verified,
    )


def serialize_bet(bet: Mapping[str, Any]) -> dict[str, Any]:
    return {**bet, "gain": format_amount(bet["gain"]), "profit": format_amount(bet["profit"])}


def calculate_bankroll_stats(bankroll: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize, filter and aggregate a bankroll whose ``bets`` are resolved.

    Returns ``{"bets": [...], "stats": {...}}``. ``bets`` is the full,
    unfiltered list for display; only ``stats`` honours visibility.
    """
    visibility = bankroll.get("visibility")
    normalized = normalize_bets(bankroll.get("bets", []))
    counted = select_counted_bets(visibility, normalized)
    stats = aggregate_stats(
        normalized, counted, bankroll.get("starting_capital"), visibility,
    )
    return {
        "bets": [serialize_bet(bet) for bet in normalized],
        "stats": stats.to_dict(),
    }
