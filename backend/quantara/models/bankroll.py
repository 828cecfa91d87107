"""Bankroll models: capital pools with currency and visibility."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Visibility(str, Enum):
    public = "Public"
    private = "Private"


class Currency(BaseModel):
    code: str = Field(min_length=1)
    label: str = Field(min_length=1)
    symbol: str = Field(min_length=1)


class BankrollCreate(BaseModel):
    """Request body for creating a bankroll."""
    name: str = Field(min_length=1)
    starting_capital: float = Field(ge=0)
    visibility: Visibility = Visibility.private
    currency: Currency


class BankrollUpdate(BaseModel):
    """Partial update; only provided fields are written."""
    name: Optional[str] = Field(default=None, min_length=1)
    starting_capital: Optional[float] = Field(default=None, ge=0)
    visibility: Optional[Visibility] = None
    currency: Optional[Currency] = None


class ShareToggle(BaseModel):
    is_shareable: bool


class LeaderboardEntry(BaseModel):
    rank: int
    bankroll_id: str
    name: str
    username: str
    currency: Currency
    total_stakes: str
    total_profit: str
    profit_percentage: str
