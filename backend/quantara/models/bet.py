"""Bet models: outcome status, moderation state and request bodies."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from quantara.models.common import ObjectIdStr


class BetStatus(str, Enum):
    pending = "Pending"
    won = "Won"
    loss = "Loss"
    cashout = "Cashout"
    void = "Void"


class VerificationStatus(str, Enum):
    pending = "Pending"
    accepted = "Accepted"
    rejected = "Rejected"


class ProofKind(str, Enum):
    verification = "verification"
    cashout = "cashout"


class BetCreate(BaseModel):
    """Request body for recording a bet against a bankroll."""
    bankroll_id: ObjectIdStr
    date: datetime
    sport: str = Field(min_length=1)
    label: str = Field(min_length=1)
    stake: float = Field(ge=0)
    odds: float = Field(ge=0)
    verification_code: str = Field(min_length=1)
    status: BetStatus = BetStatus.pending
    cashout_amount: Optional[float] = Field(default=None, ge=0)


class BetUpdate(BaseModel):
    """Partial update. Moderation fields are admin-only and not accepted here."""
    date: Optional[datetime] = None
    sport: Optional[str] = Field(default=None, min_length=1)
    label: Optional[str] = Field(default=None, min_length=1)
    stake: Optional[float] = Field(default=None, ge=0)
    odds: Optional[float] = Field(default=None, ge=0)
    verification_code: Optional[str] = Field(default=None, min_length=1)
    status: Optional[BetStatus] = None
    cashout_amount: Optional[float] = Field(default=None, ge=0)
