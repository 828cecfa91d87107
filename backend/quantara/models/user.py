from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class Role(str, Enum):
    user = "user"
    admin = "admin"


class SubscriptionStatus(str, Enum):
    active = "active"
    trialing = "trialing"
    canceled = "canceled"
    past_due = "past_due"
    unpaid = "unpaid"
    incomplete = "incomplete"
    incomplete_expired = "incomplete_expired"
    paused = "paused"


class Subscription(BaseModel):
    """Billing state mirrored from Stripe."""
    status: SubscriptionStatus = SubscriptionStatus.incomplete
    plan_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class UserCreate(BaseModel):
    """Request body for self-registration."""
    username: str
    email: EmailStr
    password: str = Field(min_length=6)

    @field_validator("username")
    @classmethod
    def username_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username is required")
        return v


class AdminUserCreate(BaseModel):
    """Admin-created account. A random password is generated when omitted."""
    username: str
    email: EmailStr
    password: Optional[str] = Field(default=None, min_length=6)
    role: Role = Role.user

    @field_validator("username")
    @classmethod
    def username_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username is required")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(min_length=6)


class RoleUpdate(BaseModel):
    role: Role


class UserResponse(BaseModel):
    """Public user data returned to the client."""
    id: str
    username: str
    email: str
    role: Role
    subscription: Subscription
    created_at: datetime
