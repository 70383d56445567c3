"""User and caller identity models for minitask."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """Account role enumeration."""
    USER = "user"
    PREMIUM = "premium"
    ADMIN = "admin"


class User(BaseModel):
    """User model (never carries the password hash)."""

    id: int = Field(..., description="User identifier")
    email: str = Field(..., description="User email address")
    name: Optional[str] = Field(None, description="User display name")
    role: UserRole = Field(UserRole.USER, description="Account role")
    is_premium: bool = Field(False, description="Whether the account holds a premium grant")
    subscription_expiry: Optional[datetime] = Field(None, description="When the premium grant lapses (UTC)")
    created_at: datetime = Field(..., description="User creation timestamp")
    updated_at: datetime = Field(..., description="User last update timestamp")

    def profile(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "isPremium": self.is_premium,
        }


class CallerIdentity(BaseModel):
    """Identity of the caller for the current request, derived from a bearer token."""

    id: int
    role: UserRole = UserRole.USER
    is_premium: bool = False
    subscription_expiry: Optional[datetime] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "CallerIdentity":
        return cls(
            id=user.id,
            role=user.role,
            is_premium=user.is_premium,
            subscription_expiry=user.subscription_expiry,
            email=user.email,
        )
