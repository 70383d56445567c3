"""Request models for authentication and user endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    """Request model for account registration."""
    email: str = Field(..., min_length=3, max_length=191, description="Login email address")
    password: str = Field(..., min_length=1, description="Plain-text password (at most 72 bytes)")
    name: Optional[str] = Field(None, max_length=191, description="Display name")


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = Field(None, description="Refresh token issued at login")


class LogoutRequest(BaseModel):
    """Refresh token may instead be sent in the X-Refresh-Token header."""
    refreshToken: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, max_length=191)
