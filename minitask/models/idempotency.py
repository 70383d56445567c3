"""Idempotency record model for minitask."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


class IdempotencyState(str, Enum):
    """Lifecycle of an idempotency record."""
    PENDING = "pending"  # reserved, underlying operation still running
    COMPLETED = "completed"


class IdempotencyRecord(BaseModel):
    """A stored (or reserved) response for one scoped idempotency key."""

    scoped_key: str = Field(..., description="SHA-256 of method, endpoint, caller scope and raw key")
    caller_scope: str = Field(..., description="'user:<id>' or 'anon'")
    user_id: Optional[int] = Field(None, description="Owning user, if the caller was authenticated")
    method: str
    endpoint: str
    request_hash: str = Field(..., description="Fingerprint of the normalized request body")
    state: IdempotencyState = IdempotencyState.PENDING
    response_status: Optional[int] = None
    response_body: Optional[Any] = None
    attempt: int = Field(1, description="Bumped every time an expired record is taken over")
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
