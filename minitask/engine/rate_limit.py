"""Fixed-window rate limiting for minitask.

Each caller key gets a window that opens on its first request and lasts
`window_seconds`; the quota depends on the caller's tier. Counters are kept in
process memory under a lock, so counting is exact within one process.
"""

import math
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from dotenv import load_dotenv

from minitask.engine.policy import has_active_premium
from minitask.models.constants import DEFAULT_RATE_LIMIT_WINDOW_SEC, DEFAULT_RATE_LIMITS
from minitask.models.user import CallerIdentity, UserRole

load_dotenv()


class RateTier(str, Enum):
    ANONYMOUS = "anonymous"
    USER = "user"
    PREMIUM = "premium"
    ADMIN = "admin"


@dataclass(frozen=True)
class RateLimitSettings:
    window_seconds: int
    limits: Dict[RateTier, int]


def load_rate_limit_settings() -> RateLimitSettings:
    """Read window and per-tier quotas from the environment."""
    limits = {
        tier: int(os.getenv(f"RATE_LIMIT_{tier.name}", str(DEFAULT_RATE_LIMITS[tier.value])))
        for tier in RateTier
    }
    window = int(os.getenv("RATE_LIMIT_WINDOW_SEC", str(DEFAULT_RATE_LIMIT_WINDOW_SEC)))
    return RateLimitSettings(window_seconds=window, limits=limits)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    key: str
    limit: int
    remaining: int
    reset_at: float  # epoch seconds when the window closes
    retry_after: int  # whole seconds until the window closes

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }


def rate_limit_key(identity: Optional[CallerIdentity], client_address: Optional[str]) -> str:
    if identity is not None:
        return f"user:{identity.id}"
    return f"anon:{client_address or 'unknown'}"


def rate_tier(identity: Optional[CallerIdentity], now: Optional[datetime] = None) -> RateTier:
    if identity is None:
        return RateTier.ANONYMOUS
    if identity.role is UserRole.ADMIN:
        return RateTier.ADMIN
    if identity.role is UserRole.PREMIUM or has_active_premium(identity, now):
        return RateTier.PREMIUM
    return RateTier.USER


def retry_message(retry_after: int) -> str:
    if retry_after >= 60:
        return f"Too many requests. Try again in {math.ceil(retry_after / 60)} minutes."
    return f"Too many requests. Try again in {retry_after} seconds."


class FixedWindowRateLimiter:
    """Per-key fixed-window request counter."""

    def __init__(
        self,
        window_seconds: int = DEFAULT_RATE_LIMIT_WINDOW_SEC,
        limits: Optional[Dict[RateTier, int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.limits = limits or {tier: DEFAULT_RATE_LIMITS[tier.value] for tier in RateTier}
        self.clock = clock
        self._lock = threading.Lock()
        # key -> (window start, hits in window)
        self._windows: Dict[str, Tuple[float, int]] = {}

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "FixedWindowRateLimiter":
        return cls(window_seconds=settings.window_seconds, limits=dict(settings.limits))

    def hit(self, key: str, tier: RateTier) -> RateLimitDecision:
        """Count one request for `key` and report whether it is within quota."""
        limit = self.limits[tier]
        with self._lock:
            now = self.clock()
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            if len(self._windows) > 10000:
                self._prune(now)

        reset_at = started + self.window_seconds
        retry_after = max(0, math.ceil(reset_at - now))
        return RateLimitDecision(
            allowed=count <= limit,
            key=key,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for k in expired:
            del self._windows[k]
