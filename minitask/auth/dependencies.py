"""FastAPI dependencies for authentication, authorization and rate limiting."""

import logging
import os
from datetime import timedelta
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from minitask.auth.jwt import get_user_id_from_token
from minitask.database.database import get_db
from minitask.database.idempotency_repository import IdempotencyRepository
from minitask.database.repository import TaskRepository
from minitask.database.user_repository import UserRepository
from minitask.engine.idempotency import IdempotencyCache
from minitask.engine.rate_limit import (
    FixedWindowRateLimiter,
    load_rate_limit_settings,
    rate_limit_key,
    rate_tier,
    retry_message,
)
from minitask.engine.task_service import TaskMutationService
from minitask.errors import AuthenticationError, AuthorizationError, RateLimitExceeded
from minitask.models.constants import DEFAULT_IDEMPOTENCY_TTL_HOURS, DEFAULT_RESERVATION_SECONDS
from minitask.models.user import CallerIdentity, UserRole

load_dotenv()

logger = logging.getLogger(__name__)

IDEMPOTENCY_TTL_HOURS = int(os.getenv("IDEMPOTENCY_TTL_HOURS", str(DEFAULT_IDEMPOTENCY_TTL_HOURS)))
IDEMPOTENCY_RESERVATION_SECONDS = int(
    os.getenv("IDEMPOTENCY_RESERVATION_SECONDS", str(DEFAULT_RESERVATION_SECONDS))
)
TRUST_PROXY = os.getenv("TRUST_PROXY", "False").lower() == "true"

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)

# Process-wide limiter; counters live as long as the worker process.
rate_limiter = FixedWindowRateLimiter.from_settings(load_rate_limit_settings())


def resolve_identity(token: Optional[str], db: Session) -> Optional[CallerIdentity]:
    """Turn a bearer token into the caller's current identity.

    The user row is re-read on every request so role and premium changes take
    effect immediately. Anything that does not resolve yields None.
    """
    if not token:
        return None
    user_id = get_user_id_from_token(token)
    if user_id is None:
        return None
    user = UserRepository(db).get(user_id)
    if user is None:
        logger.debug(f"Token for unknown user {user_id} treated as anonymous")
        return None
    return CallerIdentity.from_user(user)


def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Optional[CallerIdentity]:
    """Caller identity if a usable bearer token was sent, else None. Never fails."""
    token = credentials.credentials if credentials else None
    return resolve_identity(token, db)


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    identity: Optional[CallerIdentity] = Depends(get_optional_identity),
) -> CallerIdentity:
    """Get the authenticated caller.

    Raises:
        AuthenticationError: NO_TOKEN without a bearer header, INVALID_TOKEN
            when the token does not resolve to a user
    """
    if not credentials:
        raise AuthenticationError(
            "Missing authorization header",
            code="NO_TOKEN",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if identity is None:
        raise AuthenticationError(
            "Token invalid or expired",
            code="INVALID_TOKEN",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_role(*roles: UserRole) -> Callable[..., CallerIdentity]:
    """Dependency factory: the caller must hold one of `roles`."""

    def checker(identity: CallerIdentity = Depends(get_current_identity)) -> CallerIdentity:
        if identity.role not in roles:
            raise AuthorizationError("Insufficient role for this resource")
        return identity

    return checker


def get_rate_limiter() -> FixedWindowRateLimiter:
    return rate_limiter


def client_address(request: Request) -> Optional[str]:
    if TRUST_PROXY:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def enforce_rate_limit(
    request: Request,
    identity: Optional[CallerIdentity] = Depends(get_optional_identity),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> None:
    """Count the request against the caller's quota.

    The quota headers are left on `request.state` for the HTTP middleware, so
    they reach error responses as well as successful ones.
    """
    key = rate_limit_key(identity, client_address(request))
    decision = limiter.hit(key, rate_tier(identity))
    headers = decision.headers()
    request.state.rate_limit_headers = headers

    if not decision.allowed:
        logger.warning(f"Rate limit exceeded for {key} on {request.method} {request.url.path}")
        headers["Retry-After"] = str(decision.retry_after)
        raise RateLimitExceeded(
            retry_message(decision.retry_after),
            details={"retryAfter": decision.retry_after},
            headers=headers,
        )


def get_idempotency_cache(db: Session = Depends(get_db)) -> IdempotencyCache:
    return IdempotencyCache(
        IdempotencyRepository(db),
        ttl=timedelta(hours=IDEMPOTENCY_TTL_HOURS),
        reservation_ttl=timedelta(seconds=IDEMPOTENCY_RESERVATION_SECONDS),
    )


def get_task_service(
    db: Session = Depends(get_db),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
) -> TaskMutationService:
    return TaskMutationService(TaskRepository(db), UserRepository(db), cache)
