"""Idempotency cache for mutating create requests.

A client-supplied raw key is scoped by HTTP method, endpoint path and caller,
so the same raw key from two callers (or on two endpoints) never collides.
The first request with a scoped key reserves it; the reservation is turned
into a stored response once the underlying operation succeeds, and later
requests replay that response verbatim until the TTL elapses.

Outcomes of `IdempotencyCache.begin`:

- MISS / EXPIRED_MISS: the caller holds the reservation and must run the
  operation, then `commit` (or `release` on failure).
- REPLAY: the stored response must be returned instead of running anything.
- CONFLICT: the key was used with a different payload; nothing may run.
- IN_PROGRESS: an identical request holds the reservation right now.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from minitask.database.idempotency_repository import IdempotencyRepository
from minitask.models.constants import (
    DEFAULT_IDEMPOTENCY_TTL_HOURS,
    DEFAULT_RESERVATION_SECONDS,
    IDEMPOTENCY_RACE_ATTEMPTS,
)
from minitask.models.idempotency import IdempotencyRecord, IdempotencyState
from minitask.models.user import CallerIdentity

logger = logging.getLogger(__name__)

ANONYMOUS_SCOPE = "anon"


class IdempotencyOutcome(str, Enum):
    MISS = "miss"
    EXPIRED_MISS = "expired_miss"
    REPLAY = "replay"
    CONFLICT = "conflict"
    IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class IdempotencyDecision:
    outcome: IdempotencyOutcome
    record: Optional[IdempotencyRecord] = None

    @property
    def should_execute(self) -> bool:
        return self.outcome in (IdempotencyOutcome.MISS, IdempotencyOutcome.EXPIRED_MISS)


def caller_scope(identity: Optional[CallerIdentity]) -> str:
    """Scope component for a caller: 'user:<id>' or the anonymous marker."""
    if identity is None:
        return ANONYMOUS_SCOPE
    return f"user:{identity.id}"


def build_scoped_key(method: str, endpoint_path: str, scope: str, raw_key: str) -> str:
    """Derive the storage key for (method, endpoint, caller, raw key).

    Hashed so arbitrary client keys fit a fixed-width unique column.
    """
    composite = f"{method.upper()}:{endpoint_path}:{scope}:{raw_key}"
    return hashlib.sha256(composite.encode("utf-8")).hexdigest()


def fingerprint(body: Any) -> str:
    """Hash of the normalized request body (key order and whitespace do not matter)."""
    normalized = json.dumps(
        body if body is not None else {},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def _user_id_from_scope(scope: str) -> Optional[int]:
    if scope.startswith("user:"):
        try:
            return int(scope.split(":", 1)[1])
        except ValueError:
            return None
    return None


class IdempotencyCache:
    """Store-and-replay of create responses, backed by `IdempotencyRepository`."""

    def __init__(
        self,
        repository: IdempotencyRepository,
        ttl: timedelta = timedelta(hours=DEFAULT_IDEMPOTENCY_TTL_HOURS),
        reservation_ttl: timedelta = timedelta(seconds=DEFAULT_RESERVATION_SECONDS),
        clock: Callable[[], datetime] = datetime.utcnow,
        max_attempts: int = IDEMPOTENCY_RACE_ATTEMPTS,
    ):
        self.repository = repository
        self.ttl = ttl
        self.reservation_ttl = reservation_ttl
        self.clock = clock
        self.max_attempts = max_attempts

    def begin(
        self,
        raw_key: str,
        caller_scope: str,
        method: str,
        endpoint_path: str,
        body_fingerprint: str,
    ) -> IdempotencyDecision:
        """Decide what to do with a request carrying `raw_key`.

        On MISS/EXPIRED_MISS a pending reservation is now held for the scoped
        key. Losing an insert or takeover race re-reads the record, at most
        `max_attempts` times.
        """
        scoped_key = build_scoped_key(method, endpoint_path, caller_scope, raw_key)

        for _ in range(self.max_attempts):
            now = self.clock()
            record = self.repository.get(scoped_key)

            if record is None:
                reservation = IdempotencyRecord(
                    scoped_key=scoped_key,
                    caller_scope=caller_scope,
                    user_id=_user_id_from_scope(caller_scope),
                    method=method.upper(),
                    endpoint=endpoint_path,
                    request_hash=body_fingerprint,
                    state=IdempotencyState.PENDING,
                    attempt=1,
                    created_at=now,
                    expires_at=now + self.reservation_ttl,
                )
                if self.repository.reserve(reservation):
                    return IdempotencyDecision(IdempotencyOutcome.MISS, reservation)
                continue

            if record.is_expired(now):
                taken = self.repository.take_over(
                    scoped_key,
                    expected_attempt=record.attempt,
                    request_hash=body_fingerprint,
                    now=now,
                    expires_at=now + self.reservation_ttl,
                )
                if taken:
                    logger.debug(f"Idempotency key {scoped_key[:12]} expired; starting over")
                    return IdempotencyDecision(IdempotencyOutcome.EXPIRED_MISS, record)
                continue

            if record.request_hash != body_fingerprint:
                logger.warning(f"Idempotency key reused with a different payload on {method} {endpoint_path}")
                return IdempotencyDecision(IdempotencyOutcome.CONFLICT, record)

            if record.state == IdempotencyState.COMPLETED:
                return IdempotencyDecision(IdempotencyOutcome.REPLAY, record)

            return IdempotencyDecision(IdempotencyOutcome.IN_PROGRESS, record)

        # Kept losing races; the winner has not committed yet.
        return IdempotencyDecision(IdempotencyOutcome.IN_PROGRESS, self.repository.get(scoped_key))

    def commit(
        self,
        raw_key: str,
        caller_scope: str,
        method: str,
        endpoint_path: str,
        body_fingerprint: str,
        response_body: Any,
        status_code: int = 201,
    ) -> bool:
        """Persist the response that was sent, valid for `ttl` from now.

        Best effort: a storage failure is logged and reported as False, never
        raised, so the already-completed mutation is not rolled back. A later
        retry then behaves as a fresh MISS once the reservation lapses.
        """
        scoped_key = build_scoped_key(method, endpoint_path, caller_scope, raw_key)
        try:
            stored = self.repository.complete(
                scoped_key,
                request_hash=body_fingerprint,
                response_status=status_code,
                response_body=response_body,
                expires_at=self.clock() + self.ttl,
            )
        except SQLAlchemyError as e:
            logger.error(f"Idempotency save failed for {method} {endpoint_path}: {type(e).__name__}: {str(e)}")
            return False

        if not stored:
            logger.error(f"Idempotency save failed for {method} {endpoint_path}: reservation no longer held")
        return stored

    def release(
        self,
        raw_key: str,
        caller_scope: str,
        method: str,
        endpoint_path: str,
        body_fingerprint: str,
    ) -> None:
        """Give up a reservation after the underlying operation failed."""
        scoped_key = build_scoped_key(method, endpoint_path, caller_scope, raw_key)
        try:
            self.repository.release(scoped_key, body_fingerprint)
        except SQLAlchemyError as e:
            # The reservation lapses on its own after reservation_ttl.
            logger.error(f"Failed to release idempotency reservation: {type(e).__name__}: {str(e)}")

    def purge_expired(self) -> int:
        return self.repository.purge_expired(self.clock())
