"""Tests for the idempotency cache state machine."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from minitask.engine.idempotency import (
    ANONYMOUS_SCOPE,
    IdempotencyCache,
    IdempotencyOutcome,
    build_scoped_key,
    caller_scope,
    fingerprint,
)
from minitask.models.idempotency import IdempotencyState
from minitask.models.user import CallerIdentity

ENDPOINT = "/api/v1/tasks"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 11, 10, 9, 0, 0))


@pytest.fixture
def cache(idempotency_repository, clock):
    return IdempotencyCache(
        idempotency_repository,
        ttl=timedelta(hours=24),
        reservation_ttl=timedelta(seconds=30),
        clock=clock,
    )


@pytest.fixture
def scope(owner):
    return caller_scope(CallerIdentity.from_user(owner))


def _begin(cache, scope, body, key="key-1", endpoint=ENDPOINT):
    return cache.begin(key, scope, "POST", endpoint, fingerprint(body))


def _commit(cache, scope, body, response, key="key-1", endpoint=ENDPOINT):
    return cache.commit(key, scope, "POST", endpoint, fingerprint(body), response_body=response, status_code=201)


class TestKeyDerivation:
    def test_fingerprint_ignores_key_order_and_whitespace(self):
        assert fingerprint({"a": 1, "b": "x"}) == fingerprint({"b": "x", "a": 1})
        assert fingerprint({"a": 1}) != fingerprint({"a": 2})

    def test_missing_body_hashes_like_empty_object(self):
        assert fingerprint(None) == fingerprint({})

    def test_scoped_key_depends_on_every_component(self):
        base = build_scoped_key("POST", ENDPOINT, "user:1", "k")
        assert base == build_scoped_key("post", ENDPOINT, "user:1", "k")
        assert base != build_scoped_key("POST", "/api/v2/tasks", "user:1", "k")
        assert base != build_scoped_key("POST", ENDPOINT, "user:2", "k")
        assert base != build_scoped_key("POST", ENDPOINT, "user:1", "k2")
        assert len(base) == 64

    def test_caller_scope(self):
        assert caller_scope(None) == ANONYMOUS_SCOPE
        assert caller_scope(CallerIdentity(id=7)) == "user:7"


class TestIdempotencyCache:
    def test_first_request_is_a_miss_and_holds_a_reservation(self, cache, scope, idempotency_repository):
        decision = _begin(cache, scope, {"title": "A"})

        assert decision.outcome is IdempotencyOutcome.MISS
        assert decision.should_execute
        stored = idempotency_repository.get(decision.record.scoped_key)
        assert stored.state == IdempotencyState.PENDING

    def test_committed_response_is_replayed(self, cache, scope):
        body = {"title": "A"}
        _begin(cache, scope, body)
        assert _commit(cache, scope, body, {"id": 1, "title": "A", "status": "pending"}) is True

        decision = _begin(cache, scope, body)
        assert decision.outcome is IdempotencyOutcome.REPLAY
        assert not decision.should_execute
        assert decision.record.response_body == {"id": 1, "title": "A", "status": "pending"}
        assert decision.record.response_status == 201

    def test_same_key_different_payload_conflicts(self, cache, scope):
        _begin(cache, scope, {"title": "A"})
        _commit(cache, scope, {"title": "A"}, {"id": 1})

        decision = _begin(cache, scope, {"title": "B"})
        assert decision.outcome is IdempotencyOutcome.CONFLICT

    def test_concurrent_twin_sees_in_progress(self, cache, scope):
        _begin(cache, scope, {"title": "A"})

        decision = _begin(cache, scope, {"title": "A"})
        assert decision.outcome is IdempotencyOutcome.IN_PROGRESS

    def test_different_payload_during_reservation_conflicts(self, cache, scope):
        _begin(cache, scope, {"title": "A"})

        decision = _begin(cache, scope, {"title": "B"})
        assert decision.outcome is IdempotencyOutcome.CONFLICT

    def test_scopes_are_isolated(self, cache, scope, other_user):
        other_scope = caller_scope(CallerIdentity.from_user(other_user))
        _begin(cache, scope, {"title": "A"})
        _commit(cache, scope, {"title": "A"}, {"id": 1})

        assert _begin(cache, other_scope, {"title": "B"}).outcome is IdempotencyOutcome.MISS
        assert _begin(cache, scope, {"title": "B"}, endpoint="/api/v2/tasks").outcome is IdempotencyOutcome.MISS
        assert _begin(cache, ANONYMOUS_SCOPE, {"title": "B"}).outcome is IdempotencyOutcome.MISS

    def test_expired_record_is_taken_over_before_fingerprint_check(self, cache, scope, clock):
        _begin(cache, scope, {"title": "A"})
        _commit(cache, scope, {"title": "A"}, {"id": 1})

        clock.advance(hours=24, seconds=1)
        decision = _begin(cache, scope, {"title": "B"})

        assert decision.outcome is IdempotencyOutcome.EXPIRED_MISS
        assert decision.should_execute
        # The takeover holds a fresh reservation for the new payload.
        assert _begin(cache, scope, {"title": "B"}).outcome is IdempotencyOutcome.IN_PROGRESS

    def test_replay_still_served_just_before_ttl(self, cache, scope, clock):
        _begin(cache, scope, {"title": "A"})
        _commit(cache, scope, {"title": "A"}, {"id": 1})

        clock.advance(hours=23, minutes=59)
        assert _begin(cache, scope, {"title": "A"}).outcome is IdempotencyOutcome.REPLAY

    def test_abandoned_reservation_lapses(self, cache, scope, clock):
        _begin(cache, scope, {"title": "A"})

        clock.advance(seconds=31)
        assert _begin(cache, scope, {"title": "A"}).outcome is IdempotencyOutcome.EXPIRED_MISS

    def test_released_reservation_allows_a_fresh_attempt(self, cache, scope):
        body = {"title": "A"}
        _begin(cache, scope, body)
        cache.release("key-1", scope, "POST", ENDPOINT, fingerprint(body))

        assert _begin(cache, scope, {"title": "corrected"}).outcome is IdempotencyOutcome.MISS

    def test_commit_failure_is_swallowed(self, cache, scope, monkeypatch):
        body = {"title": "A"}
        _begin(cache, scope, body)

        def broken_complete(*args, **kwargs):
            raise OperationalError("UPDATE idempotency_keys", {}, Exception("database is locked"))

        monkeypatch.setattr(cache.repository, "complete", broken_complete)
        assert _commit(cache, scope, body, {"id": 1}) is False

    def test_commit_without_reservation_reports_failure(self, cache, scope):
        assert _commit(cache, scope, {"title": "A"}, {"id": 1}) is False

    def test_purge_expired_removes_only_lapsed_records(self, cache, scope, clock):
        _begin(cache, scope, {"title": "A"}, key="old")
        _commit(cache, scope, {"title": "A"}, {"id": 1}, key="old")
        clock.advance(hours=25)
        _begin(cache, scope, {"title": "B"}, key="new")

        assert cache.purge_expired() == 1
        assert _begin(cache, scope, {"title": "B"}, key="new").outcome is IdempotencyOutcome.IN_PROGRESS


class TestLostRaces:
    def test_reserve_rejects_an_existing_scoped_key(self, cache, scope, idempotency_repository):
        decision = _begin(cache, scope, {"title": "A"})

        assert idempotency_repository.reserve(decision.record) is False
        # The session is usable again after the rollback.
        assert idempotency_repository.get(decision.record.scoped_key).state == IdempotencyState.PENDING

    def test_lost_insert_race_rereads_the_winner(self, cache, scope, idempotency_repository, monkeypatch):
        _begin(cache, scope, {"title": "A"})

        real_get = idempotency_repository.get
        reads = []

        def stale_first_read(scoped_key):
            reads.append(scoped_key)
            # The first read happens before the winner's insert is visible.
            return None if len(reads) == 1 else real_get(scoped_key)

        monkeypatch.setattr(idempotency_repository, "get", stale_first_read)
        decision = _begin(cache, scope, {"title": "A"})

        assert decision.outcome is IdempotencyOutcome.IN_PROGRESS
        assert len(reads) == 2

    def test_lost_takeover_race_rereads_the_winner(self, cache, scope, clock, idempotency_repository, monkeypatch):
        body = {"title": "A"}
        _begin(cache, scope, body)
        _commit(cache, scope, body, {"id": 1})
        clock.advance(hours=24, seconds=1)

        real_take_over = idempotency_repository.take_over

        def twin_wins(scoped_key, expected_attempt, request_hash, now, expires_at):
            # Another request with the same payload takes the record over first.
            assert real_take_over(scoped_key, expected_attempt, request_hash, now, expires_at)
            return False

        monkeypatch.setattr(idempotency_repository, "take_over", twin_wins)
        decision = _begin(cache, scope, body)

        assert decision.outcome is IdempotencyOutcome.IN_PROGRESS
        assert decision.record.attempt == 2

    def test_gives_up_after_bounded_attempts(self, cache, scope, idempotency_repository, monkeypatch):
        monkeypatch.setattr(idempotency_repository, "get", lambda scoped_key: None)
        monkeypatch.setattr(idempotency_repository, "reserve", lambda record: False)

        decision = _begin(cache, scope, {"title": "A"})

        assert decision.outcome is IdempotencyOutcome.IN_PROGRESS
        assert not decision.should_execute
