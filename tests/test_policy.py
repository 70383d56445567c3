"""Tests for attribute-based access decisions."""

from datetime import datetime, timedelta

import pytest

from minitask.engine.policy import can_read, can_set_high_priority, can_write, has_active_premium
from minitask.models.task import Task
from minitask.models.user import CallerIdentity, UserRole

NOW = datetime(2025, 11, 10, 12, 0, 0)


def _task(**overrides) -> Task:
    base = {
        "id": 1,
        "title": "Fix bug",
        "owner_id": 1,
        "assigned_to": None,
        "is_public": False,
        "created_at": NOW,
        "updated_at": NOW,
    }
    base.update(overrides)
    return Task(**base)


OWNER = CallerIdentity(id=1)
ASSIGNEE = CallerIdentity(id=2)
STRANGER = CallerIdentity(id=3)
ADMIN = CallerIdentity(id=9, role=UserRole.ADMIN)


class TestCanRead:
    def test_public_task_is_readable_by_anyone(self):
        task = _task(is_public=True)
        assert can_read(None, task)
        assert can_read(STRANGER, task)

    def test_private_task_hidden_from_anonymous_and_strangers(self):
        task = _task(assigned_to=2)
        assert not can_read(None, task)
        assert not can_read(STRANGER, task)

    def test_private_task_readable_by_owner_assignee_and_admin(self):
        task = _task(assigned_to=2)
        assert can_read(OWNER, task)
        assert can_read(ASSIGNEE, task)
        assert can_read(ADMIN, task)


class TestCanWrite:
    def test_owner_and_admin_may_write(self):
        task = _task()
        assert can_write(OWNER, task)
        assert can_write(ADMIN, task)

    def test_assignee_may_read_but_not_write(self):
        task = _task(assigned_to=2)
        assert can_read(ASSIGNEE, task)
        assert not can_write(ASSIGNEE, task)

    def test_public_flag_does_not_grant_write(self):
        task = _task(is_public=True)
        assert not can_write(STRANGER, task)
        assert not can_write(None, task)


class TestHighPriority:
    def test_admin_always_allowed(self):
        assert can_set_high_priority(ADMIN, now=NOW)

    def test_active_premium_allowed(self):
        identity = CallerIdentity(id=4, is_premium=True, subscription_expiry=NOW + timedelta(days=1))
        assert has_active_premium(identity, now=NOW)
        assert can_set_high_priority(identity, now=NOW)

    @pytest.mark.parametrize(
        "is_premium, expiry",
        [
            (False, None),
            (True, None),
            (True, NOW - timedelta(seconds=1)),
            (True, NOW),  # expiry must be strictly in the future
            (False, NOW + timedelta(days=1)),
        ],
    )
    def test_denied_without_active_premium(self, is_premium, expiry):
        identity = CallerIdentity(id=4, is_premium=is_premium, subscription_expiry=expiry)
        assert not can_set_high_priority(identity, now=NOW)

    def test_anonymous_denied(self):
        assert not can_set_high_priority(None, now=NOW)
