"""Attribute-based access control for minitask.

Decisions are pure functions of the caller's attributes, the task's attributes
and (for premium entitlements) the evaluation time. They are evaluated per
request, so a premium grant that lapsed after the token was issued no longer
counts.
"""

from datetime import datetime
from typing import Optional

from minitask.models.task import Task
from minitask.models.user import CallerIdentity, UserRole


def can_read(identity: Optional[CallerIdentity], task: Task) -> bool:
    """Check whether a caller may see a task.

    A task is readable if:
    1. It is public
    2. OR the caller owns it, or it is assigned to the caller
    3. OR the caller is an admin

    Args:
        identity: Caller identity, or None for anonymous callers
        task: The task being read

    Returns:
        True if the task is visible to the caller
    """
    if task.is_public:
        return True
    if identity is None:
        return False
    if identity.id == task.owner_id:
        return True
    if task.assigned_to is not None and identity.id == task.assigned_to:
        return True
    return identity.role is UserRole.ADMIN


def can_write(identity: Optional[CallerIdentity], task: Task) -> bool:
    """Check whether a caller may modify or delete a task (owner or admin only).

    Assignees can read a task but not change it. Anonymous callers never pass.
    """
    if identity is None:
        return False
    if identity.id == task.owner_id:
        return True
    return identity.role is UserRole.ADMIN


def has_active_premium(identity: Optional[CallerIdentity], now: Optional[datetime] = None) -> bool:
    """True if the caller holds a premium grant that has not lapsed at `now` (UTC)."""
    if identity is None or not identity.is_premium:
        return False
    if identity.subscription_expiry is None:
        return False
    now = now or datetime.utcnow()
    return identity.subscription_expiry > now


def can_set_high_priority(identity: Optional[CallerIdentity], now: Optional[datetime] = None) -> bool:
    """Check whether a caller may create or update a task with priority `high`.

    Allowed for admins, and for premium holders whose subscription expires
    strictly after `now`.
    """
    if identity is None:
        return False
    if identity.role is UserRole.ADMIN:
        return True
    return has_active_premium(identity, now)
