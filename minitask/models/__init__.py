"""Data models for minitask."""

from minitask.models.task import Task, TaskStatus, TaskPriority, TaskFilters, TaskPage
from minitask.models.user import User, UserRole, CallerIdentity
from minitask.models.idempotency import IdempotencyRecord, IdempotencyState

__all__ = [
    "Task",
    "TaskStatus",
    "TaskPriority",
    "TaskFilters",
    "TaskPage",
    "User",
    "UserRole",
    "CallerIdentity",
    "IdempotencyRecord",
    "IdempotencyState",
]
