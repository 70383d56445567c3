"""Request-time engine for minitask: policy, idempotency, rate limits, task mutations."""

from minitask.engine.policy import can_read, can_write, can_set_high_priority, has_active_premium
from minitask.engine.idempotency import IdempotencyCache, IdempotencyOutcome, IdempotencyDecision
from minitask.engine.rate_limit import FixedWindowRateLimiter, RateTier, rate_tier
from minitask.engine.task_service import TaskMutationService, MutationContext, MutationResult

__all__ = [
    "can_read",
    "can_write",
    "can_set_high_priority",
    "has_active_premium",
    "IdempotencyCache",
    "IdempotencyOutcome",
    "IdempotencyDecision",
    "FixedWindowRateLimiter",
    "RateTier",
    "rate_tier",
    "TaskMutationService",
    "MutationContext",
    "MutationResult",
]
