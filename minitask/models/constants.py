"""Constants for minitask.

This module centralizes the magic numbers and default values used throughout the application.
"""

from minitask.models.task import TaskPriority, TaskStatus


# Task defaults
DEFAULT_STATUS = TaskStatus.PENDING
DEFAULT_PRIORITY = TaskPriority.MEDIUM
DEFAULT_IS_PUBLIC = False

# Listing
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
DEFAULT_SORT = ("createdAt", "desc")

# Idempotency
IDEMPOTENCY_HEADER = "Idempotency-Key"
DEFAULT_IDEMPOTENCY_TTL_HOURS = 24
DEFAULT_RESERVATION_SECONDS = 30
IDEMPOTENCY_RACE_ATTEMPTS = 3

# Rate limiting (production profile)
DEFAULT_RATE_LIMIT_WINDOW_SEC = 15 * 60
DEFAULT_RATE_LIMITS = {
    "anonymous": 20,
    "user": 100,
    "premium": 500,
    "admin": 1000,
}

# bcrypt silently truncates (or rejects) anything longer.
MAX_PASSWORD_BYTES = 72
