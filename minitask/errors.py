"""Error taxonomy for minitask.

Every error a request can end with is an `ApiError`; the API layer renders
them into the uniform `{"error": {...}}` body.
"""

from typing import Any, Dict, Optional


class ApiError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal Server Error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        self.headers = headers or {}
        super().__init__(self.message)


class AuthenticationError(ApiError):
    """Missing or unusable credentials. The caller must (re-)authenticate."""
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Token invalid or expired"


class AuthorizationError(ApiError):
    """Policy denied the operation."""
    status_code = 403
    code = "FORBIDDEN"
    message = "You are not allowed to perform this action"


class ValidationFailed(ApiError):
    status_code = 400
    code = "VALIDATION_FAILED"
    message = "Request validation failed"


class IdempotencyKeyMissing(ApiError):
    status_code = 400
    code = "MISSING_IDEMPOTENCY_KEY"
    message = "Idempotency-Key header is required"


class IdempotencyConflict(ApiError):
    status_code = 409
    code = "IDEMPOTENCY_KEY_REUSED"
    message = "This Idempotency-Key was used with a different payload."


class IdempotencyInProgress(ApiError):
    """A request with the same key and payload has not finished yet. Retryable."""
    status_code = 409
    code = "IDEMPOTENCY_REQUEST_IN_PROGRESS"
    message = "A request with this Idempotency-Key is still being processed. Retry shortly."


class RateLimitExceeded(ApiError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests."


class NotFound(ApiError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"
