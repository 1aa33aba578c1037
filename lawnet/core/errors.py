"""
Error taxonomy for intake, approval, store and live-update failures.
Each error carries the HTTP status the API layer renders it with.
"""
from typing import Any


class AccessServiceError(Exception):
    """Base error; detail holds structured fields for logging and the response body."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(AccessServiceError):
    """Missing or malformed intake/approval fields."""

    status_code = 400
    code = "validation_error"


class AuthorizationError(AccessServiceError):
    """Caller does not hold the admin key."""

    status_code = 403
    code = "forbidden"


class NotFoundError(AccessServiceError):
    status_code = 404
    code = "not_found"


class InvalidTransitionError(AccessServiceError):
    """Submission status change not allowed by the approval state machine."""

    status_code = 409
    code = "invalid_transition"


class RateLimitedError(AccessServiceError):
    status_code = 429
    code = "rate_limited"


class TransientStoreError(AccessServiceError):
    """I/O failure while reading or mutating the store; safe to retry as a unit."""

    status_code = 503
    code = "store_unavailable"


class ChannelDeliveryFailure(AccessServiceError):
    """A live-update event could not reach a connection. Logged, never surfaced."""

    code = "channel_delivery_failure"


class DuplicateRequestError(AccessServiceError):
    """Another request with the same Idempotency-Key is still being processed."""

    status_code = 409
    code = "duplicate_request"
