"""Typed messaging errors mapped to HTTP status codes at the router boundary.

Engines return denials as values. These are raised only for failed
operations (missing session, cross-tenant lookups, bad payloads) and
programmer errors (unknown message class).
"""

from __future__ import annotations

from typing import Any


class MessagingError(Exception):
    """Base class for all messaging errors."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self, correlation_id: str | None = None) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        if correlation_id:
            error["correlation_id"] = correlation_id
        return {"error": error}


class Forbidden(MessagingError):
    status_code = 403
    default_code = "PERMISSION_DENIED"


class NotFound(MessagingError):
    """Entity absent, or owned by another company."""

    status_code = 404
    default_code = "MESSAGE_NOT_FOUND"


class ValidationError(MessagingError):
    status_code = 400
    default_code = "VALIDATION_FAILED"


class ContentPolicyError(ValidationError):
    status_code = 422
    default_code = "CONTENT_POLICY_REJECTED"


class UnsupportedClassError(ValidationError):
    default_code = "UNSUPPORTED_MESSAGE_CLASS"


class ConflictError(MessagingError):
    status_code = 409
    default_code = "CONFLICT"


class RateLimitedError(MessagingError):
    status_code = 429
    default_code = "RATE_LIMITED"


class ApprovalGateError(MessagingError):
    """Destructive purge attempted without enough distinct approvers."""

    status_code = 409
    default_code = "APPROVAL_GATE_NOT_MET"

    def __init__(self, required: int, actual: int):
        super().__init__(
            f"Approval gate not met: need {required}, got {actual}",
            details={"required": required, "actual": actual},
        )
        self.required = required
        self.actual = actual


class StoreError(MessagingError):
    status_code = 503
    default_code = "STORE_ERROR"


class DuplicateKeyError(StoreError):
    """Unique constraint violation reported by the store."""

    default_code = "DUPLICATE_KEY"


class TransportError(MessagingError):
    status_code = 502
    default_code = "TRANSPORT_ERROR"
