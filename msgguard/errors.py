"""Error taxonomy for the messaging engine.

Every error carries a ``reason_code`` stable enough for client UX and an
``http_status`` hint.  The engine itself is protocol-agnostic; the web layer
maps these to responses.
"""

from __future__ import annotations

from typing import Any, Optional


class MessagingError(Exception):
    """Base class for all engine errors."""

    http_status: int = 400
    default_code: str = "MESSAGING_ERROR"

    def __init__(
        self,
        message: str,
        reason_code: Optional[str] = None,
        **extra: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason_code = reason_code or self.default_code
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.reason_code, **self.extra}


class ValidationError(MessagingError):
    """Malformed input."""

    http_status = 422
    default_code = "INVALID_PAYLOAD"


class ContentBlocked(MessagingError):
    """The content guard rejected a message body."""

    http_status = 400
    default_code = "MESSAGE_CONTENT_BLOCKED"


class Unauthorized(MessagingError):
    """No caller identity."""

    http_status = 401
    default_code = "UNAUTHORIZED"


class Forbidden(MessagingError):
    """Identity known, action not permitted."""

    http_status = 403
    default_code = "FORBIDDEN"


class NotFound(MessagingError):
    """Entity absent or in another workspace."""

    http_status = 404
    default_code = "NOT_FOUND"


class Conflict(MessagingError):
    """Stale input or a concurrent modification."""

    http_status = 409
    default_code = "CONFLICT"


class RateLimited(MessagingError):
    """Too many requests for an action within its window."""

    http_status = 429
    default_code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after_seconds: int, **extra: Any) -> None:
        super().__init__(message, retry_after_seconds=retry_after_seconds, **extra)
        self.retry_after_seconds = retry_after_seconds


class DependencyUnavailable(MessagingError):
    """A backing store failed or timed out."""

    http_status = 503
    default_code = "DEPENDENCY_UNAVAILABLE"


_ERRORS_BY_STATUS: dict[int, type[MessagingError]] = {
    400: ContentBlocked,
    401: Unauthorized,
    403: Forbidden,
    404: NotFound,
    409: Conflict,
    422: ValidationError,
    503: DependencyUnavailable,
}


def error_for_status(status: int, message: str, reason_code: str) -> MessagingError:
    """Build the error class matching an HTTP status hint."""
    cls = _ERRORS_BY_STATUS.get(status, MessagingError)
    return cls(message, reason_code=reason_code)
