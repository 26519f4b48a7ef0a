"""Error taxonomy for the URL shortener core.

Every error raised by the core derives from ``ShortenerError`` and carries an
``error_code`` so the HTTP layer can map it without string matching.

Propagation summary::

    ValidationError              → rejected before any cache/store access
    NotFoundError                → unknown, deleted or logically expired code
    RateLimitedError             → quota tier exceeded or IP blocked
    ConflictError                → unique violation, absorbed by code retry
    DependencyUnavailableError   → Redis or the database is unreachable
"""

import datetime

__all__ = [
    "ShortenerError",
    "ValidationError",
    "NotFoundError",
    "RateLimitedError",
    "ConflictError",
    "DependencyUnavailableError",
    "CacheUnavailableError",
    "StoreUnavailableError",
]


class ShortenerError(Exception):
    """Base exception for all application-specific errors."""

    error_code = "app:shortener_error"


class ValidationError(ShortenerError, ValueError):
    """Raised when a URL or expiry fails input validation."""

    error_code = "request:validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class NotFoundError(ShortenerError):
    """Raised when a short code is unknown, deleted, or expired."""

    error_code = "url:not_found_error"

    def __init__(self, short_code: str):
        super().__init__(f"Short URL '{short_code}' not found or expired")
        self.short_code = short_code


class RateLimitedError(ShortenerError):
    """Raised when a client exceeds a quota tier or is blocked.

    Exactly one of ``retry_at`` (quota exceeded) or ``unblock_at`` (IP
    blocked) is set. ``retry_after`` is the wait in seconds as measured by
    the guard's clock when the error was raised.
    """

    error_code = "guard:rate_limited_error"

    def __init__(
        self,
        message: str,
        *,
        retry_at: datetime.datetime | None = None,
        unblock_at: datetime.datetime | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.retry_at = retry_at
        self.unblock_at = unblock_at
        self.retry_after = retry_after

    @property
    def blocked(self) -> bool:
        return self.unblock_at is not None

    def retry_after_seconds(self, now: datetime.datetime) -> int:
        if self.retry_after is not None:
            return max(self.retry_after, 0)
        until = self.unblock_at or self.retry_at
        if until is None:
            return 0
        return max(int((until - now).total_seconds()), 0)


class ConflictError(ShortenerError):
    """Raised by the store when an insert violates short-code uniqueness."""

    error_code = "store:conflict_error"


class DependencyUnavailableError(ShortenerError):
    """Raised when a backing service cannot be reached or times out."""

    error_code = "infra:dependency_unavailable_error"

    def __init__(self, dependency: str, message: str):
        super().__init__(f"{dependency} unavailable: {message}")
        self.dependency = dependency


class CacheUnavailableError(DependencyUnavailableError):
    error_code = "infra:cache_unavailable_error"

    def __init__(self, message: str):
        super().__init__("cache", message)


class StoreUnavailableError(DependencyUnavailableError):
    error_code = "infra:store_unavailable_error"

    def __init__(self, message: str):
        super().__init__("database", message)
