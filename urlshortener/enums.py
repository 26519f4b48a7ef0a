"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RecordStatus", "RateScope", "RequestStatus", "CacheStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RecordStatus(StrEnum):
    """Lifecycle status of a URL record, derived at read time.

    ``DELETED`` is terminal. ``EXPIRED_LOGICAL`` means ``expires_at`` has
    passed while ``is_active`` is still true in the store.
    """

    ACTIVE = "active"
    EXPIRED_LOGICAL = "expired"
    DELETED = "deleted"


class RateScope(StrEnum):
    """Quota tiers enforced by the rate guard."""

    GLOBAL = "global"
    CREATE = "create"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    ERROR = "error"
    NOT_FOUND = "not_found"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"
