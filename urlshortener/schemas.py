"""Pydantic schemas for request/response validation and cache payloads.

Schema Hierarchy
=================
::
    URLCreate (Input)
    ├─ url: str (http/https, ≤2048 chars)
    └─ expires_in: int | None (60 … 31536000 seconds)

    URLRecord (Service result + Redis payload)
    ├─ id, short_code, original_url
    ├─ created_at, expires_at, last_accessed_at
    ├─ click_count, creator_ip, is_active
    └─ status(now) → RecordStatus

    URLResponse (Output)          AnalyticsResponse (Output)
    ├─ short_url (computed)       ├─ click_count (trigger-maintained)
    ├─ existing                   ├─ total_clicks (event rows)
    └─ ...                        └─ unique_visitors

    HealthResponse (Output)
    ├─ status
    ├─ database
    └─ cache

Key Behaviours
===============
- URL validation uses the validators library through ``check_target_url``.
- All datetime fields are normalised to timezone-aware UTC, so records read
  back from SQLite and records decoded from Redis compare cleanly.
- ``URLRecord`` is built from ORM rows (``from_attributes``) or from the JSON
  stored under ``short:{code}`` / ``url:{original_url}``.
"""

import datetime

from pydantic import BaseModel, Field, field_validator

from urlshortener.enums import HealthStatus, RecordStatus
from urlshortener.validation import check_expires_in, check_target_url

__all__ = [
    "URLCreate",
    "URLRecord",
    "URLResponse",
    "AnalyticsSummary",
    "AnalyticsResponse",
    "HealthResponse",
]


def _as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


class URLCreate(BaseModel):
    url: str
    expires_in: int | None = Field(None, description="Lifetime of the short URL in seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return check_target_url(v)

    @field_validator("expires_in")
    @classmethod
    def validate_expires_in(cls, v: int | None) -> int | None:
        return check_expires_in(v)


class URLRecord(BaseModel):
    id: int
    short_code: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    click_count: int = 0
    last_accessed_at: datetime.datetime | None = None
    creator_ip: str | None = None
    is_active: bool = True

    model_config = {"from_attributes": True}

    @field_validator("created_at", "expires_at", "last_accessed_at")
    @classmethod
    def ensure_utc(cls, v: datetime.datetime | None) -> datetime.datetime | None:
        return _as_utc(v)

    def status(self, now: datetime.datetime) -> RecordStatus:
        if not self.is_active:
            return RecordStatus.DELETED
        if self.expires_at is not None and self.expires_at <= now:
            return RecordStatus.EXPIRED_LOGICAL
        return RecordStatus.ACTIVE

    def seconds_until_expiry(self, now: datetime.datetime) -> float | None:
        if self.expires_at is None:
            return None
        return (self.expires_at - now).total_seconds()


class URLResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    existing: bool = False

    @classmethod
    def from_record(cls, record: URLRecord, base_url: str, existing: bool = False) -> "URLResponse":
        return cls(
            short_code=record.short_code,
            short_url=f"{base_url}/{record.short_code}",
            original_url=record.original_url,
            created_at=record.created_at,
            expires_at=record.expires_at,
            existing=existing,
        )


class AnalyticsSummary(BaseModel):
    """Aggregated access data for one record, deleted or not."""

    record: URLRecord
    total_clicks: int
    unique_visitors: int


class AnalyticsResponse(BaseModel):
    short_code: str
    original_url: str
    created_at: datetime.datetime
    click_count: int
    total_clicks: int
    unique_visitors: int
    last_accessed_at: datetime.datetime | None = None
    status: RecordStatus

    @classmethod
    def from_summary(cls, summary: AnalyticsSummary, now: datetime.datetime) -> "AnalyticsResponse":
        record = summary.record
        return cls(
            short_code=record.short_code,
            original_url=record.original_url,
            created_at=record.created_at,
            click_count=record.click_count,
            total_clicks=summary.total_clicks,
            unique_visitors=summary.unique_visitors,
            last_accessed_at=record.last_accessed_at,
            status=record.status(now),
        )


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
