"""Resolution service: cache-aside create / resolve / delete of mappings.

Architecture Overview
=====================
::
    ┌──────────────────────────────────────────────────────────┐
    │                   ResolutionService                      │
    │  create_mapping()   resolve()   delete_mapping()         │
    │  get_analytics()    list_mappings()                      │
    └───────┬───────────────┬───────────────┬──────────────────┘
            │               │               │
            ▼               ▼               ▼
    ┌──────────────┐ ┌──────────────┐ ┌──────────────────┐
    │ Cache (Redis)│ │ URLStore (DB)│ │ AnalyticsRecorder│
    │ short:{code} │ │ source of    │ │ fire-and-forget  │
    │ url:{url}    │ │ truth        │ │                  │
    └──────────────┘ └──────────────┘ └──────────────────┘

URL Creation Flow
-----------------
::
    validate ─► url:{url} cached? ─► store lookup (active, unexpired)
                                             │
                 found and no expires_in? ───┴──► return (existing=True)
                             │ otherwise
                             ▼
               generate code ─► INSERT (retry on unique violation)
                             │
                             ▼  after commit
               SET short:{code} and url:{url} ─► return (existing=False)

Redirect Flow
-------------
::
    short:{code} cached? ──YES──► record (no store access)
            │ NO
            ▼
    store lookup (is_active AND not expired) ──none──► NotFoundError
            │
            ▼
    SET short:{code} ─► dispatch AccessEvent ─► record

Deletion Flow
-------------
::
    UPDATE is_active=false ──none──► NotFoundError
            │
            ▼  after commit
    DEL short:{code}, DEL url:{url}   (failure logged, heals at TTL)

Key Behaviours
===============
- Cache failures never fail a request: reads fall back to the store, writes
  are skipped, invalidations are logged without retry.
- Store failures propagate as ``StoreUnavailableError``; they are never
  reported as ``NotFoundError``.
- A cache hit is served as-is; ``is_active``/``expires_at`` may be stale for
  up to the entry's TTL. Entries of expiring records never outlive the record.
- Concurrent creates of the same new URL may produce two codes; both stay
  resolvable and the last cache write wins.
"""

import datetime
import logging
import time
from collections.abc import Callable

from prometheus_client import Counter, Histogram
from pydantic import ValidationError as PayloadError

from urlshortener.analytics import AccessEvent, AnalyticsRecorder, Visitor
from urlshortener.codegen import ALPHABET, ShortCodeGenerator
from urlshortener.config import Settings, get_settings
from urlshortener.enums import CacheStatus, RequestStatus
from urlshortener.exceptions import (
    CacheUnavailableError,
    ConflictError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from urlshortener.models import URL
from urlshortener.redis import Cache
from urlshortener.schemas import AnalyticsSummary, URLRecord
from urlshortener.store import URLStore
from urlshortener.validation import check_expires_in, check_target_url

__all__ = ["ResolutionService", "short_key", "url_key", "utcnow"]

URL_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total URL creation requests",
    ["status", "existing"],
)
URL_LOOKUP_REQUESTS_TOTAL = Counter(
    "url_shortener_lookup_requests_total",
    "Total URL lookup requests",
    ["status", "cache_hit"],
)
URL_DELETIONS_TOTAL = Counter(
    "url_shortener_deletions_total",
    "Total soft deletions",
)
CACHE_ERRORS_TOTAL = Counter(
    "url_shortener_cache_errors_total",
    "Cache operations that failed and were absorbed",
    ["operation"],
)
URL_LOOKUP_DURATION = Histogram(
    "url_shortener_lookup_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

MAX_PAGE_SIZE = 100


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def short_key(short_code: str) -> str:
    return f"short:{short_code}"


def url_key(original_url: str) -> str:
    return f"url:{original_url}"


def _looks_like_code(short_code: str, max_length: int) -> bool:
    return 0 < len(short_code) <= max_length and all(c in ALPHABET for c in short_code)


class ResolutionService:
    """Cache-aside mapping operations over one request's store session.

    Example:
        >>> service = ResolutionService.from_context(ctx)
        >>> record, existing = await service.create_mapping("https://example.com", "10.0.0.1")
        >>> (await service.resolve(record.short_code)).original_url
        'https://example.com'
    """

    def __init__(
        self,
        store: URLStore,
        cache: Cache,
        generator: ShortCodeGenerator | None = None,
        recorder: AnalyticsRecorder | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], datetime.datetime] = utcnow,
    ):
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("urlshortener")
        self._store = store
        self._cache = cache
        self._generator = generator or ShortCodeGenerator(store, self._settings)
        self._recorder = recorder
        self._clock = clock

    @classmethod
    def from_context(cls, ctx) -> "ResolutionService":
        store = URLStore(ctx.database, ctx.settings)
        return cls(
            store=store,
            cache=ctx.cache,
            generator=ShortCodeGenerator(store, ctx.settings, ctx.logger),
            recorder=ctx.recorder,
            settings=ctx.settings,
            logger=ctx.logger,
            clock=ctx.clock,
        )

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def create_mapping(
        self,
        original_url: str,
        creator_ip: str | None,
        expires_in_seconds: int | None = None,
    ) -> tuple[URLRecord, bool]:
        """Return ``(record, is_existing)`` for ``original_url``.

        Without ``expires_in_seconds`` an active mapping for the same URL is
        reused. An explicit expiry always creates a new record.

        Raises:
            ValidationError: bad URL or expiry, before any I/O.
            StoreUnavailableError: the database failed.
        """
        try:
            original_url = check_target_url(original_url, self._settings)
            expires_in_seconds = check_expires_in(expires_in_seconds, self._settings)
        except ValidationError:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR, existing="false").inc()
            raise

        now = self._clock()
        existing = await self._find_existing(original_url, now)
        if existing is not None and expires_in_seconds is None:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, existing="true").inc()
            self._logger.info(f"Reusing short code {existing.short_code} for {original_url}")
            return existing, True

        expires_at = None
        if expires_in_seconds is not None:
            expires_at = now + datetime.timedelta(seconds=expires_in_seconds)

        try:
            record = await self._insert_new(original_url, creator_ip, expires_at, now)
        except StoreUnavailableError:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, existing="false").inc()
            raise

        # Write-through only after the insert has committed.
        await self._cache_record(short_key(record.short_code), record, now)
        await self._cache_record(url_key(record.original_url), record, now)

        URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, existing="false").inc()
        self._logger.info(f"Created short code {record.short_code} for {original_url}")
        return record, False

    async def resolve(self, short_code: str, visitor: Visitor | None = None) -> URLRecord:
        """Return the live record for ``short_code``.

        With a ``visitor`` one access event is dispatched to the recorder;
        the call does not wait for it to be persisted.

        Raises:
            NotFoundError: unknown, deleted or logically expired code.
            StoreUnavailableError: cache miss and the database failed.
        """
        start_time = time.perf_counter()
        if not _looks_like_code(short_code, self._settings.SHORT_CODE_FALLBACK_LENGTH):
            URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=CacheStatus.MISS).inc()
            raise NotFoundError(short_code)

        now = self._clock()
        record = await self._cached_record(short_key(short_code))
        cache_status = CacheStatus.HIT if record is not None else CacheStatus.MISS

        if record is None:
            try:
                row = await self._store.find_active_by_code(short_code, now)
            except StoreUnavailableError:
                URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, cache_hit=cache_status).inc()
                self._logger.error(f"Store unavailable while resolving {short_code}")
                raise
            if row is None:
                URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND, cache_hit=cache_status).inc()
                raise NotFoundError(short_code)
            record = URLRecord.model_validate(row)
            await self._cache_record(short_key(short_code), record, now)

        if visitor is not None and self._recorder is not None:
            self._recorder.dispatch(AccessEvent.for_visit(record.id, visitor, now))

        URL_LOOKUP_DURATION.observe(time.perf_counter() - start_time)
        URL_LOOKUP_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, cache_hit=cache_status).inc()
        self._logger.debug(f"Resolved {short_code} (cache hit: {cache_status.value})")
        return record

    async def delete_mapping(self, short_code: str) -> URLRecord:
        """Soft-delete ``short_code`` and invalidate both cache entries."""
        row = await self._store.soft_delete(short_code)
        if row is None:
            raise NotFoundError(short_code)
        record = URLRecord.model_validate(row)

        for key in (short_key(record.short_code), url_key(record.original_url)):
            try:
                await self._cache.delete(key)
            except CacheUnavailableError as exc:
                CACHE_ERRORS_TOTAL.labels(operation="delete").inc()
                self._logger.warning(f"Cache invalidation failed for {key}, entry expires at TTL: {exc}")

        URL_DELETIONS_TOTAL.inc()
        self._logger.info(f"Deleted short code {short_code}")
        return record

    async def get_analytics(self, short_code: str) -> AnalyticsSummary:
        result = await self._store.aggregate_analytics(short_code)
        if result is None:
            raise NotFoundError(short_code)
        row, total_clicks, unique_visitors = result
        return AnalyticsSummary(
            record=URLRecord.model_validate(row),
            total_clicks=total_clicks,
            unique_visitors=unique_visitors,
        )

    async def list_mappings(self, limit: int = 50, offset: int = 0) -> list[URLRecord]:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError("limit", f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset", "offset must not be negative")
        rows = await self._store.list_active(self._clock(), limit=limit, offset=offset)
        return [URLRecord.model_validate(row) for row in rows]

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _find_existing(self, original_url: str, now: datetime.datetime) -> URLRecord | None:
        key = url_key(original_url)
        record = await self._cached_record(key)
        if record is not None:
            return record

        row = await self._store.find_active_by_url(original_url, now)
        if row is None:
            return None
        record = URLRecord.model_validate(row)
        await self._cache_record(key, record, now)
        return record

    async def _insert_new(
        self,
        original_url: str,
        creator_ip: str | None,
        expires_at: datetime.datetime | None,
        now: datetime.datetime,
    ) -> URLRecord:
        attempts = self._settings.CODE_INSERT_ATTEMPTS
        for attempt in range(1, attempts + 1):
            short_code = await self._generator.generate()
            row = URL(
                short_code=short_code,
                original_url=original_url,
                creator_ip=creator_ip,
                created_at=now,
                expires_at=expires_at,
                click_count=0,
                is_active=True,
            )
            try:
                row = await self._store.insert_if_unique_code(row)
            except ConflictError:
                self._logger.warning(f"Insert conflict for {short_code} on attempt {attempt}/{attempts}")
                continue
            return URLRecord.model_validate(row)
        raise StoreUnavailableError(f"no unique short code after {attempts} insert attempts")

    async def _cached_record(self, key: str) -> URLRecord | None:
        try:
            payload = await self._cache.get(key)
        except CacheUnavailableError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="get").inc()
            self._logger.warning(f"Cache read failed for {key}, falling back to store: {exc}")
            return None
        if payload is None:
            return None
        try:
            return URLRecord.model_validate(payload)
        except PayloadError as exc:
            self._logger.error(f"Cache deserialization error for {key}: {exc}")
            return None

    async def _cache_record(self, key: str, record: URLRecord, now: datetime.datetime) -> None:
        ttl = self._settings.CACHE_TTL_SECONDS
        remaining = record.seconds_until_expiry(now)
        if remaining is not None:
            ttl = min(ttl, int(remaining))
        if ttl <= 0:
            return
        try:
            await self._cache.set_with_ttl(key, record.model_dump(mode="json"), ttl)
        except CacheUnavailableError as exc:
            CACHE_ERRORS_TOTAL.labels(operation="set").inc()
            self._logger.warning(f"Cache write failed for {key}: {exc}")
