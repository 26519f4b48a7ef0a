"""Distributed rate limiting and abuse blocking keyed by client IP.

All state lives in Redis so every stateless instance enforces the same
quotas. If Redis is unreachable the guard lets requests through.

Check Order
===========
::
    ┌──────────────────┐
    │ blocked:{ip} ?   │──YES──► RateLimitedError(unblock_at)
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ abuse:{ip} > 50 ?│──YES──► SET blocked:{ip} (1h) ─► RateLimitedError
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ INCR ratelimit:  │──> 100 ─► RateLimitedError(retry_at)
    │ {ip}  (15 min)   │
    └────────┬─────────┘
             ▼  create scope only
    ┌──────────────────┐
    │ INCR ratelimit:  │──> 10 ──► RateLimitedError(retry_at)
    │ create:{ip}      │
    └────────┬─────────┘
             ▼  create scope with a target URL
    ┌──────────────────┐
    │ suspicious URL?  │──YES──► INCR abuse:{ip} (1h), request proceeds
    └──────────────────┘

Windows are fixed: an increment sets the expiry only when the key has none,
so a running window is never extended. Counters only reset when their key
expires.
"""

import datetime
import logging
import re
from collections.abc import Callable

from prometheus_client import Counter

from urlshortener.config import Settings, get_settings
from urlshortener.enums import RateScope
from urlshortener.exceptions import CacheUnavailableError, RateLimitedError
from urlshortener.redis import Cache

__all__ = ["RateAbuseGuard", "abuse_key", "blocked_key", "rate_key"]

RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "url_shortener_rate_limit_rejections_total",
    "Requests rejected by the rate guard",
    ["reason"],
)
SUSPICIOUS_URLS_TOTAL = Counter(
    "url_shortener_suspicious_urls_total",
    "Submitted URLs matching a suspicious pattern",
)
GUARD_BACKEND_ERRORS_TOTAL = Counter(
    "url_shortener_guard_backend_errors_total",
    "Guard checks that failed open because Redis was unavailable",
)


def rate_key(scope: RateScope, ip: str) -> str:
    if scope is RateScope.GLOBAL:
        return f"ratelimit:{ip}"
    return f"ratelimit:{scope.value}:{ip}"


def abuse_key(ip: str) -> str:
    return f"abuse:{ip}"


def blocked_key(ip: str) -> str:
    return f"blocked:{ip}"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class RateAbuseGuard:
    def __init__(
        self,
        cache: Cache,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self._cache = cache
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("urlshortener")
        self._clock = clock
        self._patterns = [re.compile(p, re.IGNORECASE) for p in self._settings.SUSPICIOUS_URL_PATTERNS]
        self._tiers = {
            RateScope.GLOBAL: (self._settings.RATE_LIMIT_MAX_REQUESTS, self._settings.RATE_LIMIT_WINDOW_SECONDS),
            RateScope.CREATE: (self._settings.CREATE_LIMIT_MAX_REQUESTS, self._settings.CREATE_LIMIT_WINDOW_SECONDS),
        }

    async def check(self, ip: str, scope: RateScope = RateScope.GLOBAL, target_url: str | None = None) -> None:
        """Admit or reject one request from ``ip``.

        The create scope also consumes the global quota.

        Raises:
            RateLimitedError: the IP is blocked or a tier is exhausted.
        """
        try:
            await self._check_blocked(ip)
            await self._check_abuse_threshold(ip)
            await self._consume(RateScope.GLOBAL, ip)
            if scope is RateScope.CREATE:
                await self._consume(RateScope.CREATE, ip)
        except CacheUnavailableError as exc:
            GUARD_BACKEND_ERRORS_TOTAL.inc()
            self._logger.warning(f"Rate guard failed open for {ip}: {exc}")
            return

        if scope is RateScope.CREATE and target_url:
            await self.track_suspicious_url(ip, target_url)

    def is_suspicious(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self._patterns)

    async def track_suspicious_url(self, ip: str, url: str) -> bool:
        """Count a suspicious submission against ``ip``; never rejects."""
        if not self.is_suspicious(url):
            return False
        SUSPICIOUS_URLS_TOTAL.inc()
        try:
            count = await self._cache.increment_with_expire(abuse_key(ip), self._settings.ABUSE_WINDOW_SECONDS)
        except CacheUnavailableError as exc:
            GUARD_BACKEND_ERRORS_TOTAL.inc()
            self._logger.warning(f"Could not record suspicious URL from {ip}: {exc}")
            return True
        self._logger.warning(f"Suspicious URL from {ip} ({count} in window): {url}")
        return True

    async def blocked_until(self, ip: str) -> datetime.datetime | None:
        entry = await self._cache.get(blocked_key(ip))
        if not entry:
            return None
        unblock_at = entry.get("unblockAt") if isinstance(entry, dict) else None
        if unblock_at is None:
            return self._clock() + datetime.timedelta(seconds=self._settings.BLOCK_DURATION_SECONDS)
        return datetime.datetime.fromisoformat(unblock_at)

    # ------------------------------------------------------------------

    async def _check_blocked(self, ip: str) -> None:
        unblock_at = await self.blocked_until(ip)
        if unblock_at is not None:
            RATE_LIMIT_REJECTIONS_TOTAL.labels(reason="blocked").inc()
            raise RateLimitedError(
                "Your IP has been temporarily blocked due to abuse detection.",
                unblock_at=unblock_at,
                retry_after=int((unblock_at - self._clock()).total_seconds()),
            )

    async def _check_abuse_threshold(self, ip: str) -> None:
        count = await self._cache.get(abuse_key(ip))
        if not count or int(count) <= self._settings.ABUSE_THRESHOLD:
            return
        unblock_at = self._clock() + datetime.timedelta(seconds=self._settings.BLOCK_DURATION_SECONDS)
        await self._cache.set_with_ttl(
            blocked_key(ip),
            {"unblockAt": unblock_at.isoformat()},
            self._settings.BLOCK_DURATION_SECONDS,
        )
        RATE_LIMIT_REJECTIONS_TOTAL.labels(reason="blocked").inc()
        self._logger.warning(f"Blocking {ip} until {unblock_at.isoformat()} after {count} suspicious URLs")
        raise RateLimitedError(
            "Your IP has been blocked due to suspicious activity.",
            unblock_at=unblock_at,
            retry_after=self._settings.BLOCK_DURATION_SECONDS,
        )

    async def _consume(self, scope: RateScope, ip: str) -> None:
        limit, window = self._tiers[scope]
        key = rate_key(scope, ip)
        count = await self._cache.increment_with_expire(key, window)
        if count <= limit:
            return
        remaining = await self._cache.ttl(key)
        if remaining is None:
            remaining = window
        retry_at = self._clock() + datetime.timedelta(seconds=remaining)
        RATE_LIMIT_REJECTIONS_TOTAL.labels(reason=scope.value).inc()
        self._logger.warning(f"Rate limit exceeded for {ip} on {scope.value} tier ({count}/{limit})")
        if scope is RateScope.CREATE:
            message = "Too many URLs created from this IP, please try again later."
        else:
            message = "Too many requests from this IP, please try again later."
        raise RateLimitedError(message, retry_at=retry_at, retry_after=remaining)
