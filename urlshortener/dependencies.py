"""Dependency injection with a singleton service manager.

Shared resources (settings, logger, Redis-backed cache, analytics recorder)
are created once at startup; only the database session is per request.
"""

import datetime
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from urlshortener.analytics import AnalyticsRecorder, Visitor
from urlshortener.config import Settings, get_settings
from urlshortener.database import async_session, get_db
from urlshortener.enums import RateScope
from urlshortener.guard import RateAbuseGuard
from urlshortener.redis import Cache, get_redis
from urlshortener.service import ResolutionService, utcnow


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared across requests."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.clock: Callable[[], datetime.datetime] = utcnow
            self.cache = Cache(await get_redis(), self.settings)
            self.recorder = AnalyticsRecorder(async_session, self.settings, self.logger)
            self.recorder.start()
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("urlshortener")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def cleanup(self) -> None:
        """Flush pending analytics and release shared resources at shutdown."""
        if hasattr(self, "recorder"):
            await self.recorder.stop()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request view of the shared resources plus client details.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        client_ip: Client IP address, proxy headers honoured
        user_agent: Client user agent string
        referer: Referer header, recorded with access events
        start_time: Request start timestamp
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_ip: str = "unknown"
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def cache(self) -> Cache:
        return self.service_manager.cache

    @property
    def recorder(self) -> AnalyticsRecorder:
        return self.service_manager.recorder

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def clock(self) -> Callable[[], datetime.datetime]:
        return self.service_manager.clock

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
            },
        )

    @property
    def visitor(self) -> Visitor:
        return Visitor(ip=self.client_ip, user_agent=self.user_agent, referer=self.referer)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def get_client_ip(request: Request) -> str:
    """Client IP with proxy support: X-Forwarded-For, X-Real-IP, then peer."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        client_ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer"),
    )


def get_resolution_service(ctx: RequestContext = Depends(get_request_context)) -> ResolutionService:
    return ResolutionService.from_context(ctx)


def get_guard(ctx: RequestContext = Depends(get_request_context)) -> RateAbuseGuard:
    return RateAbuseGuard(ctx.cache, ctx.settings, ctx.logger, ctx.clock)


async def enforce_global_limit(
    ctx: RequestContext = Depends(get_request_context),
    guard: RateAbuseGuard = Depends(get_guard),
) -> None:
    await guard.check(ctx.client_ip, RateScope.GLOBAL)
