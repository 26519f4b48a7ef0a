"""Best-effort access recording, decoupled from the redirect path.

Dispatch Flow
=============
::
    resolve() ──► dispatch(event) ──► bounded asyncio.Queue
                       │                     │
                  full/stopped?              ▼
                       │              worker task (own session)
                       ▼                     │
                  drop + log                 ▼
                                     INSERT url_analytics
                                     (trigger bumps click_count)
                                             │
                                        failure? ──► log + drop

Key Behaviours
===============
- ``dispatch`` never awaits I/O; the caller returns its response first.
- At-most-once: a failed insert is logged and never retried.
- Events still queued when the process stops past the shutdown timeout are
  lost.
"""

import asyncio
import datetime
import logging
from dataclasses import dataclass

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from urlshortener.config import Settings, get_settings
from urlshortener.models import URLAccess
from urlshortener.store import URLStore

__all__ = ["AccessEvent", "AnalyticsRecorder", "Visitor"]

ANALYTICS_EVENTS_TOTAL = Counter(
    "url_shortener_analytics_events_total",
    "Access events by outcome",
    ["outcome"],
)


@dataclass(frozen=True)
class Visitor:
    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None


@dataclass(frozen=True)
class AccessEvent:
    url_id: int
    accessed_at: datetime.datetime
    ip_address: str | None = None
    user_agent: str | None = None
    referer: str | None = None

    @classmethod
    def for_visit(cls, url_id: int, visitor: Visitor, accessed_at: datetime.datetime) -> "AccessEvent":
        return cls(
            url_id=url_id,
            accessed_at=accessed_at,
            ip_address=visitor.ip,
            user_agent=visitor.user_agent,
            referer=visitor.referer,
        )


class AnalyticsRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._logger = logger or logging.getLogger("urlshortener")
        self._queue: asyncio.Queue[AccessEvent] = asyncio.Queue(maxsize=self._settings.ANALYTICS_QUEUE_SIZE)
        self._worker: asyncio.Task | None = None
        self._closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._closed = False
        self._worker = asyncio.create_task(self._run(), name="analytics-recorder")

    def dispatch(self, event: AccessEvent) -> None:
        """Queue ``event`` without waiting; drops it when full or stopped."""
        if self._closed:
            ANALYTICS_EVENTS_TOTAL.labels(outcome="dropped").inc()
            self._logger.warning(f"Analytics recorder stopped, dropping access for url_id={event.url_id}")
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            ANALYTICS_EVENTS_TOTAL.labels(outcome="dropped").inc()
            self._logger.warning(f"Analytics queue full, dropping access for url_id={event.url_id}")

    async def record(self, event: AccessEvent) -> bool:
        try:
            async with self._session_factory() as session:
                store = URLStore(session, self._settings)
                await store.insert_access_event(
                    URLAccess(
                        url_id=event.url_id,
                        accessed_at=event.accessed_at,
                        ip_address=event.ip_address,
                        user_agent=event.user_agent,
                        referer=event.referer,
                    )
                )
        except Exception as exc:
            ANALYTICS_EVENTS_TOTAL.labels(outcome="failed").inc()
            self._logger.error(f"Failed to record access for url_id={event.url_id}: {exc}")
            return False
        ANALYTICS_EVENTS_TOTAL.labels(outcome="recorded").inc()
        return True

    async def drain(self) -> None:
        """Wait until every queued event has been attempted."""
        if self.running:
            await self._queue.join()
            return
        while not self._queue.empty():
            event = self._queue.get_nowait()
            try:
                await self.record(event)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        self._closed = True
        if not self.running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._settings.ANALYTICS_SHUTDOWN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            self._logger.warning(f"Analytics shutdown timed out with {self.pending} events unrecorded")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.record(event)
            finally:
                self._queue.task_done()
