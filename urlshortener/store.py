"""Durable store access for URL records and access events.

``URLStore`` is the only module that issues SQL. It wraps one ``AsyncSession``
and translates driver failures into the core's error taxonomy:

- unique violation on ``short_code``  → ``ConflictError``
- any other SQLAlchemy / socket error → ``StoreUnavailableError``
- a call exceeding ``DB_TIMEOUT_SECONDS`` → ``StoreUnavailableError``

Every lookup that decides whether a code is live takes ``now`` explicitly,
so the caller's clock (not the database's) defines logical expiry.
"""

import asyncio
import datetime
import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from urlshortener.config import Settings, get_settings
from urlshortener.exceptions import ConflictError, StoreUnavailableError
from urlshortener.models import URL, URLAccess

__all__ = ["URLStore"]

logger = logging.getLogger("urlshortener")


def _live(now: datetime.datetime):
    return (URL.is_active.is_(True), or_(URL.expires_at.is_(None), URL.expires_at > now))


class URLStore:
    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        self._session = session
        self._settings = settings or get_settings()

    async def _run(self, operation: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.DB_TIMEOUT_SECONDS)
        except IntegrityError:
            raise
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            await self._safe_rollback()
            raise StoreUnavailableError(f"{operation} failed: {exc!r}") from exc

    async def _safe_rollback(self) -> None:
        try:
            await self._session.rollback()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(f"Rollback after store failure also failed: {exc!r}")

    async def _scalar(self, operation: str, statement):
        result = await self._run(operation, self._session.execute(statement))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # URL records
    # ------------------------------------------------------------------

    async def insert_if_unique_code(self, record: URL) -> URL:
        """Insert ``record``; raise ``ConflictError`` if its code is taken."""
        self._session.add(record)
        try:
            await self._run("INSERT urls", self._session.commit())
        except IntegrityError as exc:
            await self._safe_rollback()
            raise ConflictError(f"Short code '{record.short_code}' already exists") from exc
        await self._run("REFRESH urls", self._session.refresh(record))
        return record

    async def code_exists(self, short_code: str) -> bool:
        """True if any record ever used ``short_code``, deleted ones included."""
        found = await self._scalar("SELECT code", select(URL.id).where(URL.short_code == short_code))
        return found is not None

    async def find_by_code(self, short_code: str) -> URL | None:
        statement = select(URL).where(URL.short_code == short_code).execution_options(populate_existing=True)
        return await self._scalar("SELECT by code", statement)

    async def find_active_by_code(self, short_code: str, now: datetime.datetime) -> URL | None:
        statement = (
            select(URL)
            .where(URL.short_code == short_code, *_live(now))
            .execution_options(populate_existing=True)
        )
        return await self._scalar("SELECT active by code", statement)

    async def find_active_by_url(self, original_url: str, now: datetime.datetime) -> URL | None:
        statement = (
            select(URL)
            .where(URL.original_url == original_url, *_live(now))
            .order_by(URL.created_at.desc(), URL.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return await self._scalar("SELECT active by url", statement)

    async def list_active(self, now: datetime.datetime, limit: int = 50, offset: int = 0) -> list[URL]:
        statement = (
            select(URL)
            .where(*_live(now))
            .order_by(URL.created_at.desc(), URL.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._run("SELECT active page", self._session.execute(statement))
        return list(result.scalars().all())

    async def soft_delete(self, short_code: str) -> URL | None:
        """Flip ``is_active`` off; returns the deleted record, or None."""
        statement = (
            update(URL)
            .where(URL.short_code == short_code, URL.is_active.is_(True))
            .values(is_active=False)
            .returning(URL)
        )
        result = await self._run("UPDATE soft delete", self._session.execute(statement))
        record = result.scalar_one_or_none()
        await self._run("COMMIT soft delete", self._session.commit())
        return record

    async def deactivate_expired(self, now: datetime.datetime) -> int:
        statement = (
            update(URL)
            .where(URL.is_active.is_(True), URL.expires_at.is_not(None), URL.expires_at <= now)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        result = await self._run("UPDATE expired", self._session.execute(statement))
        await self._run("COMMIT expired", self._session.commit())
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Access events
    # ------------------------------------------------------------------

    async def insert_access_event(self, access: URLAccess) -> None:
        """Append one access row; the store trigger bumps ``click_count``."""
        self._session.add(access)
        try:
            await self._run("INSERT url_analytics", self._session.commit())
        except IntegrityError as exc:
            await self._safe_rollback()
            raise StoreUnavailableError(f"access event rejected: {exc!r}") from exc

    async def aggregate_analytics(self, short_code: str) -> tuple[URL, int, int] | None:
        record = await self.find_by_code(short_code)
        if record is None:
            return None
        statement = select(
            func.count(URLAccess.id),
            func.count(func.distinct(URLAccess.ip_address)),
        ).where(URLAccess.url_id == record.id)
        result = await self._run("SELECT analytics", self._session.execute(statement))
        total_clicks, unique_visitors = result.one()
        return record, int(total_clicks), int(unique_visitors)
