"""SQLAlchemy ORM models for the URL shortener.

This module defines the durable schema: URL records and their access events,
plus the store-side trigger that keeps ``click_count`` in step with the
analytics table.

Data Model Layout
=================
::
    urls table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(10) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL, INDEXED)
    ├─ created_at (TIMESTAMPTZ)
    ├─ expires_at (TIMESTAMPTZ NULL)
    ├─ click_count (BIGINT DEFAULT 0)
    ├─ last_accessed_at (TIMESTAMPTZ NULL)
    ├─ creator_ip (VARCHAR(45))
    └─ is_active (BOOLEAN DEFAULT TRUE)

    url_analytics table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ url_id (BIGINT → urls.id)
    ├─ accessed_at (TIMESTAMPTZ)
    ├─ ip_address (VARCHAR(45))
    ├─ user_agent (TEXT)
    └─ referer (TEXT)

    AFTER INSERT ON url_analytics
    └─ urls.click_count += 1, urls.last_accessed_at = NEW.accessed_at

Key Behaviours
===============
- ``short_code`` is unique across every row, deleted ones included.
- Records are never physically deleted; ``is_active`` flips once.
- A URL record does not track its events; the trigger bumps the counter.

Classes:
    URL:  A short code → original URL mapping.
    URLAccess:  One resolved redirect.
"""

import datetime

from sqlalchemy import DDL, BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from urlshortener.database import Base

__all__ = ["URL", "URLAccess"]

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
_BigIntId = BigInteger().with_variant(Integer(), "sqlite")


class URL(Base):
    __tablename__ = "urls"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(10), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, index=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    last_accessed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    creator_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<URL(id={self.id}, short_code='{self.short_code}', active={self.is_active})>"


class URLAccess(Base):
    __tablename__ = "url_analytics"

    id: Mapped[int] = mapped_column(_BigIntId, primary_key=True, autoincrement=True)
    url_id: Mapped[int] = mapped_column(ForeignKey("urls.id"), index=True, nullable=False)
    accessed_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<URLAccess(id={self.id}, url_id={self.url_id})>"


_PG_CLICK_FUNCTION = DDL(
    """
    CREATE OR REPLACE FUNCTION increment_click_count()
    RETURNS TRIGGER AS $$
    BEGIN
        UPDATE urls
        SET click_count = click_count + 1,
            last_accessed_at = NEW.accessed_at
        WHERE id = NEW.url_id;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """
)

_PG_CLICK_TRIGGER = DDL(
    """
    CREATE TRIGGER update_click_count
    AFTER INSERT ON url_analytics
    FOR EACH ROW
    EXECUTE FUNCTION increment_click_count()
    """
)

_SQLITE_CLICK_TRIGGER = DDL(
    """
    CREATE TRIGGER update_click_count
    AFTER INSERT ON url_analytics
    FOR EACH ROW
    BEGIN
        UPDATE urls
        SET click_count = click_count + 1,
            last_accessed_at = NEW.accessed_at
        WHERE id = NEW.url_id;
    END
    """
)

event.listen(URLAccess.__table__, "after_create", _PG_CLICK_FUNCTION.execute_if(dialect="postgresql"))
event.listen(URLAccess.__table__, "after_create", _PG_CLICK_TRIGGER.execute_if(dialect="postgresql"))
event.listen(URLAccess.__table__, "after_create", _SQLITE_CLICK_TRIGGER.execute_if(dialect="sqlite"))
