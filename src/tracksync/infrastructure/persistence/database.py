"""Async engine and sessions for the mapping store."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tracksync.config import DatabaseSettings
from tracksync.infrastructure.persistence.models import Base

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits on a locked database before giving up
SQLITE_LOCK_TIMEOUT = 30


def _engine_options(settings: DatabaseSettings) -> dict[str, Any]:
    """Engine kwargs for the configured backend."""
    url = make_url(settings.url)
    options: dict[str, Any] = {"echo": settings.echo, "pool_pre_ping": settings.pool_pre_ping}

    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_LOCK_TIMEOUT}
        # An in-memory database exists only on the connection that created it
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return options

    options.update(
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.pool_recycle,
    )
    return options


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    # Hey future me - group rows reference track rows, and SQLite ignores FOREIGN KEY
    # clauses unless every connection opts in.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()


class Database:
    """Owns the async engine and hands out sessions."""

    def __init__(self, settings: DatabaseSettings) -> None:
        self.settings = settings
        self._engine = create_async_engine(settings.url, **_engine_options(settings))
        if self._engine.dialect.name == "sqlite":
            _install_sqlite_pragmas(self._engine)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        logger.debug("Database engine created for %s", make_url(settings.url).render_as_string())

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Factory for the mapping store, which opens its own transactions."""
        return self._session_factory

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Session committed on success and rolled back when the block raises."""
        async with self._session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            await session.commit()

    async def create_tables(self) -> None:
        """Create missing tables (first start without Alembic, tests)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        """Dispose the engine and its pooled connections."""
        await self._engine.dispose()
