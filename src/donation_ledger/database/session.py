"""Engine and session handling for the ledger store."""

import os
import logging
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from . import models

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./ledger.db"

# Process-wide engine used by the HTTP app
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before init_db() ran."""


def get_database_url() -> str:
    """Read DATABASE_URL, rewriting plain Postgres URLs to the asyncpg driver."""
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    for prefix in ("postgresql://", "postgres://"):
        if db_url.startswith(prefix):
            return "postgresql+asyncpg://" + db_url[len(prefix):]
    return db_url


def create_async_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
) -> AsyncEngine:
    """
    Build an engine for the ledger database.

    SQLite (local runs and tests) shares a single connection through
    StaticPool; anything else gets a regular sized pool.
    """
    url = database_url or get_database_url()

    if "sqlite" in url:
        return sa_create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return sa_create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
    )


def _build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def _create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    logger.info("Ledger tables ensured")


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """
    Return a session factory.

    With an engine, a new factory bound to it; without one, the process-wide
    factory set up by init_db().

    Raises:
        DatabaseNotInitializedError: If no engine is given and init_db() has not run.
    """
    if engine is not None:
        return _build_session_factory(engine)

    if _session_factory is None:
        raise DatabaseNotInitializedError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db(
    database_url: Optional[str] = None,
    echo: bool = False,
    create_tables: bool = True,
) -> None:
    """Set up the process-wide engine, optionally creating missing tables."""
    global _engine, _session_factory

    logger.info("Connecting to ledger database...")
    _engine = create_async_engine(database_url, echo=echo)
    _session_factory = _build_session_factory(_engine)

    if create_tables:
        await _create_tables(_engine)


async def close_db() -> None:
    """Dispose of the process-wide engine."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Ledger database connection closed")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for handlers that open one session per unit of work."""
    return get_async_session_factory()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Committed when the handler returns, rolled back if it raises.
    """
    async with get_async_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """
    Owns an engine for one command-line run, independent of the app's global.

        manager = DatabaseManager()
        await manager.initialize()
        async with manager.session() as session:
            ...
        await manager.shutdown()
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self, create_tables: bool = True) -> None:
        self._engine = create_async_engine(self.database_url, echo=self.echo)
        self._session_factory = _build_session_factory(self._engine)
        if create_tables:
            await _create_tables(self._engine)

    async def shutdown(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """The session factory, for components that open their own sessions."""
        if self._session_factory is None:
            raise DatabaseNotInitializedError("DatabaseManager not initialized. Call initialize() first.")
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """A session committed on exit and rolled back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
