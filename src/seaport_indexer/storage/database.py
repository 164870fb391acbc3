"""Engines, session factories and the transactional scope for ingestion units.

Every sale, offer or cancellation is applied inside one ``session_scope``
block: the recorder writes, the aggregate updates and the processed-event
ledger row all commit together or not at all.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from seaport_indexer.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# SQLite serializes writers; wait for the file lock instead of failing fast.
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def async_database_url(database_url: str) -> str:
    """Pin a driverless URL to the async driver for its dialect."""
    if database_url.startswith("postgresql://"):
        logger.warning("DATABASE_URL has no async driver; switching to postgresql+asyncpg")
        return "postgresql+asyncpg://" + database_url.removeprefix("postgresql://")
    if database_url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + database_url.removeprefix("sqlite://")
    return database_url


def create_async_db_engine(
    database_url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine with options suited to the URL's dialect.

    PostgreSQL gets a sized connection pool. SQLite ignores pool sizing and
    instead waits on its database lock.
    """
    options: dict[str, Any] = {"echo": echo}
    if _is_sqlite(database_url):
        options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    else:
        options["pool_size"] = pool_size
        options["max_overflow"] = max_overflow
        options["pool_pre_ping"] = True
    return create_async_engine(async_database_url(database_url), **options)


def create_async_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # DTOs are built from models after commit, so attributes must stay loaded.
    return async_sessionmaker(bind=engine, expire_on_commit=False)


def session_scope(factory: async_sessionmaker[AsyncSession]) -> SessionScope:
    """Build a transactional scope: commit on success, roll back on any error.

    Args:
        factory: Async session factory.

    Returns:
        Zero-argument callable returning an async context manager that yields
        a session bound to one transaction.
    """

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        session = factory()
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    return scope


async def init_async_db(engine: AsyncEngine) -> None:
    """Create every table in the metadata; existing tables are left alone."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created %d tables (if missing)", len(Base.metadata.tables))


class DatabaseManager:
    """Lazily built engine plus the scope every unit of work runs in."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = database_url
        self._engine_options: dict[str, Any] = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        }
        self._engine: AsyncEngine | None = None
        self._scope: SessionScope | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_db_engine(self.database_url, **self._engine_options)
        return self._engine

    def get_async_session(self) -> AbstractAsyncContextManager[AsyncSession]:
        """Open a session bound to a single transaction.

        The transaction commits when the block exits and rolls back if it
        raises.
        """
        if self._scope is None:
            self._scope = session_scope(create_async_session_factory(self.engine))
        return self._scope()

    async def init_schema_async(self) -> None:
        await init_async_db(self.engine)

    async def dispose_async(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._scope = None
        logger.info("Database connections closed")
