"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages the async engine and sessions.

- Creates the engine from DatabaseConfig
- Hands out sessions with commit/rollback handling
- Creates tables
- Health checks

============================================================
BACKENDS
============================================================
- PostgreSQL via asyncpg (pooled)
- SQLite via aiosqlite (development and tests; an in-memory
  database shares one connection across sessions)

============================================================
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from backtesting.config import DatabaseConfig
from storage.models.base import Base


logger = logging.getLogger(__name__)


class DatabaseNotConnectedError(RuntimeError):
    """Raised when a session is requested before connect()."""


class Database:
    """
    Async engine and session factory owner.

    Usage:
        database = Database(DatabaseConfig.from_env())
        await database.connect()
        async with database.session() as session:
            ...
        await database.disconnect()
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config or DatabaseConfig()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    def get_engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseNotConnectedError("Database is not connected")
        return self._engine

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def connect(self) -> None:
        if self._engine is not None:
            return

        url = self._config.url
        logger.info(f"Creating database engine for: {url.split('@')[-1]}")

        if self._config.is_sqlite:
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in url:
                kwargs["poolclass"] = StaticPool
            self._engine = create_async_engine(url, echo=self._config.echo, **kwargs)

            @event.listens_for(self._engine.sync_engine, "connect")
            def on_connect(dbapi_conn, connection_record):
                # Ledger rows cascade with their task
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        else:
            self._engine = create_async_engine(
                url,
                echo=self._config.echo,
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_pre_ping=True,
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

    async def disconnect(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database engine disposed")

    async def create_all(self) -> None:
        """Create all tables defined in ORM models."""
        # Import registers the models with Base.metadata
        from storage.models import backtesting  # noqa: F401

        engine = self.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def drop_all(self) -> None:
        from storage.models import backtesting  # noqa: F401

        engine = self.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    # --------------------------------------------------------
    # Sessions
    # --------------------------------------------------------

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Session with one transaction.

        Commits when the block exits normally, rolls back and
        re-raises on any exception.
        """
        if self._session_factory is None:
            raise DatabaseNotConnectedError("Database is not connected")

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug(f"Rolling back database session: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()

    async def health_check(self) -> bool:
        """Return True when a trivial query succeeds."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
