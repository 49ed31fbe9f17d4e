"""
Database connection management.

One async engine per process. PostgreSQL (asyncpg) gets a sized connection
pool; SQLite (aiosqlite), used by tests and local runs, gets NullPool so
every session opens its own connection to the file.
"""

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from quantjobs.config import get_settings
from quantjobs.db.models import Base

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
    echo: bool = False,
) -> AsyncEngine:
    """
    Build an async engine for a database URL.

    Pool settings only apply to server databases; they are ignored for SQLite.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        return create_async_engine(database_url, poolclass=NullPool, echo=echo)
    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=echo,
    )


def get_engine() -> AsyncEngine:
    """The process-wide engine, created from settings on first use."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
        )
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Build a session factory bound to an engine.

    Objects stay readable after commit: lifecycle operations return the
    updated Job after their session has closed.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables directly from the models (tests and local runs)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> async_sessionmaker[AsyncSession]:
    """
    Initialize the process-wide session factory.
    Should be called on startup, before any component touches the database.
    """
    global _session_factory
    _session_factory = create_session_factory(get_engine())
    logger.info("Database connection initialized")
    return _session_factory


async def close_db() -> None:
    """Dispose of the engine. Should be called on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")
