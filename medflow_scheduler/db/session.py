"""
Async Database Session Management

Handles SQLAlchemy async engine and session lifecycle for the booking
collection.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from medflow_scheduler.config import settings

logger = logging.getLogger(__name__)


# Global engine instance
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """
    Create an async engine for a database URL.

    PostgreSQL engines get the configured connection pool. SQLite engines
    skip the pool options; an in-memory SQLite database is shared through a
    single static connection so every session sees the same data.

    Args:
        database_url: Async database URL (defaults to settings)
        echo: Log SQL statements (defaults to settings)

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    url = database_url or settings.database_url_str
    options: Dict[str, Any] = {
        "echo": settings.db_echo if echo is None else echo,
        "future": True,
    }

    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            pool_pre_ping=True,  # Enable connection health checks
        )

    return create_async_engine(url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,  # Prevent lazy loading after commit
    )


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Configures connection pooling with settings from config.

    Returns:
        AsyncEngine: SQLAlchemy async engine instance
    """
    global _engine

    if _engine is None:
        _engine = build_engine()
        logger.info("Database engine created successfully")

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Get or create the async session factory.

    Returns:
        async_sessionmaker: Session factory for creating new sessions
    """
    global _async_session_factory

    if _async_session_factory is None:
        _async_session_factory = build_session_factory(get_engine())
        logger.info("Session factory created successfully")

    return _async_session_factory


@asynccontextmanager
async def get_db_context(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.

    Commits when the block exits normally, rolls back and re-raises otherwise.

    Args:
        session_factory: Factory to open the session from (defaults to the
            global factory)

    Yields:
        AsyncSession: Database session

    Example:
        async with get_db_context() as db:
            repo = BookingRepository(db)
            bookings = await repo.fetch_range("dr-1", start, end)
    """
    factory = session_factory or get_session_factory()
    session = factory()

    try:
        yield session
        await session.commit()
    except Exception as e:
        await session.rollback()
        logger.error(f"Error in database context: {e}")
        raise
    finally:
        await session.close()


async def check_database_connection(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> bool:
    """
    Check if database connection is healthy.

    Returns:
        bool: True if connection is healthy, False otherwise
    """
    try:
        async with get_db_context(session_factory) as db:
            result = await db.execute(text("SELECT 1"))
            result.scalar()
            logger.info("Database connection check successful")
            return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


async def close_database_connection() -> None:
    """
    Close database engine and cleanup resources.

    Should be called during application shutdown.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connections closed successfully")
