"""
Database Configuration
======================

SQLAlchemy async database setup with connection pooling and session management.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from reasonbank.core.config import settings

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async engine.

    Created lazily so the in-memory backend and unit tests never need a driver.
    """
    global _engine
    if _engine is None:
        # Pooled asyncpg connections are a common source of
        # "Event loop is closed" errors during test teardown.
        engine_kwargs = dict(
            echo=settings.DEBUG,
            pool_pre_ping=True,
        )
        if settings.APP_ENV == "test":
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_size"] = 10
            engine_kwargs["max_overflow"] = 20

        _engine = create_async_engine(settings.DATABASE_URL, **engine_kwargs)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory bound to the shared engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
    return _session_factory


async def create_db_and_tables() -> None:
    """
    Create database tables if they don't exist.

    Note: In production, use Alembic migrations instead (they also create
    the server-side search function). This is for development convenience.
    """
    from sqlalchemy import text

    from reasonbank.models import Base
    from reasonbank.models.reasoning_pattern import SEARCH_FUNCTION_SQL

    async with get_engine().begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text(SEARCH_FUNCTION_SQL))


async def dispose_engine() -> None:
    """Close the pool and release all connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
