"""Database engine and session management.

PostgreSQL runs through psycopg3 (``postgresql+psycopg://``); local runs
and tests use SQLite through aiosqlite. The engine is created on first use
from ``DatabaseSettings`` and disposed by ``close_database``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chat_service.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from chat_service.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine_from_settings(settings: DatabaseSettings) -> AsyncEngine:
    return create_async_engine(settings.url, **settings.engine_kwargs())


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it from settings on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine_from_settings(get_db_settings())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    """Session context manager for code outside request handling (CLI, lifespan).

    Rolls back on error; callers commit explicitly.
    """
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_database(*, create_tables: bool = False) -> None:
    """Check connectivity and optionally create missing tables.

    Args:
        create_tables: Run ``Base.metadata.create_all`` (development only;
            production schemas come from Alembic migrations).
    """
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if create_tables:
            from chat_service.core.database import Base
            from chat_service.features.chat import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables ensured from metadata")

    logger.info(
        "Database connection verified",
        extra={"dialect": engine.dialect.name},
    )


async def close_database() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None
