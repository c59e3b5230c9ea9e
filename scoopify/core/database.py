"""
Async engine and unit-of-work sessions.

Every service call runs inside one session from ``get_async_session``; the
session commits when the block completes and rolls back if it raises, so a
rejected operation never leaves partial writes behind.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DatabaseConfig, settings
from .logging import get_logger

logger = get_logger(__name__)

engine: Optional[AsyncEngine] = None
session_factory: Optional[async_sessionmaker[AsyncSession]] = None


async def init_database(database_url: Optional[str] = None) -> None:
    """
    Create the engine and session factory.

    Args:
        database_url: Overrides settings.database_url (tests and scripts)
    """
    global engine, session_factory

    url = database_url or settings.database_url
    engine = create_async_engine(
        DatabaseConfig.get_database_url(async_driver=True, url=url),
        echo=settings.debug,
        **DatabaseConfig.get_engine_config(url)
    )
    # Objects stay readable after commit; events are built from them post-commit
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    logger.info("Database engine ready", driver=engine.dialect.driver)


async def close_database() -> None:
    global engine, session_factory

    if engine is not None:
        await engine.dispose()
        logger.info("Database engine disposed")

    engine = None
    session_factory = None


def _require_engine() -> AsyncEngine:
    if engine is None or session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return engine


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    One unit of work.

    Usage:
        async with get_async_session() as session:
            ...
    """
    _require_engine()

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


class DatabaseManager:
    """Schema and connectivity helpers for scripts, tests and /health."""

    @staticmethod
    async def create_tables() -> None:
        from scoopify.models.base import Base
        import scoopify.models  # noqa: F401  registers every mapped table

        async with _require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema created", tables=len(Base.metadata.tables))

    @staticmethod
    async def drop_tables() -> None:
        from scoopify.models.base import Base
        import scoopify.models  # noqa: F401

        logger.warning("Dropping schema")
        async with _require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @staticmethod
    async def health_check() -> bool:
        try:
            async with get_async_session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False
        return True
