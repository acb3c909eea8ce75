"""
Async SQLAlchemy engine.
Uses asyncpg for PostgreSQL and aiosqlite for local/test databases.
Engine is lazily created on first use to avoid import-time connection failures.
Session factories are built from it in the app lifespan.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from toolhub.config.settings import settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    """Lazily create and return the async engine singleton."""
    global _engine
    if _engine is None:
        kwargs = {"echo": False, "pool_pre_ping": True}
        if settings.database_url.startswith("postgresql"):
            kwargs.update(pool_size=20, max_overflow=10)
        _engine = create_async_engine(settings.database_url, **kwargs)
        logger.info(f"Created async engine for {settings.database_url.split('@')[-1]}")
    return _engine


async def dispose_engine() -> None:
    """Dispose the engine on shutdown (call from lifespan)."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("Async engine disposed")
