"""
Async SQLAlchemy engine and sessionmaker for the quote store.

One engine per process. Services never share a session across units of work;
callers open a session from get_sessionmaker() and the service commits.
"""

from typing import Any, Dict, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)

from quotedesk.core.config import settings
from quotedesk.core.logging import get_logger

logger = get_logger(__name__)

# Global engine and sessionmaker
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_options(database_url: str) -> Dict[str, Any]:
    # SQLite (local runs) has no connection pool to size
    if make_url(database_url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create the process engine for DATABASE_URL, or for the given URL."""
    global engine

    url = database_url or settings.DATABASE_URL
    options = _engine_options(url)
    engine = create_async_engine(url, echo=False, **options)

    logger.info(
        "Database engine created",
        extra={"backend": make_url(url).get_backend_name(), **options},
    )
    return engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the process sessionmaker, creating engine and sessionmaker on first use."""
    global async_session_maker

    if async_session_maker is None:
        async_session_maker = async_sessionmaker(
            engine or create_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("Sessionmaker created")
    return async_session_maker


async def init_db() -> None:
    """Initialize database connection."""
    get_sessionmaker()
    logger.info("Database initialized")


async def close_db() -> None:
    """Dispose the engine; the next get_sessionmaker() starts afresh."""
    global engine, async_session_maker

    if engine is not None:
        await engine.dispose()
        logger.info("Database connections closed")
    engine = None
    async_session_maker = None
