"""
Database initialization and bootstrapping.
"""

from sqlalchemy.ext.asyncio import AsyncEngine

from quotedesk.db.base import Base
from quotedesk.core.logging import get_logger

# Register every model with Base.metadata
import quotedesk.models  # noqa: F401

logger = get_logger(__name__)


async def create_tables(engine: AsyncEngine) -> None:
    """
    Create all quote tables that do not exist yet.
    Production schemas are managed by migrations; this serves local runs and tests.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables initialized", extra={"tables": sorted(Base.metadata.tables)})
