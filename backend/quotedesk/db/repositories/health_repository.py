"""
Health repository.
Probes the quote tables through the current session.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from quotedesk.models.quote import Quote


class HealthRepository:
    """Repository for health check operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def check_database(self) -> bool:
        """
        Check that the quotes table is reachable.

        Returns:
            True if the query succeeds, False otherwise
        """
        try:
            await self.session.execute(select(func.count(Quote.id)))
            return True
        except SQLAlchemyError:
            return False
