"""
Quote contact repository for database operations.
"""

from typing import List, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.quote import QuoteContact


class QuoteContactRepository(BaseRepository[QuoteContact]):
    """Repository for quote contact operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(QuoteContact, session)

    async def list_by_quote(self, quote_id: UUID) -> List[QuoteContact]:
        """Contacts of a quote, oldest first."""
        result = await self.session.execute(
            select(QuoteContact)
            .where(QuoteContact.quote_id == quote_id)
            .order_by(QuoteContact.created_at, QuoteContact.id)
        )
        return list(result.scalars().all())

    async def get_quote_id(self, id: UUID) -> Optional[UUID]:
        result = await self.session.execute(
            select(QuoteContact.quote_id).where(QuoteContact.id == id)
        )
        return result.scalar_one_or_none()
