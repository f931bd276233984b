"""
Quote line item repository for database operations.
"""

from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.quote import QuoteLineItem, QuoteSection


class QuoteLineItemRepository(BaseRepository[QuoteLineItem]):
    """Repository for quote line item operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(QuoteLineItem, session)

    async def get(self, id: UUID) -> Optional[QuoteLineItem]:
        """Get line item with its section loaded."""
        result = await self.session.execute(
            select(QuoteLineItem)
            .options(selectinload(QuoteLineItem.section))
            .where(QuoteLineItem.id == id)
        )
        return result.scalar_one_or_none()

    async def get_max_sort_order(self, section_id: UUID) -> int:
        """Get the maximum sort_order within a section."""
        result = await self.session.execute(
            select(func.max(QuoteLineItem.sort_order))
            .where(QuoteLineItem.section_id == section_id)
        )
        max_order = result.scalar_one_or_none()
        return max_order if max_order is not None else -1

    async def get_quote_id(self, id: UUID) -> Optional[UUID]:
        """Owning quote of a line item, resolved through its section."""
        result = await self.session.execute(
            select(QuoteSection.quote_id)
            .join(QuoteLineItem, QuoteLineItem.section_id == QuoteSection.id)
            .where(QuoteLineItem.id == id)
        )
        return result.scalar_one_or_none()
