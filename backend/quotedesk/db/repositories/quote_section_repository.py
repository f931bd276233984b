"""
Quote section repository for database operations.
"""

from typing import Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.quote import QuoteSection


class QuoteSectionRepository(BaseRepository[QuoteSection]):
    """Repository for quote section operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(QuoteSection, session)

    async def get(self, id: UUID) -> Optional[QuoteSection]:
        """Get section with line items loaded."""
        result = await self.session.execute(
            select(QuoteSection)
            .options(selectinload(QuoteSection.line_items))
            .where(QuoteSection.id == id)
        )
        return result.scalar_one_or_none()

    async def get_with_line_items(self, id: UUID) -> Optional[QuoteSection]:
        """Get section with its persisted line items, refreshing loaded instances."""
        await self.session.flush()
        result = await self.session.execute(
            select(QuoteSection)
            .options(selectinload(QuoteSection.line_items))
            .where(QuoteSection.id == id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_quote_id(self, id: UUID) -> Optional[UUID]:
        """Owning quote of a section, without loading the section."""
        result = await self.session.execute(
            select(QuoteSection.quote_id).where(QuoteSection.id == id)
        )
        return result.scalar_one_or_none()

    async def get_max_sort_order(self, quote_id: UUID) -> int:
        """Get the maximum sort_order within a quote."""
        result = await self.session.execute(
            select(func.max(QuoteSection.sort_order))
            .where(QuoteSection.quote_id == quote_id)
        )
        max_order = result.scalar_one_or_none()
        return max_order if max_order is not None else -1
