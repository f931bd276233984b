"""
Quote repository for database operations.
"""

from typing import Optional, List, Iterable
from uuid import UUID
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from sqlalchemy.orm import selectinload

from quotedesk.db.repositories.base_repository import BaseRepository
from quotedesk.models.quote import Quote, QuoteSection, QuoteStatus


class QuoteRepository(BaseRepository[Quote]):
    """Repository for quote operations. Soft-deleted quotes are never returned."""

    def __init__(self, session: AsyncSession):
        super().__init__(Quote, session)

    def _base_query(self):
        return select(Quote).where(Quote.is_deleted == False)  # noqa: E712

    def _aggregate_query(self):
        """Quote with sections, line items and contacts eagerly loaded."""
        return self._base_query().options(
            selectinload(Quote.sections).selectinload(QuoteSection.line_items),
            selectinload(Quote.contacts),
        )

    async def get(self, id: UUID) -> Optional[Quote]:
        """Get quote by ID without children."""
        result = await self.session.execute(self._base_query().where(Quote.id == id))
        return result.scalar_one_or_none()

    async def get_aggregate(self, id: UUID) -> Optional[Quote]:
        """
        Get quote with every child loaded from the database.

        Pending changes are flushed first and already loaded instances are
        overwritten, so collections reflect the persisted state.
        """
        await self.session.flush()
        query = self._aggregate_query().where(Quote.id == id).execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list(
        self,
        skip: int = 0,
        limit: int = 100,
        status: Optional[QuoteStatus] = None,
        search: Optional[str] = None,
    ) -> List[Quote]:
        """List quotes, newest first."""
        query = self._apply_filters(self._base_query(), status, search)
        query = query.order_by(Quote.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, status: Optional[QuoteStatus] = None, search: Optional[str] = None) -> int:
        """Count quotes matching filters."""
        query = select(func.count(Quote.id)).where(Quote.is_deleted == False)  # noqa: E712
        query = self._apply_filters(query, status, search)
        result = await self.session.execute(query)
        return result.scalar_one()

    def _apply_filters(self, query, status: Optional[QuoteStatus], search: Optional[str]):
        if status is not None:
            query = query.where(Quote.status == status)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(Quote.quote_number).like(pattern),
                    func.lower(Quote.project_name).like(pattern),
                    func.lower(Quote.company_name).like(pattern),
                )
            )
        return query

    async def get_last_number_with_prefix(self, prefix: str) -> Optional[str]:
        """
        Highest quote number starting with prefix, deleted quotes included.

        Longer sequence suffixes sort first so "-10000" ranks above "-9999".
        """
        result = await self.session.execute(
            select(Quote.quote_number)
            .where(Quote.quote_number.like(f"{prefix}%"))
            .order_by(func.length(Quote.quote_number).desc(), Quote.quote_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_max_version_in_chain(self, root_id: UUID) -> int:
        """Highest version among the root and every quote pointing at it."""
        result = await self.session.execute(
            select(func.max(Quote.version))
            .where(or_(Quote.id == root_id, Quote.parent_id == root_id))
        )
        max_version = result.scalar_one_or_none()
        return max_version if max_version is not None else 0

    async def list_chain(self, root_id: UUID) -> List[Quote]:
        """All live quotes of a revision chain ordered by version."""
        query = self._base_query().where(
            or_(Quote.id == root_id, Quote.parent_id == root_id)
        ).order_by(Quote.version)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_expirable_ids(self, today: date, statuses: Iterable[QuoteStatus]) -> List[UUID]:
        """Ids of live quotes whose validity ended before today."""
        result = await self.session.execute(
            select(Quote.id).where(
                Quote.is_deleted == False,  # noqa: E712
                Quote.valid_until.is_not(None),
                Quote.valid_until < today,
                Quote.status.in_(list(statuses)),
            )
        )
        return [row[0] for row in result.all()]

    async def list_by_ids(self, ids: Iterable[UUID]) -> List[Quote]:
        """Live quotes by id, re-read from the database."""
        await self.session.flush()
        result = await self.session.execute(
            self._base_query()
            .where(Quote.id.in_(list(ids)))
            .order_by(Quote.quote_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
