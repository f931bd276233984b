"""
Expiry service moving quotes past their validity date to EXPIRED.
"""

import logging
from datetime import date
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.services.base_service import BaseService
from quotedesk.services.workflow_service import WorkflowService, EXPIRABLE_STATUSES
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.db.session import get_sessionmaker
from quotedesk.utils.audit import utcnow
from quotedesk.utils.locking import QuoteLockRegistry, quote_locks

logger = logging.getLogger(__name__)


class ExpiryService(BaseService):
    """Service for the periodic expiry sweep."""

    def __init__(self, session: AsyncSession, locks: QuoteLockRegistry = quote_locks):
        self.session = session
        self.locks = locks
        self.quote_repo = QuoteRepository(session)
        self.workflow = WorkflowService(session, locks=locks)

    async def expire_overdue_quotes(self, today: Optional[date] = None) -> int:
        """
        Expire every open quote whose valid_until lies before today.

        All selected quotes are locked and committed together. Returns the
        number of quotes expired.
        """
        today = today or utcnow().date()
        candidate_ids = await self.quote_repo.list_expirable_ids(today, EXPIRABLE_STATUSES)
        if not candidate_ids:
            logger.info("Expiry sweep found no overdue quotes", extra={"today": today.isoformat()})
            return 0

        async with self.locks.hold_many(candidate_ids):
            # Re-read under the locks; edits may have landed since the selection
            quotes = await self.quote_repo.list_by_ids(candidate_ids)
            expired = 0
            for quote in quotes:
                if quote.status not in EXPIRABLE_STATUSES:
                    continue
                if quote.valid_until is None or quote.valid_until >= today:
                    continue
                self.workflow.expire(quote)
                expired += 1

            await self.session.commit()

        logger.info(
            f"Expiry sweep expired {expired} quotes",
            extra={"today": today.isoformat(), "expired": expired, "candidates": len(candidate_ids)},
        )
        return expired


async def run_expiry_sweep(today: Optional[date] = None) -> int:
    """Scheduler entry point: run one sweep in its own session and return the count."""
    async with get_sessionmaker()() as session:
        service = ExpiryService(session)
        return await service.expire_overdue_quotes(today)
