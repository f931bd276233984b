"""
Health service.
Reports uptime and database reachability.
"""

import time
from typing import Callable
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.services.base_service import BaseService
from quotedesk.db.repositories.health_repository import HealthRepository
from quotedesk.core.config import settings
from quotedesk.schemas.health import HealthResponse


class HealthService(BaseService):
    """Service for health check operations."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory
        self.start_time = time.time()

    async def get_health(self) -> HealthResponse:
        """
        Get service health status.

        Returns:
            HealthResponse with status, uptime, and checks
        """
        uptime_seconds = int(time.time() - self.start_time)

        async with self.session_factory() as session:
            db_ok = await HealthRepository(session).check_database()
        checks = {"database": "ok" if db_ok else "error"}

        status = "ok" if all(check == "ok" for check in checks.values()) else "degraded"
        return HealthResponse(
            status=status,
            version=settings.VERSION,
            uptime=f"PT{uptime_seconds}S",  # ISO 8601 duration
            checks=checks,
        )
