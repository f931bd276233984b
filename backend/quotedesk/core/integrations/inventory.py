"""
Inventory query collaborator: read-only stock levels per product and location.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from uuid import UUID
import logging

import aiohttp

from quotedesk.core.integrations.http.http_client import HttpClient
from quotedesk.schemas.fulfillment import StockLevel

logger = logging.getLogger(__name__)


class InventoryQuery(ABC):
    """Stock availability lookups."""

    @abstractmethod
    async def get_stock_level(self, product_id: UUID, location_id: UUID) -> StockLevel:
        """Return on-hand and reserved quantities; zero/zero when no record exists."""


class HttpInventoryClient(InventoryQuery):
    """Inventory lookups against the stock management HTTP API."""

    def __init__(self, http_client: HttpClient):
        self.http_client = http_client

    async def get_stock_level(self, product_id: UUID, location_id: UUID) -> StockLevel:
        try:
            payload = await self.http_client.get(
                "/stock-levels",
                params={"product_id": str(product_id), "location_id": str(location_id)},
            )
        except aiohttp.ClientResponseError as e:
            if e.status == 404:
                return StockLevel(product_id=product_id, location_id=location_id)
            raise

        if not payload:
            return StockLevel(product_id=product_id, location_id=location_id)

        return StockLevel(
            product_id=product_id,
            location_id=location_id,
            quantity_on_hand=Decimal(str(payload.get("quantity_on_hand") or 0)),
            quantity_reserved=Decimal(str(payload.get("quantity_reserved") or 0)),
        )
