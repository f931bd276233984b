"""
Order creation collaborator: creates fulfillment (stock) orders from quotes.
"""

from abc import ABC, abstractmethod
from typing import List
from uuid import UUID
import asyncio
import logging

import aiohttp

from quotedesk.core.integrations.http.http_client import HttpClient
from quotedesk.schemas.fulfillment import OrderCreateRequest, OrderCreateResult, OrderSummary

logger = logging.getLogger(__name__)


class OrderCreationService(ABC):
    """Creates derived orders as a single atomic external call."""

    @abstractmethod
    async def create_order(self, request: OrderCreateRequest) -> OrderCreateResult:
        """Create one order; failure is reported in the result, not raised."""

    @abstractmethod
    async def list_orders_for_quote(self, quote_id: UUID) -> List[OrderSummary]:
        """Orders whose back-reference points at the given quote."""


class HttpOrderClient(OrderCreationService):
    """Order creation against the stock management HTTP API."""

    def __init__(self, http_client: HttpClient):
        self.http_client = http_client

    async def create_order(self, request: OrderCreateRequest) -> OrderCreateResult:
        try:
            # Creating an order is not idempotent, so a single attempt only
            payload = await self.http_client.post(
                "/stock-orders",
                json=request.model_dump(mode="json"),
                max_retries=1,
            )
        except aiohttp.ClientResponseError as e:
            logger.warning(
                f"Order creation rejected: {e.status} {e.message}",
                extra={"source_quote_id": str(request.source_quote_id)},
            )
            return OrderCreateResult(success=False, message=e.message or f"Order service returned {e.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                f"Order service unreachable: {e}",
                extra={"source_quote_id": str(request.source_quote_id)},
            )
            return OrderCreateResult(success=False, message=f"Order service unavailable: {e}")

        if not payload.get("success", False):
            return OrderCreateResult(success=False, message=payload.get("message") or "Failed to create stock order")

        data = payload.get("data") or {}
        return OrderCreateResult(
            success=True,
            message=payload.get("message"),
            order_id=data.get("id"),
            order_number=data.get("order_number"),
            order_total=data.get("order_total") or 0,
        )

    async def list_orders_for_quote(self, quote_id: UUID) -> List[OrderSummary]:
        payload = await self.http_client.get("/stock-orders", params={"source_quote_id": str(quote_id)})
        return [
            OrderSummary(
                order_id=row["id"],
                order_number=row["order_number"],
                item_count=row.get("line_count") or 0,
                created_at=row.get("created_at"),
            )
            for row in (payload or [])
        ]
