"""
Catalog collaborator: product and template lookups used to default line items.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

import aiohttp

from quotedesk.core.integrations.http.http_client import HttpClient
from quotedesk.schemas.fulfillment import CatalogProduct, CatalogTemplate


class CatalogLookup(ABC):
    """Read-only product catalog."""

    @abstractmethod
    async def get_product(self, product_id: UUID) -> Optional[CatalogProduct]:
        """Product by id, or None when unknown."""

    @abstractmethod
    async def get_template(self, template_id: UUID) -> Optional[CatalogTemplate]:
        """Template (product kit) with its ordered items, or None when unknown."""


class HttpCatalogClient(CatalogLookup):
    """Catalog lookups against the stock management HTTP API."""

    def __init__(self, http_client: HttpClient):
        self.http_client = http_client

    async def _get_or_none(self, endpoint: str) -> Optional[dict]:
        try:
            return await self.http_client.get(endpoint)
        except aiohttp.ClientResponseError as e:
            if e.status == 404:
                return None
            raise

    async def get_product(self, product_id: UUID) -> Optional[CatalogProduct]:
        payload = await self._get_or_none(f"/products/{product_id}")
        return CatalogProduct.model_validate(payload) if payload else None

    async def get_template(self, template_id: UUID) -> Optional[CatalogTemplate]:
        payload = await self._get_or_none(f"/product-kits/{template_id}")
        return CatalogTemplate.model_validate(payload) if payload else None
