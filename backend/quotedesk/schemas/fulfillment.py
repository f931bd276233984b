"""
Schemas exchanged with the inventory, order and catalog collaborators.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from uuid import UUID
from decimal import Decimal


class StockLevel(BaseModel):
    """Stock held for one product at one location."""
    product_id: UUID
    location_id: UUID
    quantity_on_hand: Decimal = Decimal("0")
    quantity_reserved: Decimal = Decimal("0")

    @property
    def available(self) -> Decimal:
        return self.quantity_on_hand - self.quantity_reserved


class OrderLineRequest(BaseModel):
    """One order line; quantities are whole units."""
    product_id: UUID
    quantity_requested: int = Field(..., gt=0)


class OrderCreateRequest(BaseModel):
    """Request sent to the order creation service."""
    site_id: UUID
    site_name: Optional[str] = None
    order_date: datetime
    required_date: Optional[date] = None
    requested_by: str
    notes: str
    source_location_id: UUID
    lines: List[OrderLineRequest]
    source_quote_id: Optional[UUID] = None
    source_quote_number: Optional[str] = None


class OrderCreateResult(BaseModel):
    """Outcome of a single order creation call."""
    success: bool
    message: Optional[str] = None
    order_id: Optional[UUID] = None
    order_number: Optional[str] = None
    order_total: Decimal = Decimal("0")


class OrderSummary(BaseModel):
    """Existing order that back-references a quote."""
    order_id: UUID
    order_number: str
    item_count: int = 0
    created_at: Optional[datetime] = None


class CatalogProduct(BaseModel):
    """Catalog product used to default line item fields."""
    id: UUID
    product_code: str
    product_name: str
    unit_type: Optional[str] = None
    cost_price: Optional[Decimal] = None
    sell_price: Optional[Decimal] = None
    base_rate: Decimal = Decimal("0")


class CatalogTemplateItem(BaseModel):
    """Product row of a catalog template."""
    product: CatalogProduct
    default_quantity: Decimal = Field(..., gt=0)
    sort_order: int = 0
    notes: Optional[str] = None


class CatalogTemplate(BaseModel):
    """Reusable bundle of products expanded into a section."""
    id: UUID
    name: str
    description: Optional[str] = None
    items: List[CatalogTemplateItem] = []
