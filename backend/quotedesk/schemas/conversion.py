"""
Schemas for converting won quotes into stock orders.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date
from uuid import UUID
from decimal import Decimal
import enum


class ConversionMode(str, enum.Enum):
    """Which line items of the quote take part in a conversion."""
    ALL_ITEMS = "ALL_ITEMS"
    SELECTED_SECTIONS = "SELECTED_SECTIONS"
    SELECTED_ITEMS = "SELECTED_ITEMS"


class ConversionRequest(BaseModel):
    """Preview or commit a conversion."""
    quote_id: UUID
    mode: ConversionMode = ConversionMode.ALL_ITEMS
    selected_section_ids: List[UUID] = []
    selected_line_item_ids: List[UUID] = []
    source_location_id: UUID
    site_id: UUID
    site_name: Optional[str] = Field(None, max_length=200)
    required_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=1000)


class ConversionPreviewItem(BaseModel):
    """Availability check for one selected line item."""
    line_item_id: UUID
    product_id: Optional[UUID] = None
    product_code: Optional[str] = None
    description: str
    quantity: Decimal
    available_stock: Decimal
    has_sufficient_stock: bool
    is_ad_hoc: bool
    unit_price: Decimal
    line_total: Decimal


class ConversionPreview(BaseModel):
    """Side-effect free summary of a prospective conversion."""
    total_items: int = 0
    total_quantity: Decimal = Decimal("0")
    total_value: Decimal = Decimal("0")
    has_stock_warnings: bool = False
    has_ad_hoc_items: bool = False
    items: List[ConversionPreviewItem] = []


class CreatedOrder(BaseModel):
    """Stock order created from a quote."""
    order_id: UUID
    order_number: str
    item_count: int
    total_value: Decimal


class ConversionResult(BaseModel):
    """Outcome of a committed conversion."""
    success: bool = True
    created_orders: List[CreatedOrder] = []
    warnings: List[str] = []
    skipped_item_ids: List[UUID] = []
