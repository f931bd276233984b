"""
Quote Pydantic schemas for request/response validation.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import date, datetime
from uuid import UUID
from decimal import Decimal

from quotedesk.models.quote import QuoteStatus


def _strip_required(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("Reason is required")
    return value


class QuoteLineItemCreate(BaseModel):
    """Create schema for quote line item.

    Unset description, unit, unit_price and unit_cost are defaulted from the
    catalog when product_id is given.
    """
    product_id: Optional[UUID] = None
    description: Optional[str] = Field(None, max_length=500)
    unit: Optional[str] = Field(None, max_length=50)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    sort_order: Optional[int] = Field(None, ge=0)  # Appended after existing items when unset
    notes: Optional[str] = Field(None, max_length=1000)


class QuoteLineItemUpdate(BaseModel):
    """Update schema for quote line item."""
    product_id: Optional[UUID] = None
    description: str = Field(..., min_length=1, max_length=500)
    unit: Optional[str] = Field(None, max_length=50)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    sort_order: int = Field(default=0, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)


class QuoteLineItemResponse(BaseModel):
    """Response schema for quote line item."""
    id: UUID
    section_id: UUID
    product_id: Optional[UUID] = None
    product_code: Optional[str] = None
    description: str
    unit: str
    quantity: Decimal
    unit_price: Decimal
    unit_cost: Decimal
    sort_order: int
    notes: Optional[str] = None
    line_total: Decimal
    line_cost: Decimal
    line_margin: Decimal
    margin_percent: Decimal

    class Config:
        from_attributes = True


class QuoteSectionCreate(BaseModel):
    """Create schema for quote section.

    With source_template_id the catalog template is expanded into line items;
    name and description fall back to the template's.
    """
    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    sort_order: Optional[int] = Field(None, ge=0)  # Appended after existing sections when unset
    source_template_id: Optional[UUID] = None

    @model_validator(mode="after")
    def validate_name_or_template(self) -> "QuoteSectionCreate":
        if not (self.name and self.name.strip()) and self.source_template_id is None:
            raise ValueError("Section name is required when no template is given")
        return self


class QuoteSectionUpdate(BaseModel):
    """Update schema for quote section."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    sort_order: int = Field(default=0, ge=0)


class QuoteSectionResponse(BaseModel):
    """Response schema for quote section."""
    id: UUID
    quote_id: UUID
    source_template_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    sort_order: int
    section_total: Decimal
    section_cost: Decimal
    section_margin: Decimal
    line_items: List[QuoteLineItemResponse] = []

    class Config:
        from_attributes = True


class QuoteContactCreate(BaseModel):
    """Create schema for quote contact."""
    contact_id: Optional[UUID] = None
    contact_name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    role: Optional[str] = Field(None, max_length=100)
    is_primary: bool = False


class QuoteContactUpdate(QuoteContactCreate):
    """Update schema for quote contact."""
    pass


class QuoteContactResponse(BaseModel):
    """Response schema for quote contact."""
    id: UUID
    quote_id: UUID
    contact_id: Optional[UUID] = None
    contact_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    is_primary: bool

    class Config:
        from_attributes = True


class QuoteBase(BaseModel):
    """Base quote schema with the editable whole-quote fields."""
    company_id: Optional[UUID] = None
    company_name: str = Field(..., min_length=1, max_length=200)
    project_name: str = Field(..., min_length=1, max_length=200)
    project_address: Optional[str] = Field(None, max_length=500)
    project_description: Optional[str] = Field(None, max_length=2000)
    quote_date: date
    valid_until: Optional[date] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    discount_percent: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    vat_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    payment_terms: Optional[str] = Field(None, max_length=500)
    terms_and_conditions: Optional[str] = Field(None, max_length=4000)

    @model_validator(mode="after")
    def validate_dates(self):
        if self.valid_until is not None and self.valid_until < self.quote_date:
            raise ValueError("Valid until date must be on or after quote date")
        return self


class QuoteCreate(QuoteBase):
    """Schema for creating a quote."""
    notes: Optional[str] = Field(None, max_length=2000)


class QuoteUpdate(QuoteBase):
    """Schema for updating a Draft quote."""
    pass


class QuoteResponse(BaseModel):
    """Response schema for a quote with its sections and contacts."""
    id: UUID
    quote_number: str
    version: int
    parent_id: Optional[UUID] = None
    status: QuoteStatus
    company_id: Optional[UUID] = None
    company_name: str
    project_name: str
    project_address: Optional[str] = None
    project_description: Optional[str] = None
    quote_date: date
    valid_until: Optional[date] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    won_at: Optional[datetime] = None
    lost_at: Optional[datetime] = None
    won_lost_reason: Optional[str] = None
    currency: str
    discount_percent: Decimal
    vat_rate: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    net_total: Decimal
    vat_amount: Decimal
    grand_total: Decimal
    total_cost: Decimal
    total_margin: Decimal
    margin_percent: Decimal
    payment_terms: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    created_by: Optional[str] = None
    sections: List[QuoteSectionResponse] = []
    contacts: List[QuoteContactResponse] = []

    class Config:
        from_attributes = True


class QuoteListItem(BaseModel):
    """Summary row for quote listings and revision chains."""
    id: UUID
    quote_number: str
    version: int
    parent_id: Optional[UUID] = None
    status: QuoteStatus
    company_name: str
    project_name: str
    quote_date: date
    valid_until: Optional[date] = None
    grand_total: Decimal
    currency: str
    created_at: datetime

    class Config:
        from_attributes = True


class QuoteListResponse(BaseModel):
    """Paginated quote listing."""
    items: List[QuoteListItem]
    total: int


# Lifecycle requests


class RejectQuoteRequest(BaseModel):
    """Reject a quote; a reason is mandatory."""
    reason: str = Field(..., max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        return _strip_required(value)


class LoseQuoteRequest(BaseModel):
    """Mark an approved quote as lost; a reason is mandatory."""
    lost_at: Optional[datetime] = None
    reason: str = Field(..., max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        return _strip_required(value)
