"""
Quote aggregate models: quote, sections, line items and contacts.
"""

from sqlalchemy import (
    Column, String, Text, Date, DateTime, ForeignKey, Numeric, Integer, Boolean, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import uuid
import enum

from quotedesk.db.base import Base
from quotedesk.utils.audit import utcnow


class QuoteStatus(str, enum.Enum):
    """Quote lifecycle status enumeration."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    WON = "WON"
    LOST = "LOST"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Quote(Base):
    """Quote document, root of the aggregate."""

    __tablename__ = "quotes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    quote_number = Column(String(50), nullable=False, unique=True, index=True)
    version = Column(Integer, nullable=False, default=1)
    parent_id = Column(Uuid, ForeignKey("quotes.id", ondelete="RESTRICT"), nullable=True, index=True)
    status = Column(SQLEnum(QuoteStatus), nullable=False, default=QuoteStatus.DRAFT, index=True)

    # Client and project
    company_id = Column(Uuid, nullable=True, index=True)
    company_name = Column(String(200), nullable=False)
    project_name = Column(String(200), nullable=False)
    project_address = Column(String(500), nullable=True)
    project_description = Column(String(2000), nullable=True)

    quote_date = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=True, index=True)

    # Lifecycle
    submitted_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String(200), nullable=True)
    won_at = Column(DateTime, nullable=True)
    lost_at = Column(DateTime, nullable=True)
    won_lost_reason = Column(String(500), nullable=True)

    # Pricing settings
    currency = Column(String(3), nullable=False, default="EUR")
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    vat_rate = Column(Numeric(5, 2), nullable=False, default=23)

    # Computed totals
    subtotal = Column(Numeric(18, 4), nullable=False, default=0)
    discount_amount = Column(Numeric(18, 2), nullable=False, default=0)
    net_total = Column(Numeric(18, 4), nullable=False, default=0)
    vat_amount = Column(Numeric(18, 2), nullable=False, default=0)
    grand_total = Column(Numeric(18, 4), nullable=False, default=0)
    total_cost = Column(Numeric(18, 4), nullable=False, default=0)
    total_margin = Column(Numeric(18, 4), nullable=False, default=0)
    margin_percent = Column(Numeric(9, 2), nullable=False, default=0)

    # Terms
    payment_terms = Column(String(500), nullable=True)
    terms_and_conditions = Column(String(4000), nullable=True)

    # Append-only audit log
    notes = Column(Text, nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(String(256), nullable=True)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)
    row_version = Column(Integer, nullable=False)

    # Relationships
    sections = relationship(
        "QuoteSection",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteSection.sort_order",
    )
    contacts = relationship(
        "QuoteContact",
        back_populates="quote",
        cascade="all, delete-orphan",
        order_by="QuoteContact.created_at",
    )

    # Concurrent writers of the same aggregate fail with StaleDataError
    __mapper_args__ = {"version_id_col": row_version}


class QuoteSection(Base):
    """Named grouping of line items within a quote."""

    __tablename__ = "quote_sections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    quote_id = Column(Uuid, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)
    source_template_id = Column(Uuid, nullable=True)  # Provenance only
    name = Column(String(200), nullable=False)
    description = Column(String(1000), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    section_total = Column(Numeric(18, 4), nullable=False, default=0)
    section_cost = Column(Numeric(18, 4), nullable=False, default=0)
    section_margin = Column(Numeric(18, 4), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    quote = relationship("Quote", back_populates="sections")
    line_items = relationship(
        "QuoteLineItem",
        back_populates="section",
        cascade="all, delete-orphan",
        order_by="QuoteLineItem.sort_order",
    )


class QuoteLineItem(Base):
    """Priced and costed row within a section."""

    __tablename__ = "quote_line_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    section_id = Column(Uuid, ForeignKey("quote_sections.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Uuid, nullable=True, index=True)  # Catalog link; None for ad-hoc items
    product_code = Column(String(50), nullable=True)
    description = Column(String(500), nullable=False)
    unit = Column(String(50), nullable=False, default="Each")
    quantity = Column(Numeric(18, 4), nullable=False)
    unit_price = Column(Numeric(18, 4), nullable=False, default=0)
    unit_cost = Column(Numeric(18, 4), nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)
    notes = Column(String(1000), nullable=True)
    line_total = Column(Numeric(18, 4), nullable=False, default=0)
    line_cost = Column(Numeric(18, 4), nullable=False, default=0)
    line_margin = Column(Numeric(18, 4), nullable=False, default=0)
    margin_percent = Column(Numeric(9, 2), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    section = relationship("QuoteSection", back_populates="line_items")


class QuoteContact(Base):
    """Contact attached to a quote; at most one is primary."""

    __tablename__ = "quote_contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    quote_id = Column(Uuid, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False, index=True)
    contact_id = Column(Uuid, nullable=True)
    contact_name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    role = Column(String(100), nullable=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    quote = relationship("Quote", back_populates="contacts")
