"""
Pytest configuration and fixtures.
Provides an in-memory database session, fake collaborators and quote factories.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from quotedesk.db.base import Base
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.core.integrations.catalog import CatalogLookup
from quotedesk.core.integrations.inventory import InventoryQuery
from quotedesk.core.integrations.orders import OrderCreationService
from quotedesk.models.quote import QuoteStatus
import quotedesk.models  # noqa: F401
from quotedesk.schemas.fulfillment import (
    StockLevel, OrderCreateRequest, OrderCreateResult, OrderSummary,
    CatalogProduct, CatalogTemplate,
)
from quotedesk.schemas.quote import QuoteCreate, QuoteSectionCreate, QuoteLineItemCreate
from quotedesk.services.quote_service import QuoteService
from quotedesk.services.workflow_service import WorkflowService
from quotedesk.services.calculation_service import CalculationService
from quotedesk.services.revision_service import RevisionService
from quotedesk.services.expiry_service import ExpiryService
from quotedesk.services.conversion_service import ConversionService
from quotedesk.utils.locking import QuoteLockRegistry


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakeInventory(InventoryQuery):
    """Stock levels keyed by (product, location); unknown pairs are zero."""

    def __init__(self):
        self.levels: Dict[Tuple[UUID, UUID], StockLevel] = {}
        self.calls: List[Tuple[UUID, UUID]] = []

    def set_stock(self, product_id: UUID, location_id: UUID, on_hand, reserved=0) -> None:
        self.levels[(product_id, location_id)] = StockLevel(
            product_id=product_id,
            location_id=location_id,
            quantity_on_hand=Decimal(str(on_hand)),
            quantity_reserved=Decimal(str(reserved)),
        )

    async def get_stock_level(self, product_id: UUID, location_id: UUID) -> StockLevel:
        self.calls.append((product_id, location_id))
        return self.levels.get(
            (product_id, location_id),
            StockLevel(product_id=product_id, location_id=location_id),
        )


class FakeOrders(OrderCreationService):
    """Records order requests and numbers created orders SO-0001, SO-0002, ..."""

    def __init__(self):
        self.requests: List[OrderCreateRequest] = []
        self.orders: List[Tuple[UUID, OrderSummary]] = []
        self.fail_message: Optional[str] = None
        self.delay: float = 0

    async def create_order(self, request: OrderCreateRequest) -> OrderCreateResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_message:
            return OrderCreateResult(success=False, message=self.fail_message)

        summary = OrderSummary(
            order_id=uuid4(),
            order_number=f"SO-{len(self.orders) + 1:04d}",
            item_count=len(request.lines),
            created_at=datetime(2026, 3, 2, 9, 30),
        )
        self.orders.append((request.source_quote_id, summary))
        return OrderCreateResult(
            success=True,
            order_id=summary.order_id,
            order_number=summary.order_number,
            order_total=Decimal("123.45"),
        )

    async def list_orders_for_quote(self, quote_id: UUID) -> List[OrderSummary]:
        return [summary for source_id, summary in self.orders if source_id == quote_id]


class FakeCatalog(CatalogLookup):
    """In-memory products and templates."""

    def __init__(self):
        self.products: Dict[UUID, CatalogProduct] = {}
        self.templates: Dict[UUID, CatalogTemplate] = {}

    def add_product(self, **fields) -> CatalogProduct:
        fields.setdefault("id", uuid4())
        product = CatalogProduct(**fields)
        self.products[product.id] = product
        return product

    def add_template(self, template: CatalogTemplate) -> CatalogTemplate:
        self.templates[template.id] = template
        return template

    async def get_product(self, product_id: UUID) -> Optional[CatalogProduct]:
        return self.products.get(product_id)

    async def get_template(self, template_id: UUID) -> Optional[CatalogTemplate]:
        return self.templates.get(template_id)


@pytest.fixture(scope="function")
async def test_session_maker():
    """
    Sessionmaker bound to a fresh in-memory SQLite database.
    """
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture(scope="function")
async def test_db_session(test_session_maker):
    """
    Create a test database session.
    Uses in-memory SQLite for fast tests.
    """
    async with test_session_maker() as session:
        yield session


@pytest.fixture
def locks():
    return QuoteLockRegistry()


@pytest.fixture
def inventory():
    return FakeInventory()


@pytest.fixture
def orders():
    return FakeOrders()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def quote_service(test_db_session, catalog, locks):
    return QuoteService(test_db_session, catalog, locks=locks)


@pytest.fixture
def workflow_service(test_db_session, locks):
    return WorkflowService(test_db_session, locks=locks)


@pytest.fixture
def calculation_service(test_db_session):
    return CalculationService(test_db_session)


@pytest.fixture
def revision_service(test_db_session, locks):
    return RevisionService(test_db_session, locks=locks)


@pytest.fixture
def expiry_service(test_db_session, locks):
    return ExpiryService(test_db_session, locks=locks)


@pytest.fixture
def conversion_service(test_db_session, inventory, orders, locks):
    return ConversionService(test_db_session, inventory, orders, locks=locks)


@pytest.fixture
def make_quote(quote_service):
    """Create a draft quote; keyword arguments override the defaults."""
    async def _make(**overrides):
        data = {
            "company_name": "Harbour Construction Ltd",
            "project_name": "Warehouse fit-out",
            "quote_date": date(2026, 1, 10),
            "valid_until": date(2026, 2, 9),
        }
        data.update(overrides)
        return await quote_service.create_quote(QuoteCreate(**data), created_by="estimator")
    return _make


@pytest.fixture
def make_priced_quote(quote_service, make_quote):
    """
    Create a draft quote with one section holding the given
    (quantity, unit_price, unit_cost) items.
    """
    async def _make(items=(("3", "10", "6"),), **overrides):
        quote = await make_quote(**overrides)
        section = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Materials"))
        for quantity, unit_price, unit_cost in items:
            await quote_service.add_line_item(
                section.id,
                QuoteLineItemCreate(
                    description="Membrane roll",
                    quantity=Decimal(quantity),
                    unit_price=Decimal(unit_price),
                    unit_cost=Decimal(unit_cost),
                ),
            )
        return await quote_service.get_quote(quote.id)
    return _make


@pytest.fixture
def set_status(test_db_session):
    """Force a quote into a status, bypassing the lifecycle rules."""
    async def _set(quote_id: UUID, status: QuoteStatus):
        quote = await QuoteRepository(test_db_session).get(quote_id)
        quote.status = status
        await test_db_session.commit()
        return quote
    return _set
