"""
Conversion service tests: preview, commit and order note reconciliation.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from quotedesk.core.exceptions import (
    CollaboratorFailureError, IneligibleForConversionError, NotFoundError,
)
from quotedesk.models.quote import QuoteStatus
from quotedesk.schemas.conversion import ConversionMode, ConversionRequest
from quotedesk.schemas.fulfillment import OrderSummary
from quotedesk.schemas.quote import QuoteSectionCreate, QuoteLineItemCreate
from quotedesk.services.conversion_service import ConversionService, has_order_note, order_link_note
from quotedesk.utils.audit import append_note


LOCATION_ID = uuid4()
SITE_ID = uuid4()


@pytest.fixture
def make_won_quote(quote_service, catalog, make_quote, set_status):
    """
    Won quote with a "Materials" section (product-linked membrane x5 and
    ad-hoc labour) and a "Fixings" section (product-linked bolts x2.5).
    """
    async def _make(with_products: bool = True):
        membrane = catalog.add_product(
            product_code="MEM-100", product_name="Waterproof membrane",
            cost_price=Decimal("40"), sell_price=Decimal("65"),
        )
        bolts = catalog.add_product(product_code="BOLT-M8", product_name="M8 bolt box", base_rate=Decimal("9"))

        quote = await make_quote()
        materials = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Materials"))
        fixings = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Fixings"))
        if with_products:
            await quote_service.add_line_item(
                materials.id, QuoteLineItemCreate(product_id=membrane.id, quantity=Decimal("5")),
            )
        await quote_service.add_line_item(
            materials.id,
            QuoteLineItemCreate(description="Labour", quantity=Decimal("8"), unit_price=Decimal("45")),
        )
        if with_products:
            await quote_service.add_line_item(
                fixings.id, QuoteLineItemCreate(product_id=bolts.id, quantity=Decimal("2.5")),
            )
        await set_status(quote.id, QuoteStatus.WON)
        return await quote_service.get_quote(quote.id), membrane, bolts
    return _make


def conversion_request(quote_id, **overrides) -> ConversionRequest:
    data = {
        "quote_id": quote_id,
        "source_location_id": LOCATION_ID,
        "site_id": SITE_ID,
        "site_name": "Dublin depot",
    }
    data.update(overrides)
    return ConversionRequest(**data)


async def test_can_convert_only_won(conversion_service, make_priced_quote, set_status):
    quote = await make_priced_quote()
    assert await conversion_service.can_convert(quote.id) is False

    await set_status(quote.id, QuoteStatus.WON)
    assert await conversion_service.can_convert(quote.id) is True
    assert await conversion_service.can_convert(uuid4()) is False


async def test_preview_reports_stock_and_ad_hoc_items(conversion_service, inventory, make_won_quote):
    quote, membrane, bolts = await make_won_quote()
    inventory.set_stock(membrane.id, LOCATION_ID, on_hand=5, reserved=3)
    inventory.set_stock(bolts.id, LOCATION_ID, on_hand=10)

    preview = await conversion_service.preview(conversion_request(quote.id))

    assert preview.total_items == 3
    assert preview.total_quantity == Decimal("15.5")
    assert preview.total_value == Decimal("325") + Decimal("360") + Decimal("22.5")
    assert preview.has_stock_warnings is True
    assert preview.has_ad_hoc_items is True

    by_description = {item.description: item for item in preview.items}
    membrane_item = by_description["Waterproof membrane"]
    assert membrane_item.available_stock == Decimal("2")
    assert membrane_item.has_sufficient_stock is False
    assert membrane_item.is_ad_hoc is False
    labour = by_description["Labour"]
    assert labour.is_ad_hoc is True
    assert labour.available_stock == Decimal("0")
    assert labour.has_sufficient_stock is False
    assert by_description["M8 bolt box"].has_sufficient_stock is True


async def test_preview_of_unknown_quote_is_empty(conversion_service):
    preview = await conversion_service.preview(conversion_request(uuid4()))

    assert preview.total_items == 0
    assert preview.total_value == Decimal("0")
    assert preview.items == []


async def test_preview_of_quote_that_is_not_won(conversion_service, make_priced_quote):
    quote = await make_priced_quote()

    with pytest.raises(IneligibleForConversionError) as exc_info:
        await conversion_service.preview(conversion_request(quote.id))
    assert exc_info.value.current_status == QuoteStatus.DRAFT


async def test_selection_modes(conversion_service, make_won_quote):
    quote, _, _ = await make_won_quote()
    materials, fixings = quote.sections

    by_section = await conversion_service.preview(conversion_request(
        quote.id, mode=ConversionMode.SELECTED_SECTIONS, selected_section_ids=[fixings.id],
    ))
    by_item = await conversion_service.preview(conversion_request(
        quote.id, mode=ConversionMode.SELECTED_ITEMS, selected_line_item_ids=[materials.line_items[0].id],
    ))
    unmatched = await conversion_service.preview(conversion_request(
        quote.id, mode=ConversionMode.SELECTED_SECTIONS, selected_section_ids=[uuid4()],
    ))
    empty_selection = await conversion_service.preview(conversion_request(
        quote.id, mode=ConversionMode.SELECTED_ITEMS,
    ))

    assert [i.description for i in by_section.items] == ["M8 bolt box"]
    assert [i.description for i in by_item.items] == ["Waterproof membrane"]
    assert unmatched.total_items == 0
    assert empty_selection.total_items == 0


async def test_commit_creates_one_order(conversion_service, orders, quote_service, make_won_quote):
    quote, membrane, bolts = await make_won_quote()

    result = await conversion_service.commit(
        conversion_request(quote.id, notes="Deliver before 8am", required_date=date(2026, 4, 1)),
        requested_by="Dana",
    )

    assert len(orders.requests) == 1
    request = orders.requests[0]
    assert request.requested_by == "Dana"
    assert request.site_name == "Dublin depot"
    assert request.required_date == date(2026, 4, 1)
    assert request.source_location_id == LOCATION_ID
    assert request.source_quote_id == quote.id
    assert request.source_quote_number == quote.quote_number
    assert request.notes == f"Created from Quote {quote.quote_number}\nDeliver before 8am"
    assert [(line.product_id, line.quantity_requested) for line in request.lines] == [
        (membrane.id, 5), (bolts.id, 3),
    ]

    assert result.success is True
    assert result.created_orders[0].order_number == "SO-0001"
    assert result.created_orders[0].item_count == 2
    assert result.created_orders[0].total_value == Decimal("123.45")
    assert result.warnings == ["1 ad-hoc item(s) were skipped (no product linked)"]
    labour_id = quote.sections[0].line_items[1].id
    assert result.skipped_item_ids == [labour_id]

    reloaded = await quote_service.get_quote(quote.id)
    last_note = reloaded.notes.split("\n")[-1]
    assert "Stock order SO-0001 created for 2 items on " in last_note
    assert last_note.endswith(" UTC")


async def test_ad_hoc_only_selection_creates_no_order(conversion_service, orders, make_won_quote):
    quote, _, _ = await make_won_quote(with_products=False)

    with pytest.raises(IneligibleForConversionError) as exc_info:
        await conversion_service.commit(conversion_request(quote.id), requested_by="Dana")

    assert exc_info.value.message == "No orderable items found (all items are ad-hoc)"
    assert exc_info.value.warnings == ["1 ad-hoc item(s) were skipped (no product linked)"]
    assert len(exc_info.value.skipped_item_ids) == 1
    assert orders.requests == []


async def test_commit_requires_won_quote(conversion_service, orders, make_priced_quote, set_status):
    quote = await make_priced_quote()
    await set_status(quote.id, QuoteStatus.APPROVED)

    with pytest.raises(IneligibleForConversionError) as exc_info:
        await conversion_service.commit(conversion_request(quote.id), requested_by="Dana")

    assert exc_info.value.message == "Only won quotes can be converted to stock orders"
    assert orders.requests == []


async def test_commit_of_unknown_quote(conversion_service):
    with pytest.raises(NotFoundError):
        await conversion_service.commit(conversion_request(uuid4()), requested_by="Dana")


async def test_order_failure_leaves_quote_unchanged(conversion_service, orders, quote_service, make_won_quote):
    quote, _, _ = await make_won_quote()
    orders.fail_message = "Insufficient stock at Dublin depot"

    with pytest.raises(CollaboratorFailureError) as exc_info:
        await conversion_service.commit(conversion_request(quote.id), requested_by="Dana")

    assert exc_info.value.message == "Insufficient stock at Dublin depot"
    assert exc_info.value.warnings == ["1 ad-hoc item(s) were skipped (no product linked)"]
    reloaded = await quote_service.get_quote(quote.id)
    assert reloaded.notes == quote.notes
    assert reloaded.status == QuoteStatus.WON


async def test_order_timeout_is_a_failure(test_db_session, inventory, orders, locks, make_won_quote):
    quote, _, _ = await make_won_quote()
    orders.delay = 0.5
    service = ConversionService(test_db_session, inventory, orders, locks=locks, order_timeout=0.01)

    with pytest.raises(CollaboratorFailureError):
        await service.commit(conversion_request(quote.id), requested_by="Dana")
    assert len(orders.requests) == 1


async def test_failed_note_write_is_reported_as_warning(
    conversion_service, orders, make_won_quote, monkeypatch
):
    quote, _, _ = await make_won_quote()

    async def failing_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(conversion_service.session, "commit", failing_commit)

    result = await conversion_service.commit(conversion_request(quote.id), requested_by="Dana")

    assert result.success is True
    assert len(orders.requests) == 1
    assert result.warnings[-1] == "Stock order SO-0001 was created but the quote note could not be saved"


async def test_reconcile_adds_missing_order_notes_once(
    conversion_service, orders, quote_service, make_won_quote, monkeypatch
):
    quote, _, _ = await make_won_quote()
    session = conversion_service.session
    real_commit = session.commit

    async def failing_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(session, "commit", failing_commit)
    await conversion_service.commit(conversion_request(quote.id), requested_by="Dana")
    monkeypatch.setattr(session, "commit", real_commit)

    assert await conversion_service.reconcile_order_notes(quote.id) == 1
    assert await conversion_service.reconcile_order_notes(quote.id) == 0

    reloaded = await quote_service.get_quote(quote.id)
    assert reloaded.notes.count("SO-0001") == 1
    assert "Stock order SO-0001 created for 2 items on 2026-03-02 09:30 UTC" in reloaded.notes


async def test_reconcile_after_successful_commit_adds_nothing(conversion_service, make_won_quote):
    quote, _, _ = await make_won_quote()
    await conversion_service.commit(conversion_request(quote.id), requested_by="Dana")

    assert await conversion_service.reconcile_order_notes(quote.id) == 0


async def test_reconcile_matches_whole_order_numbers(conversion_service, orders, quote_service, make_quote):
    created_at = datetime(2026, 3, 2, 9, 30)
    quote = await make_quote(notes=append_note(None, order_link_note("SO-10", 2, created_at), at=created_at))
    orders.orders = [
        (quote.id, OrderSummary(order_id=uuid4(), order_number="SO-10", item_count=2, created_at=created_at)),
        (quote.id, OrderSummary(order_id=uuid4(), order_number="SO-1", item_count=1, created_at=created_at)),
    ]

    assert await conversion_service.reconcile_order_notes(quote.id) == 1

    reloaded = await quote_service.get_quote(quote.id)
    lines = reloaded.notes.split("\n")
    assert len(lines) == 2
    assert lines[1].endswith("Stock order SO-1 created for 1 items on 2026-03-02 09:30 UTC")
    assert has_order_note(reloaded.notes, "SO-1")
    assert not has_order_note(reloaded.notes, "SO-100")
