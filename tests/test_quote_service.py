"""
Quote service tests: numbering, draft edits, catalog defaults, templates and contacts.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError

from quotedesk.core.exceptions import InvalidStateError, NotFoundError, QuoteValidationError
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.models.quote import QuoteStatus
from quotedesk.schemas.fulfillment import CatalogTemplate, CatalogTemplateItem
from quotedesk.schemas.quote import (
    QuoteUpdate, QuoteSectionCreate, QuoteSectionUpdate, QuoteLineItemCreate, QuoteLineItemUpdate,
    QuoteContactCreate, QuoteContactUpdate,
)
from quotedesk.utils.audit import utcnow


async def test_create_quote_defaults(make_quote):
    quote = await make_quote()

    assert quote.status == QuoteStatus.DRAFT
    assert quote.version == 1
    assert quote.parent_id is None
    assert quote.currency == "EUR"
    assert quote.vat_rate == Decimal("23")
    assert quote.grand_total == Decimal("0")
    assert quote.created_by == "estimator"


async def test_quote_numbers_are_sequential(make_quote):
    first = await make_quote()
    second = await make_quote(project_name="Second site")

    year = utcnow().year
    assert first.quote_number == f"QT-{year}-0001"
    assert second.quote_number == f"QT-{year}-0002"


async def test_quote_numbers_continue_past_four_digits(make_quote, test_db_session):
    year = utcnow().year
    repo = QuoteRepository(test_db_session)
    for number in (f"QT-{year}-9999", f"QT-{year}-10000"):
        seeded = await make_quote()
        (await repo.get(seeded.id)).quote_number = number
        await test_db_session.commit()

    quote = await make_quote()

    assert quote.quote_number == f"QT-{year}-10001"


async def test_update_quote_recalculates_on_pricing_change(quote_service, make_priced_quote):
    quote = await make_priced_quote(items=[("10", "100", "50")])

    update = QuoteUpdate(
        company_name=quote.company_name,
        project_name="Warehouse fit-out phase 2",
        quote_date=quote.quote_date,
        valid_until=quote.valid_until,
        discount_percent=Decimal("10"),
        vat_rate=Decimal("13.5"),
    )
    result = await quote_service.update_quote(quote.id, update)

    assert result.project_name == "Warehouse fit-out phase 2"
    assert result.discount_amount == Decimal("100.00")
    assert result.net_total == Decimal("900.00")
    assert result.vat_amount == Decimal("121.50")
    assert result.grand_total == Decimal("1021.50")


async def test_soft_delete_hides_quote(quote_service, make_quote):
    quote = await make_quote()
    other = await make_quote(project_name="Keep me")

    await quote_service.delete_quote(quote.id)

    with pytest.raises(NotFoundError):
        await quote_service.get_quote(quote.id)
    listing = await quote_service.list_quotes()
    assert listing.total == 1
    assert [item.id for item in listing.items] == [other.id]


async def test_delete_is_draft_only(quote_service, make_quote, set_status):
    quote = await make_quote()
    await set_status(quote.id, QuoteStatus.SUBMITTED)

    with pytest.raises(InvalidStateError):
        await quote_service.delete_quote(quote.id)


async def test_list_quotes_filters(quote_service, make_quote, set_status):
    await make_quote(project_name="Hospital wing")
    approved = await make_quote(project_name="School roof")
    await set_status(approved.id, QuoteStatus.APPROVED)

    by_status = await quote_service.list_quotes(status=QuoteStatus.APPROVED)
    by_search = await quote_service.list_quotes(search="hospital")

    assert [item.project_name for item in by_status.items] == ["School roof"]
    assert by_search.total == 1
    assert by_search.items[0].project_name == "Hospital wing"


async def test_line_item_defaults_from_catalog(quote_service, catalog, make_quote):
    product = catalog.add_product(
        product_code="MEM-100", product_name="Waterproof membrane", unit_type="Roll",
        cost_price=Decimal("40"), sell_price=Decimal("65"), base_rate=Decimal("50"),
    )
    quote = await make_quote()
    section = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Roofing"))

    item = await quote_service.add_line_item(
        section.id, QuoteLineItemCreate(product_id=product.id, quantity=Decimal("2")),
    )

    assert item.product_code == "MEM-100"
    assert item.description == "Waterproof membrane"
    assert item.unit == "Roll"
    assert item.unit_cost == Decimal("40")
    assert item.unit_price == Decimal("65")
    assert item.line_total == Decimal("130")


async def test_catalog_defaults_never_overwrite_supplied_values(quote_service, catalog, make_quote):
    product = catalog.add_product(
        product_code="SEAL-7", product_name="Sealant", base_rate=Decimal("12"),
    )
    quote = await make_quote()
    section = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Sealing"))

    item = await quote_service.add_line_item(
        section.id,
        QuoteLineItemCreate(
            product_id=product.id, description="Sealant, grey", quantity=Decimal("1"),
            unit_price=Decimal("20"),
        ),
    )

    assert item.description == "Sealant, grey"
    assert item.unit_price == Decimal("20")
    assert item.unit_cost == Decimal("12")
    assert item.unit == "Each"


async def test_unknown_product_is_not_found(quote_service, make_quote):
    quote = await make_quote()
    section = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Roofing"))

    with pytest.raises(NotFoundError):
        await quote_service.add_line_item(
            section.id, QuoteLineItemCreate(product_id=uuid4(), quantity=Decimal("1")),
        )


async def test_ad_hoc_item_needs_description(quote_service, make_quote):
    quote = await make_quote()
    section = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Extras"))

    with pytest.raises(QuoteValidationError):
        await quote_service.add_line_item(section.id, QuoteLineItemCreate(quantity=Decimal("1")))


async def test_update_line_item_clears_product_code_when_unlinked(quote_service, catalog, make_quote):
    product = catalog.add_product(product_code="BOLT-M8", product_name="M8 bolt", base_rate=Decimal("0.5"))
    quote = await make_quote()
    section = await quote_service.add_section(quote.id, QuoteSectionCreate(name="Fixings"))
    item = await quote_service.add_line_item(
        section.id, QuoteLineItemCreate(product_id=product.id, quantity=Decimal("100")),
    )

    updated = await quote_service.update_line_item(
        item.id,
        QuoteLineItemUpdate(description="Bolts, mixed", quantity=Decimal("80"), unit_price=Decimal("0.6")),
    )

    assert updated.product_id is None
    assert updated.product_code is None
    assert updated.line_total == Decimal("48")
    result = await quote_service.get_quote(quote.id)
    assert result.subtotal == Decimal("48")


async def test_delete_line_item_updates_totals(quote_service, make_priced_quote):
    quote = await make_priced_quote(items=[("1", "100", "60"), ("2", "10", "5")])
    first_item = quote.sections[0].line_items[0]

    await quote_service.delete_line_item(first_item.id)

    result = await quote_service.get_quote(quote.id)
    assert len(result.sections[0].line_items) == 1
    assert result.sections[0].section_total == Decimal("20")
    assert result.subtotal == Decimal("20")


async def test_template_expands_into_line_items(quote_service, catalog, make_quote):
    anchor = catalog.add_product(
        product_code="ANC-1", product_name="Roof anchor", cost_price=Decimal("30"), sell_price=Decimal("55"),
    )
    rope = catalog.add_product(
        product_code="ROPE-20", product_name="Safety line 20m", base_rate=Decimal("80"),
    )
    template = catalog.add_template(CatalogTemplate(
        id=uuid4(),
        name="Fall arrest kit",
        description="Anchor and line",
        items=[
            CatalogTemplateItem(product=anchor, default_quantity=Decimal("4"), sort_order=0),
            CatalogTemplateItem(product=rope, default_quantity=Decimal("1"), sort_order=1),
        ],
    ))
    quote = await make_quote()

    section = await quote_service.add_section(quote.id, QuoteSectionCreate(source_template_id=template.id))

    assert section.name == "Fall arrest kit"
    assert section.description == "Anchor and line"
    assert section.source_template_id == template.id
    assert [item.product_code for item in section.line_items] == ["ANC-1", "ROPE-20"]
    assert section.line_items[0].line_total == Decimal("220")
    assert section.line_items[1].unit_price == Decimal("80")
    assert section.section_total == Decimal("300")

    result = await quote_service.get_quote(quote.id)
    assert result.subtotal == Decimal("300")


async def test_unknown_template_is_not_found(quote_service, make_quote):
    quote = await make_quote()

    with pytest.raises(NotFoundError):
        await quote_service.add_section(quote.id, QuoteSectionCreate(source_template_id=uuid4()))


async def test_sections_append_in_order(quote_service, make_quote):
    quote = await make_quote()
    await quote_service.add_section(quote.id, QuoteSectionCreate(name="First"))
    await quote_service.add_section(quote.id, QuoteSectionCreate(name="Second"))

    result = await quote_service.get_quote(quote.id)

    assert [s.name for s in result.sections] == ["First", "Second"]
    assert [s.sort_order for s in result.sections] == [0, 1]


async def test_update_and_delete_section(quote_service, make_priced_quote):
    quote = await make_priced_quote()
    section_id = quote.sections[0].id

    renamed = await quote_service.update_section(section_id, QuoteSectionUpdate(name="Roof materials"))
    assert renamed.name == "Roof materials"

    await quote_service.delete_section(section_id)
    result = await quote_service.get_quote(quote.id)
    assert result.sections == []
    assert result.subtotal == Decimal("0")
    assert result.grand_total == Decimal("0")


async def test_first_contact_becomes_primary(quote_service, make_quote):
    quote = await make_quote()

    contact = await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Aoife Byrne"))

    assert contact.is_primary is True


async def test_new_primary_demotes_previous(quote_service, make_quote):
    quote = await make_quote()
    first = await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Aoife Byrne"))
    second = await quote_service.add_contact(
        quote.id, QuoteContactCreate(contact_name="Tomás Ryan", is_primary=True),
    )

    result = await quote_service.get_quote(quote.id)
    primaries = [c.id for c in result.contacts if c.is_primary]

    assert primaries == [second.id]
    assert first.id != second.id


async def test_secondary_contact_does_not_take_primary(quote_service, make_quote):
    quote = await make_quote()
    first = await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Aoife Byrne"))
    await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Site office"))

    result = await quote_service.get_quote(quote.id)

    assert [c.id for c in result.contacts if c.is_primary] == [first.id]


async def test_update_contact_primary_rules(quote_service, make_quote):
    quote = await make_quote()
    first = await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Aoife Byrne"))
    second = await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Tomás Ryan"))

    # Clearing the flag on the primary leaves it primary
    await quote_service.update_contact(
        first.id, QuoteContactUpdate(contact_name="Aoife Byrne", email="aoife@example.com", is_primary=False),
    )
    result = await quote_service.get_quote(quote.id)
    assert [c.id for c in result.contacts if c.is_primary] == [first.id]

    await quote_service.update_contact(second.id, QuoteContactUpdate(contact_name="Tomás Ryan", is_primary=True))
    result = await quote_service.get_quote(quote.id)
    assert [c.id for c in result.contacts if c.is_primary] == [second.id]


async def test_deleting_primary_promotes_earliest_remaining(quote_service, make_quote):
    quote = await make_quote()
    first = await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Aoife Byrne"))
    second = await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Tomás Ryan"))
    await quote_service.add_contact(quote.id, QuoteContactCreate(contact_name="Site office"))

    await quote_service.delete_contact(first.id)

    result = await quote_service.get_quote(quote.id)
    assert len(result.contacts) == 2
    assert [c.id for c in result.contacts if c.is_primary] == [second.id]


def test_quote_date_order_is_validated():
    with pytest.raises(ValidationError):
        QuoteUpdate(
            company_name="Acme", project_name="Depot",
            quote_date=date(2026, 3, 1), valid_until=date(2026, 2, 1),
        )
