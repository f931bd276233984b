"""
Quote service with business logic for quote editing, numbering and child records.
"""

import logging
import uuid
from typing import Any, Dict, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.services.base_service import BaseService
from quotedesk.services.calculation_service import CalculationService
from quotedesk.services.workflow_service import ensure_draft, ensure_editable
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.db.repositories.quote_section_repository import QuoteSectionRepository
from quotedesk.db.repositories.quote_line_item_repository import QuoteLineItemRepository
from quotedesk.db.repositories.quote_contact_repository import QuoteContactRepository
from quotedesk.core.config import settings
from quotedesk.core.exceptions import NotFoundError, QuoteValidationError
from quotedesk.core.integrations.catalog import CatalogLookup
from quotedesk.models.quote import Quote, QuoteSection, QuoteLineItem, QuoteContact, QuoteStatus
from quotedesk.schemas.fulfillment import CatalogProduct
from quotedesk.schemas.quote import (
    QuoteCreate, QuoteUpdate, QuoteResponse, QuoteListItem, QuoteListResponse,
    QuoteSectionCreate, QuoteSectionUpdate, QuoteSectionResponse,
    QuoteLineItemCreate, QuoteLineItemUpdate, QuoteLineItemResponse,
    QuoteContactCreate, QuoteContactUpdate, QuoteContactResponse,
)
from quotedesk.utils.audit import utcnow
from quotedesk.utils.locking import QuoteLockRegistry, quote_locks

logger = logging.getLogger(__name__)

# Lock key serializing quote number allocation
NUMBER_SEQUENCE_KEY = uuid.UUID(int=0)


async def next_quote_number(quote_repo: QuoteRepository, year: Optional[int] = None) -> str:
    """
    Next sequential number "<prefix>-<year>-<seq>" for the given year.

    Callers hold the NUMBER_SEQUENCE_KEY lock until the new quote is committed.
    """
    year = year or utcnow().year
    prefix = f"{settings.QUOTE_NUMBER_PREFIX}-{year}-"
    last_number = await quote_repo.get_last_number_with_prefix(prefix)

    next_seq = 1
    if last_number:
        try:
            next_seq = int(last_number[len(prefix):]) + 1
        except ValueError:
            logger.warning(f"Unparseable quote number {last_number}, restarting sequence")
    return f"{prefix}{next_seq:04d}"


def apply_product_defaults(fields: Dict[str, Any], product: CatalogProduct) -> Dict[str, Any]:
    """
    Fill line item fields from a catalog product.

    The product code always comes from the catalog; description, unit, cost
    and price only where the caller left them unset.
    """
    fields["product_code"] = product.product_code
    if not fields.get("description"):
        fields["description"] = product.product_name
    if not fields.get("unit"):
        fields["unit"] = product.unit_type or settings.DEFAULT_UNIT
    if fields.get("unit_cost") is None:
        fields["unit_cost"] = product.cost_price if product.cost_price is not None else product.base_rate
    if fields.get("unit_price") is None:
        fields["unit_price"] = product.sell_price if product.sell_price is not None else product.base_rate
    return fields


class QuoteService(BaseService):
    """Service for quote operations."""

    def __init__(
        self,
        session: AsyncSession,
        catalog: CatalogLookup,
        locks: QuoteLockRegistry = quote_locks,
    ):
        self.session = session
        self.catalog = catalog
        self.locks = locks
        self.quote_repo = QuoteRepository(session)
        self.section_repo = QuoteSectionRepository(session)
        self.line_item_repo = QuoteLineItemRepository(session)
        self.contact_repo = QuoteContactRepository(session)
        self.calculation = CalculationService(session)

    # Quotes

    async def create_quote(self, quote_data: QuoteCreate, created_by: Optional[str] = None) -> QuoteResponse:
        """Create a draft quote with the next sequential number."""
        async with self.locks.hold(NUMBER_SEQUENCE_KEY):
            quote_number = await next_quote_number(self.quote_repo)
            quote_dict = quote_data.model_dump()
            quote_dict.update({
                "quote_number": quote_number,
                "version": 1,
                "parent_id": None,
                "status": QuoteStatus.DRAFT,
                "currency": quote_data.currency or settings.DEFAULT_CURRENCY,
                "vat_rate": quote_data.vat_rate if quote_data.vat_rate is not None else settings.DEFAULT_VAT_RATE,
                "created_by": created_by,
            })
            quote = await self.quote_repo.create(**quote_dict)
            await self.calculation.recalculate_all(quote.id)
            await self.session.commit()

        logger.info(
            f"Created quote {quote_number}",
            extra={"quote_id": str(quote.id), "created_by": created_by},
        )
        return await self.get_quote(quote.id)

    async def get_quote(self, quote_id: UUID) -> QuoteResponse:
        """Get quote with sections, line items and contacts."""
        quote = await self._get_aggregate(quote_id)
        return QuoteResponse.model_validate(quote)

    async def list_quotes(
        self,
        skip: int = 0,
        limit: int = 100,
        status: Optional[QuoteStatus] = None,
        search: Optional[str] = None,
    ) -> QuoteListResponse:
        """List quotes with filters."""
        quotes = await self.quote_repo.list(skip=skip, limit=limit, status=status, search=search)
        total = await self.quote_repo.count(status=status, search=search)
        return QuoteListResponse(
            items=[QuoteListItem.model_validate(quote) for quote in quotes],
            total=total,
        )

    async def update_quote(self, quote_id: UUID, quote_data: QuoteUpdate) -> QuoteResponse:
        """Update the whole-quote fields of a draft quote."""
        async with self.locks.hold(quote_id):
            quote = await self._get_aggregate(quote_id)
            ensure_draft(quote, "edited")

            update_dict = quote_data.model_dump(exclude_unset=True)
            if update_dict.get("currency") is None:
                update_dict.pop("currency", None)
            if update_dict.get("vat_rate") is None:
                update_dict.pop("vat_rate", None)

            pricing_changed = (
                ("discount_percent" in update_dict and update_dict["discount_percent"] != quote.discount_percent)
                or ("vat_rate" in update_dict and update_dict["vat_rate"] != quote.vat_rate)
            )
            for key, value in update_dict.items():
                setattr(quote, key, value)
            if pricing_changed:
                self.calculation.apply_quote_totals(quote)

            await self.session.commit()

        return await self.get_quote(quote_id)

    async def delete_quote(self, quote_id: UUID) -> None:
        """Soft delete a draft quote."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_draft(quote, "deleted")
            quote.is_deleted = True
            await self.session.commit()

        logger.info(f"Deleted quote {quote.quote_number}", extra={"quote_id": str(quote_id)})

    async def recalculate(self, quote_id: UUID) -> QuoteResponse:
        """Recompute every total of a quote and commit."""
        async with self.locks.hold(quote_id):
            await self.calculation.recalculate_all(quote_id)
            await self.session.commit()
        return await self.get_quote(quote_id)

    # Sections

    async def add_section(self, quote_id: UUID, section_data: QuoteSectionCreate) -> QuoteSectionResponse:
        """Add a section, expanding a catalog template into line items when given."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            template = None
            if section_data.source_template_id:
                template = await self.catalog.get_template(section_data.source_template_id)
                if not template:
                    raise NotFoundError("Template", section_data.source_template_id)

            sort_order = section_data.sort_order
            if sort_order is None:
                sort_order = await self.section_repo.get_max_sort_order(quote_id) + 1

            section = await self.section_repo.create(
                quote_id=quote_id,
                source_template_id=section_data.source_template_id,
                name=section_data.name or template.name,
                description=section_data.description or (template.description if template else None),
                sort_order=sort_order,
            )

            if template:
                for item in template.items:
                    fields = apply_product_defaults(
                        {
                            "product_id": item.product.id,
                            "quantity": item.default_quantity,
                            "sort_order": item.sort_order,
                            "notes": item.notes,
                        },
                        item.product,
                    )
                    line_item = await self.line_item_repo.create(section_id=section.id, **fields)
                    self.calculation.calculate_line_item(line_item)
                logger.info(
                    f"Expanded template {template.name} into {len(template.items)} line items",
                    extra={"quote_id": str(quote_id), "template_id": str(template.id)},
                )

            await self.calculation.calculate_section_totals(section.id)
            await self.calculation.calculate_quote_totals(quote_id)
            await self.session.commit()

            section = await self.section_repo.get_with_line_items(section.id)
        return QuoteSectionResponse.model_validate(section)

    async def update_section(self, section_id: UUID, section_data: QuoteSectionUpdate) -> QuoteSectionResponse:
        """Rename, describe or reorder a section."""
        quote_id = await self._quote_id_of_section(section_id)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            section = await self.section_repo.get_with_line_items(section_id)
            await self.section_repo.update(section, **section_data.model_dump())
            await self.session.commit()
        return QuoteSectionResponse.model_validate(section)

    async def delete_section(self, section_id: UUID) -> None:
        """Delete a section with its line items."""
        quote_id = await self._quote_id_of_section(section_id)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            section = await self.section_repo.get(section_id)
            await self.section_repo.delete(section)
            await self.calculation.calculate_quote_totals(quote_id)
            await self.session.commit()

    # Line items

    async def add_line_item(self, section_id: UUID, item_data: QuoteLineItemCreate) -> QuoteLineItemResponse:
        """Add a line item to a section, defaulting from the catalog when linked."""
        quote_id = await self._quote_id_of_section(section_id)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            fields = item_data.model_dump()
            if item_data.product_id:
                product = await self._get_product(item_data.product_id)
                apply_product_defaults(fields, product)
            else:
                fields["product_code"] = None
                fields["unit"] = fields.get("unit") or settings.DEFAULT_UNIT
                if fields.get("unit_price") is None:
                    fields["unit_price"] = 0
                if fields.get("unit_cost") is None:
                    fields["unit_cost"] = 0
            if not fields.get("description"):
                raise QuoteValidationError(["Description is required"])
            if fields.get("sort_order") is None:
                fields["sort_order"] = await self.line_item_repo.get_max_sort_order(section_id) + 1

            line_item = await self.line_item_repo.create(section_id=section_id, **fields)
            self.calculation.calculate_line_item(line_item)
            await self.calculation.calculate_section_totals(section_id)
            await self.calculation.calculate_quote_totals(quote_id)
            await self.session.commit()
        return QuoteLineItemResponse.model_validate(line_item)

    async def update_line_item(self, line_item_id: UUID, item_data: QuoteLineItemUpdate) -> QuoteLineItemResponse:
        """Replace the editable fields of a line item."""
        quote_id = await self._quote_id_of_line_item(line_item_id)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            line_item = await self.line_item_repo.get(line_item_id)
            fields = item_data.model_dump()
            if item_data.product_id:
                product = await self._get_product(item_data.product_id)
                fields["product_code"] = product.product_code
                fields["unit"] = fields.get("unit") or product.unit_type or settings.DEFAULT_UNIT
            else:
                fields["product_code"] = None
                fields["unit"] = fields.get("unit") or settings.DEFAULT_UNIT

            for key, value in fields.items():
                setattr(line_item, key, value)
            self.calculation.calculate_line_item(line_item)
            await self.calculation.calculate_section_totals(line_item.section_id)
            await self.calculation.calculate_quote_totals(quote_id)
            await self.session.commit()
        return QuoteLineItemResponse.model_validate(line_item)

    async def delete_line_item(self, line_item_id: UUID) -> None:
        """Delete a line item and roll the totals up again."""
        quote_id = await self._quote_id_of_line_item(line_item_id)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            line_item = await self.line_item_repo.get(line_item_id)
            section_id = line_item.section_id
            await self.line_item_repo.delete(line_item)
            await self.calculation.calculate_section_totals(section_id)
            await self.calculation.calculate_quote_totals(quote_id)
            await self.session.commit()

    # Contacts

    async def add_contact(self, quote_id: UUID, contact_data: QuoteContactCreate) -> QuoteContactResponse:
        """Attach a contact. The first contact of a quote becomes primary."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            existing = await self.contact_repo.list_by_quote(quote_id)
            is_primary = contact_data.is_primary or not existing
            if is_primary:
                self._demote_contacts(existing)

            contact_dict = contact_data.model_dump()
            contact_dict["is_primary"] = is_primary
            contact = await self.contact_repo.create(quote_id=quote_id, **contact_dict)
            await self.session.commit()
        return QuoteContactResponse.model_validate(contact)

    async def update_contact(self, contact_id: UUID, contact_data: QuoteContactUpdate) -> QuoteContactResponse:
        """
        Update a contact.

        Flagging a contact as primary demotes the current primary. Clearing
        the flag on the primary is ignored; another contact has to be made
        primary instead.
        """
        quote_id = await self._quote_id_of_contact(contact_id)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            contacts = await self.contact_repo.list_by_quote(quote_id)
            contact = next(c for c in contacts if c.id == contact_id)

            update_dict = contact_data.model_dump()
            make_primary = update_dict.pop("is_primary")
            for key, value in update_dict.items():
                setattr(contact, key, value)
            if make_primary and not contact.is_primary:
                self._demote_contacts(contacts)
                contact.is_primary = True

            await self.session.commit()
        return QuoteContactResponse.model_validate(contact)

    async def delete_contact(self, contact_id: UUID) -> None:
        """Remove a contact, promoting the earliest remaining one if it was primary."""
        quote_id = await self._quote_id_of_contact(contact_id)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_editable(quote)

            contacts = await self.contact_repo.list_by_quote(quote_id)
            contact = next(c for c in contacts if c.id == contact_id)
            remaining = [c for c in contacts if c.id != contact_id]

            await self.contact_repo.delete(contact)
            if contact.is_primary and remaining:
                remaining[0].is_primary = True
            await self.session.commit()

    # Helpers

    @staticmethod
    def _demote_contacts(contacts) -> None:
        for other in contacts:
            other.is_primary = False

    async def _get_quote(self, quote_id: UUID) -> Quote:
        quote = await self.quote_repo.get(quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)
        return quote

    async def _get_aggregate(self, quote_id: UUID) -> Quote:
        quote = await self.quote_repo.get_aggregate(quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)
        return quote

    async def _get_product(self, product_id: UUID) -> CatalogProduct:
        product = await self.catalog.get_product(product_id)
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    async def _quote_id_of_section(self, section_id: UUID) -> UUID:
        quote_id = await self.section_repo.get_quote_id(section_id)
        if not quote_id:
            raise NotFoundError("Section", section_id)
        return quote_id

    async def _quote_id_of_line_item(self, line_item_id: UUID) -> UUID:
        quote_id = await self.line_item_repo.get_quote_id(line_item_id)
        if not quote_id:
            raise NotFoundError("Line item", line_item_id)
        return quote_id

    async def _quote_id_of_contact(self, contact_id: UUID) -> UUID:
        quote_id = await self.contact_repo.get_quote_id(contact_id)
        if not quote_id:
            raise NotFoundError("Contact", contact_id)
        return quote_id
