"""
Calculation service keeping line item, section and quote totals consistent.

Totals roll up bottom-up: line items feed their section, sections feed the
quote. All arithmetic is Decimal; rounded figures use half-to-even at two
places.
"""

import logging
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.services.base_service import BaseService
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.db.repositories.quote_section_repository import QuoteSectionRepository
from quotedesk.models.quote import Quote, QuoteSection, QuoteLineItem
from quotedesk.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored or supplied numeric value to Decimal; None counts as zero."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole x 100 rounded to two places, or 0 when whole is not positive."""
    if whole <= ZERO:
        return round_money(ZERO)
    return round_money(part / whole * HUNDRED)


class CalculationService(BaseService):
    """Service recomputing derived totals of the quote aggregate."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.quote_repo = QuoteRepository(session)
        self.section_repo = QuoteSectionRepository(session)

    @staticmethod
    def calculate_line_item(line_item: QuoteLineItem) -> QuoteLineItem:
        """Overwrite the derived fields of one line item. Touches nothing else."""
        quantity = to_decimal(line_item.quantity)
        line_total = quantity * to_decimal(line_item.unit_price)
        line_cost = quantity * to_decimal(line_item.unit_cost)
        line_margin = line_total - line_cost

        line_item.line_total = line_total
        line_item.line_cost = line_cost
        line_item.line_margin = line_margin
        line_item.margin_percent = percent_of(line_margin, line_total)
        return line_item

    @staticmethod
    def apply_section_totals(section: QuoteSection) -> QuoteSection:
        """Sum the loaded line items of a section into its totals."""
        section_total = sum((to_decimal(item.line_total) for item in section.line_items), ZERO)
        section_cost = sum((to_decimal(item.line_cost) for item in section.line_items), ZERO)

        section.section_total = section_total
        section.section_cost = section_cost
        section.section_margin = section_total - section_cost
        return section

    @staticmethod
    def apply_quote_totals(quote: Quote) -> Quote:
        """Roll the loaded sections of a quote up into its eight totals."""
        subtotal = sum((to_decimal(section.section_total) for section in quote.sections), ZERO)
        total_cost = sum((to_decimal(section.section_cost) for section in quote.sections), ZERO)

        discount_percent = to_decimal(quote.discount_percent)
        if discount_percent > ZERO:
            discount_amount = round_money(subtotal * discount_percent / HUNDRED)
        else:
            discount_amount = ZERO
        net_total = subtotal - discount_amount
        vat_amount = round_money(net_total * to_decimal(quote.vat_rate) / HUNDRED)
        total_margin = net_total - total_cost

        quote.subtotal = subtotal
        quote.total_cost = total_cost
        quote.discount_amount = discount_amount
        quote.net_total = net_total
        quote.vat_amount = vat_amount
        quote.grand_total = net_total + vat_amount
        quote.total_margin = total_margin
        quote.margin_percent = percent_of(total_margin, net_total)
        return quote

    async def calculate_section_totals(self, section_id: UUID) -> QuoteSection:
        """Recompute section totals from its persisted line items."""
        section = await self.section_repo.get_with_line_items(section_id)
        if not section:
            raise NotFoundError("Section", section_id)

        self.apply_section_totals(section)
        await self.session.flush()
        return section

    async def calculate_quote_totals(self, quote_id: UUID) -> Quote:
        """Recompute quote totals from its persisted sections."""
        quote = await self.quote_repo.get_aggregate(quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)

        self.apply_quote_totals(quote)
        await self.session.flush()
        return quote

    async def recalculate_all(self, quote_id: UUID) -> Quote:
        """
        Recompute every derived value of a quote in one unit.

        Line items first, then sections from the updated line items, then the
        quote from the updated sections. Running it twice changes nothing.
        """
        quote = await self.quote_repo.get_aggregate(quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)

        for section in quote.sections:
            for line_item in section.line_items:
                self.calculate_line_item(line_item)
            self.apply_section_totals(section)
        self.apply_quote_totals(quote)

        await self.session.flush()
        logger.debug(
            f"Recalculated quote {quote.quote_number}",
            extra={"quote_id": str(quote_id), "grand_total": str(quote.grand_total)},
        )
        return quote
