"""
Conversion service turning won quotes into stock orders.

Preview checks selected line items against live stock and never writes.
Commit creates a single order through the order collaborator, then records
the order on the quote note log.
"""

import asyncio
import logging
import math
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.services.base_service import BaseService
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.core.config import settings
from quotedesk.core.exceptions import (
    NotFoundError, IneligibleForConversionError, CollaboratorFailureError,
)
from quotedesk.core.integrations.inventory import InventoryQuery
from quotedesk.core.integrations.orders import OrderCreationService
from quotedesk.models.quote import Quote, QuoteLineItem, QuoteStatus
from quotedesk.schemas.conversion import (
    ConversionMode, ConversionRequest, ConversionPreview, ConversionPreviewItem,
    ConversionResult, CreatedOrder,
)
from quotedesk.schemas.fulfillment import OrderCreateRequest, OrderLineRequest
from quotedesk.utils.audit import NOTE_TIMESTAMP_FORMAT, append_note, utcnow
from quotedesk.utils.locking import QuoteLockRegistry, quote_locks

logger = logging.getLogger(__name__)

NOT_WON_MESSAGE = "Only won quotes can be converted to stock orders"
NO_ORDERABLE_MESSAGE = "No orderable items found (all items are ad-hoc)"


def select_line_items(quote: Quote, request: ConversionRequest) -> List[QuoteLineItem]:
    """Line items taking part in a conversion, in section then item order."""
    items = [item for section in quote.sections for item in section.line_items]
    if request.mode == ConversionMode.SELECTED_SECTIONS:
        section_ids = set(request.selected_section_ids)
        return [item for item in items if item.section_id in section_ids]
    if request.mode == ConversionMode.SELECTED_ITEMS:
        item_ids = set(request.selected_line_item_ids)
        return [item for item in items if item.id in item_ids]
    return items


def _order_note_prefix(order_number: str) -> str:
    return f"Stock order {order_number} created for "


def order_link_note(order_number: str, item_count: int, created_at) -> str:
    return (
        f"{_order_note_prefix(order_number)}{item_count} items "
        f"on {created_at.strftime(NOTE_TIMESTAMP_FORMAT)} UTC"
    )


def has_order_note(notes: Optional[str], order_number: str) -> bool:
    """True when the note log already records this exact order number."""
    prefix = _order_note_prefix(order_number)
    return any(
        line.partition("] ")[2].startswith(prefix)
        for line in (notes or "").splitlines()
    )


class ConversionService(BaseService):
    """Service for converting won quotes into stock orders."""

    def __init__(
        self,
        session: AsyncSession,
        inventory: InventoryQuery,
        orders: OrderCreationService,
        locks: QuoteLockRegistry = quote_locks,
        order_timeout: Optional[float] = None,
    ):
        self.session = session
        self.inventory = inventory
        self.orders = orders
        self.locks = locks
        self.order_timeout = order_timeout or settings.ORDER_CREATION_TIMEOUT_SECONDS
        self.quote_repo = QuoteRepository(session)

    async def can_convert(self, quote_id: UUID) -> bool:
        """Whether the quote exists and is won."""
        quote = await self.quote_repo.get(quote_id)
        return quote is not None and quote.status == QuoteStatus.WON

    async def preview(self, request: ConversionRequest) -> ConversionPreview:
        """
        Check the selected line items against stock at the source location.

        An unknown quote yields an empty preview. Ad-hoc items are listed with
        no availability and never count as stock warnings.
        """
        quote = await self.quote_repo.get_aggregate(request.quote_id)
        if not quote:
            return ConversionPreview()
        self._ensure_won(quote)

        preview_items = []
        for item in select_line_items(quote, request):
            if item.product_id:
                stock = await self.inventory.get_stock_level(item.product_id, request.source_location_id)
                available = stock.available
                preview_items.append(self._preview_item(item, available, available >= item.quantity, False))
            else:
                preview_items.append(self._preview_item(item, Decimal("0"), False, True))

        return ConversionPreview(
            total_items=len(preview_items),
            total_quantity=sum((item.quantity for item in preview_items), Decimal("0")),
            total_value=sum((item.line_total for item in preview_items), Decimal("0")),
            has_stock_warnings=any(not i.has_sufficient_stock and not i.is_ad_hoc for i in preview_items),
            has_ad_hoc_items=any(i.is_ad_hoc for i in preview_items),
            items=preview_items,
        )

    async def commit(self, request: ConversionRequest, requested_by: str) -> ConversionResult:
        """
        Create one stock order from the selected, product-linked line items.

        Ad-hoc items are skipped with a warning. Order creation is attempted
        once; if it fails the quote is left untouched.
        """
        async with self.locks.hold(request.quote_id):
            quote = await self.quote_repo.get_aggregate(request.quote_id)
            if not quote:
                raise NotFoundError("Quote", request.quote_id)
            self._ensure_won(quote)

            selected = select_line_items(quote, request)
            orderable = [item for item in selected if item.product_id]
            skipped_ids = [item.id for item in selected if not item.product_id]

            warnings = []
            if skipped_ids:
                warnings.append(f"{len(skipped_ids)} ad-hoc item(s) were skipped (no product linked)")
            if not orderable:
                raise IneligibleForConversionError(
                    NO_ORDERABLE_MESSAGE,
                    quote_id=quote.id,
                    current_status=quote.status,
                    warnings=warnings,
                    skipped_item_ids=skipped_ids,
                )

            order_request = self._build_order_request(quote, request, orderable, requested_by)
            result = await self._create_order(order_request, warnings)

            logger.info(
                f"Created stock order {result.order_number} from quote {quote.quote_number}",
                extra={
                    "quote_id": str(quote.id),
                    "order_id": str(result.order_id),
                    "item_count": len(orderable),
                    "skipped": len(skipped_ids),
                },
            )

            await self._record_order(quote, result.order_number, len(orderable), warnings)

        return ConversionResult(
            success=True,
            created_orders=[
                CreatedOrder(
                    order_id=result.order_id,
                    order_number=result.order_number,
                    item_count=len(orderable),
                    total_value=result.order_total,
                )
            ],
            warnings=warnings,
            skipped_item_ids=skipped_ids,
        )

    async def reconcile_order_notes(self, quote_id: UUID) -> int:
        """
        Add the missing order notes for orders that point back at a quote.

        Repairs quotes whose note write failed after the order was created.
        Orders already mentioned in the note log are left alone, so repeated
        runs add nothing. Returns the number of notes added.
        """
        async with self.locks.hold(quote_id):
            quote = await self.quote_repo.get(quote_id)
            if not quote:
                raise NotFoundError("Quote", quote_id)

            orders = await self.orders.list_orders_for_quote(quote_id)
            added = 0
            for order in orders:
                if has_order_note(quote.notes, order.order_number):
                    continue
                quote.notes = append_note(
                    quote.notes,
                    order_link_note(order.order_number, order.item_count, order.created_at or utcnow()),
                )
                added += 1

            if added:
                await self.session.commit()
                logger.info(
                    f"Reconciled {added} order notes on quote {quote.quote_number}",
                    extra={"quote_id": str(quote_id), "added": added},
                )
        return added

    @staticmethod
    def _ensure_won(quote: Quote) -> None:
        if quote.status != QuoteStatus.WON:
            raise IneligibleForConversionError(NOT_WON_MESSAGE, quote_id=quote.id, current_status=quote.status)

    @staticmethod
    def _preview_item(item: QuoteLineItem, available: Decimal, sufficient: bool, ad_hoc: bool) -> ConversionPreviewItem:
        return ConversionPreviewItem(
            line_item_id=item.id,
            product_id=item.product_id,
            product_code=item.product_code,
            description=item.description,
            quantity=item.quantity,
            available_stock=available,
            has_sufficient_stock=sufficient,
            is_ad_hoc=ad_hoc,
            unit_price=item.unit_price,
            line_total=item.line_total,
        )

    @staticmethod
    def _build_order_request(
        quote: Quote,
        request: ConversionRequest,
        orderable: List[QuoteLineItem],
        requested_by: str,
    ) -> OrderCreateRequest:
        notes = f"Created from Quote {quote.quote_number}"
        if request.notes and request.notes.strip():
            notes = f"{notes}\n{request.notes}"

        return OrderCreateRequest(
            site_id=request.site_id,
            site_name=request.site_name,
            order_date=utcnow(),
            required_date=request.required_date,
            requested_by=requested_by,
            notes=notes,
            source_location_id=request.source_location_id,
            lines=[
                # Stock is ordered in whole units
                OrderLineRequest(product_id=item.product_id, quantity_requested=math.ceil(item.quantity))
                for item in orderable
            ],
            source_quote_id=quote.id,
            source_quote_number=quote.quote_number,
        )

    async def _create_order(self, order_request: OrderCreateRequest, warnings: List[str]):
        try:
            result = await asyncio.wait_for(self.orders.create_order(order_request), timeout=self.order_timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Order creation timed out after {self.order_timeout}s",
                extra={"source_quote_id": str(order_request.source_quote_id)},
            )
            raise CollaboratorFailureError(
                f"Order creation timed out after {self.order_timeout} seconds", warnings=warnings
            )

        if not result.success:
            raise CollaboratorFailureError(result.message or "Failed to create stock order", warnings=warnings)
        return result

    async def _record_order(self, quote: Quote, order_number: str, item_count: int, warnings: List[str]) -> None:
        """Append the order note. The order already exists, so a failed write only warns."""
        quote_id = quote.id
        try:
            quote.notes = append_note(quote.notes, order_link_note(order_number, item_count, utcnow()))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                f"Stock order {order_number} created but quote note was not saved: {e}",
                extra={"quote_id": str(quote_id), "order_number": order_number},
                exc_info=True,
            )
            warnings.append(f"Stock order {order_number} was created but the quote note could not be saved")
