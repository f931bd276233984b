"""
Revision service creating new versions of a quote within its revision chain.
"""

import logging
from typing import FrozenSet, List, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.services.base_service import BaseService
from quotedesk.services.calculation_service import CalculationService
from quotedesk.services.quote_service import NUMBER_SEQUENCE_KEY, next_quote_number
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.core.exceptions import NotFoundError, InvalidStateError
from quotedesk.models.quote import Quote, QuoteSection, QuoteLineItem, QuoteContact, QuoteStatus
from quotedesk.schemas.quote import QuoteResponse, QuoteListItem
from quotedesk.utils.audit import append_note, utcnow
from quotedesk.utils.locking import QuoteLockRegistry, quote_locks

logger = logging.getLogger(__name__)

REVISABLE_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.REJECTED, QuoteStatus.LOST, QuoteStatus.EXPIRED, QuoteStatus.APPROVED,
})

# Copied verbatim from the source quote
COPIED_QUOTE_FIELDS = (
    "company_id", "company_name", "project_name", "project_address", "project_description",
    "currency", "discount_percent", "vat_rate", "payment_terms", "terms_and_conditions",
)


class RevisionService(BaseService):
    """Service for quote revisions."""

    def __init__(self, session: AsyncSession, locks: QuoteLockRegistry = quote_locks):
        self.session = session
        self.locks = locks
        self.quote_repo = QuoteRepository(session)
        self.calculation = CalculationService(session)

    async def create_revision(
        self,
        quote_id: UUID,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> QuoteResponse:
        """
        Create a draft copy of a quote as the next version of its chain.

        Sections, line items and contacts are copied into new rows; lifecycle
        fields start empty and the validity window keeps its length from today.
        """
        source = await self._get_quote(quote_id)
        root_id = source.parent_id or source.id

        # Edits to the source wait until the copy is taken
        async with self.locks.hold_many({root_id, quote_id, NUMBER_SEQUENCE_KEY}):
            source = await self._get_aggregate(quote_id)
            if source.status not in REVISABLE_STATUSES:
                raise InvalidStateError(
                    f"Cannot create a revision of a quote with status {source.status.value}",
                    source.status,
                )

            new_version = await self.quote_repo.get_max_version_in_chain(root_id) + 1
            quote_number = await next_quote_number(self.quote_repo)

            today = utcnow().date()
            valid_until = None
            if source.valid_until is not None:
                valid_until = today + (source.valid_until - source.quote_date)

            revision_note = f"Revision of {source.quote_number} v{source.version}"
            if notes:
                revision_note = f"{revision_note}\n{notes}"

            revision = await self.quote_repo.create(
                quote_number=quote_number,
                version=new_version,
                parent_id=root_id,
                status=QuoteStatus.DRAFT,
                quote_date=today,
                valid_until=valid_until,
                notes=append_note(None, revision_note),
                created_by=actor,
                **{field: getattr(source, field) for field in COPIED_QUOTE_FIELDS},
            )
            self._copy_children(source, revision)

            await self.calculation.recalculate_all(revision.id)
            await self.session.commit()

        logger.info(
            f"Created revision {quote_number} v{new_version} of {source.quote_number}",
            extra={
                "quote_id": str(revision.id),
                "source_quote_id": str(source.id),
                "root_id": str(root_id),
                "version": new_version,
            },
        )
        revision = await self._get_aggregate(revision.id)
        return QuoteResponse.model_validate(revision)

    async def list_revisions(self, quote_id: UUID) -> List[QuoteListItem]:
        """Every quote of the chain the given quote belongs to, by version."""
        quote = await self._get_quote(quote_id)
        chain = await self.quote_repo.list_chain(quote.parent_id or quote.id)
        return [QuoteListItem.model_validate(member) for member in chain]

    def _copy_children(self, source: Quote, revision: Quote) -> None:
        for section in source.sections:
            self.session.add(QuoteSection(
                quote_id=revision.id,
                source_template_id=section.source_template_id,
                name=section.name,
                description=section.description,
                sort_order=section.sort_order,
                line_items=[
                    QuoteLineItem(
                        product_id=item.product_id,
                        product_code=item.product_code,
                        description=item.description,
                        unit=item.unit,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        unit_cost=item.unit_cost,
                        sort_order=item.sort_order,
                        notes=item.notes,
                    )
                    for item in section.line_items
                ],
            ))

        for contact in source.contacts:
            self.session.add(QuoteContact(
                quote_id=revision.id,
                contact_id=contact.contact_id,
                contact_name=contact.contact_name,
                email=contact.email,
                phone=contact.phone,
                role=contact.role,
                is_primary=contact.is_primary,
                created_at=contact.created_at,
            ))

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
