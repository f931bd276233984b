"""
Workflow service driving quote status changes.

Every change is checked against ALLOWED_TRANSITIONS, applies its side
effects, appends a timestamped entry to the quote note log and commits.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Type, TypeVar
from uuid import UUID
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.services.base_service import BaseService
from quotedesk.db.repositories.quote_repository import QuoteRepository
from quotedesk.models.quote import Quote, QuoteStatus
from quotedesk.schemas.quote import LoseQuoteRequest, QuoteResponse, RejectQuoteRequest
from quotedesk.core.config import settings
from quotedesk.core.exceptions import (
    NotFoundError, InvalidStateError, InvalidTransitionError, QuoteValidationError,
)
from quotedesk.utils.audit import append_note, format_actor_note, utcnow
from quotedesk.utils.locking import QuoteLockRegistry, quote_locks

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


ALLOWED_TRANSITIONS: Dict[QuoteStatus, FrozenSet[QuoteStatus]] = {
    QuoteStatus.DRAFT: frozenset({QuoteStatus.SUBMITTED, QuoteStatus.CANCELLED}),
    QuoteStatus.SUBMITTED: frozenset({
        QuoteStatus.UNDER_REVIEW, QuoteStatus.APPROVED, QuoteStatus.REJECTED, QuoteStatus.CANCELLED,
    }),
    QuoteStatus.UNDER_REVIEW: frozenset({QuoteStatus.APPROVED, QuoteStatus.REJECTED, QuoteStatus.CANCELLED}),
    QuoteStatus.APPROVED: frozenset({QuoteStatus.WON, QuoteStatus.LOST, QuoteStatus.CANCELLED}),
    QuoteStatus.REJECTED: frozenset({QuoteStatus.DRAFT}),
    QuoteStatus.WON: frozenset(),
    QuoteStatus.LOST: frozenset({QuoteStatus.DRAFT}),
    QuoteStatus.EXPIRED: frozenset({QuoteStatus.DRAFT}),
    QuoteStatus.CANCELLED: frozenset(),
}

# Statuses the expiry sweep may move to EXPIRED
EXPIRABLE_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.DRAFT, QuoteStatus.SUBMITTED, QuoteStatus.UNDER_REVIEW, QuoteStatus.APPROVED,
})

# Sections, line items and contacts are frozen in these statuses
LOCKED_STATUSES: FrozenSet[QuoteStatus] = frozenset({
    QuoteStatus.WON, QuoteStatus.LOST, QuoteStatus.CANCELLED,
})

EXPIRY_NOTE = "Automatically expired - past validity date"


def can_transition_to(current: QuoteStatus, target: QuoteStatus) -> bool:
    """Check whether target is reachable from current in one step."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(quote: Quote, target: QuoteStatus) -> None:
    if not can_transition_to(quote.status, target):
        raise InvalidTransitionError(quote.status, target)


def ensure_editable(quote: Quote) -> None:
    """Raise unless the quote's sections, line items and contacts may change."""
    if quote.status in LOCKED_STATUSES:
        raise InvalidStateError(
            f"Cannot modify a quote with status {quote.status.value}",
            quote.status,
        )


def ensure_draft(quote: Quote, action: str) -> None:
    if quote.status != QuoteStatus.DRAFT:
        raise InvalidStateError(
            f"Only draft quotes can be {action}",
            quote.status,
        )


def _parse_request(schema: Type[RequestT], **fields) -> RequestT:
    """Build a lifecycle request, turning schema errors into QuoteValidationError."""
    try:
        return schema(**fields)
    except ValidationError as e:
        raise QuoteValidationError(
            [error["msg"].removeprefix("Value error, ") for error in e.errors()]
        ) from e


class WorkflowService(BaseService):
    """Service for quote lifecycle transitions."""

    def __init__(
        self,
        session: AsyncSession,
        locks: QuoteLockRegistry = quote_locks,
        system_actor: Optional[str] = None,
    ):
        self.session = session
        self.locks = locks
        self.system_actor = system_actor or settings.SYSTEM_ACTOR
        self.quote_repo = QuoteRepository(session)

    async def validate_for_submission(self, quote_id: UUID) -> None:
        """Raise QuoteValidationError listing every rule the quote violates."""
        quote = await self._get_quote(quote_id)
        errors = self.collect_submission_errors(quote)
        if errors:
            raise QuoteValidationError(errors)

    @staticmethod
    def collect_submission_errors(quote: Quote) -> List[str]:
        errors = []
        if not quote.sections:
            errors.append("Quote must have at least one section")
        for section in quote.sections:
            if not section.line_items:
                errors.append(f"Section '{section.name}' has no line items")
        if quote.grand_total is None or quote.grand_total <= 0:
            errors.append("Quote total must be greater than zero")
        return errors

    async def submit(self, quote_id: UUID, notes: Optional[str] = None, actor: Optional[str] = None) -> QuoteResponse:
        """Submit a draft quote for approval."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.SUBMITTED)

            errors = self.collect_submission_errors(quote)
            if errors:
                raise QuoteValidationError(errors)

            previous = quote.status
            quote.status = QuoteStatus.SUBMITTED
            quote.submitted_at = utcnow()
            quote.notes = append_note(quote.notes, format_actor_note("Submitted for approval", actor, notes))
            return await self._commit(quote, previous, actor)

    async def start_review(self, quote_id: UUID, actor: Optional[str] = None, notes: Optional[str] = None) -> QuoteResponse:
        """Move a submitted quote under review."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.UNDER_REVIEW)

            previous = quote.status
            quote.status = QuoteStatus.UNDER_REVIEW
            quote.notes = append_note(quote.notes, format_actor_note("Review started", actor, notes))
            return await self._commit(quote, previous, actor)

    async def approve(self, quote_id: UUID, actor: Optional[str] = None, notes: Optional[str] = None) -> QuoteResponse:
        """Approve a quote, recording approver and time."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.APPROVED)

            approver = actor or self.system_actor
            previous = quote.status
            quote.status = QuoteStatus.APPROVED
            quote.approved_by = approver
            quote.approved_at = utcnow()
            quote.notes = append_note(quote.notes, format_actor_note("Approved", approver, notes))
            return await self._commit(quote, previous, approver)

    async def reject(self, quote_id: UUID, reason: str, actor: Optional[str] = None) -> QuoteResponse:
        """Reject a quote. A non-empty reason is required."""
        request = _parse_request(RejectQuoteRequest, reason=reason or "")
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.REJECTED)

            rejected_by = actor or self.system_actor
            previous = quote.status
            quote.status = QuoteStatus.REJECTED
            quote.won_lost_reason = request.reason
            quote.notes = append_note(quote.notes, format_actor_note("Rejected", rejected_by, request.reason))
            return await self._commit(quote, previous, rejected_by)

    async def mark_won(
        self,
        quote_id: UUID,
        won_at: Optional[datetime] = None,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> QuoteResponse:
        """Mark an approved quote as won."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.WON)

            previous = quote.status
            quote.status = QuoteStatus.WON
            quote.won_at = won_at or utcnow()
            if reason:
                quote.won_lost_reason = reason
            if actor or reason:
                note = format_actor_note("Won", actor, reason)
            else:
                note = "Marked as Won"
            quote.notes = append_note(quote.notes, note)
            return await self._commit(quote, previous, actor)

    async def mark_lost(
        self,
        quote_id: UUID,
        reason: str,
        lost_at: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> QuoteResponse:
        """Mark an approved quote as lost. A non-empty reason is required."""
        request = _parse_request(LoseQuoteRequest, reason=reason or "", lost_at=lost_at)
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.LOST)

            previous = quote.status
            quote.status = QuoteStatus.LOST
            quote.lost_at = request.lost_at or utcnow()
            quote.won_lost_reason = request.reason
            quote.notes = append_note(quote.notes, format_actor_note("Lost", actor, request.reason))
            return await self._commit(quote, previous, actor)

    async def cancel(self, quote_id: UUID, actor: Optional[str] = None, reason: Optional[str] = None) -> QuoteResponse:
        """Cancel a quote that is not yet resolved."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.CANCELLED)

            cancelled_by = actor or self.system_actor
            previous = quote.status
            quote.status = QuoteStatus.CANCELLED
            quote.notes = append_note(quote.notes, format_actor_note("Cancelled", cancelled_by, reason))
            return await self._commit(quote, previous, cancelled_by)

    async def reopen(self, quote_id: UUID, actor: Optional[str] = None, notes: Optional[str] = None) -> QuoteResponse:
        """Return a rejected, lost or expired quote to draft."""
        async with self.locks.hold(quote_id):
            quote = await self._get_quote(quote_id)
            ensure_transition(quote, QuoteStatus.DRAFT)

            previous = quote.status
            quote.status = QuoteStatus.DRAFT
            quote.submitted_at = None
            quote.approved_at = None
            quote.approved_by = None
            quote.lost_at = None
            quote.won_lost_reason = None
            quote.notes = append_note(quote.notes, format_actor_note("Reopened as draft", actor, notes))
            return await self._commit(quote, previous, actor)

    async def transition(
        self,
        quote_id: UUID,
        target: QuoteStatus,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> QuoteResponse:
        """
        Move a quote to target through the matching lifecycle operation.

        EXPIRED is set only by the expiry sweep and is never a valid target here.
        """
        if target == QuoteStatus.EXPIRED:
            quote = await self._get_quote(quote_id)
            raise InvalidTransitionError(quote.status, target)

        if target == QuoteStatus.SUBMITTED:
            return await self.submit(quote_id, notes=reason, actor=actor)
        if target == QuoteStatus.UNDER_REVIEW:
            return await self.start_review(quote_id, actor=actor, notes=reason)
        if target == QuoteStatus.APPROVED:
            return await self.approve(quote_id, actor=actor, notes=reason)
        if target == QuoteStatus.REJECTED:
            return await self.reject(quote_id, reason=reason, actor=actor)
        if target == QuoteStatus.WON:
            return await self.mark_won(quote_id, reason=reason, actor=actor)
        if target == QuoteStatus.LOST:
            return await self.mark_lost(quote_id, reason=reason, actor=actor)
        if target == QuoteStatus.CANCELLED:
            return await self.cancel(quote_id, actor=actor, reason=reason)
        return await self.reopen(quote_id, actor=actor, notes=reason)

    def expire(self, quote: Quote) -> Quote:
        """
        Move a loaded quote to EXPIRED without committing.

        The caller holds the quote lock and owns the transaction.
        """
        if quote.status not in EXPIRABLE_STATUSES:
            raise InvalidTransitionError(quote.status, QuoteStatus.EXPIRED)

        previous = quote.status
        quote.status = QuoteStatus.EXPIRED
        quote.notes = append_note(quote.notes, EXPIRY_NOTE)
        logger.info(
            f"Quote {quote.quote_number} expired",
            extra={"quote_id": str(quote.id), "from_status": previous.value},
        )
        return quote

    async def _get_quote(self, quote_id: UUID) -> Quote:
        quote = await self.quote_repo.get_aggregate(quote_id)
        if not quote:
            raise NotFoundError("Quote", quote_id)
        return quote

    async def _commit(self, quote: Quote, previous: QuoteStatus, actor: Optional[str]) -> QuoteResponse:
        await self.session.commit()
        logger.info(
            f"Quote {quote.quote_number} transitioned {previous.value} -> {quote.status.value}",
            extra={
                "quote_id": str(quote.id),
                "from_status": previous.value,
                "to_status": quote.status.value,
                "actor": actor,
            },
        )
        quote = await self._get_quote(quote.id)
        return QuoteResponse.model_validate(quote)
