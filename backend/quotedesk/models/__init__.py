"""
Database models.
Import all models here to ensure they're registered with Base.
"""

from quotedesk.models.quote import (
    Quote,
    QuoteSection,
    QuoteLineItem,
    QuoteContact,
    QuoteStatus,
)

__all__ = [
    "Quote",
    "QuoteSection",
    "QuoteLineItem",
    "QuoteContact",
    "QuoteStatus",
]
