"""
Timestamps and the append-only quote note log.
"""

from datetime import datetime, timezone
from typing import Optional


NOTE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def append_note(existing_notes: Optional[str], new_note: str, at: Optional[datetime] = None) -> str:
    """
    Append a timestamped entry to a note log.

    Existing entries are never rewritten; the new entry goes on its own line
    as "[YYYY-MM-DD HH:MM] text".
    """
    timestamp = (at or utcnow()).strftime(NOTE_TIMESTAMP_FORMAT)
    entry = f"[{timestamp}] {new_note}"
    if not existing_notes:
        return entry
    return f"{existing_notes}\n{entry}"


def format_actor_note(action: str, actor: Optional[str] = None, reason: Optional[str] = None) -> str:
    """Build "<action> by <actor>: <reason>" leaving out the missing parts."""
    text = action
    if actor:
        text = f"{text} by {actor}"
    if reason:
        text = f"{text}: {reason}"
    return text
