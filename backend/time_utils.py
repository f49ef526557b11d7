"""
Clock helpers. Every timestamp the service writes comes from utc_now().
"""

from datetime import datetime, timezone
from typing import Optional

CLOSED_STATUSES = ("completed", "archived")


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a stored datetime to aware UTC.

    SQLite drops tzinfo on round-trip, so naive values are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_overdue(due_date: Optional[datetime], status: str) -> bool:
    """A task is overdue when its due date has passed and it is neither completed nor archived."""
    if due_date is None or status in CLOSED_STATUSES:
        return False
    return as_utc(due_date) < utc_now()
