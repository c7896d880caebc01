"""
Due date helpers.

Due dates are integer milliseconds at UTC midnight (date-only precision).
"""

from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from typing import Optional

DAY_MS = 24 * 60 * 60 * 1000

OVERDUE = "overdue"
TODAY = "today"
SOON = "soon"
NORMAL = "normal"


def date_to_ms(day: date) -> int:
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp() * 1000)


def ms_to_date(ms: int) -> date:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).date()


def format_due(ms: int) -> str:
    """YYYY-MM-DD"""
    return ms_to_date(ms).isoformat()


def parse_due(text: str) -> Optional[int]:
    """Parse YYYY-MM-DD; None when the date does not exist."""
    try:
        return date_to_ms(date.fromisoformat(text))
    except ValueError:
        return None


def normalize_due(ms: Optional[int]) -> Optional[int]:
    """Truncate a timestamp to its UTC day."""
    if ms is None:
        return None
    return date_to_ms(ms_to_date(ms))


def _today(today: Optional[date]) -> date:
    return today or datetime.now(timezone.utc).date()


def is_overdue(ms: int, today: Optional[date] = None) -> bool:
    return ms < date_to_ms(_today(today))


def is_due_today(ms: int, today: Optional[date] = None) -> bool:
    start = date_to_ms(_today(today))
    return start <= ms < start + DAY_MS


def is_due_this_week(ms: int, today: Optional[date] = None) -> bool:
    start = date_to_ms(_today(today))
    return start <= ms < start + 7 * DAY_MS


def due_urgency(ms: Optional[int], today: Optional[date] = None) -> Optional[str]:
    if ms is None:
        return None
    if is_overdue(ms, today):
        return OVERDUE
    if is_due_today(ms, today):
        return TODAY
    soon = date_to_ms(_today(today) + timedelta(days=3))
    if ms < soon:
        return SOON
    return NORMAL


def matches_due_filter(ms: Optional[int], due_filter: str, today: Optional[date] = None) -> bool:
    """Filters: all, overdue, today (includes overdue), week (includes overdue)."""
    if due_filter == "all":
        return True
    if ms is None:
        return False
    if due_filter == "overdue":
        return is_overdue(ms, today)
    if due_filter == "today":
        return is_due_today(ms, today) or is_overdue(ms, today)
    if due_filter == "week":
        return is_due_this_week(ms, today) or is_overdue(ms, today)
    return False
