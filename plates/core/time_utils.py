"""Date and time helpers shared by the planner, the health scorer and storage.

All date math is naive and day-granular.
"""

from __future__ import annotations

from datetime import date, datetime


def time_to_minutes(time_str: str) -> int | None:
    """Convert an HH:MM string to minutes from midnight, or None if malformed."""
    if not time_str:
        return None
    try:
        t = datetime.strptime(time_str.strip(), "%H:%M").time()
    except (ValueError, TypeError, AttributeError):
        return None
    return t.hour * 60 + t.minute


def parse_date(value: str | date | datetime | None) -> date | None:
    """Return the calendar date of an ISO date/datetime string (or date object).

    Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        if "T" in value or " " in value.strip():
            return datetime.fromisoformat(value.strip()).date()
        return date.fromisoformat(value.strip()[:10])
    except (ValueError, TypeError, AttributeError):
        return None


def sunday_weekday(d: date) -> int:
    """Weekday index with Sunday as 0 and Saturday as 6."""
    return (d.weekday() + 1) % 7
