"""Recurrence calculator — pure business logic.

Given a task's recurrence rule and the date it was completed (or skipped),
finds the next date the task becomes eligible for planning again.

A None result means the rule has ended: the caller completes the task
permanently instead of rescheduling it.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta

from plates.core.time_utils import parse_date, sunday_weekday
from plates.data.models import RecurrenceRule

logger = logging.getLogger(__name__)


def next_occurrence(rule: RecurrenceRule, from_date: date) -> date | None:
    """Return the next eligible date after from_date, or None if the rule ended."""
    pattern = rule.pattern

    if pattern == "weekly":
        nxt = _next_weekly(rule.days, from_date)
    elif pattern == "biweekly":
        nxt = from_date + timedelta(days=14)
    elif pattern == "monthly":
        nxt = _next_monthly(rule.day_of_month or from_date.day, from_date)
    elif pattern == "custom":
        interval = rule.interval if rule.interval and rule.interval > 0 else 1
        nxt = from_date + timedelta(days=interval)
    else:
        if pattern != "daily":
            logger.warning("Unknown recurrence pattern %r, treating as daily", pattern)
        nxt = from_date + timedelta(days=1)

    end = parse_date(rule.end_date)
    if end is not None and nxt > end:
        return None
    return nxt


def _next_weekly(days: list[int] | None, from_date: date) -> date:
    valid = sorted({d for d in days or [] if 0 <= d <= 6})
    if not valid:
        return from_date + timedelta(days=7)

    current = sunday_weekday(from_date)
    for d in valid:
        if d > current:
            return from_date + timedelta(days=d - current)
    # Wrap to the first listed day of next week
    return from_date + timedelta(days=7 - current + valid[0])


def _next_monthly(day_of_month: int, from_date: date) -> date:
    year, month = from_date.year, from_date.month + 1
    if month > 12:
        year, month = year + 1, 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(day_of_month, last_day)))
