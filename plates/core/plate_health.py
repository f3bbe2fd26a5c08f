"""Plate health score calculator — pure business logic.

Returns 0-100 per plate (100 = well looked after, 0 = neglected), built from
the user's recent review ratings and recent task completions. Shown on the
stats view.

The plan generator keeps its own, coarser estimate for the balance term
(see plates.core.plan_generator); the two are intentionally not unified.
"""

from __future__ import annotations

import math
from datetime import date, timedelta
from typing import Iterable

from plates.core.time_utils import parse_date
from plates.data.models import Completion, Plate, ReviewRating

_WEIGHT_REVIEW = 0.40
_WEIGHT_COMPLETION = 0.35
_WEIGHT_RECENCY = 0.25

_MAX_RATINGS = 7
_WINDOW_DAYS = 7


def calculate_plate_health(
    plate_id: int,
    recent_ratings: Iterable[ReviewRating],
    recent_completions: Iterable[Completion],
    today: date | None = None,
) -> int:
    """Compute the 0-100 health score of one plate.

    Args:
        plate_id: The plate to score.
        recent_ratings: Review ratings, any plates, any order.
        recent_completions: Completion history, any plates.
        today: Reference date. Defaults to the current date.
    """
    if today is None:
        today = date.today()

    review = _review_score(plate_id, recent_ratings)

    window_start = today - timedelta(days=_WINDOW_DAYS)
    completed_on = [
        d for d in (
            parse_date(c.completed_at)
            for c in recent_completions if c.plate_id == plate_id
        )
        if d is not None and d >= window_start
    ]

    completion = min(20 + len(completed_on) * 20, 100)

    recency = 20
    if completed_on:
        recency = _recency_score((today - max(completed_on)).days)

    # Halves round up
    health = math.floor(
        review * _WEIGHT_REVIEW
        + completion * _WEIGHT_COMPLETION
        + recency * _WEIGHT_RECENCY
        + 0.5
    )
    return max(0, min(100, health))


def calculate_all_plate_health(
    plates: Iterable[Plate],
    recent_ratings: list[ReviewRating],
    recent_completions: list[Completion],
    today: date | None = None,
) -> dict[int, int]:
    """Health score for every active plate, keyed by plate ID."""
    return {
        p.id: calculate_plate_health(p.id, recent_ratings, recent_completions, today)
        for p in plates
        if p.status == "active"
    }


def _review_score(plate_id: int, ratings: Iterable[ReviewRating]) -> float:
    own = [r for r in ratings if r.plate_id == plate_id]
    # Most recent first; ratings without a parseable date sort last
    own.sort(key=lambda r: r.date or "", reverse=True)
    own = own[:_MAX_RATINGS]
    if not own:
        return 50
    avg = sum(r.rating for r in own) / len(own)
    return avg / 5 * 100


def _recency_score(days_since: int) -> int:
    if days_since <= 0:
        return 100
    if days_since == 1:
        return 85
    if days_since <= 3:
        return 60
    if days_since <= 7:
        return 30
    return 20
