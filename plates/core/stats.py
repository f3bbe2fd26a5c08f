"""User stats: plate health, review streak, today's progress, deadlines."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from plates.core.plate_health import calculate_all_plate_health
from plates.data.db import MilestoneDB, PlanDB, PlateDB, ReviewDB, TaskDB

if TYPE_CHECKING:
    from plates.data.db import Database
    from plates.data.models import Plate, Task


@dataclass
class UserStats:
    plates: list[Plate] = field(default_factory=list)
    plate_health: dict[int, int] = field(default_factory=dict)
    review_streak: int = 0
    today_total: int = 0
    today_completed: int = 0
    today_skipped: int = 0
    overdue_count: int = 0
    upcoming: list[Task] = field(default_factory=list)
    # goal plate ID -> (milestones completed, milestones total)
    milestone_progress: dict[int, tuple[int, int]] = field(default_factory=dict)


def build_user_stats(db: Database, user_id: int, today: date | None = None) -> UserStats:
    if today is None:
        today = date.today()

    tasks = TaskDB(db)
    reviews = ReviewDB(db)
    plans = PlanDB(db)

    plates = PlateDB(db).list_plates(user_id)
    health = calculate_all_plate_health(
        plates,
        reviews.get_recent_ratings(user_id),
        tasks.get_recent_completions(user_id, days=7, today=today),
        today,
    )

    stats = UserStats(
        plates=[p for p in plates if p.status == "active"],
        plate_health=health,
        review_streak=reviews.get_review_streak(user_id, today),
        overdue_count=tasks.count_overdue(user_id, today),
        upcoming=tasks.list_upcoming(user_id, today, days=7),
    )

    milestones = MilestoneDB(db)
    for p in stats.plates:
        if p.type == "goal":
            own = milestones.list_milestones(p.id)
            stats.milestone_progress[p.id] = (sum(1 for m in own if m.completed), len(own))

    plan = plans.get_plan_by_date(user_id, today.isoformat())
    if plan is not None:
        items = plans.get_items(plan.id)
        stats.today_total = len(items)
        stats.today_completed = sum(1 for i in items if i.completed)
        stats.today_skipped = sum(1 for i in items if i.skipped)
    return stats
