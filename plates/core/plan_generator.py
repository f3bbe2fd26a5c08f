"""Daily plan generator — pure business logic.

Takes a snapshot of the user's schedule, tasks, plates, reviews and recent
completions and picks, sizes and orders today's tasks. No I/O and no clock
reads: the same input always produces the same plan.

Implements plates.ports.plan_generator_port.PlanGenerator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from plates.core.time_utils import parse_date, sunday_weekday, time_to_minutes
from plates.data.models import Completion, Plate, Review, Task, User
from plates.ports.plan_generator_port import (
    GeneratedPlan,
    PlanGeneratorInput,
    PlannedItem,
)

logger = logging.getLogger(__name__)

# Scoring weights
WEIGHT_URGENCY = 0.35
WEIGHT_PRIORITY = 0.30
WEIGHT_PLATE_BALANCE = 0.20
WEIGHT_STALENESS = 0.15

# Limits
WORKDAY_MIN_TASKS = 8
WORKDAY_MAX_TASKS = 12
WEEKEND_MIN_TASKS = 10
WEEKEND_MAX_TASKS = 15
DEFAULT_EFFORT_MINUTES = 30

WORKDAY_BUFFER_MINUTES = 120   # meals, transit
WEEKEND_BUFFER_MINUTES = 180   # meals, rest
MAX_STALENESS = 50

CONTEXT_LABELS = {
    "at_work": "At Work",
    "at_home": "At Home",
    "errands": "Errands",
    "anywhere": "Anywhere",
}

TIME_PREF_ORDER = {
    "morning": 0,
    "afternoon": 1,
    "anytime": 2,
    "evening": 3,
}

_PRIORITY_SCORES = {
    "critical": 100,
    "high": 75,
    "medium": 50,
    "low": 25,
}


@dataclass
class _Scored:
    task: Task
    score: float


def generate_daily_plan(plan_input: PlanGeneratorInput) -> GeneratedPlan:
    """Build the plan for plan_input.date."""
    user = plan_input.user
    target = plan_input.date

    day_type = "workday" if sunday_weekday(target) in user.work_days else "weekend"
    available = calculate_available_minutes(user, day_type)

    candidates = [t for t in plan_input.tasks if _is_candidate(t, target, day_type)]

    health_map = build_plate_health_map(
        plan_input.plates, plan_input.recent_reviews, plan_input.recent_completions, target,
    )

    # Stable sort keeps input order among equal scores
    scored = sorted(
        (_Scored(t, score_task(t, target, health_map)) for t in candidates),
        key=lambda s: -s.score,
    )

    if day_type == "workday":
        min_tasks, max_tasks = WORKDAY_MIN_TASKS, WORKDAY_MAX_TASKS
    else:
        min_tasks, max_tasks = WEEKEND_MIN_TASKS, WEEKEND_MAX_TASKS

    selected: list[_Scored] = []
    selected_ids: set[int] = set()
    covered_plates: set[int] = set()
    total_minutes = 0

    for item in scored:
        if len(selected) >= max_tasks:
            break
        effort = item.task.effort_minutes or DEFAULT_EFFORT_MINUTES
        if total_minutes + effort > available and len(selected) >= min_tasks:
            break
        selected.append(item)
        selected_ids.add(item.task.id)
        covered_plates.add(item.task.plate_id)
        total_minutes += effort

    # Every active plate gets at least one task when it has a candidate
    for plate in plan_input.plates:
        if plate.status != "active" or plate.id in covered_plates:
            continue
        if len(selected) >= max_tasks:
            break
        best = next(
            (s for s in scored
             if s.task.plate_id == plate.id and s.task.id not in selected_ids),
            None,
        )
        if best is not None:
            selected.append(best)
            selected_ids.add(best.task.id)
            covered_plates.add(plate.id)

    selected.sort(key=lambda s: (
        TIME_PREF_ORDER.get(s.task.time_preference, 2),
        s.task.context or "anywhere",
        -s.score,
    ))

    items = [
        PlannedItem(
            task_id=s.task.id,
            sort_order=index,
            context_group=CONTEXT_LABELS.get(s.task.context, "Anywhere"),
        )
        for index, s in enumerate(selected)
    ]

    logger.info(
        "Plan for %s (%s, %d min): %d of %d candidates selected",
        target.isoformat(), day_type, available, len(items), len(candidates),
    )
    return GeneratedPlan(
        date=target,
        day_type=day_type,
        available_minutes=available,
        items=items,
    )


def _is_candidate(task: Task, target: date, day_type: str) -> bool:
    if task.status not in ("pending", "in_progress"):
        return False
    if task.is_recurring and task.next_occurrence:
        next_date = parse_date(task.next_occurrence)
        if next_date is not None and next_date > target:
            return False
    if day_type == "weekend" and task.context == "at_work":
        return False
    return True


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score_task(task: Task, target: date, health_map: dict[int, int]) -> float:
    """Weighted 0-100 score of one candidate task."""
    return (
        urgency_score(task, target) * WEIGHT_URGENCY
        + priority_score(task) * WEIGHT_PRIORITY
        + plate_balance_score(task, health_map) * WEIGHT_PLATE_BALANCE
        + staleness_score(task, target) * WEIGHT_STALENESS
    )


def urgency_score(task: Task, target: date) -> int:
    due = parse_date(task.due_date)
    if due is None:
        return 10

    days_until_due = (due - target).days
    if days_until_due < 0:
        return 100   # overdue
    if days_until_due == 0:
        return 90
    if days_until_due == 1:
        return 70
    if days_until_due <= 7:
        return 50
    if days_until_due <= 30:
        return 30
    return 10


def priority_score(task: Task) -> int:
    return _PRIORITY_SCORES.get(task.priority, 50)


def plate_balance_score(task: Task, health_map: dict[int, int]) -> int:
    """Inverse of plate health: neglected plates score higher."""
    health = health_map.get(task.plate_id)
    if health is None:
        return 50
    return 100 - health


def staleness_score(task: Task, target: date) -> int:
    created = parse_date(task.created_at)
    if created is None:
        return 0
    return max(0, min((target - created).days, MAX_STALENESS))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def calculate_available_minutes(user: User, day_type: str) -> int:
    """Discretionary minutes in the day after sleep, work and buffers."""
    wake = time_to_minutes(user.wake_time)
    sleep = time_to_minutes(user.sleep_time)
    total_awake = (sleep - wake) if wake is not None and sleep is not None else 0

    if day_type == "workday":
        work_start = time_to_minutes(user.work_start_time)
        work_end = time_to_minutes(user.work_end_time)
        work = (work_end - work_start) if work_start is not None and work_end is not None else 0
        return max(total_awake - work - WORKDAY_BUFFER_MINUTES, 120)

    return max(total_awake - WEEKEND_BUFFER_MINUTES, 180)


def build_plate_health_map(
    plates: list[Plate],
    recent_reviews: list[Review],
    recent_completions: list[Completion],
    target: date,
) -> dict[int, int]:
    """Quick completion-based health estimate per active plate.

    Coarser than plates.core.plate_health: reviews only count as a flat
    bonus when any exist.
    """
    window_start = target - timedelta(days=7)
    counts: dict[int, int] = {}
    for c in recent_completions:
        completed = parse_date(c.completed_at)
        if completed is not None and completed >= window_start:
            counts[c.plate_id] = counts.get(c.plate_id, 0) + 1

    review_bonus = 10 if recent_reviews else 0

    health_map: dict[int, int] = {}
    for plate in plates:
        if plate.status != "active":
            continue
        health = 20 + min(counts.get(plate.id, 0) * 15, 60) + review_bonus
        health_map[plate.id] = min(health, 100)
    return health_map
