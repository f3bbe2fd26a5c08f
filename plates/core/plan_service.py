"""
Plates — Plan service.

Glue between storage and the plan generator: gathers the generator input,
runs the injected generator, persists the result, and carries plan item
completions/skips through to the underlying tasks. Also hosts the daily
scheduled push of the morning plan.

This module is generator-agnostic: it depends on the PlanGenerator and
NotificationPort protocols, not on specific implementations.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from plates.core.plan_generator import generate_daily_plan
from plates.data.db import PlanDB, PlateDB, ReviewDB, TaskDB, UserDB
from plates.ports.plan_generator_port import PlanGeneratorInput

if TYPE_CHECKING:
    from plates.data.db import Database
    from plates.data.models import DailyPlan, PlanItem, PlanItemWithTask, Task, User
    from plates.ports.notification_port import NotificationPort
    from plates.ports.plan_generator_port import PlanGenerator

logger = logging.getLogger(__name__)

# Completions further back than this never influence a plan
COMPLETION_WINDOW_DAYS = 7
RECENT_REVIEW_LIMIT = 7

_plan_locks: dict[int, threading.Lock] = {}
_plan_locks_guard = threading.Lock()


def _lock_for(user_id: int) -> threading.Lock:
    """One lock per user so regenerations of the same plan never overlap."""
    with _plan_locks_guard:
        return _plan_locks.setdefault(user_id, threading.Lock())


@dataclass
class ItemOutcome:
    """A plan item after completing/skipping it, with its task."""

    item: PlanItem
    task: Task | None


def build_plan_input(db: Database, user: User, target_date: date) -> PlanGeneratorInput:
    """Load the generator snapshot for user on target_date."""
    tasks = TaskDB(db)
    return PlanGeneratorInput(
        user=user,
        date=target_date,
        tasks=tasks.list_plannable_tasks(user.id),
        plates=PlateDB(db).list_plates(user.id),
        recent_reviews=ReviewDB(db).get_recent_reviews(user.id, RECENT_REVIEW_LIMIT),
        recent_completions=tasks.get_recent_completions(
            user.id, days=COMPLETION_WINDOW_DAYS, today=target_date,
        ),
    )


def generate_and_save_plan(
    db: Database,
    user: User,
    target_date: date,
    generator: PlanGenerator = generate_daily_plan,
) -> DailyPlan | None:
    """Generate and persist the plan, replacing any plan for that date.

    Returns None when there is nothing to plan; any earlier plan for the
    date is removed in that case too.
    """
    plan_date = target_date.isoformat()
    plans = PlanDB(db)
    with _lock_for(user.id):
        generated = generator(build_plan_input(db, user, target_date))
        if not generated.items:
            plans.delete_plan_by_date(user.id, plan_date)
            logger.info("No tasks to plan for user %d on %s", user.id, plan_date)
            return None

        return plans.create_plan(
            user_id=user.id,
            plan_date=plan_date,
            day_type=generated.day_type,
            available_minutes=generated.available_minutes,
            items=[(i.task_id, i.sort_order, i.context_group) for i in generated.items],
        )


def generate_plan_for_user(
    db: Database,
    user_id: int,
    target_date: date,
    generator: PlanGenerator = generate_daily_plan,
) -> DailyPlan | None:
    """Look the user up, then generate. None if unknown user or nothing to plan."""
    user = UserDB(db).get_user(user_id)
    if user is None:
        return None
    return generate_and_save_plan(db, user, target_date, generator)


def get_or_create_plan(
    db: Database,
    user_id: int,
    target_date: date,
    generator: PlanGenerator = generate_daily_plan,
) -> tuple[DailyPlan | None, list[PlanItemWithTask]]:
    """Return the stored plan for the date, generating one if none exists."""
    plans = PlanDB(db)
    plan = plans.get_plan_by_date(user_id, target_date.isoformat())
    if plan is None:
        plan = generate_plan_for_user(db, user_id, target_date, generator)
    if plan is None:
        return None, []
    return plan, plans.get_items_with_tasks(plan.id)


def complete_plan_item(
    db: Database, item_id: int, now: datetime | None = None,
) -> ItemOutcome | None:
    """Mark the plan item done, then complete its task (rescheduling recurring ones).

    `now` is the user's local wall-clock time; it dates the completion and
    the next occurrence. An item that is already done is left as it is.
    """
    plans = PlanDB(db)
    tasks = TaskDB(db)
    item = plans.get_item(item_id)
    if item is None:
        return None
    if item.completed:
        return ItemOutcome(item=item, task=tasks.get_task(item.task_id))

    item = plans.complete_item(item_id, now)
    task = tasks.complete_task(item.task_id, now)
    return ItemOutcome(item=item, task=task)


def skip_plan_item(
    db: Database, item_id: int, today: date | None = None,
) -> ItemOutcome | None:
    """Mark the plan item skipped, then skip its task (advances recurring ones).

    An item that is already skipped is left as it is.
    """
    plans = PlanDB(db)
    tasks = TaskDB(db)
    item = plans.get_item(item_id)
    if item is None:
        return None
    if item.skipped:
        return ItemOutcome(item=item, task=tasks.get_task(item.task_id))

    item = plans.skip_item(item_id)
    task = tasks.skip_task(item.task_id, today)
    return ItemOutcome(item=item, task=task)


# ---------------------------------------------------------------------------
# Morning plan push
# ---------------------------------------------------------------------------


async def send_morning_plans(
    db: Database,
    notifier: NotificationPort,
    target_date: date | None = None,
    generator: PlanGenerator = generate_daily_plan,
) -> None:
    """Generate today's plan for every onboarded user and send it to them.

    A failure for one user is logged and does not stop the others.
    """
    if target_date is None:
        target_date = date.today()

    for user in UserDB(db).list_users():
        if not user.onboarded:
            continue
        try:
            plan = generate_and_save_plan(db, user, target_date, generator)
            if plan is None:
                text = "Good morning! Nothing is on your plates today. 🌿"
            else:
                items = PlanDB(db).get_items_with_tasks(plan.id)
                text = format_plan(plan, items)
            await notifier.send_message(user.id, text)
            logger.info("Morning plan sent to user %d", user.id)
        except Exception as exc:
            logger.error("Failed to send morning plan to %d: %s", user.id, exc)


def format_plan(plan: DailyPlan, items: list[PlanItemWithTask]) -> str:
    """Render a plan as plain text, grouped into context runs."""
    hours, minutes = divmod(plan.available_minutes or 0, 60)
    day = "Workday" if plan.day_type == "workday" else "Weekend"
    lines = [f"Plan for {plan.date} ({day}, {hours}h{minutes:02d} free)"]

    current_group = None
    for position, entry in enumerate(items, start=1):
        if entry.item.context_group != current_group:
            current_group = entry.item.context_group
            lines.append(f"\n{current_group}:")
        if entry.item.completed:
            mark = "✅"
        elif entry.item.skipped:
            mark = "⏭"
        else:
            mark = "▫️"
        effort = f" ({entry.task.effort_minutes} min)" if entry.task.effort_minutes else ""
        lines.append(f"{mark} {position}. {entry.task.title}{effort} · {entry.plate_name}")
    return "\n".join(lines)
