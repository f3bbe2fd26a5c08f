"""
Plates — Data Models.

Plates are the user's life areas (Work, Health, Family...). Every task lives
on exactly one plate; daily plans reference tasks; evening reviews rate how
each plate is going.

Dates are stored as ISO strings (YYYY-MM-DD), timestamps as ISO datetimes.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel


# Weekday indices used by work_days and weekly recurrence: 0=Sunday ... 6=Saturday
DEFAULT_WORK_DAYS = [1, 2, 3, 4, 5]

PLATE_TYPES = ("ongoing", "goal")
PLATE_STATUSES = ("active", "completed", "archived")

TASK_STATUSES = ("pending", "in_progress", "completed")
TASK_PRIORITIES = ("critical", "high", "medium", "low")
ENERGY_LEVELS = ("low", "medium", "high")
TASK_CONTEXTS = ("at_work", "at_home", "errands", "anywhere")
TIME_PREFERENCES = ("morning", "afternoon", "evening", "anytime")

DAY_TYPES = ("workday", "weekend", "holiday", "day_off")

RECURRENCE_PATTERNS = ("daily", "weekly", "biweekly", "monthly", "custom")


@dataclass
class User:
    """A registered user and their daily schedule."""

    id: int                            # Telegram user ID
    name: str
    wake_time: str = "06:30"           # HH:MM
    sleep_time: str = "22:30"
    work_start_time: str = "08:00"
    work_end_time: str = "17:00"
    work_days: list[int] = field(default_factory=lambda: list(DEFAULT_WORK_DAYS))
    timezone: str = "America/Chicago"  # informational, all date math is naive
    review_time: str = "21:00"
    onboarded: bool = False
    created_at: str = ""


@dataclass
class Plate:
    """A life area grouping tasks. Archived instead of deleted."""

    id: int
    user_id: int
    name: str
    color: str
    type: str = "ongoing"              # "ongoing" | "goal"
    status: str = "active"             # "active" | "completed" | "archived"
    description: str | None = None
    icon: str | None = None
    sort_order: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Milestone:
    """A checkpoint on a goal plate."""

    id: int
    plate_id: int
    name: str
    description: str | None = None
    target_date: str | None = None     # ISO date
    completed: bool = False
    completed_at: str | None = None
    sort_order: int = 0
    created_at: str = ""
    updated_at: str = ""


class RecurrenceRule(BaseModel):
    """How a recurring task repeats. Stored as JSON on its task.

    JSON example:
    {
        "pattern": "weekly",
        "days": [1, 3, 5],
        "end_date": "2026-12-31"
    }
    """
    pattern: str                       # daily | weekly | biweekly | monthly | custom
    days: list[int] | None = None      # weekly only, 0=Sunday ... 6=Saturday
    day_of_month: int | None = None    # monthly only, 1-31
    interval: int | None = None        # custom only, every N days
    end_date: str | None = None        # ISO date, no occurrences after it


@dataclass
class Task:
    """A unit of work on a plate."""

    id: int
    plate_id: int
    title: str
    status: str = "pending"            # "pending" | "in_progress" | "completed"
    priority: str = "medium"           # "critical" | "high" | "medium" | "low"
    effort_minutes: int | None = None
    energy_level: str = "medium"
    context: str = "anywhere"          # "at_work" | "at_home" | "errands" | "anywhere"
    time_preference: str = "anytime"   # "morning" | "afternoon" | "evening" | "anytime"
    due_date: str | None = None        # ISO date
    description: str | None = None
    completed_at: str | None = None
    is_recurring: bool = False
    recurrence_rule: RecurrenceRule | None = None
    next_occurrence: str | None = None  # ISO date the task becomes eligible again
    sort_order: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class DailyPlan:
    """One plan per user per date; regenerating replaces it."""

    id: int
    user_id: int
    date: str
    day_type: str = "workday"
    available_minutes: int | None = None
    generated_at: str = ""
    is_locked: bool = False


@dataclass
class PlanItem:
    id: int
    daily_plan_id: int
    task_id: int
    sort_order: int
    context_group: str | None = None
    completed: bool = False
    completed_at: str | None = None
    skipped: bool = False


@dataclass
class PlanItemWithTask:
    """A plan item joined with its task and plate, as shown to the user."""

    item: PlanItem
    task: Task
    plate_name: str
    plate_color: str


@dataclass
class Review:
    """An evening review: overall mood plus a note."""

    id: int
    user_id: int
    date: str
    mood: int | None = None            # 1-5
    notes: str | None = None
    created_at: str = ""


@dataclass
class PlateRating:
    """A 1-5 rating of one plate inside one review."""

    id: int
    review_id: int
    plate_id: int
    rating: int
    note: str | None = None


@dataclass
class ReviewRating:
    """A plate rating joined with the date of its review (health scorer input)."""

    plate_id: int
    rating: int
    date: str


@dataclass
class Completion:
    """One completion event of a task on a plate."""

    plate_id: int
    completed_at: str                  # ISO datetime
