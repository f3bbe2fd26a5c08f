"""Plan generator port — the contract every daily plan generator implements.

Callers (plan service, bot, scheduled job) depend on this protocol, never on
the rule-based generator directly, so another implementation can be
injected without touching them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

from plates.data.models import Completion, Plate, Review, Task, User


@dataclass(frozen=True)
class PlanGeneratorInput:
    """Immutable snapshot of everything a generator may look at.

    `tasks` must already be limited to the user's active plates.
    """

    user: User
    date: date
    tasks: list[Task]
    plates: list[Plate]
    recent_reviews: list[Review] = field(default_factory=list)   # most recent first
    recent_completions: list[Completion] = field(default_factory=list)


@dataclass(frozen=True)
class PlannedItem:
    task_id: int
    sort_order: int       # 0-based position in the day
    context_group: str    # "At Work" | "At Home" | "Errands" | "Anywhere"


@dataclass(frozen=True)
class GeneratedPlan:
    date: date
    day_type: str
    available_minutes: int
    items: list[PlannedItem]


class PlanGenerator(Protocol):
    """Pure function: snapshot in, plan out. No I/O, no mutation of the input."""

    def __call__(self, plan_input: PlanGeneratorInput) -> GeneratedPlan: ...
