"""
Plates — Telegram Bot.

Telegram is the only user interface. Every interaction (plates, tasks,
today's plan, evening reviews, stats) flows through this bot, and the
daily plan is pushed from here every morning.

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from datetime import time as dt_time
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes
from telegram.helpers import escape_markdown

from plates.config import settings
from plates.core.time_utils import parse_date, time_to_minutes
from plates.data.models import (
    RECURRENCE_PATTERNS,
    TASK_PRIORITIES,
    TIME_PREFERENCES,
    RecurrenceRule,
)

if TYPE_CHECKING:
    from plates.data.db import Database
    from plates.ports.notification_port import NotificationPort
    from plates.ports.plan_generator_port import PlanGenerator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


def _db(context: ContextTypes.DEFAULT_TYPE) -> Database:
    return context.bot_data["db"]


def _generator(context: ContextTypes.DEFAULT_TYPE) -> PlanGenerator:
    return context.bot_data["generator"]


def _now() -> datetime:
    """Naive wall-clock time in the configured timezone."""
    return datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)


def _today() -> date:
    """Today's calendar date in the configured timezone."""
    return _now().date()


def _md(text: str) -> str:
    """Escape user-typed text for a Markdown reply."""
    return escape_markdown(text, version=1)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

_PLATE_COLORS = ["#6366f1", "#10b981", "#f59e0b", "#ef4444", "#3b82f6", "#ec4899", "#8b5cf6"]

_CONTEXT_ALIASES = {
    "@work": "at_work",
    "@home": "at_home",
    "@errands": "errands",
    "@anywhere": "anywhere",
}


def _parse_schedule_args(args: list[str]) -> dict | None:
    """Parse `/schedule` arguments into UserDB.update_schedule fields.

    Accepts: wake=06:30 sleep=22:30 work=08:00-17:00 days=1,2,3,4,5
    (days use 0=Sunday ... 6=Saturday). Returns None if anything is invalid.
    """
    if not args:
        return None

    fields: dict = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        if not sep or not value:
            return None
        key = key.strip().lower()
        if key in ("wake", "sleep", "review"):
            if time_to_minutes(value) is None:
                return None
            fields[{"wake": "wake_time", "sleep": "sleep_time", "review": "review_time"}[key]] = value
        elif key == "work":
            start, dash, end = value.partition("-")
            if not dash or time_to_minutes(start) is None or time_to_minutes(end) is None:
                return None
            fields["work_start_time"] = start
            fields["work_end_time"] = end
        elif key == "days":
            try:
                days = [int(d) for d in value.split(",") if d.strip()]
            except ValueError:
                return None
            if not days or any(not 0 <= d <= 6 for d in days):
                return None
            fields["work_days"] = days
        else:
            return None

    if "wake_time" in fields and "sleep_time" in fields:
        if time_to_minutes(fields["wake_time"]) >= time_to_minutes(fields["sleep_time"]):
            return None
    return fields


def _parse_quick_add(args: list[str]) -> dict | None:
    """Parse `/addtask <plate_id> <title words...> [modifiers]`.

    Modifiers, anywhere after the plate ID:
        !critical / !high / !medium / !low    priority
        @work / @home / @errands / @anywhere   context
        ~45                                    effort in minutes
        #morning / #afternoon / #evening       time preference
        due:2026-03-01                         due date
        every:daily | every:weekly:1,3,5 | every:monthly:15 | every:custom:3
    """
    if len(args) < 2:
        return None
    try:
        plate_id = int(args[0])
    except ValueError:
        return None

    task: dict = {"plate_id": plate_id}
    title_words: list[str] = []
    for word in args[1:]:
        lower = word.lower()
        if lower.startswith("!") and lower[1:] in TASK_PRIORITIES:
            task["priority"] = lower[1:]
        elif lower in _CONTEXT_ALIASES:
            task["context"] = _CONTEXT_ALIASES[lower]
        elif lower.startswith("#") and lower[1:] in TIME_PREFERENCES:
            task["time_preference"] = lower[1:]
        elif lower.startswith("~") and lower[1:].isdigit() and int(lower[1:]) > 0:
            task["effort_minutes"] = int(lower[1:])
        elif lower.startswith("due:"):
            due = parse_date(lower[4:])
            if due is None:
                return None
            task["due_date"] = due.isoformat()
        elif lower.startswith("every:"):
            rule = _parse_recurrence(lower[6:])
            if rule is None:
                return None
            task["recurrence_rule"] = rule
        else:
            title_words.append(word)

    if not title_words:
        return None
    task["title"] = " ".join(title_words)
    return task


def _parse_recurrence(value: str) -> RecurrenceRule | None:
    pattern, _, param = value.partition(":")
    if pattern not in RECURRENCE_PATTERNS:
        return None
    try:
        if pattern == "weekly" and param:
            days = [int(d) for d in param.split(",") if d]
            if any(not 0 <= d <= 6 for d in days):
                return None
            return RecurrenceRule(pattern=pattern, days=days)
        if pattern == "monthly" and param:
            return RecurrenceRule(pattern=pattern, day_of_month=int(param))
        if pattern == "custom":
            return RecurrenceRule(pattern=pattern, interval=int(param) if param else 1)
    except ValueError:
        return None
    return RecurrenceRule(pattern=pattern)


def _parse_review_args(args: list[str]) -> tuple[int, list[tuple[int, int, None]]] | None:
    """Parse `/review <mood> [plate_id=rating ...]`, all values 1-5."""
    if not args:
        return None
    try:
        mood = int(args[0])
        ratings = []
        for arg in args[1:]:
            plate_id, sep, rating = arg.partition("=")
            if not sep:
                return None
            ratings.append((int(plate_id), int(rating), None))
    except ValueError:
        return None
    if not 1 <= mood <= 5 or any(not 1 <= r <= 5 for _, r, _ in ratings):
        return None
    return mood, ratings


def _parse_position(args: list[str]) -> int | None:
    if not args:
        return None
    try:
        position = int(args[0])
    except ValueError:
        return None
    return position if position >= 1 else None


_MILESTONE_ACTIONS = ("done", "undo", "delete")


def _parse_milestone_args(args: list[str]) -> tuple[str, dict] | None:
    """Parse `/milestone` arguments.

    Forms:
        /milestone <plate_id>                              list
        /milestone <plate_id> add <name...> [due:DATE]     add
        /milestone done|undo|delete <milestone_id>
    """
    if not args:
        return None

    action = args[0].lower()
    if action in _MILESTONE_ACTIONS:
        milestone_id = _parse_position(args[1:])
        if milestone_id is None or len(args) != 2:
            return None
        return action, {"milestone_id": milestone_id}

    plate_id = _parse_position(args[:1])
    if plate_id is None:
        return None
    if len(args) == 1:
        return "list", {"plate_id": plate_id}
    if args[1].lower() != "add":
        return None

    fields: dict = {"plate_id": plate_id}
    name_words = []
    for word in args[2:]:
        if word.lower().startswith("due:"):
            target = parse_date(word[4:])
            if target is None:
                return None
            fields["target_date"] = target.isoformat()
        else:
            name_words.append(word)
    if not name_words:
        return None
    fields["name"] = " ".join(name_words)
    return "add", fields


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------

_HELP_TEXT = (
    "*Available commands:*\n"
    "/today — Today's plan (generated on first use)\n"
    "/replan — Regenerate today's plan\n"
    "/done <n> — Complete item n of today's plan\n"
    "/skip <n> — Skip item n of today's plan\n"
    "/plates — Your plates and their health\n"
    "/addplate <name> [#goal] — Add a plate\n"
    "/archiveplate <id> — Archive a plate\n"
    "/milestone <plate_id> [add <name>] — Milestones of a goal plate\n"
    "/addtask <plate_id> <title> — Quick-add a task "
    "(!high, @home, ~30, #morning, due:YYYY-MM-DD, every:weekly:1,3)\n"
    "/tasks — Open tasks\n"
    "/review <mood 1-5> [plate_id=rating ...] — Evening review\n"
    "/schedule wake=06:30 sleep=22:30 work=08:00-17:00 days=1,2,3,4,5\n"
    "/stats — How things are going\n"
    "/help — Show this message"
)


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — register the user and show the basics."""
    from plates.data.db import UserDB

    tg_user = update.effective_user
    users = UserDB(_db(context))
    if users.get_user(tg_user.id) is None:
        users.add_user(tg_user.id, tg_user.first_name or "friend")

    await update.message.reply_text(
        "Welcome to *Plates*!\n\n"
        "Keep all your plates spinning:\n"
        "• Add life areas with /addplate, tasks with /addtask\n"
        "• Set your day with /schedule\n"
        "• Every morning I'll send you today's plan — or ask with /today\n"
        "• Close the day with /review\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(_HELP_TEXT, parse_mode="Markdown")


@authorized_only
async def cmd_schedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /schedule — set wake/sleep/work hours; completes onboarding."""
    from plates.data.db import UserDB

    fields = _parse_schedule_args(context.args or [])
    if fields is None:
        await update.message.reply_text(
            "Usage: /schedule wake=06:30 sleep=22:30 work=08:00-17:00 days=1,2,3,4,5\n"
            "(days: 0=Sunday … 6=Saturday)"
        )
        return

    users = UserDB(_db(context))
    user_id = update.effective_user.id
    try:
        if users.get_user(user_id) is None:
            users.add_user(user_id, update.effective_user.first_name or "friend")
        user = users.update_schedule(user_id, **fields)
        users.mark_onboarded(user_id)
    except Exception as exc:
        logger.error("/schedule error: %s", exc)
        await update.message.reply_text("Couldn't save your schedule. Please try again.")
        return

    await update.message.reply_text(
        f"✅ Schedule saved: awake {user.wake_time}–{user.sleep_time}, "
        f"work {user.work_start_time}–{user.work_end_time} "
        f"on days {','.join(str(d) for d in user.work_days)}."
    )


@authorized_only
async def cmd_plates(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /plates — list active plates with health scores."""
    from plates.core.stats import build_user_stats

    try:
        stats = build_user_stats(_db(context), update.effective_user.id, _today())
    except Exception as exc:
        logger.error("/plates error: %s", exc)
        await update.message.reply_text("Couldn't load your plates. Please try again.")
        return

    if not stats.plates:
        await update.message.reply_text("No plates yet. Add one with /addplate <name>.")
        return

    lines = ["*Your plates:*\n"]
    for p in stats.plates:
        line = f"`{p.id}` — {_md(p.name)} (health {stats.plate_health.get(p.id, 0)})"
        if p.id in stats.milestone_progress:
            done, total = stats.milestone_progress[p.id]
            line += f" · goal, {done}/{total} milestones"
        lines.append(line)
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_addplate(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addplate <name> [#goal] — add a life area."""
    from plates.data.db import PlateDB

    words = context.args or []
    plate_type = "goal" if any(w.lower() == "#goal" for w in words) else "ongoing"
    name = " ".join(w for w in words if w.lower() != "#goal").strip()
    if not name:
        await update.message.reply_text(
            "Usage: /addplate <name> [#goal], e.g. /addplate Health or /addplate Marathon #goal"
        )
        return

    plates = PlateDB(_db(context))
    user_id = update.effective_user.id
    try:
        existing = plates.list_plates(user_id, include_archived=True)
        color = _PLATE_COLORS[len(existing) % len(_PLATE_COLORS)]
        plate = plates.create_plate(user_id, name, color=color, type=plate_type)
    except Exception as exc:
        logger.error("/addplate error: %s", exc)
        await update.message.reply_text("Couldn't add the plate. Did you /start first?")
        return

    msg = f"✅ Plate added: `{plate.id}` — {_md(plate.name)}"
    if plate.type == "goal":
        msg += f"\nTrack it with /milestone {plate.id} add <name>"
    await update.message.reply_text(msg, parse_mode="Markdown")


@authorized_only
async def cmd_archiveplate(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /archiveplate <id> — archive a plate and drop its tasks from plans."""
    from plates.data.db import PlateDB

    plate_id = _parse_position(context.args or [])
    if plate_id is None:
        await update.message.reply_text("Usage: /archiveplate <plate_id>\nUse /plates to see IDs.")
        return

    plates = PlateDB(_db(context))
    plate = plates.get_plate(plate_id)
    if plate is None or plate.user_id != update.effective_user.id:
        await update.message.reply_text(f"No plate with ID {plate_id}.")
        return

    if plates.archive_plate(plate_id):
        await update.message.reply_text(f"🗄 Plate *{_md(plate.name)}* archived.", parse_mode="Markdown")
    else:
        await update.message.reply_text(f"Plate *{_md(plate.name)}* is already archived.", parse_mode="Markdown")


_MILESTONE_USAGE = (
    "Usage:\n"
    "/milestone <plate_id> — list milestones\n"
    "/milestone <plate_id> add <name> [due:YYYY-MM-DD]\n"
    "/milestone done|undo|delete <milestone_id>"
)


@authorized_only
async def cmd_milestone(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /milestone — list, add, complete or delete milestones of goal plates."""
    from plates.data.db import MilestoneDB, PlateDB

    parsed = _parse_milestone_args(context.args or [])
    if parsed is None:
        await update.message.reply_text(_MILESTONE_USAGE)
        return
    action, fields = parsed

    db = _db(context)
    plates = PlateDB(db)
    milestones = MilestoneDB(db)
    user_id = update.effective_user.id

    if action in _MILESTONE_ACTIONS:
        milestone = milestones.get_milestone(fields["milestone_id"])
        plate = plates.get_plate(milestone.plate_id) if milestone else None
        if plate is None or plate.user_id != user_id:
            await update.message.reply_text(f"No milestone with ID {fields['milestone_id']}.")
            return
        try:
            if action == "delete":
                milestones.delete_milestone(milestone.id)
                msg = f"🗑 Milestone {_md(milestone.name)} deleted."
            else:
                milestone = milestones.update_milestone(milestone.id, completed=(action == "done"))
                mark = "🏁" if milestone.completed else "↩️"
                msg = f"{mark} *{_md(milestone.name)}* on {_md(plate.name)}"
        except Exception as exc:
            logger.error("/milestone error: %s", exc)
            await update.message.reply_text("Couldn't update the milestone. Please try again.")
            return
        await update.message.reply_text(msg, parse_mode="Markdown")
        return

    plate = plates.get_plate(fields.pop("plate_id"))
    if plate is None or plate.user_id != user_id:
        await update.message.reply_text("No such plate. Use /plates to see IDs.")
        return
    if plate.type != "goal":
        await update.message.reply_text(
            "Milestones are for goal plates. Add one with /addplate <name> #goal."
        )
        return

    if action == "add":
        try:
            milestone = milestones.create_milestone(plate.id, **fields)
        except Exception as exc:
            logger.error("/milestone error: %s", exc)
            await update.message.reply_text("Couldn't add the milestone. Please try again.")
            return
        msg = f"✅ Milestone added to *{_md(plate.name)}*: `{milestone.id}` — {_md(milestone.name)}"
        if milestone.target_date:
            msg += f", by {milestone.target_date}"
        await update.message.reply_text(msg, parse_mode="Markdown")
        return

    own = milestones.list_milestones(plate.id)
    if not own:
        await update.message.reply_text(
            f"No milestones on {plate.name} yet. Add one with /milestone {plate.id} add <name>."
        )
        return
    done = sum(1 for m in own if m.completed)
    lines = [f"*{_md(plate.name)}* — {done}/{len(own)} milestones\n"]
    for m in own:
        target = f" (by {m.target_date})" if m.target_date else ""
        lines.append(f"{'✅' if m.completed else '▫️'} `{m.id}` — {_md(m.name)}{target}")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_addtask(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /addtask — quick-add a task to a plate."""
    from plates.data.db import PlateDB, TaskDB

    parsed = _parse_quick_add(context.args or [])
    if parsed is None:
        await update.message.reply_text(
            "Usage: /addtask <plate_id> <title> [!high] [@home] [~30] [#morning] "
            "[due:YYYY-MM-DD] [every:weekly:1,3,5]"
        )
        return

    db = _db(context)
    plate = PlateDB(db).get_plate(parsed["plate_id"])
    if plate is None or plate.user_id != update.effective_user.id or plate.status == "archived":
        await update.message.reply_text(f"No active plate with ID {parsed['plate_id']}.")
        return

    try:
        task = TaskDB(db).create_task(start_date=_today().isoformat(), **parsed)
    except Exception as exc:
        logger.error("/addtask error: %s", exc)
        await update.message.reply_text("Couldn't add the task. Please try again.")
        return

    msg = f"✅ Task added to *{_md(plate.name)}*: {_md(task.title)} ({task.priority})"
    if task.due_date:
        msg += f", due {task.due_date}"
    if task.is_recurring:
        msg += f", repeats {task.recurrence_rule.pattern}"
    await update.message.reply_text(msg, parse_mode="Markdown")


@authorized_only
async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /tasks — list open tasks on active plates."""
    from plates.data.db import TaskDB

    try:
        tasks = TaskDB(_db(context)).list_plannable_tasks(update.effective_user.id)
    except Exception as exc:
        logger.error("/tasks error: %s", exc)
        await update.message.reply_text("Couldn't load tasks. Please try again.")
        return

    if not tasks:
        await update.message.reply_text("No open tasks. Add one with /addtask.")
        return

    lines = ["*Open tasks:*\n"]
    for t in tasks:
        due = f", due {t.due_date}" if t.due_date else ""
        lines.append(f"`{t.id}` — {_md(t.title)} ({t.priority}{due})")
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — show today's plan, generating it if needed."""
    from plates.core.plan_service import format_plan, get_or_create_plan

    try:
        plan, items = get_or_create_plan(
            _db(context), update.effective_user.id, _today(), _generator(context),
        )
    except Exception as exc:
        logger.error("/today error: %s", exc)
        await update.message.reply_text("Couldn't build today's plan. Please try again later.")
        return

    if plan is None:
        await update.message.reply_text("Nothing to plan today. Add tasks with /addtask.")
        return
    await update.message.reply_text(format_plan(plan, items))


@authorized_only
async def cmd_replan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /replan — throw away today's plan and generate a fresh one."""
    from plates.core.plan_service import format_plan, generate_plan_for_user
    from plates.data.db import PlanDB

    db = _db(context)
    try:
        plan = generate_plan_for_user(db, update.effective_user.id, _today(), _generator(context))
        items = PlanDB(db).get_items_with_tasks(plan.id) if plan else []
    except Exception as exc:
        logger.error("/replan error: %s", exc)
        await update.message.reply_text("Couldn't regenerate the plan. Please try again later.")
        return

    if plan is None:
        await update.message.reply_text("Nothing to plan today. Add tasks with /addtask.")
        return
    await update.message.reply_text("🔄 New plan:\n\n" + format_plan(plan, items))


async def _resolve_item_id(
    update: Update, context: ContextTypes.DEFAULT_TYPE, command: str,
) -> int | None:
    """Map `/<command> n` to the ID of the n-th item of today's plan, replying on error."""
    from plates.data.db import PlanDB

    position = _parse_position(context.args or [])
    if position is None:
        await update.message.reply_text(f"Usage: /{command} <n>\nUse /today to see the numbers.")
        return None

    plans = PlanDB(_db(context))
    plan = plans.get_plan_by_date(update.effective_user.id, _today().isoformat())
    if plan is None:
        await update.message.reply_text("No plan for today yet. Use /today first.")
        return None

    items = plans.get_items(plan.id)
    if position > len(items):
        await update.message.reply_text(f"Today's plan has only {len(items)} items.")
        return None
    return items[position - 1].id


@authorized_only
async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /done <n> — complete a plan item and its task."""
    from plates.core.plan_service import complete_plan_item

    item_id = await _resolve_item_id(update, context, "done")
    if item_id is None:
        return

    try:
        outcome = complete_plan_item(_db(context), item_id, _now())
    except Exception as exc:
        logger.error("/done error: %s", exc)
        await update.message.reply_text("Couldn't mark it as done. Please try again.")
        return

    task = outcome.task if outcome else None
    if task is None:
        await update.message.reply_text("✅ Done.")
    elif task.status == "pending" and task.is_recurring:
        await update.message.reply_text(
            f"✅ *{_md(task.title)}* done. Back on {task.next_occurrence}.", parse_mode="Markdown",
        )
    else:
        await update.message.reply_text(f"✅ *{_md(task.title)}* done.", parse_mode="Markdown")


@authorized_only
async def cmd_skip(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /skip <n> — skip a plan item; recurring tasks move to their next date."""
    from plates.core.plan_service import skip_plan_item

    item_id = await _resolve_item_id(update, context, "skip")
    if item_id is None:
        return

    try:
        outcome = skip_plan_item(_db(context), item_id, _today())
    except Exception as exc:
        logger.error("/skip error: %s", exc)
        await update.message.reply_text("Couldn't skip it. Please try again.")
        return

    task = outcome.task if outcome else None
    if task is not None and task.is_recurring:
        await update.message.reply_text(f"⏭ Skipped. Next time: {task.next_occurrence}.")
    else:
        await update.message.reply_text("⏭ Skipped for today.")


@authorized_only
async def cmd_review(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /review <mood> [plate_id=rating ...] — save today's review."""
    from plates.data.db import PlateDB, ReviewDB

    parsed = _parse_review_args(context.args or [])
    if parsed is None:
        await update.message.reply_text(
            "Usage: /review <mood 1-5> [plate_id=rating ...]\n"
            "e.g. /review 4 1=5 2=3"
        )
        return
    mood, ratings = parsed

    db = _db(context)
    user_id = update.effective_user.id
    own_plates = {p.id for p in PlateDB(db).list_plates(user_id)}
    unknown = [pid for pid, _, _ in ratings if pid not in own_plates]
    if unknown:
        await update.message.reply_text(f"Unknown plate IDs: {', '.join(map(str, unknown))}")
        return

    try:
        ReviewDB(db).create_review(user_id, _today().isoformat(), mood, plate_ratings=ratings)
        streak = ReviewDB(db).get_review_streak(user_id, _today())
    except Exception as exc:
        logger.error("/review error: %s", exc)
        await update.message.reply_text("Couldn't save your review. Please try again.")
        return

    await update.message.reply_text(f"📝 Review saved. Streak: {streak} day(s).")


@authorized_only
async def cmd_stats(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stats — plate health, streak, today's progress, deadlines."""
    from plates.core.stats import build_user_stats

    try:
        stats = build_user_stats(_db(context), update.effective_user.id, _today())
    except Exception as exc:
        logger.error("/stats error: %s", exc)
        await update.message.reply_text("Couldn't load stats. Please try again.")
        return

    lines = ["*Stats*\n"]
    for p in stats.plates:
        lines.append(f"{_md(p.name)}: {stats.plate_health.get(p.id, 0)}/100")
    lines.append(f"\nReview streak: {stats.review_streak} day(s)")
    if stats.today_total:
        lines.append(
            f"Today: {stats.today_completed}/{stats.today_total} done, "
            f"{stats.today_skipped} skipped"
        )
    lines.append(f"Overdue tasks: {stats.overdue_count}")
    if stats.upcoming:
        lines.append("\nDue this week:")
        lines.extend(f"• {t.due_date} — {_md(t.title)}" for t in stats.upcoming)
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    db: Database | None = None,
    generator: PlanGenerator | None = None,
    notifier: NotificationPort | None = None,
) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Args:
        db: Initialized Database. Defaults to open_database() on DATABASE_PATH.
        generator: Plan generator. Defaults to the rule-based generator.
        notifier: Notification port implementation. Defaults to TelegramNotifier.
    """
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).build()

    if db is None:
        from plates.data.db import open_database
        db = open_database()

    if generator is None:
        from plates.core.plan_generator import generate_daily_plan
        generator = generate_daily_plan

    if notifier is None:
        from plates.adapters.telegram_notifier import TelegramNotifier
        notifier = TelegramNotifier(app.bot)

    app.bot_data["db"] = db
    app.bot_data["generator"] = generator
    app.bot_data["notifier"] = notifier

    for name, handler in (
        ("start", cmd_start),
        ("help", cmd_help),
        ("schedule", cmd_schedule),
        ("plates", cmd_plates),
        ("addplate", cmd_addplate),
        ("archiveplate", cmd_archiveplate),
        ("milestone", cmd_milestone),
        ("addtask", cmd_addtask),
        ("tasks", cmd_tasks),
        ("today", cmd_today),
        ("replan", cmd_replan),
        ("done", cmd_done),
        ("skip", cmd_skip),
        ("review", cmd_review),
        ("stats", cmd_stats),
    ):
        app.add_handler(CommandHandler(name, handler))

    _setup_morning_plans(app, db, generator, notifier)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_morning_plans(
    app: Application,
    db: Database,
    generator: PlanGenerator,
    notifier: NotificationPort,
) -> None:
    """Register the daily plan push at MORNING_PLAN_HOUR in TIMEZONE."""
    from plates.core.plan_service import send_morning_plans

    tz = ZoneInfo(settings.TIMEZONE)
    push_time = dt_time(hour=settings.MORNING_PLAN_HOUR, minute=0, tzinfo=tz)

    async def _morning_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await send_morning_plans(db, notifier, _today(), generator)

    app.job_queue.run_daily(
        _morning_job_callback,
        time=push_time,
        name="morning_plans",
    )

    logger.info(
        "Morning plans scheduled at %02d:00 %s",
        settings.MORNING_PLAN_HOUR,
        settings.TIMEZONE,
    )


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Plates bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
