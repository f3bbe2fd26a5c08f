"""
Plates — SQLite storage.

One Database per process: the schema is created once at startup by
Database.init_schema(), then the repositories below share it.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from plates.core.recurrence import next_occurrence
from plates.core.time_utils import parse_date
from plates.data.models import (
    Completion,
    DailyPlan,
    Milestone,
    Plate,
    PlanItem,
    PlanItemWithTask,
    PlateRating,
    RecurrenceRule,
    Review,
    ReviewRating,
    Task,
    User,
)

logger = logging.getLogger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id               INTEGER PRIMARY KEY,
    name             TEXT    NOT NULL,
    wake_time        TEXT    NOT NULL DEFAULT '06:30',
    sleep_time       TEXT    NOT NULL DEFAULT '22:30',
    work_start_time  TEXT    NOT NULL DEFAULT '08:00',
    work_end_time    TEXT    NOT NULL DEFAULT '17:00',
    work_days        TEXT    NOT NULL DEFAULT '[1, 2, 3, 4, 5]',
    timezone         TEXT    NOT NULL DEFAULT 'America/Chicago',
    review_time      TEXT    NOT NULL DEFAULT '21:00',
    onboarded        INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT    NOT NULL
);

CREATE TABLE IF NOT EXISTS plates (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id      INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name         TEXT    NOT NULL,
    description  TEXT,
    icon         TEXT,
    color        TEXT    NOT NULL,
    type         TEXT    NOT NULL DEFAULT 'ongoing',
    status       TEXT    NOT NULL DEFAULT 'active',
    sort_order   INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT    NOT NULL,
    updated_at   TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_plates_user_status ON plates(user_id, status);

CREATE TABLE IF NOT EXISTS milestones (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    plate_id      INTEGER NOT NULL REFERENCES plates(id) ON DELETE CASCADE,
    name          TEXT    NOT NULL,
    description   TEXT,
    target_date   TEXT,
    completed     INTEGER NOT NULL DEFAULT 0,
    completed_at  TEXT,
    sort_order    INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT    NOT NULL,
    updated_at    TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_milestones_plate ON milestones(plate_id);

CREATE TABLE IF NOT EXISTS tasks (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    plate_id         INTEGER NOT NULL REFERENCES plates(id) ON DELETE CASCADE,
    title            TEXT    NOT NULL,
    description      TEXT,
    status           TEXT    NOT NULL DEFAULT 'pending',
    priority         TEXT    NOT NULL DEFAULT 'medium',
    effort_minutes   INTEGER,
    energy_level     TEXT    NOT NULL DEFAULT 'medium',
    context          TEXT    NOT NULL DEFAULT 'anywhere',
    time_preference  TEXT    NOT NULL DEFAULT 'anytime',
    due_date         TEXT,
    completed_at     TEXT,
    is_recurring     INTEGER NOT NULL DEFAULT 0,
    recurrence_rule  TEXT,
    next_occurrence  TEXT,
    sort_order       INTEGER NOT NULL DEFAULT 0,
    created_at       TEXT    NOT NULL,
    updated_at       TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tasks_plate_status ON tasks(plate_id, status);
CREATE INDEX IF NOT EXISTS idx_tasks_next_occurrence ON tasks(next_occurrence);

CREATE TABLE IF NOT EXISTS completions (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id       INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    plate_id      INTEGER NOT NULL,
    completed_at  TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_completions_plate ON completions(plate_id, completed_at);

CREATE TABLE IF NOT EXISTS daily_plans (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    date               TEXT    NOT NULL,
    day_type           TEXT    NOT NULL DEFAULT 'workday',
    available_minutes  INTEGER,
    generated_at       TEXT    NOT NULL,
    is_locked          INTEGER NOT NULL DEFAULT 0,
    UNIQUE (user_id, date)
);

CREATE TABLE IF NOT EXISTS plan_items (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    daily_plan_id  INTEGER NOT NULL REFERENCES daily_plans(id) ON DELETE CASCADE,
    task_id        INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    sort_order     INTEGER NOT NULL,
    context_group  TEXT,
    completed      INTEGER NOT NULL DEFAULT 0,
    completed_at   TEXT,
    skipped        INTEGER NOT NULL DEFAULT 0,
    UNIQUE (daily_plan_id, task_id)
);
CREATE INDEX IF NOT EXISTS idx_plan_items_plan ON plan_items(daily_plan_id);

CREATE TABLE IF NOT EXISTS reviews (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    date        TEXT    NOT NULL,
    mood        INTEGER,
    notes       TEXT,
    created_at  TEXT    NOT NULL,
    UNIQUE (user_id, date)
);

CREATE TABLE IF NOT EXISTS plate_review_ratings (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    review_id  INTEGER NOT NULL REFERENCES reviews(id) ON DELETE CASCADE,
    plate_id   INTEGER NOT NULL REFERENCES plates(id) ON DELETE CASCADE,
    rating     INTEGER NOT NULL,
    note       TEXT,
    UNIQUE (review_id, plate_id)
);
"""


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


class Database:
    """Owns the SQLite file and hands out connections."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> str:
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_schema(self) -> None:
        """Create all tables. Called once at process start."""
        with self.connect() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Schema initialized at %s", self._db_path)


def open_database(db_path: str | None = None) -> Database:
    """Create the Database for db_path (default: settings) and initialize it."""
    if db_path is None:
        from plates.config import settings
        db_path = settings.DATABASE_PATH

    db = Database(db_path)
    db.init_schema()
    return db


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserDB:
    """Registered users and their schedules."""

    _SCHEDULE_FIELDS = frozenset({
        "name", "wake_time", "sleep_time", "work_start_time", "work_end_time",
        "work_days", "timezone", "review_time",
    })

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            wake_time=row["wake_time"],
            sleep_time=row["sleep_time"],
            work_start_time=row["work_start_time"],
            work_end_time=row["work_end_time"],
            work_days=json.loads(row["work_days"]),
            timezone=row["timezone"],
            review_time=row["review_time"],
            onboarded=bool(row["onboarded"]),
            created_at=row["created_at"],
        )

    def add_user(self, user_id: int, name: str) -> User:
        """Register a new user with the default schedule."""
        now = _now()
        with self._db.connect() as conn:
            conn.execute(
                "INSERT INTO users (id, name, created_at) VALUES (?, ?, ?)",
                (user_id, name, now),
            )
        logger.info("User registered: %d '%s'", user_id, name)
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> User | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> list[User]:
        with self._db.connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at").fetchall()
        return [self._row_to_user(r) for r in rows]

    def update_schedule(self, user_id: int, **fields: object) -> User:
        """Update schedule fields. Unknown field names raise ValueError."""
        unknown = set(fields) - self._SCHEDULE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {sorted(unknown)}")
        if "work_days" in fields:
            fields["work_days"] = json.dumps(sorted(set(fields["work_days"])))

        if fields:
            columns = sorted(fields)
            assignments = ", ".join(f"{c} = ?" for c in columns)
            with self._db.connect() as conn:
                cursor = conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?",
                    [fields[c] for c in columns] + [user_id],
                )
            if cursor.rowcount == 0:
                raise ValueError(f"User {user_id} not found")
            logger.info("Schedule updated for user %d: %s", user_id, ", ".join(columns))

        user = self.get_user(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")
        return user

    def mark_onboarded(self, user_id: int) -> None:
        with self._db.connect() as conn:
            conn.execute("UPDATE users SET onboarded = 1 WHERE id = ?", (user_id,))
        logger.info("User %d marked as onboarded", user_id)


# ---------------------------------------------------------------------------
# Plates
# ---------------------------------------------------------------------------


class PlateDB:
    """User-defined life areas. Archiving is the only way to remove one."""

    _UPDATABLE_FIELDS = frozenset({"name", "color", "type", "description", "icon", "status"})

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_plate(row: sqlite3.Row) -> Plate:
        return Plate(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            color=row["color"],
            type=row["type"],
            status=row["status"],
            description=row["description"],
            icon=row["icon"],
            sort_order=row["sort_order"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_plate(
        self,
        user_id: int,
        name: str,
        color: str = "#6366f1",
        type: str = "ongoing",
        description: str | None = None,
        icon: str | None = None,
    ) -> Plate:
        """Insert a plate at the end of the user's list."""
        now = _now()
        with self._db.connect() as conn:
            next_order = conn.execute(
                "SELECT COALESCE(MAX(sort_order), -1) + 1 FROM plates WHERE user_id = ?",
                (user_id,),
            ).fetchone()[0]
            cursor = conn.execute(
                """
                INSERT INTO plates
                    (user_id, name, description, icon, color, type, status,
                     sort_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 'active', ?, ?, ?)
                """,
                (user_id, name, description, icon, color, type, next_order, now, now),
            )
            plate_id = cursor.lastrowid
        logger.info("Plate added: #%d '%s' for user %d", plate_id, name, user_id)
        return self.get_plate(plate_id)

    def get_plate(self, plate_id: int) -> Plate | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM plates WHERE id = ?", (plate_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_plate(row)

    def list_plates(self, user_id: int, include_archived: bool = False) -> list[Plate]:
        query = "SELECT * FROM plates WHERE user_id = ?"
        if not include_archived:
            query += " AND status != 'archived'"
        query += " ORDER BY sort_order, created_at"
        with self._db.connect() as conn:
            rows = conn.execute(query, (user_id,)).fetchall()
        return [self._row_to_plate(r) for r in rows]

    def update_plate(self, plate_id: int, **fields: object) -> Plate | None:
        """Update whitelisted fields. Unknown field names raise ValueError."""
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update plate fields: {sorted(unknown)}")
        if not fields:
            return self.get_plate(plate_id)

        columns = sorted(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self._db.connect() as conn:
            conn.execute(
                f"UPDATE plates SET {assignments}, updated_at = ? WHERE id = ?",
                [fields[c] for c in columns] + [_now(), plate_id],
            )
        return self.get_plate(plate_id)

    def archive_plate(self, plate_id: int) -> bool:
        """Soft-delete a plate. Its tasks drop out of planning."""
        with self._db.connect() as conn:
            cursor = conn.execute(
                "UPDATE plates SET status = 'archived', updated_at = ? "
                "WHERE id = ? AND status != 'archived'",
                (_now(), plate_id),
            )
        archived = cursor.rowcount > 0
        if archived:
            logger.info("Plate #%d archived", plate_id)
        return archived

    def reorder_plates(self, user_id: int, plate_ids: list[int]) -> None:
        now = _now()
        with self._db.connect() as conn:
            for position, plate_id in enumerate(plate_ids):
                conn.execute(
                    "UPDATE plates SET sort_order = ?, updated_at = ? "
                    "WHERE id = ? AND user_id = ?",
                    (position, now, plate_id, user_id),
                )


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


class MilestoneDB:
    """Checkpoints on goal plates."""

    _UPDATABLE_FIELDS = frozenset({"name", "description", "target_date", "completed"})

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_milestone(row: sqlite3.Row) -> Milestone:
        return Milestone(
            id=row["id"],
            plate_id=row["plate_id"],
            name=row["name"],
            description=row["description"],
            target_date=row["target_date"],
            completed=bool(row["completed"]),
            completed_at=row["completed_at"],
            sort_order=row["sort_order"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_milestone(
        self,
        plate_id: int,
        name: str,
        description: str | None = None,
        target_date: str | None = None,
    ) -> Milestone:
        """Insert a milestone at the end of the plate's list."""
        now = _now()
        with self._db.connect() as conn:
            next_order = conn.execute(
                "SELECT COALESCE(MAX(sort_order), -1) + 1 FROM milestones WHERE plate_id = ?",
                (plate_id,),
            ).fetchone()[0]
            cursor = conn.execute(
                """
                INSERT INTO milestones
                    (plate_id, name, description, target_date, sort_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (plate_id, name, description, target_date, next_order, now, now),
            )
            milestone_id = cursor.lastrowid
        logger.info("Milestone added: #%d '%s' on plate #%d", milestone_id, name, plate_id)
        return self.get_milestone(milestone_id)

    def get_milestone(self, milestone_id: int) -> Milestone | None:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM milestones WHERE id = ?", (milestone_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_milestone(row)

    def list_milestones(self, plate_id: int) -> list[Milestone]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM milestones WHERE plate_id = ? ORDER BY sort_order, created_at",
                (plate_id,),
            ).fetchall()
        return [self._row_to_milestone(r) for r in rows]

    def update_milestone(self, milestone_id: int, **fields: object) -> Milestone | None:
        """Update whitelisted fields. Unknown field names raise ValueError.

        Setting `completed` also stamps or clears `completed_at`.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update milestone fields: {sorted(unknown)}")
        if not fields:
            return self.get_milestone(milestone_id)

        now = _now()
        if "completed" in fields:
            done = bool(fields["completed"])
            fields["completed"] = int(done)
            fields["completed_at"] = now if done else None

        columns = sorted(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self._db.connect() as conn:
            conn.execute(
                f"UPDATE milestones SET {assignments}, updated_at = ? WHERE id = ?",
                [fields[c] for c in columns] + [now, milestone_id],
            )
        return self.get_milestone(milestone_id)

    def delete_milestone(self, milestone_id: int) -> bool:
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM milestones WHERE id = ?", (milestone_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Milestone #%d deleted", milestone_id)
        return deleted


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskDB:
    """Tasks, their recurrence, and the completion history."""

    _UPDATABLE_FIELDS = frozenset({
        "title", "description", "priority", "effort_minutes", "energy_level",
        "context", "time_preference", "due_date", "status", "is_recurring",
        "recurrence_rule",
    })

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        rule = None
        if row["recurrence_rule"]:
            try:
                rule = RecurrenceRule.model_validate_json(row["recurrence_rule"])
            except ValidationError as exc:
                logger.warning("Task #%d has an invalid recurrence rule: %s", row["id"], exc)
        return Task(
            id=row["id"],
            plate_id=row["plate_id"],
            title=row["title"],
            description=row["description"],
            status=row["status"],
            priority=row["priority"],
            effort_minutes=row["effort_minutes"],
            energy_level=row["energy_level"],
            context=row["context"],
            time_preference=row["time_preference"],
            due_date=row["due_date"],
            completed_at=row["completed_at"],
            is_recurring=bool(row["is_recurring"]),
            recurrence_rule=rule,
            next_occurrence=row["next_occurrence"],
            sort_order=row["sort_order"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_task(
        self,
        plate_id: int,
        title: str,
        description: str | None = None,
        priority: str = "medium",
        effort_minutes: int | None = None,
        energy_level: str = "medium",
        context: str = "anywhere",
        time_preference: str = "anytime",
        due_date: str | None = None,
        recurrence_rule: RecurrenceRule | None = None,
        start_date: str | None = None,
    ) -> Task:
        """Insert a task. Recurring tasks are eligible from start_date (or today)."""
        now = _now()
        is_recurring = recurrence_rule is not None
        next_occ = None
        if is_recurring:
            next_occ = start_date or date.today().isoformat()
        rule_json = recurrence_rule.model_dump_json() if recurrence_rule else None

        with self._db.connect() as conn:
            next_order = conn.execute(
                "SELECT COALESCE(MAX(sort_order), -1) + 1 FROM tasks WHERE plate_id = ?",
                (plate_id,),
            ).fetchone()[0]
            cursor = conn.execute(
                """
                INSERT INTO tasks
                    (plate_id, title, description, priority, effort_minutes,
                     energy_level, context, time_preference, due_date,
                     is_recurring, recurrence_rule, next_occurrence, sort_order,
                     created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    plate_id, title, description, priority, effort_minutes,
                    energy_level, context, time_preference, due_date,
                    int(is_recurring), rule_json, next_occ, next_order, now, now,
                ),
            )
            task_id = cursor.lastrowid
        logger.info("Task added: #%d '%s' on plate #%d", task_id, title, plate_id)
        return self.get_task(task_id)

    def get_task(self, task_id: int) -> Task | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(
        self,
        user_id: int,
        plate_id: int | None = None,
        status: str | None = None,
        priority: str | None = None,
        context: str | None = None,
    ) -> list[Task]:
        """All of a user's tasks, optionally filtered."""
        query = (
            "SELECT t.* FROM tasks t JOIN plates p ON t.plate_id = p.id "
            "WHERE p.user_id = ?"
        )
        params: list = [user_id]
        for column, value in (
            ("t.plate_id", plate_id),
            ("t.status", status),
            ("t.priority", priority),
            ("t.context", context),
        ):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)
        query += " ORDER BY t.sort_order, t.created_at"

        with self._db.connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_plannable_tasks(self, user_id: int) -> list[Task]:
        """Open tasks on the user's active plates — the plan generator's input."""
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT t.* FROM tasks t JOIN plates p ON t.plate_id = p.id
                WHERE p.user_id = ? AND p.status = 'active'
                  AND t.status IN ('pending', 'in_progress')
                ORDER BY t.sort_order, t.created_at
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def update_task(self, task_id: int, **fields: object) -> Task | None:
        """Update whitelisted fields. Unknown field names raise ValueError."""
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")
        if not fields:
            return self.get_task(task_id)

        if "recurrence_rule" in fields:
            rule = fields["recurrence_rule"]
            fields["recurrence_rule"] = rule.model_dump_json() if rule is not None else None
        if "is_recurring" in fields:
            fields["is_recurring"] = int(bool(fields["is_recurring"]))

        columns = sorted(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self._db.connect() as conn:
            conn.execute(
                f"UPDATE tasks SET {assignments}, updated_at = ? WHERE id = ?",
                [fields[c] for c in columns] + [_now(), task_id],
            )
        return self.get_task(task_id)

    def delete_task(self, task_id: int) -> bool:
        """Permanently delete a task."""
        with self._db.connect() as conn:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Task #%d deleted", task_id)
        return deleted

    def complete_task(self, task_id: int, now: datetime | None = None) -> Task | None:
        """Complete a task and log the completion.

        Recurring tasks are rescheduled and reset to pending; they only
        complete for good once their rule has no next occurrence.
        """
        if now is None:
            now = datetime.now()
        task = self.get_task(task_id)
        if task is None:
            return None

        stamp = now.isoformat(timespec="seconds")
        next_date = None
        if task.is_recurring and task.recurrence_rule is not None:
            next_date = next_occurrence(task.recurrence_rule, now.date())

        with self._db.connect() as conn:
            if next_date is not None:
                conn.execute(
                    "UPDATE tasks SET completed_at = ?, next_occurrence = ?, "
                    "status = 'pending', updated_at = ? WHERE id = ?",
                    (stamp, next_date.isoformat(), stamp, task_id),
                )
            else:
                conn.execute(
                    "UPDATE tasks SET status = 'completed', completed_at = ?, "
                    "updated_at = ? WHERE id = ?",
                    (stamp, stamp, task_id),
                )
            conn.execute(
                "INSERT INTO completions (task_id, plate_id, completed_at) VALUES (?, ?, ?)",
                (task_id, task.plate_id, stamp),
            )

        if next_date is not None:
            logger.info("Recurring task #%d done, next occurrence %s", task_id, next_date)
        else:
            logger.info("Task #%d completed", task_id)
        return self.get_task(task_id)

    def skip_task(self, task_id: int, today: date | None = None) -> Task | None:
        """Skip a task for now.

        Recurring tasks move to their next occurrence. Non-recurring tasks,
        and recurring ones whose rule has ended, are returned unchanged.
        """
        if today is None:
            today = date.today()
        task = self.get_task(task_id)
        if task is None:
            return None
        if not task.is_recurring or task.recurrence_rule is None:
            return task

        next_date = next_occurrence(task.recurrence_rule, today)
        if next_date is None:
            return task

        with self._db.connect() as conn:
            conn.execute(
                "UPDATE tasks SET next_occurrence = ?, updated_at = ? WHERE id = ?",
                (next_date.isoformat(), _now(), task_id),
            )
        logger.info("Recurring task #%d skipped to %s", task_id, next_date)
        return self.get_task(task_id)

    def count_overdue(self, user_id: int, today: date) -> int:
        with self._db.connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM tasks t JOIN plates p ON t.plate_id = p.id
                WHERE p.user_id = ? AND p.status != 'archived'
                  AND t.status != 'completed'
                  AND t.due_date IS NOT NULL AND t.due_date < ?
                """,
                (user_id, today.isoformat()),
            ).fetchone()
        return row[0]

    def list_upcoming(self, user_id: int, today: date, days: int = 7) -> list[Task]:
        """Open tasks due between today and today + days, soonest first."""
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT t.* FROM tasks t JOIN plates p ON t.plate_id = p.id
                WHERE p.user_id = ? AND p.status != 'archived'
                  AND t.status != 'completed'
                  AND t.due_date >= ? AND t.due_date <= ?
                ORDER BY t.due_date, t.id
                """,
                (user_id, today.isoformat(), (today + timedelta(days=days)).isoformat()),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_recent_completions(
        self, user_id: int, days: int = 7, today: date | None = None,
    ) -> list[Completion]:
        """Completions on the user's plates within the trailing window, newest first."""
        if today is None:
            today = date.today()
        since = (today - timedelta(days=days)).isoformat()
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT c.plate_id, c.completed_at FROM completions c
                JOIN plates p ON c.plate_id = p.id
                WHERE p.user_id = ? AND c.completed_at >= ?
                ORDER BY c.completed_at DESC, c.id DESC
                """,
                (user_id, since),
            ).fetchall()
        return [Completion(plate_id=r["plate_id"], completed_at=r["completed_at"]) for r in rows]


# ---------------------------------------------------------------------------
# Daily plans
# ---------------------------------------------------------------------------


class PlanDB:
    """Persisted daily plans and their items."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_plan(row: sqlite3.Row) -> DailyPlan:
        return DailyPlan(
            id=row["id"],
            user_id=row["user_id"],
            date=row["date"],
            day_type=row["day_type"],
            available_minutes=row["available_minutes"],
            generated_at=row["generated_at"],
            is_locked=bool(row["is_locked"]),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> PlanItem:
        return PlanItem(
            id=row["id"],
            daily_plan_id=row["daily_plan_id"],
            task_id=row["task_id"],
            sort_order=row["sort_order"],
            context_group=row["context_group"],
            completed=bool(row["completed"]),
            completed_at=row["completed_at"],
            skipped=bool(row["skipped"]),
        )

    def create_plan(
        self,
        user_id: int,
        plan_date: str,
        day_type: str,
        available_minutes: int,
        items: list[tuple[int, int, str]],
    ) -> DailyPlan:
        """Replace the user's plan for plan_date with a new one.

        items: (task_id, sort_order, context_group) tuples.
        The delete and inserts run in one transaction.
        """
        with self._db.connect() as conn:
            conn.execute(
                "DELETE FROM daily_plans WHERE user_id = ? AND date = ?",
                (user_id, plan_date),
            )
            cursor = conn.execute(
                """
                INSERT INTO daily_plans (user_id, date, day_type, available_minutes, generated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, plan_date, day_type, available_minutes, _now()),
            )
            plan_id = cursor.lastrowid
            conn.executemany(
                """
                INSERT INTO plan_items (daily_plan_id, task_id, sort_order, context_group)
                VALUES (?, ?, ?, ?)
                """,
                [(plan_id, task_id, order, group) for task_id, order, group in items],
            )
        logger.info(
            "Plan #%d saved for user %d on %s with %d items",
            plan_id, user_id, plan_date, len(items),
        )
        return self.get_plan(plan_id)

    def get_plan(self, plan_id: int) -> DailyPlan | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM daily_plans WHERE id = ?", (plan_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_plan(row)

    def get_plan_by_date(self, user_id: int, plan_date: str) -> DailyPlan | None:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM daily_plans WHERE user_id = ? AND date = ?",
                (user_id, plan_date),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_plan(row)

    def get_item(self, item_id: int) -> PlanItem | None:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM plan_items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_item(row)

    def get_items(self, plan_id: int) -> list[PlanItem]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM plan_items WHERE daily_plan_id = ? ORDER BY sort_order",
                (plan_id,),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def get_items_with_tasks(self, plan_id: int) -> list[PlanItemWithTask]:
        """Plan items joined with their task and plate, in plan order."""
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT pi.id AS item_id, pi.daily_plan_id, pi.task_id,
                       pi.sort_order AS item_sort_order, pi.context_group,
                       pi.completed, pi.completed_at AS item_completed_at, pi.skipped,
                       t.*, p.name AS plate_name, p.color AS plate_color
                FROM plan_items pi
                JOIN tasks t ON pi.task_id = t.id
                JOIN plates p ON t.plate_id = p.id
                WHERE pi.daily_plan_id = ?
                ORDER BY pi.sort_order
                """,
                (plan_id,),
            ).fetchall()

        return [
            PlanItemWithTask(
                item=PlanItem(
                    id=r["item_id"],
                    daily_plan_id=r["daily_plan_id"],
                    task_id=r["task_id"],
                    sort_order=r["item_sort_order"],
                    context_group=r["context_group"],
                    completed=bool(r["completed"]),
                    completed_at=r["item_completed_at"],
                    skipped=bool(r["skipped"]),
                ),
                task=TaskDB._row_to_task(r),
                plate_name=r["plate_name"],
                plate_color=r["plate_color"],
            )
            for r in rows
        ]

    def delete_plan_by_date(self, user_id: int, plan_date: str) -> bool:
        with self._db.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM daily_plans WHERE user_id = ? AND date = ?",
                (user_id, plan_date),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Plan for user %d on %s removed", user_id, plan_date)
        return deleted

    def complete_item(self, item_id: int, now: datetime | None = None) -> PlanItem | None:
        stamp = now.isoformat(timespec="seconds") if now else _now()
        with self._db.connect() as conn:
            conn.execute(
                "UPDATE plan_items SET completed = 1, completed_at = ? WHERE id = ?",
                (stamp, item_id),
            )
        return self.get_item(item_id)

    def skip_item(self, item_id: int) -> PlanItem | None:
        with self._db.connect() as conn:
            conn.execute("UPDATE plan_items SET skipped = 1 WHERE id = ?", (item_id,))
        return self.get_item(item_id)

    def reorder_items(self, plan_id: int, item_ids: list[int]) -> None:
        with self._db.connect() as conn:
            for position, item_id in enumerate(item_ids):
                conn.execute(
                    "UPDATE plan_items SET sort_order = ? WHERE id = ? AND daily_plan_id = ?",
                    (position, item_id, plan_id),
                )


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class ReviewDB:
    """Evening reviews and per-plate ratings."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @staticmethod
    def _row_to_review(row: sqlite3.Row) -> Review:
        return Review(
            id=row["id"],
            user_id=row["user_id"],
            date=row["date"],
            mood=row["mood"],
            notes=row["notes"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_rating(row: sqlite3.Row) -> PlateRating:
        return PlateRating(
            id=row["id"],
            review_id=row["review_id"],
            plate_id=row["plate_id"],
            rating=row["rating"],
            note=row["note"],
        )

    def create_review(
        self,
        user_id: int,
        review_date: str,
        mood: int,
        notes: str | None = None,
        plate_ratings: list[tuple[int, int, str | None]] | None = None,
    ) -> Review:
        """Insert or replace the review for review_date.

        plate_ratings: (plate_id, rating, note) tuples; existing ratings of the
        same plate are overwritten.
        """
        if not 1 <= mood <= 5:
            raise ValueError(f"Mood must be 1-5, got {mood}")
        for _, rating, _ in plate_ratings or []:
            if not 1 <= rating <= 5:
                raise ValueError(f"Plate rating must be 1-5, got {rating}")

        with self._db.connect() as conn:
            conn.execute(
                """
                INSERT INTO reviews (user_id, date, mood, notes, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (user_id, date) DO UPDATE SET
                    mood = excluded.mood, notes = excluded.notes
                """,
                (user_id, review_date, mood, notes, _now()),
            )
            review_id = conn.execute(
                "SELECT id FROM reviews WHERE user_id = ? AND date = ?",
                (user_id, review_date),
            ).fetchone()[0]
            conn.executemany(
                """
                INSERT INTO plate_review_ratings (review_id, plate_id, rating, note)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (review_id, plate_id) DO UPDATE SET
                    rating = excluded.rating, note = excluded.note
                """,
                [(review_id, pid, rating, note) for pid, rating, note in plate_ratings or []],
            )
        logger.info("Review saved for user %d on %s (mood %d)", user_id, review_date, mood)
        return self.get_review_by_date(user_id, review_date)

    def get_review_by_date(self, user_id: int, review_date: str) -> Review | None:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM reviews WHERE user_id = ? AND date = ?",
                (user_id, review_date),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_review(row)

    def get_ratings(self, review_id: int) -> list[PlateRating]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM plate_review_ratings WHERE review_id = ? ORDER BY plate_id",
                (review_id,),
            ).fetchall()
        return [self._row_to_rating(r) for r in rows]

    def get_review_with_ratings(
        self, user_id: int, review_date: str,
    ) -> tuple[Review, list[PlateRating]] | None:
        review = self.get_review_by_date(user_id, review_date)
        if review is None:
            return None
        return review, self.get_ratings(review.id)

    def get_recent_reviews(self, user_id: int, limit: int = 7) -> list[Review]:
        """Most recent reviews first."""
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM reviews WHERE user_id = ? ORDER BY date DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_review(r) for r in rows]

    def get_review_history(
        self, user_id: int, limit: int = 30,
    ) -> list[tuple[Review, list[PlateRating]]]:
        return [(r, self.get_ratings(r.id)) for r in self.get_recent_reviews(user_id, limit)]

    def get_recent_ratings(self, user_id: int, limit: int = 60) -> list[ReviewRating]:
        """Plate ratings with their review date, newest first."""
        with self._db.connect() as conn:
            rows = conn.execute(
                """
                SELECT r.plate_id, r.rating, v.date FROM plate_review_ratings r
                JOIN reviews v ON r.review_id = v.id
                WHERE v.user_id = ?
                ORDER BY v.date DESC, r.id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [
            ReviewRating(plate_id=r["plate_id"], rating=r["rating"], date=r["date"])
            for r in rows
        ]

    def get_review_streak(self, user_id: int, today: date | None = None) -> int:
        """Consecutive days with a review, ending today or yesterday."""
        if today is None:
            today = date.today()
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT date FROM reviews WHERE user_id = ? ORDER BY date DESC LIMIT 60",
                (user_id,),
            ).fetchall()

        dates = [d for d in (parse_date(r["date"]) for r in rows) if d is not None]
        if not dates or (today - dates[0]).days > 1:
            return 0

        streak = 0
        expected = dates[0]
        for d in dates:
            if d != expected:
                break
            streak += 1
            expected -= timedelta(days=1)
        return streak
