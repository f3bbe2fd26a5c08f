"""Tests for plates.data.db — PlateDB, MilestoneDB and TaskDB."""

from datetime import date, datetime

import pytest

from plates.data.models import RecurrenceRule


@pytest.fixture
def plate(plate_db, user):
    return plate_db.create_plate(user.id, "Health", color="#22c55e")


# ---------------------------------------------------------------------------
# Plates
# ---------------------------------------------------------------------------


class TestPlateDB:
    def test_create_and_get(self, plate_db, user):
        plate = plate_db.create_plate(user.id, "Work", description="Day job", icon="💼")
        assert plate.id is not None
        assert plate.name == "Work"
        assert plate.color == "#6366f1"
        assert plate.type == "ongoing"
        assert plate.status == "active"
        assert plate.icon == "💼"
        assert plate_db.get_plate(plate.id) == plate

    def test_sort_order_appends(self, plate_db, user):
        first = plate_db.create_plate(user.id, "Work")
        second = plate_db.create_plate(user.id, "Family")
        assert (first.sort_order, second.sort_order) == (0, 1)

    def test_list_hides_archived(self, plate_db, user):
        work = plate_db.create_plate(user.id, "Work")
        old = plate_db.create_plate(user.id, "Old hobby")
        plate_db.archive_plate(old.id)
        assert [p.id for p in plate_db.list_plates(user.id)] == [work.id]
        assert len(plate_db.list_plates(user.id, include_archived=True)) == 2

    def test_archive_twice(self, plate_db, plate):
        assert plate_db.archive_plate(plate.id) is True
        assert plate_db.archive_plate(plate.id) is False
        assert plate_db.get_plate(plate.id).status == "archived"

    def test_update(self, plate_db, plate):
        updated = plate_db.update_plate(plate.id, name="Fitness", type="goal")
        assert updated.name == "Fitness"
        assert updated.type == "goal"
        assert updated.color == "#22c55e"

    def test_update_unknown_field_rejected(self, plate_db, plate):
        with pytest.raises(ValueError):
            plate_db.update_plate(plate.id, user_id=42)

    def test_reorder(self, plate_db, user):
        a = plate_db.create_plate(user.id, "A")
        b = plate_db.create_plate(user.id, "B")
        c = plate_db.create_plate(user.id, "C")
        plate_db.reorder_plates(user.id, [c.id, a.id, b.id])
        assert [p.name for p in plate_db.list_plates(user.id)] == ["C", "A", "B"]

    def test_plate_requires_existing_user(self, plate_db):
        with pytest.raises(Exception):
            plate_db.create_plate(424242, "Orphan")


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


@pytest.fixture
def goal(plate_db, user):
    return plate_db.create_plate(user.id, "Marathon", type="goal")


class TestMilestoneDB:
    def test_create_and_get(self, milestone_db, goal):
        milestone = milestone_db.create_milestone(goal.id, "Run 10k", target_date="2026-11-01")
        assert milestone.plate_id == goal.id
        assert milestone.name == "Run 10k"
        assert milestone.target_date == "2026-11-01"
        assert milestone.completed is False
        assert milestone.completed_at is None
        assert milestone_db.get_milestone(milestone.id) == milestone

    def test_sort_order_appends_per_plate(self, milestone_db, plate_db, user, goal):
        other = plate_db.create_plate(user.id, "Novel", type="goal")
        first = milestone_db.create_milestone(goal.id, "Run 5k")
        second = milestone_db.create_milestone(goal.id, "Run 10k")
        elsewhere = milestone_db.create_milestone(other.id, "Outline")
        assert (first.sort_order, second.sort_order) == (0, 1)
        assert elsewhere.sort_order == 0

    def test_list_by_plate(self, milestone_db, plate_db, user, goal):
        other = plate_db.create_plate(user.id, "Novel", type="goal")
        milestone_db.create_milestone(goal.id, "Run 5k")
        milestone_db.create_milestone(other.id, "Outline")
        milestone_db.create_milestone(goal.id, "Run 10k")
        assert [m.name for m in milestone_db.list_milestones(goal.id)] == ["Run 5k", "Run 10k"]

    def test_complete_stamps_and_undo_clears(self, milestone_db, goal):
        milestone = milestone_db.create_milestone(goal.id, "Run 5k")
        done = milestone_db.update_milestone(milestone.id, completed=True)
        assert done.completed is True
        assert done.completed_at is not None

        undone = milestone_db.update_milestone(milestone.id, completed=False)
        assert undone.completed is False
        assert undone.completed_at is None

    def test_update_name(self, milestone_db, goal):
        milestone = milestone_db.create_milestone(goal.id, "Run 5k")
        updated = milestone_db.update_milestone(milestone.id, name="Run 6k", target_date="2026-12-01")
        assert updated.name == "Run 6k"
        assert updated.target_date == "2026-12-01"

    def test_update_unknown_field_rejected(self, milestone_db, goal):
        milestone = milestone_db.create_milestone(goal.id, "Run 5k")
        with pytest.raises(ValueError):
            milestone_db.update_milestone(milestone.id, plate_id=99)
        with pytest.raises(ValueError):
            milestone_db.update_milestone(milestone.id, completed_at="2026-01-01")

    def test_delete(self, milestone_db, goal):
        milestone = milestone_db.create_milestone(goal.id, "Run 5k")
        assert milestone_db.delete_milestone(milestone.id) is True
        assert milestone_db.get_milestone(milestone.id) is None
        assert milestone_db.delete_milestone(milestone.id) is False


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestTaskDBCrud:
    def test_create_defaults(self, task_db, plate):
        task = task_db.create_task(plate.id, "Go for a run")
        assert task.title == "Go for a run"
        assert task.status == "pending"
        assert task.priority == "medium"
        assert task.context == "anywhere"
        assert task.time_preference == "anytime"
        assert task.is_recurring is False
        assert task.recurrence_rule is None
        assert task.next_occurrence is None

    def test_create_recurring(self, task_db, plate):
        rule = RecurrenceRule(pattern="weekly", days=[1, 3, 5])
        task = task_db.create_task(plate.id, "Gym", recurrence_rule=rule, start_date="2026-10-21")
        assert task.is_recurring is True
        assert task.recurrence_rule == rule
        assert task.next_occurrence == "2026-10-21"

    def test_create_recurring_defaults_to_today(self, task_db, plate):
        task = task_db.create_task(plate.id, "Stretch", recurrence_rule=RecurrenceRule(pattern="daily"))
        assert task.next_occurrence == date.today().isoformat()

    def test_update(self, task_db, plate):
        task = task_db.create_task(plate.id, "Read")
        updated = task_db.update_task(task.id, priority="high", effort_minutes=45)
        assert updated.priority == "high"
        assert updated.effort_minutes == 45

    def test_update_recurrence_rule(self, task_db, plate):
        task = task_db.create_task(plate.id, "Water plants")
        rule = RecurrenceRule(pattern="custom", interval=3)
        updated = task_db.update_task(task.id, recurrence_rule=rule, is_recurring=True)
        assert updated.recurrence_rule == rule
        assert updated.is_recurring is True

    def test_update_unknown_field_rejected(self, task_db, plate):
        task = task_db.create_task(plate.id, "Read")
        with pytest.raises(ValueError):
            task_db.update_task(task.id, plate_id=99)

    def test_delete(self, task_db, plate):
        task = task_db.create_task(plate.id, "Read")
        assert task_db.delete_task(task.id) is True
        assert task_db.get_task(task.id) is None
        assert task_db.delete_task(task.id) is False

    def test_list_filters(self, task_db, plate_db, user, plate):
        work = plate_db.create_plate(user.id, "Work")
        task_db.create_task(plate.id, "Run", context="anywhere")
        task_db.create_task(work.id, "Report", priority="high", context="at_work")
        task_db.create_task(work.id, "Email", priority="low", context="at_work")

        assert len(task_db.list_tasks(user.id)) == 3
        assert [t.title for t in task_db.list_tasks(user.id, plate_id=work.id)] == ["Report", "Email"]
        assert [t.title for t in task_db.list_tasks(user.id, priority="high")] == ["Report"]
        assert len(task_db.list_tasks(user.id, context="at_work")) == 2

    def test_list_only_own_tasks(self, task_db, plate_db, user_db, plate):
        user_db.add_user(2, "Someone else")
        other = plate_db.create_plate(2, "Theirs")
        task_db.create_task(other.id, "Not mine")
        task_db.create_task(plate.id, "Mine")
        assert [t.title for t in task_db.list_tasks(12345)] == ["Mine"]


class TestTaskDBPlannable:
    def test_excludes_completed_and_archived(self, task_db, plate_db, user, plate):
        old = plate_db.create_plate(user.id, "Old")
        open_task = task_db.create_task(plate.id, "Open")
        done = task_db.create_task(plate.id, "Done")
        task_db.update_task(done.id, status="completed")
        task_db.create_task(old.id, "On archived plate")
        plate_db.archive_plate(old.id)

        assert [t.id for t in task_db.list_plannable_tasks(user.id)] == [open_task.id]

    def test_includes_in_progress(self, task_db, user, plate):
        task = task_db.create_task(plate.id, "Halfway")
        task_db.update_task(task.id, status="in_progress")
        assert [t.id for t in task_db.list_plannable_tasks(user.id)] == [task.id]


class TestTaskDBComplete:
    def test_complete_one_off(self, task_db, plate):
        task = task_db.create_task(plate.id, "File taxes")
        done = task_db.complete_task(task.id, now=datetime(2026, 10, 20, 18, 0))
        assert done.status == "completed"
        assert done.completed_at == "2026-10-20T18:00:00"

    def test_complete_recurring_reschedules(self, task_db, plate):
        rule = RecurrenceRule(pattern="weekly", days=[1, 3, 5])
        task = task_db.create_task(plate.id, "Gym", recurrence_rule=rule, start_date="2026-10-20")
        done = task_db.complete_task(task.id, now=datetime(2026, 10, 20, 7, 0))
        assert done.status == "pending"
        assert done.next_occurrence == "2026-10-21"
        assert done.completed_at == "2026-10-20T07:00:00"

    def test_complete_recurring_after_end_date(self, task_db, plate):
        rule = RecurrenceRule(pattern="daily", end_date="2026-10-20")
        task = task_db.create_task(plate.id, "Course", recurrence_rule=rule, start_date="2026-10-20")
        done = task_db.complete_task(task.id, now=datetime(2026, 10, 20, 7, 0))
        assert done.status == "completed"

    def test_completion_history_logged(self, task_db, user, plate):
        rule = RecurrenceRule(pattern="daily")
        task = task_db.create_task(plate.id, "Walk", recurrence_rule=rule, start_date="2026-10-18")
        task_db.complete_task(task.id, now=datetime(2026, 10, 18, 8, 0))
        task_db.complete_task(task.id, now=datetime(2026, 10, 19, 8, 0))

        history = task_db.get_recent_completions(user.id, today=date(2026, 10, 20))
        assert [c.completed_at for c in history] == ["2026-10-19T08:00:00", "2026-10-18T08:00:00"]
        assert all(c.plate_id == plate.id for c in history)

    def test_recent_completions_window(self, task_db, user, plate):
        task = task_db.create_task(plate.id, "Old one")
        task_db.complete_task(task.id, now=datetime(2026, 9, 1, 8, 0))
        assert task_db.get_recent_completions(user.id, today=date(2026, 10, 20)) == []

    def test_complete_missing_task(self, task_db):
        assert task_db.complete_task(999) is None


class TestTaskDBSkip:
    def test_skip_recurring_moves_forward(self, task_db, plate):
        rule = RecurrenceRule(pattern="custom", interval=2)
        task = task_db.create_task(plate.id, "Laundry", recurrence_rule=rule, start_date="2026-10-20")
        skipped = task_db.skip_task(task.id, today=date(2026, 10, 20))
        assert skipped.next_occurrence == "2026-10-22"
        assert skipped.status == "pending"

    def test_skip_one_off_is_noop(self, task_db, plate):
        task = task_db.create_task(plate.id, "Call mom")
        assert task_db.skip_task(task.id, today=date(2026, 10, 20)) == task

    def test_skip_ended_rule_is_noop(self, task_db, plate):
        rule = RecurrenceRule(pattern="daily", end_date="2026-10-20")
        task = task_db.create_task(plate.id, "Course", recurrence_rule=rule, start_date="2026-10-20")
        assert task_db.skip_task(task.id, today=date(2026, 10, 20)).next_occurrence == "2026-10-20"

    def test_skip_missing_task(self, task_db):
        assert task_db.skip_task(999) is None


class TestTaskDBQueries:
    def test_count_overdue(self, task_db, user, plate):
        task_db.create_task(plate.id, "Late", due_date="2026-10-18")
        task_db.create_task(plate.id, "Today", due_date="2026-10-20")
        finished = task_db.create_task(plate.id, "Late but done", due_date="2026-10-01")
        task_db.complete_task(finished.id)
        assert task_db.count_overdue(user.id, date(2026, 10, 20)) == 1

    def test_list_upcoming(self, task_db, user, plate):
        task_db.create_task(plate.id, "Friday", due_date="2026-10-23")
        task_db.create_task(plate.id, "Today", due_date="2026-10-20")
        task_db.create_task(plate.id, "Next month", due_date="2026-11-20")
        task_db.create_task(plate.id, "No date")
        upcoming = task_db.list_upcoming(user.id, date(2026, 10, 20))
        assert [t.title for t in upcoming] == ["Today", "Friday"]
