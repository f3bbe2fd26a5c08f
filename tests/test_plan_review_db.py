"""Tests for plates.data.db — PlanDB and ReviewDB."""

from datetime import date, datetime

import pytest


@pytest.fixture
def plate(plate_db, user):
    return plate_db.create_plate(user.id, "Home", color="#f97316")


@pytest.fixture
def tasks(task_db, plate):
    return [task_db.create_task(plate.id, f"Chore {i}", effort_minutes=15) for i in range(3)]


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class TestPlanDB:
    def test_create_and_fetch(self, plan_db, user, tasks):
        items = [(t.id, i, "At Home") for i, t in enumerate(tasks)]
        plan = plan_db.create_plan(user.id, "2026-10-20", "workday", 300, items)
        assert plan.date == "2026-10-20"
        assert plan.day_type == "workday"
        assert plan.available_minutes == 300
        assert plan.is_locked is False
        assert plan_db.get_plan_by_date(user.id, "2026-10-20") == plan
        assert [i.task_id for i in plan_db.get_items(plan.id)] == [t.id for t in tasks]

    def test_regenerate_replaces_plan(self, plan_db, user, tasks):
        first = plan_db.create_plan(user.id, "2026-10-20", "workday", 300, [(tasks[0].id, 0, "At Home")])
        second = plan_db.create_plan(
            user.id, "2026-10-20", "workday", 300,
            [(tasks[2].id, 0, "At Home"), (tasks[1].id, 1, "At Home")],
        )
        assert plan_db.get_plan(first.id) is None
        assert plan_db.get_plan_by_date(user.id, "2026-10-20").id == second.id
        assert [i.task_id for i in plan_db.get_items(second.id)] == [tasks[2].id, tasks[1].id]

    def test_old_items_removed_with_plan(self, plan_db, user, tasks, db):
        first = plan_db.create_plan(user.id, "2026-10-20", "workday", 300, [(tasks[0].id, 0, "At Home")])
        plan_db.create_plan(user.id, "2026-10-20", "workday", 300, [])
        assert plan_db.get_items(first.id) == []
        with db.connect() as conn:
            assert conn.execute("SELECT COUNT(*) FROM plan_items").fetchone()[0] == 0

    def test_duplicate_task_rolls_back(self, plan_db, user, tasks):
        original = plan_db.create_plan(user.id, "2026-10-20", "workday", 300, [(tasks[0].id, 0, "At Home")])
        with pytest.raises(Exception):
            plan_db.create_plan(
                user.id, "2026-10-20", "workday", 300,
                [(tasks[1].id, 0, "At Home"), (tasks[1].id, 1, "At Home")],
            )
        # The failed regeneration left the previous plan in place
        assert plan_db.get_plan_by_date(user.id, "2026-10-20").id == original.id
        assert len(plan_db.get_items(original.id)) == 1

    def test_plans_are_per_date(self, plan_db, user, tasks):
        plan_db.create_plan(user.id, "2026-10-20", "workday", 300, [])
        plan_db.create_plan(user.id, "2026-10-21", "workday", 300, [])
        assert plan_db.get_plan_by_date(user.id, "2026-10-20") is not None
        assert plan_db.get_plan_by_date(user.id, "2026-10-22") is None

    def test_items_with_tasks(self, plan_db, user, plate, tasks):
        plan = plan_db.create_plan(
            user.id, "2026-10-20", "weekend", 780,
            [(tasks[1].id, 0, "At Home"), (tasks[0].id, 1, "Anywhere")],
        )
        rows = plan_db.get_items_with_tasks(plan.id)
        assert [r.task.title for r in rows] == ["Chore 1", "Chore 0"]
        assert [r.item.sort_order for r in rows] == [0, 1]
        assert rows[0].item.context_group == "At Home"
        assert rows[0].task.effort_minutes == 15
        assert rows[0].plate_name == "Home"
        assert rows[0].plate_color == "#f97316"

    def test_complete_and_skip_item(self, plan_db, user, tasks):
        plan = plan_db.create_plan(
            user.id, "2026-10-20", "workday", 300,
            [(tasks[0].id, 0, "At Home"), (tasks[1].id, 1, "At Home")],
        )
        first, second = plan_db.get_items(plan.id)
        done = plan_db.complete_item(first.id)
        assert done.completed is True
        assert done.completed_at is not None
        skipped = plan_db.skip_item(second.id)
        assert skipped.skipped is True
        assert skipped.completed is False

    def test_reorder_items(self, plan_db, user, tasks):
        plan = plan_db.create_plan(
            user.id, "2026-10-20", "workday", 300,
            [(t.id, i, "At Home") for i, t in enumerate(tasks)],
        )
        items = plan_db.get_items(plan.id)
        plan_db.reorder_items(plan.id, [items[2].id, items[0].id, items[1].id])
        assert [i.task_id for i in plan_db.get_items(plan.id)] == [
            tasks[2].id, tasks[0].id, tasks[1].id,
        ]

    def test_delete_plan_by_date(self, plan_db, user, tasks):
        plan = plan_db.create_plan(user.id, "2026-10-20", "workday", 300, [(tasks[0].id, 0, "At Home")])
        plan_db.create_plan(user.id, "2026-10-21", "workday", 300, [(tasks[0].id, 0, "At Home")])
        assert plan_db.delete_plan_by_date(user.id, "2026-10-20") is True
        assert plan_db.get_plan_by_date(user.id, "2026-10-20") is None
        assert plan_db.get_items(plan.id) == []
        assert plan_db.get_plan_by_date(user.id, "2026-10-21") is not None
        assert plan_db.delete_plan_by_date(user.id, "2026-10-20") is False

    def test_complete_item_uses_given_time(self, plan_db, user, tasks):
        plan = plan_db.create_plan(user.id, "2026-10-20", "workday", 300, [(tasks[0].id, 0, "At Home")])
        item = plan_db.get_items(plan.id)[0]
        done = plan_db.complete_item(item.id, now=datetime(2026, 10, 20, 21, 15))
        assert done.completed_at == "2026-10-20T21:15:00"

    def test_missing_item(self, plan_db):
        assert plan_db.get_item(999) is None


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


class TestReviewDB:
    def test_create_with_ratings(self, review_db, user, plate):
        review = review_db.create_review(
            user.id, "2026-10-20", 4, notes="Good day", plate_ratings=[(plate.id, 5, "Cleaned")],
        )
        assert review.mood == 4
        assert review.notes == "Good day"
        fetched, ratings = review_db.get_review_with_ratings(user.id, "2026-10-20")
        assert fetched == review
        assert [(r.plate_id, r.rating, r.note) for r in ratings] == [(plate.id, 5, "Cleaned")]

    def test_same_day_review_is_replaced(self, review_db, user, plate):
        first = review_db.create_review(user.id, "2026-10-20", 2, plate_ratings=[(plate.id, 2, None)])
        second = review_db.create_review(user.id, "2026-10-20", 4, plate_ratings=[(plate.id, 4, None)])
        assert second.id == first.id
        assert second.mood == 4
        assert [r.rating for r in review_db.get_ratings(second.id)] == [4]

    @pytest.mark.parametrize("mood", [0, 6])
    def test_mood_out_of_range(self, review_db, user, mood):
        with pytest.raises(ValueError):
            review_db.create_review(user.id, "2026-10-20", mood)

    def test_rating_out_of_range(self, review_db, user, plate):
        with pytest.raises(ValueError):
            review_db.create_review(user.id, "2026-10-20", 3, plate_ratings=[(plate.id, 9, None)])
        assert review_db.get_review_by_date(user.id, "2026-10-20") is None

    def test_missing_review(self, review_db, user):
        assert review_db.get_review_with_ratings(user.id, "2026-10-20") is None

    def test_recent_reviews_newest_first(self, review_db, user):
        for day in ("2026-10-18", "2026-10-20", "2026-10-19"):
            review_db.create_review(user.id, day, 3)
        assert [r.date for r in review_db.get_recent_reviews(user.id)] == [
            "2026-10-20", "2026-10-19", "2026-10-18",
        ]
        assert len(review_db.get_recent_reviews(user.id, limit=2)) == 2

    def test_review_history(self, review_db, user, plate):
        review_db.create_review(user.id, "2026-10-19", 3, plate_ratings=[(plate.id, 3, None)])
        review_db.create_review(user.id, "2026-10-20", 5)
        history = review_db.get_review_history(user.id)
        assert [(r.date, len(ratings)) for r, ratings in history] == [
            ("2026-10-20", 0), ("2026-10-19", 1),
        ]

    def test_recent_ratings_carry_review_date(self, review_db, user, plate):
        review_db.create_review(user.id, "2026-10-19", 3, plate_ratings=[(plate.id, 2, None)])
        review_db.create_review(user.id, "2026-10-20", 3, plate_ratings=[(plate.id, 4, None)])
        ratings = review_db.get_recent_ratings(user.id)
        assert [(r.date, r.rating) for r in ratings] == [("2026-10-20", 4), ("2026-10-19", 2)]


class TestReviewStreak:
    def test_no_reviews(self, review_db, user):
        assert review_db.get_review_streak(user.id, today=date(2026, 10, 20)) == 0

    def test_consecutive_days_through_today(self, review_db, user):
        for day in ("2026-10-18", "2026-10-19", "2026-10-20"):
            review_db.create_review(user.id, day, 3)
        assert review_db.get_review_streak(user.id, today=date(2026, 10, 20)) == 3

    def test_streak_ending_yesterday_still_counts(self, review_db, user):
        for day in ("2026-10-18", "2026-10-19"):
            review_db.create_review(user.id, day, 3)
        assert review_db.get_review_streak(user.id, today=date(2026, 10, 20)) == 2

    def test_gap_breaks_streak(self, review_db, user):
        for day in ("2026-10-15", "2026-10-19", "2026-10-20"):
            review_db.create_review(user.id, day, 3)
        assert review_db.get_review_streak(user.id, today=date(2026, 10, 20)) == 2

    def test_stale_streak_is_zero(self, review_db, user):
        for day in ("2026-10-16", "2026-10-17"):
            review_db.create_review(user.id, day, 3)
        assert review_db.get_review_streak(user.id, today=date(2026, 10, 20)) == 0
