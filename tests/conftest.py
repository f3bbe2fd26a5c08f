"""Shared test fixtures and configuration.

Sets up fake environment variables so plates.config doesn't sys.exit(),
and provides temp-file databases with their repositories.
"""

import os

# Patch env vars BEFORE any plates imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "America/Chicago")

import pytest


@pytest.fixture
def db(tmp_path):
    """Return an initialized Database backed by a temp file."""
    from plates.data.db import open_database
    return open_database(str(tmp_path / "test_plates.db"))


@pytest.fixture
def user_db(db):
    from plates.data.db import UserDB
    return UserDB(db)


@pytest.fixture
def plate_db(db):
    from plates.data.db import PlateDB
    return PlateDB(db)


@pytest.fixture
def milestone_db(db):
    from plates.data.db import MilestoneDB
    return MilestoneDB(db)


@pytest.fixture
def task_db(db):
    from plates.data.db import TaskDB
    return TaskDB(db)


@pytest.fixture
def plan_db(db):
    from plates.data.db import PlanDB
    return PlanDB(db)


@pytest.fixture
def review_db(db):
    from plates.data.db import ReviewDB
    return ReviewDB(db)


@pytest.fixture
def user(user_db):
    """A registered user (id 12345) with the default schedule."""
    return user_db.add_user(12345, "Amit")
