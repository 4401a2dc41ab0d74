"""Pytest fixtures and configuration for slotkeeper tests."""

import pytest
from datetime import date, datetime, time, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from unittest.mock import MagicMock
import uuid

from slotkeeper.database.database import Base, enable_sqlite_foreign_keys
from slotkeeper.database import models  # noqa: F401
from slotkeeper.database.repository import TaskRepository
from slotkeeper.database.preferences_repository import PreferencesRepository
from slotkeeper.models.preferences import UserCalendarPreferences
from slotkeeper.models.task import Task, TaskStatus, TaskType, RecurrencePattern


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_session():
    """Create a database session for testing.

    Uses an in-memory SQLite database that is created fresh for each test.
    """
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    enable_sqlite_foreign_keys(engine)

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def task_repository(db_session: Session):
    """Create a TaskRepository instance for testing."""
    return TaskRepository(db_session)


@pytest.fixture
def preferences_repository(db_session: Session):
    return PreferencesRepository(db_session)


@pytest.fixture
def test_user_id():
    """Test user ID for multi-user testing."""
    return "test-user-123"


@pytest.fixture
def sample_task_base(test_user_id):
    """Base task data for creating test tasks.

    Returns a dict with default task attributes that can be overridden.
    """
    now = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    return {
        "id": str(uuid.uuid4()),
        "user_id": test_user_id,
        "project_id": None,
        "title": "Test Task",
        "notes": "Test notes",
        "status": TaskStatus.OPEN,
        "created_at": now,
        "updated_at": now,
        "start_instant": None,
        "duration_minutes": 60,
        "task_type": TaskType.ONE_OFF,
        "recurrence_pattern": None,
        "recurrence_ends": None,
        "recurrence_day_of_month": None,
    }


@pytest.fixture
def make_task(sample_task_base):
    """Factory for one-off tasks; each call gets a fresh id."""
    def _make(**overrides) -> Task:
        return Task(**{**sample_task_base, "id": str(uuid.uuid4()), **overrides})
    return _make


@pytest.fixture
def make_series(sample_task_base):
    """Factory for recurring tasks (weekly by default)."""
    def _make(**overrides) -> Task:
        data = {
            **sample_task_base,
            "id": str(uuid.uuid4()),
            "title": "Weekly sync",
            "task_type": TaskType.RECURRING,
            "recurrence_pattern": RecurrencePattern.WEEKLY,
            "start_instant": datetime(2025, 3, 3, 10, 0, tzinfo=timezone.utc),
            "duration_minutes": 30,
        }
        data.update(overrides)
        return Task(**data)
    return _make


@pytest.fixture
def utc_prefs(test_user_id):
    """Mon-Fri, 09:00-17:00 UTC, 60 minute default."""
    return UserCalendarPreferences(
        user_id=test_user_id,
        timezone="UTC",
        working_days=[1, 2, 3, 4, 5],
        work_start_time=time(9, 0),
        work_end_time=time(17, 0),
        default_task_duration_minutes=60,
    )


@pytest.fixture
def preferences_reader(utc_prefs):
    reader = MagicMock()
    reader.get_preferences.return_value = utc_prefs
    return reader


@pytest.fixture
def calendar_client():
    """Calendar provider double; every call succeeds."""
    client = MagicMock()
    client.schedule_task.return_value = {"event_id": "new-master-1", "event_link": "https://calendar/new-master-1"}
    client.update_event.return_value = {"event_id": "instance-1", "event_link": None}
    client.delete_event.return_value = {"event_id": "deleted-1"}
    return client


@pytest.fixture
def monday():
    """A working day (Monday 2025-03-03)."""
    return date(2025, 3, 3)
