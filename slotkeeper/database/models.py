"""SQLAlchemy database models for slotkeeper.

Timestamps are stored as naive UTC `DateTime` columns and handed back to the
domain layer as timezone-aware UTC datetimes.
"""

from datetime import datetime, timezone
from typing import Optional, Type, TypeVar, Union
import uuid

from pydantic import TypeAdapter
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
)

from slotkeeper.database.database import Base
from slotkeeper.models.calendar_event import ExceptionType, SyncStatus, UpdateScope
from slotkeeper.models.constants import (
    DEFAULT_CALENDAR_ID,
    DEFAULT_TASK_DURATION_MINUTES,
    DEFAULT_TIMEZONE,
    DEFAULT_WORK_END_TIME,
    DEFAULT_WORK_START_TIME,
    DEFAULT_WORKING_DAYS,
)
from slotkeeper.models.recurrence import InstanceStatus, OccurrenceException
from slotkeeper.models.task import RecurrencePattern, TaskStatus, TaskType

T = TypeVar('T')

_exception_adapter = TypeAdapter(OccurrenceException)


def enum_to_value(enum_obj: Union[str, T]) -> str:
    """Convert enum to string value (handles both enum and string)."""
    if hasattr(enum_obj, 'value'):
        return enum_obj.value
    return str(enum_obj)


def optional_enum_value(enum_obj) -> Optional[str]:
    return enum_to_value(enum_obj) if enum_obj is not None else None


def value_to_enum(value: str, enum_class: Type[T], default: T) -> T:
    """Convert string to enum with fallback to default."""
    if not value:
        return default
    try:
        return enum_class(value.lower())
    except (ValueError, AttributeError):
        return default


def to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC for storage."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Stored naive UTC -> aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskDB(Base):
    """Database model for Task."""

    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    project_id = Column(String, nullable=True, index=True)

    title = Column(String, nullable=False)
    notes = Column(String, nullable=True)
    status = Column(String, nullable=False, default=TaskStatus.OPEN.value)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime, nullable=True, index=True)
    completed_at = Column(DateTime, nullable=True)

    # Scheduling fields
    start_instant = Column(DateTime, nullable=True, index=True)
    duration_minutes = Column(Integer, nullable=True)

    # Recurrence fields
    task_type = Column(String, nullable=False, default=TaskType.ONE_OFF.value)
    recurrence_pattern = Column(String, nullable=True)
    recurrence_ends = Column(Date, nullable=True)
    recurrence_day_of_month = Column(Integer, nullable=True)

    def to_pydantic(self):
        """Convert database model to Pydantic model."""
        from slotkeeper.models.task import Task

        pattern = None
        if self.recurrence_pattern:
            pattern = value_to_enum(self.recurrence_pattern, RecurrencePattern, None)
        return Task(
            id=self.id,
            user_id=self.user_id,
            project_id=self.project_id,
            title=self.title,
            notes=self.notes,
            status=value_to_enum(self.status, TaskStatus, TaskStatus.OPEN),
            created_at=from_db_datetime(self.created_at),
            updated_at=from_db_datetime(self.updated_at),
            deleted_at=from_db_datetime(self.deleted_at),
            completed_at=from_db_datetime(self.completed_at),
            start_instant=from_db_datetime(self.start_instant),
            duration_minutes=self.duration_minutes,
            task_type=value_to_enum(self.task_type, TaskType, TaskType.ONE_OFF),
            recurrence_pattern=pattern,
            recurrence_ends=self.recurrence_ends,
            recurrence_day_of_month=self.recurrence_day_of_month,
        )

    def apply(self, task) -> None:
        """Copy mutable fields from a Pydantic task onto this row."""
        self.project_id = task.project_id
        self.title = task.title
        self.notes = task.notes
        self.status = enum_to_value(task.status)
        self.updated_at = to_db_datetime(task.updated_at)
        self.deleted_at = to_db_datetime(task.deleted_at)
        self.completed_at = to_db_datetime(task.completed_at)
        self.start_instant = to_db_datetime(task.start_instant)
        self.duration_minutes = task.duration_minutes
        self.task_type = enum_to_value(task.task_type)
        self.recurrence_pattern = optional_enum_value(task.recurrence_pattern)
        self.recurrence_ends = task.recurrence_ends
        self.recurrence_day_of_month = task.recurrence_day_of_month

    @classmethod
    def from_pydantic(cls, task):
        """Create database model from Pydantic model."""
        row = cls(id=task.id, user_id=task.user_id, created_at=to_db_datetime(task.created_at))
        row.apply(task)
        return row


class RecurringTaskInstanceDB(Base):
    """Materialized occurrence of a recurring task (exceptions and completions only)."""

    __tablename__ = "recurring_task_instances"
    __table_args__ = (
        UniqueConstraint("task_id", "instance_date", name="uq_recurring_instance_task_date"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    instance_date = Column(Date, nullable=False, index=True)
    status = Column(String, nullable=False, default=InstanceStatus.SCHEDULED.value)

    # Tagged override payload (see models.recurrence.OccurrenceException)
    exception = Column(JSON(none_as_null=True), nullable=True)

    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_pydantic(self):
        from slotkeeper.models.recurrence import RecurringTaskInstance

        return RecurringTaskInstance(
            id=self.id,
            task_id=self.task_id,
            user_id=self.user_id,
            instance_date=self.instance_date,
            status=value_to_enum(self.status, InstanceStatus, InstanceStatus.SCHEDULED),
            exception=_exception_adapter.validate_python(self.exception) if self.exception else None,
            completed_at=from_db_datetime(self.completed_at),
            created_at=from_db_datetime(self.created_at),
            updated_at=from_db_datetime(self.updated_at),
        )

    @staticmethod
    def dump_exception(exception) -> Optional[dict]:
        if exception is None:
            return None
        return exception.model_dump(mode="json", exclude_none=True)


class TaskCalendarEventDB(Base):
    """Link between a task (or an occurrence) and a calendar provider event."""

    __tablename__ = "task_calendar_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)

    calendar_event_id = Column(String, nullable=False, index=True)
    calendar_id = Column(String, nullable=False, default=DEFAULT_CALENDAR_ID)
    event_start = Column(DateTime, nullable=True)
    event_end = Column(DateTime, nullable=True)
    event_link = Column(String, nullable=True)

    is_master_event = Column(Boolean, nullable=False, default=False)
    is_exception = Column(Boolean, nullable=False, default=False)
    exception_type = Column(String, nullable=True)
    recurrence_master_id = Column(String, nullable=True, index=True)
    recurrence_instance_date = Column(Date, nullable=True)
    series_update_scope = Column(String, nullable=True)
    sync_status = Column(String, nullable=False, default=SyncStatus.SYNCED.value)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_pydantic(self):
        from slotkeeper.models.calendar_event import TaskCalendarEvent

        return TaskCalendarEvent(
            id=self.id,
            task_id=self.task_id,
            user_id=self.user_id,
            calendar_event_id=self.calendar_event_id,
            calendar_id=self.calendar_id or DEFAULT_CALENDAR_ID,
            event_start=from_db_datetime(self.event_start),
            event_end=from_db_datetime(self.event_end),
            event_link=self.event_link,
            is_master_event=bool(self.is_master_event),
            is_exception=bool(self.is_exception),
            exception_type=value_to_enum(self.exception_type, ExceptionType, None),
            recurrence_master_id=self.recurrence_master_id,
            recurrence_instance_date=self.recurrence_instance_date,
            series_update_scope=value_to_enum(self.series_update_scope, UpdateScope, None),
            sync_status=value_to_enum(self.sync_status, SyncStatus, SyncStatus.SYNCED),
            created_at=from_db_datetime(self.created_at),
            updated_at=from_db_datetime(self.updated_at),
        )

    @classmethod
    def from_pydantic(cls, event):
        return cls(
            id=event.id,
            task_id=event.task_id,
            user_id=event.user_id,
            calendar_event_id=event.calendar_event_id,
            calendar_id=event.calendar_id,
            event_start=to_db_datetime(event.event_start),
            event_end=to_db_datetime(event.event_end),
            event_link=event.event_link,
            is_master_event=event.is_master_event,
            is_exception=event.is_exception,
            exception_type=optional_enum_value(event.exception_type),
            recurrence_master_id=event.recurrence_master_id,
            recurrence_instance_date=event.recurrence_instance_date,
            series_update_scope=optional_enum_value(event.series_update_scope),
            sync_status=enum_to_value(event.sync_status),
            created_at=to_db_datetime(event.created_at),
            updated_at=to_db_datetime(event.updated_at),
        )


class UserCalendarPreferencesDB(Base):
    """Per-user working hours used by the slot finder."""

    __tablename__ = "user_calendar_preferences"

    user_id = Column(String, primary_key=True)
    timezone = Column(String, nullable=False, default=DEFAULT_TIMEZONE)
    working_days = Column(JSON, nullable=False, default=lambda: list(DEFAULT_WORKING_DAYS))
    work_start_time = Column(Time, nullable=False, default=DEFAULT_WORK_START_TIME)
    work_end_time = Column(Time, nullable=False, default=DEFAULT_WORK_END_TIME)
    default_task_duration_minutes = Column(Integer, nullable=False, default=DEFAULT_TASK_DURATION_MINUTES)

    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_pydantic(self):
        from slotkeeper.models.preferences import UserCalendarPreferences

        return UserCalendarPreferences(
            user_id=self.user_id,
            timezone=self.timezone or DEFAULT_TIMEZONE,
            working_days=self.working_days or list(DEFAULT_WORKING_DAYS),
            work_start_time=self.work_start_time or DEFAULT_WORK_START_TIME,
            work_end_time=self.work_end_time or DEFAULT_WORK_END_TIME,
            default_task_duration_minutes=self.default_task_duration_minutes or DEFAULT_TASK_DURATION_MINUTES,
        )

    @classmethod
    def from_pydantic(cls, prefs):
        return cls(
            user_id=prefs.user_id,
            timezone=prefs.timezone,
            working_days=list(prefs.working_days),
            work_start_time=prefs.work_start_time,
            work_end_time=prefs.work_end_time,
            default_task_duration_minutes=prefs.default_task_duration_minutes,
        )
