"""Data models for slotkeeper."""

from slotkeeper.models.task import Task, TaskStatus, TaskType, RecurrencePattern
from slotkeeper.models.recurrence import (
    InstanceStatus,
    ModifiedOccurrence,
    CancelledOccurrence,
    RecurringTaskInstance,
    RecurrenceConfig,
)
from slotkeeper.models.calendar_event import TaskCalendarEvent, UpdateScope, ExceptionType, SyncStatus
from slotkeeper.models.preferences import UserCalendarPreferences
from slotkeeper.models.series import SeriesUpdate, SeriesChangeResult, SeriesOverview

__all__ = [
    "Task",
    "TaskStatus",
    "TaskType",
    "RecurrencePattern",
    "InstanceStatus",
    "ModifiedOccurrence",
    "CancelledOccurrence",
    "RecurringTaskInstance",
    "RecurrenceConfig",
    "TaskCalendarEvent",
    "UpdateScope",
    "ExceptionType",
    "SyncStatus",
    "UserCalendarPreferences",
    "SeriesUpdate",
    "SeriesChangeResult",
    "SeriesOverview",
]
