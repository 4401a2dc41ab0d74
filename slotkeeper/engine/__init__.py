"""Scheduling engine for slotkeeper."""

from slotkeeper.engine.errors import (
    SchedulingError,
    SeriesInputError,
    SeriesPersistenceError,
    TaskNotFoundError,
)
from slotkeeper.engine.slot_finder import (
    SlotFinder,
    SchedulingRun,
    find_available_slot,
    group_tasks_by_day,
    is_working_day,
    schedule_tasks_for_day,
)
from slotkeeper.engine.series_manager import SeriesManager

__all__ = [
    "SchedulingError",
    "SeriesInputError",
    "SeriesPersistenceError",
    "TaskNotFoundError",
    "SlotFinder",
    "SchedulingRun",
    "find_available_slot",
    "group_tasks_by_day",
    "is_working_day",
    "schedule_tasks_for_day",
    "SeriesManager",
]
