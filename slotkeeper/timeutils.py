"""Interval and time zone helpers shared by the scheduling engine and recurrence rules.

All instants handled here are timezone-aware. Intervals are half-open
`[start, end)`.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, NamedTuple, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from slotkeeper.models.constants import DEFAULT_TIMEZONE
from slotkeeper.models.task import Task

logger = logging.getLogger(__name__)


class TimeSlot(NamedTuple):
    start: datetime
    end: datetime

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.start < other.end and other.start < self.end


def get_zone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA zone id, falling back to the default zone."""
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown time zone {tz_name!r}, using {DEFAULT_TIMEZONE}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def as_utc(instant: datetime) -> datetime:
    """Normalize to aware UTC; naive values are taken to already be UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def local_date(instant: datetime, zone: ZoneInfo) -> date:
    return as_utc(instant).astimezone(zone).date()


def local_instant(day: date, clock: time, zone: ZoneInfo) -> datetime:
    """Absolute (UTC) instant of a local wall-clock time on `day`."""
    return datetime.combine(day, clock, tzinfo=zone).astimezone(timezone.utc)


def day_bounds(first: date, last: date, zone: ZoneInfo) -> Tuple[datetime, datetime]:
    """UTC range covering local days `first` through `last` inclusive."""
    return local_instant(first, time(0, 0), zone), local_instant(last + timedelta(days=1), time(0, 0), zone)


def task_slot(task: Task, default_duration: int) -> TimeSlot:
    start = as_utc(task.start_instant)
    return TimeSlot(start, start + timedelta(minutes=task.duration_minutes or default_duration))


def occupied_slots(tasks: Iterable[Task], default_duration: int) -> List[TimeSlot]:
    """Intervals held by tasks with a start instant, sorted by start."""
    return sorted(task_slot(t, default_duration) for t in tasks if t.start_instant is not None)
