"""Recurrence rule building and occurrence expansion.

RRULE strings are what the calendar provider stores on a master event;
`calculate_instances` is the local source of truth for which dates a series
covers. Both are pure functions of the series definition.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, List, Optional

from slotkeeper.timeutils import get_zone, local_instant
from slotkeeper.models.constants import MAX_RECURRENCE_ITERATIONS
from slotkeeper.models.recurrence import RecurrenceConfig
from slotkeeper.models.task import RecurrencePattern, Task


_WEEKDAY_CODES = ["MO", "TU", "WE", "TH", "FR", "SA", "SU"]

# Patterns that step by whole months, and their step size.
_MONTH_STEPS: dict[RecurrencePattern, int] = {
    RecurrencePattern.MONTHLY: 1,
    RecurrencePattern.QUARTERLY: 3,
    RecurrencePattern.YEARLY: 12,
}


def _month_day_part(dom: int) -> str:
    """BYMONTHDAY that lands on the last day of months shorter than `dom`."""
    if dom <= 28:
        return f"BYMONTHDAY={dom}"
    days = ",".join(str(d) for d in range(28, dom + 1))
    return f"BYMONTHDAY={days};BYSETPOS=-1"


def rule_until(until: date, tz_name: str = "UTC") -> str:
    """UNTIL value for the last local instant of `until`, in UTC."""
    zone = get_zone(tz_name)
    last = local_instant(until + timedelta(days=1), time(0, 0), zone) - timedelta(seconds=1)
    return last.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def build_rule(
    pattern: RecurrencePattern,
    until: Optional[date],
    start: Optional[datetime] = None,
    day_of_month: Optional[int] = None,
    tz_name: str = "UTC",
) -> str:
    """Build an RRULE string (with the leading 'RRULE:' prefix).

    Month-based rules clamp to the end of short months, and UNTIL is the end
    of `until` in `tz_name`, so the provider expands the same local dates
    as `calculate_instances`.
    """
    pattern = RecurrencePattern(pattern)
    anchor = start.astimezone(get_zone(tz_name)).date() if start else None
    dom = day_of_month or (anchor.day if anchor else None)

    parts: List[str] = []
    if pattern == RecurrencePattern.DAILY:
        parts.append("FREQ=DAILY")
    elif pattern == RecurrencePattern.WEEKDAYS:
        parts.append("FREQ=WEEKLY;BYDAY=MO,TU,WE,TH,FR")
    elif pattern in (RecurrencePattern.WEEKLY, RecurrencePattern.BIWEEKLY):
        parts.append("FREQ=WEEKLY")
        if pattern == RecurrencePattern.BIWEEKLY:
            parts.append("INTERVAL=2")
        if anchor:
            parts.append(f"BYDAY={_WEEKDAY_CODES[anchor.weekday()]}")
    elif pattern in (RecurrencePattern.MONTHLY, RecurrencePattern.QUARTERLY):
        parts.append("FREQ=MONTHLY")
        if pattern == RecurrencePattern.QUARTERLY:
            parts.append("INTERVAL=3")
        if dom:
            parts.append(_month_day_part(dom))
    elif pattern == RecurrencePattern.YEARLY:
        parts.append("FREQ=YEARLY")
        if anchor and dom:
            parts.append(f"BYMONTH={anchor.month};{_month_day_part(dom)}")

    if until:
        parts.append(f"UNTIL={rule_until(until, tz_name)}")
    return "RRULE:" + ";".join(parts)


def config_for_task(task: Task, tz_name: str) -> RecurrenceConfig:
    """Recurrence config describing a recurring task's series."""
    if not task.is_recurring or task.start_instant is None:
        raise ValueError(f"Task {task.id} is not a recurring series with an anchor")
    return RecurrenceConfig(
        pattern=task.recurrence_pattern,
        start=task.start_instant,
        until=task.recurrence_ends,
        timezone=tz_name,
        day_of_month=task.recurrence_day_of_month,
    )


def _add_months(anchor: date, months: int, day_of_month: int) -> date:
    total = anchor.month - 1 + months
    year, month = anchor.year + total // 12, total % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def _stride_days(pattern: RecurrencePattern) -> int:
    return {
        RecurrencePattern.DAILY: 1,
        RecurrencePattern.WEEKDAYS: 1,
        RecurrencePattern.WEEKLY: 7,
        RecurrencePattern.BIWEEKLY: 14,
    }[pattern]


def _occurrence_dates(config: RecurrenceConfig, from_day: Optional[date] = None) -> Iterator[date]:
    """Yield local occurrence dates on or after `from_day` (or the anchor), ignoring `until`."""
    zone = get_zone(config.timezone)
    anchor = config.start.astimezone(zone).date()
    pattern = RecurrencePattern(config.pattern)
    from_day = max(from_day or anchor, anchor)

    if pattern in _MONTH_STEPS:
        step = _MONTH_STEPS[pattern]
        dom = config.day_of_month or anchor.day
        months = (from_day.year - anchor.year) * 12 + (from_day.month - anchor.month)
        first = max(0, months // step - 1)
        for i in range(first, first + MAX_RECURRENCE_ITERATIONS):
            day = _add_months(anchor, i * step, dom)
            if day >= from_day:
                yield day
        return

    stride = _stride_days(pattern)
    first = -(-(from_day - anchor).days // stride)
    for i in range(first, first + MAX_RECURRENCE_ITERATIONS):
        day = anchor + timedelta(days=i * stride)
        if pattern == RecurrencePattern.WEEKDAYS and day.isoweekday() > 5:
            continue
        yield day


def occurrence_dates(config: RecurrenceConfig, limit: int = 100, after: Optional[date] = None) -> List[date]:
    """Local occurrence dates, respecting `until`, optionally only those after `after`."""
    from_day = after + timedelta(days=1) if after is not None else None
    out: List[date] = []
    for day in _occurrence_dates(config, from_day):
        if config.until and day > config.until:
            break
        out.append(day)
        if len(out) >= limit:
            break
    return out


def calculate_instances(config: RecurrenceConfig, limit: int = 100, after: Optional[date] = None) -> List[datetime]:
    """Occurrence start instants (UTC) at the anchor's local time of day."""
    zone = get_zone(config.timezone)
    clock = config.start.astimezone(zone).time()
    return [local_instant(day, clock, zone) for day in occurrence_dates(config, limit, after)]


def occurs_on(config: RecurrenceConfig, day: date) -> bool:
    """Whether the series produces an occurrence on local date `day`."""
    if config.until and day > config.until:
        return False
    return next(_occurrence_dates(config, day), None) == day
