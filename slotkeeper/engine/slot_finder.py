"""Slot finding for slotkeeper.

Places loose (non-recurring) tasks into free time inside the user's working
hours. Tasks are bucketed by local day; each working day is filled first-fit
around tasks that are already scheduled, and anything that does not fit (or
sits on a non-working day) is bumped forward one working day at a time, up to
the lookahead limit.
"""

import bisect
import logging
import os
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from dotenv import load_dotenv
from zoneinfo import ZoneInfo

from slotkeeper.models.constants import MAX_LOOKAHEAD_DAYS
from slotkeeper.models.preferences import UserCalendarPreferences
from slotkeeper.models.task import Task
from slotkeeper.models.task_factory import utcnow
from slotkeeper.timeutils import (
    TimeSlot,
    as_utc,
    day_bounds,
    get_zone,
    local_date,
    local_instant,
    occupied_slots,
)

load_dotenv()

logger = logging.getLogger(__name__)


class SchedulingRun:
    """Mutable state of a single `SlotFinder.schedule` call."""

    def __init__(self):
        self.existing_by_day: Dict[date, List[Task]] = {}
        self.placed_by_day: Dict[date, List[Task]] = defaultdict(list)
        self.bump_queue: List[Tuple[Task, date]] = []
        self.placed: List[Task] = []
        self.rescheduled: List[Task] = []
        self.unplaced: List[Task] = []

    def record(self, day: date, task: Task, bumped: bool = False) -> None:
        self.placed_by_day[day].append(task)
        (self.rescheduled if bumped else self.placed).append(task)


def is_working_day(day: date, working_days: Iterable[int]) -> bool:
    """ISO weekday check (Monday=1 ... Sunday=7)."""
    return day.isoweekday() in set(working_days)


def group_tasks_by_day(tasks: Iterable[Task], zone: ZoneInfo, today: date) -> Dict[date, List[Task]]:
    """Bucket tasks by local start date, each bucket in placement priority order.

    Tasks without a start instant land on `today`, after the timed ones.
    """
    buckets: Dict[date, List[Task]] = defaultdict(list)
    for task in tasks:
        day = local_date(task.start_instant, zone) if task.start_instant else today
        buckets[day].append(task)
    for day_tasks in buckets.values():
        day_tasks.sort(key=lambda t: (t.start_instant is None, as_utc(t.start_instant) if t.start_instant else datetime.min))
    return dict(sorted(buckets.items()))


def find_available_slot(
    work_start: datetime,
    work_end: datetime,
    duration_minutes: int,
    occupied: List[TimeSlot],
) -> Optional[datetime]:
    """First-fit search for a `duration_minutes` slot inside `[work_start, work_end]`.

    `occupied` must be sorted by start. Candidates are tried in a fixed
    order: at the window start, then at the start of each gap between
    occupied intervals, then after the last interval.
    """
    length = timedelta(minutes=duration_minutes)
    if work_start + length > work_end:
        return None

    window = TimeSlot(work_start, work_end)
    relevant = [slot for slot in occupied if slot.overlaps(window)]
    if not relevant or work_start + length <= relevant[0].start:
        return work_start

    cursor = max(relevant[0].end, work_start)
    for slot in relevant[1:]:
        if slot.start - cursor >= length and cursor + length <= work_end:
            return cursor
        cursor = max(cursor, slot.end)

    if cursor + length <= work_end:
        return cursor
    return None


def schedule_tasks_for_day(
    day: date,
    tasks: List[Task],
    occupied: List[TimeSlot],
    prefs: UserCalendarPreferences,
    zone: ZoneInfo,
) -> Tuple[List[Task], List[Task]]:
    """Place `tasks` (in order) on `day` around `occupied`.

    Returns (placed copies with their new start instants, tasks that did not fit).
    """
    work_start = local_instant(day, prefs.work_start_time, zone)
    work_end = local_instant(day, prefs.work_end_time, zone)
    slots = sorted(occupied)
    placed: List[Task] = []
    failed: List[Task] = []

    for task in tasks:
        duration = task.duration_minutes or prefs.default_task_duration_minutes
        start = find_available_slot(work_start, work_end, duration, slots)
        if start is None:
            failed.append(task)
            continue
        placed.append(task.model_copy(update={"start_instant": start}))
        bisect.insort(slots, TimeSlot(start, start + timedelta(minutes=duration)))

    return placed, failed


class SlotFinder:
    """Assigns start instants to loose tasks.

    Holds only collaborators and configuration, so one instance can serve
    many users; all per-run state lives in a `SchedulingRun`.

    Args:
        task_reader: Object with `list_tasks(user_id, range_start, range_end)`
                     returning already-scheduled tasks (e.g. TaskRepository).
        preferences_reader: Object with `get_preferences(user_id)`
                            (e.g. PreferencesRepository).
        max_lookahead_days: Days a bumped task may move forward. If None,
                            reads SLOTKEEPER_MAX_LOOKAHEAD_DAYS (default 7).
        clock: Returns the current aware datetime; used to bucket tasks
               without a start instant.
    """

    def __init__(
        self,
        task_reader,
        preferences_reader,
        max_lookahead_days: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.task_reader = task_reader
        self.preferences_reader = preferences_reader
        if max_lookahead_days is None:
            max_lookahead_days = int(os.getenv("SLOTKEEPER_MAX_LOOKAHEAD_DAYS", MAX_LOOKAHEAD_DAYS))
        self.max_lookahead_days = max_lookahead_days
        self.clock = clock or utcnow

    def schedule(self, tasks: List[Task], user_id: str) -> List[Task]:
        """Place every non-recurring task; recurring tasks pass through unchanged.

        Returns recurring tasks, then tasks placed on their own day, then
        tasks rescheduled to a later day, then tasks that could not be placed
        (with their original start instant).
        """
        recurring = [t for t in tasks if t.is_recurring]
        candidates = [t for t in tasks if not t.is_recurring]
        if not candidates:
            return list(recurring)

        prefs = self.preferences_reader.get_preferences(user_id)
        zone = get_zone(prefs.timezone)
        today = local_date(self.clock(), zone)
        scheduling_ids = {t.id for t in candidates}
        run = SchedulingRun()

        buckets = group_tasks_by_day(candidates, zone, today)
        working = [day for day in buckets if is_working_day(day, prefs.working_days)]
        for day, day_tasks in buckets.items():
            if day not in working:
                run.bump_queue.extend((task, day) for task in day_tasks)

        if working:
            self._load_existing(run, user_id, working[0], working[-1], zone, scheduling_ids)

        for day in working:
            occupied = occupied_slots(run.existing_by_day[day], prefs.default_task_duration_minutes)
            placed, failed = schedule_tasks_for_day(day, buckets[day], occupied, prefs, zone)
            for task in placed:
                run.record(day, task)
            run.bump_queue.extend((task, day) for task in failed)

        run.bump_queue.sort(key=lambda entry: entry[1])
        for task, anchor in run.bump_queue:
            self._reschedule(run, task, anchor, user_id, prefs, zone, scheduling_ids)

        logger.debug(
            f"Scheduled {len(run.placed)} tasks, rescheduled {len(run.rescheduled)}, "
            f"left {len(run.unplaced)} unplaced for user {user_id}"
        )
        return recurring + run.placed + run.rescheduled + run.unplaced

    def find_next_available_slot(
        self,
        user_id: str,
        duration_minutes: int,
        start_after: datetime,
        end_before: datetime,
    ) -> Optional[TimeSlot]:
        """Earliest free working-hours slot in `[start_after, end_before]`, or None."""
        start_after, end_before = as_utc(start_after), as_utc(end_before)
        if end_before <= start_after:
            return None

        prefs = self.preferences_reader.get_preferences(user_id)
        zone = get_zone(prefs.timezone)
        first = local_date(start_after, zone)
        last = min(local_date(end_before, zone), first + timedelta(days=self.max_lookahead_days - 1))

        run = SchedulingRun()
        self._load_existing(run, user_id, first, last, zone, set())

        day = first
        while day <= last:
            if is_working_day(day, prefs.working_days):
                window_start = max(local_instant(day, prefs.work_start_time, zone), start_after)
                window_end = min(local_instant(day, prefs.work_end_time, zone), end_before)
                occupied = occupied_slots(run.existing_by_day[day], prefs.default_task_duration_minutes)
                start = find_available_slot(window_start, window_end, duration_minutes, occupied)
                if start is not None:
                    return TimeSlot(start, start + timedelta(minutes=duration_minutes))
            day += timedelta(days=1)
        return None

    def _load_existing(
        self,
        run: SchedulingRun,
        user_id: str,
        first: date,
        last: date,
        zone: ZoneInfo,
        exclude_ids: Set[str],
    ) -> None:
        """One range read for local days `first..last`, grouped per day into `run`."""
        range_start, range_end = day_bounds(first, last, zone)
        existing = self.task_reader.list_tasks(user_id, range_start, range_end)

        day = first
        while day <= last:
            run.existing_by_day.setdefault(day, [])
            day += timedelta(days=1)
        for task in existing:
            if task.id in exclude_ids or task.start_instant is None:
                continue
            run.existing_by_day.setdefault(local_date(task.start_instant, zone), []).append(task)

    def _reschedule(
        self,
        run: SchedulingRun,
        task: Task,
        anchor: date,
        user_id: str,
        prefs: UserCalendarPreferences,
        zone: ZoneInfo,
        exclude_ids: Set[str],
    ) -> None:
        for offset in range(1, self.max_lookahead_days + 1):
            day = anchor + timedelta(days=offset)
            if not is_working_day(day, prefs.working_days):
                continue
            if day not in run.existing_by_day:
                self._load_existing(run, user_id, day, day, zone, exclude_ids)

            occupied = occupied_slots(
                run.existing_by_day[day] + run.placed_by_day[day],
                prefs.default_task_duration_minutes,
            )
            placed, _ = schedule_tasks_for_day(day, [task], occupied, prefs, zone)
            if placed:
                run.record(day, placed[0], bumped=True)
                return

        logger.warning(
            f"No slot for task {task.id} within {self.max_lookahead_days} days after "
            f"{anchor.isoformat()}; leaving it unchanged"
        )
        run.unplaced.append(task)
