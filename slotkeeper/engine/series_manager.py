"""Edits and deletions of recurring task series.

A series is one canonical Task plus sparse RecurringTaskInstance rows for the
occurrences that deviate from it, mirrored in the calendar provider by one
master event (carrying the RRULE) and optional per-occurrence exception
events.

Every operation applies its database changes first and then talks to the
calendar provider. A provider failure does not undo the database side: it is
logged, listed in `SeriesChangeResult.sync_errors` and the affected event
link is marked `failed`. Database failures abort the operation with a
SeriesPersistenceError naming the step.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotkeeper.database.calendar_event_repository import CalendarEventRepository
from slotkeeper.database.preferences_repository import PreferencesRepository
from slotkeeper.database.recurring_instance_repository import RecurringInstanceRepository
from slotkeeper.database.repository import TaskRepository
from slotkeeper.engine.errors import SeriesInputError, SeriesPersistenceError, TaskNotFoundError
from slotkeeper.integrations.google_calendar import CalendarProviderError
from slotkeeper.models.calendar_event import ExceptionType, SyncStatus, TaskCalendarEvent, UpdateScope
from slotkeeper.models.constants import DEFAULT_OCCURRENCE_PREVIEW_LIMIT
from slotkeeper.models.recurrence import (
    CancelledOccurrence,
    InstanceStatus,
    ModifiedOccurrence,
    RecurringTaskInstance,
)
from slotkeeper.models.series import SeriesChangeResult, SeriesOverview, SeriesStatistics, SeriesUpdate
from slotkeeper.models.task import RecurrencePattern, Task
from slotkeeper.models.task_factory import clone_series_head, utcnow
from slotkeeper.recurrence.rules import (
    build_rule,
    calculate_instances,
    config_for_task,
    occurrence_dates,
    occurs_on,
)
from slotkeeper.timeutils import as_utc, get_zone, local_date, local_instant

logger = logging.getLogger(__name__)

_MONTH_BASED = {RecurrencePattern.MONTHLY, RecurrencePattern.QUARTERLY, RecurrencePattern.YEARLY}


class SeriesManager:
    """Applies single / future / all scoped edits and deletes to a series.

    Args:
        db: SQLAlchemy session; every repository call commits on its own.
        calendar_client: Calendar provider (GoogleCalendarClient or compatible).
                         When None, only the database side is changed.
        preferences_reader: Object with `get_preferences(user_id)`; defaults
                            to a PreferencesRepository on `db`.
        clock: Returns the current aware datetime; decides which occurrences
               are upcoming and stamps completions.
    """

    def __init__(
        self,
        db: Session,
        calendar_client=None,
        preferences_reader=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.calendar = calendar_client
        self.tasks = TaskRepository(db)
        self.instances = RecurringInstanceRepository(db)
        self.events = CalendarEventRepository(db)
        self.preferences = preferences_reader or PreferencesRepository(db)
        self.clock = clock or utcnow

    # Public operations

    def edit(
        self,
        user_id: str,
        task_id: str,
        scope: Union[UpdateScope, str],
        instance_date: Optional[date] = None,
        updates: Union[SeriesUpdate, dict, None] = None,
        reset_exceptions: bool = False,
    ) -> SeriesChangeResult:
        """Edit one occurrence, this-and-future occurrences, or the whole series."""
        scope = self._parse_scope(scope)
        if updates is None:
            updates = SeriesUpdate()
        elif isinstance(updates, dict):
            updates = SeriesUpdate.model_validate(updates)
        if not updates.changes() and not (scope == UpdateScope.ALL and reset_exceptions):
            raise SeriesInputError("No updates given")

        task = self._load_series(user_id, task_id)
        tz = self.preferences.get_preferences(user_id).timezone
        if scope != UpdateScope.ALL:
            self._require_occurrence(task, instance_date, tz)

        if scope == UpdateScope.SINGLE:
            return self._edit_single(task, instance_date, updates, tz)
        if scope == UpdateScope.FUTURE:
            if instance_date == self._first_occurrence(task, tz):
                if updates.start_instant is not None:
                    updates = self._anchor_on(task, instance_date, updates, tz)
                return self._edit_all(task, updates, False, tz, UpdateScope.FUTURE)
            return self._edit_future(task, instance_date, updates, tz)
        return self._edit_all(task, updates, reset_exceptions, tz, UpdateScope.ALL)

    def delete(
        self,
        user_id: str,
        task_id: str,
        scope: Union[UpdateScope, str],
        instance_date: Optional[date] = None,
    ) -> SeriesChangeResult:
        """Delete one occurrence, this-and-future occurrences, or the whole series."""
        scope = self._parse_scope(scope)
        task = self._load_series(user_id, task_id)
        tz = self.preferences.get_preferences(user_id).timezone
        if scope != UpdateScope.ALL:
            self._require_occurrence(task, instance_date, tz)

        if scope == UpdateScope.SINGLE:
            return self._delete_single(task, instance_date, tz)
        if scope == UpdateScope.FUTURE:
            if instance_date == self._first_occurrence(task, tz):
                return self._delete_all(task, tz, UpdateScope.FUTURE)
            return self._delete_future(task, instance_date, tz)
        return self._delete_all(task, tz, UpdateScope.ALL)

    def describe(self, user_id: str, task_id: str, limit: int = DEFAULT_OCCURRENCE_PREVIEW_LIMIT) -> SeriesOverview:
        """Series, its materialized occurrences, upcoming occurrences and counts."""
        task = self._load_series(user_id, task_id)
        tz = self.preferences.get_preferences(user_id).timezone
        zone = get_zone(tz)
        instances = self.instances.list_for_task(task.id)
        cancelled = {i.instance_date for i in instances if i.status == InstanceStatus.CANCELLED}

        now = as_utc(self.clock())
        candidates = calculate_instances(
            config_for_task(task, tz),
            limit=limit + len(cancelled) + 1,
            after=local_date(now, zone) - timedelta(days=1),
        )
        upcoming = [
            start for start in candidates
            if start >= now and local_date(start, zone) not in cancelled
        ][:limit]

        statistics = SeriesStatistics(
            total_instances=len(instances),
            completed_instances=sum(1 for i in instances if i.status == InstanceStatus.COMPLETED),
            skipped_instances=sum(1 for i in instances if i.status == InstanceStatus.SKIPPED),
            exceptions_count=sum(1 for i in instances if i.exception is not None),
        )
        return SeriesOverview(
            task=task,
            instances=instances,
            next_occurrences=upcoming,
            next_occurrence=upcoming[0] if upcoming else None,
            statistics=statistics,
        )

    def complete_instance(self, user_id: str, task_id: str, instance_date: date) -> RecurringTaskInstance:
        """Mark one occurrence completed."""
        return self._set_instance_status(user_id, task_id, instance_date, InstanceStatus.COMPLETED)

    def skip_instance(self, user_id: str, task_id: str, instance_date: date) -> RecurringTaskInstance:
        """Mark one occurrence skipped."""
        return self._set_instance_status(user_id, task_id, instance_date, InstanceStatus.SKIPPED)

    # Validation

    @staticmethod
    def _parse_scope(scope) -> UpdateScope:
        try:
            return UpdateScope(scope)
        except ValueError:
            raise SeriesInputError(f"Unknown update scope: {scope!r}") from None

    def _load_series(self, user_id: str, task_id: str) -> Task:
        task = self.tasks.get(user_id, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        if not task.is_recurring or task.start_instant is None:
            raise SeriesInputError(f"Task {task_id} is not a recurring series")
        return task

    @staticmethod
    def _require_occurrence(task: Task, instance_date: Optional[date], tz: str) -> None:
        if instance_date is None:
            raise SeriesInputError("instance_date is required for single and future scope")
        if not occurs_on(config_for_task(task, tz), instance_date):
            raise SeriesInputError(f"{instance_date.isoformat()} is not an occurrence of task {task.id}")

    @staticmethod
    def _first_occurrence(task: Task, tz: str) -> Optional[date]:
        dates = occurrence_dates(config_for_task(task, tz), limit=1)
        return dates[0] if dates else None

    # Shared steps

    @contextmanager
    def _db_step(self, step: str, result: Optional[SeriesChangeResult] = None):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Series update step {step} failed: {type(e).__name__}: {str(e)}")
            raise SeriesPersistenceError(step, e, result.sync_errors if result else None) from e

    def _call_provider(self, result: SeriesChangeResult, step: str, call, *, link_id: Optional[str] = None, **kwargs):
        """Run one provider call; on failure record it and return None."""
        try:
            return call(**kwargs)
        except CalendarProviderError as e:
            logger.error(f"Calendar step {step} failed for task {result.task_id}: {e}")
            result.sync_errors.append(f"calendar:{step}")
            if link_id is not None:
                with self._db_step("mark_sync_failed", result):
                    self.events.update_fields(link_id, sync_status=SyncStatus.FAILED)
            return None

    def _duration(self, task: Task, user_id: str, override: Optional[int] = None) -> int:
        if override:
            return override
        if task.duration_minutes:
            return task.duration_minutes
        return self.preferences.get_preferences(user_id).default_task_duration_minutes

    @staticmethod
    def _occurrence_start(task: Task, instance_date: date, tz: str) -> datetime:
        zone = get_zone(tz)
        return local_instant(instance_date, task.start_instant.astimezone(zone).time(), zone)

    @staticmethod
    def _anchor_on(task: Task, instance_date: date, updates: SeriesUpdate, tz: str) -> SeriesUpdate:
        """Updates with `start_instant` moved onto `instance_date` (keeping its time of day)."""
        zone = get_zone(tz)
        source = updates.start_instant or task.start_instant
        start = local_instant(instance_date, as_utc(source).astimezone(zone).time(), zone)
        return updates.model_copy(update={"start_instant": start})

    def _rule_for(self, task: Task, tz: str, until: Optional[date] = None) -> str:
        return build_rule(
            task.recurrence_pattern,
            until,
            start=task.start_instant,
            day_of_month=task.recurrence_day_of_month,
            tz_name=tz,
        )

    def _occurrence_link(
        self,
        task: Task,
        instance_date: date,
        master: Optional[TaskCalendarEvent],
        exception_type: ExceptionType,
        result: SeriesChangeResult,
    ) -> Optional[TaskCalendarEvent]:
        """Flag (or record) the event link for one occurrence as an exception."""
        link = self.events.find_for_instance(task.id, instance_date)
        if link is not None:
            with self._db_step("flag_occurrence_event", result):
                return self.events.update_fields(
                    link.id,
                    is_exception=True,
                    exception_type=exception_type,
                    series_update_scope=UpdateScope.SINGLE,
                )
        if master is None:
            return None

        now = utcnow()
        # Addressed through the master until the provider returns the occurrence's own id.
        with self._db_step("record_exception_event", result):
            return self.events.create(TaskCalendarEvent(
                id=str(uuid.uuid4()),
                task_id=task.id,
                user_id=task.user_id,
                calendar_event_id=master.calendar_event_id,
                calendar_id=master.calendar_id,
                is_exception=True,
                exception_type=exception_type,
                recurrence_master_id=master.calendar_event_id,
                recurrence_instance_date=instance_date,
                series_update_scope=UpdateScope.SINGLE,
                sync_status=SyncStatus.PENDING,
                created_at=now,
                updated_at=now,
            ))

    @staticmethod
    def _provider_target(link: TaskCalendarEvent, instance_date: date):
        """(event id, instance date) addressing one occurrence at the provider."""
        if link.recurrence_master_id and link.calendar_event_id == link.recurrence_master_id:
            return link.recurrence_master_id, instance_date
        return link.calendar_event_id, None

    # Edit

    def _edit_single(self, task: Task, instance_date: date, updates: SeriesUpdate, tz: str) -> SeriesChangeResult:
        result = SeriesChangeResult(scope=UpdateScope.SINGLE, task_id=task.id, instance_date=instance_date)
        existing = self.instances.get(task.id, instance_date)
        if existing is not None and existing.status == InstanceStatus.CANCELLED:
            raise SeriesInputError(f"Occurrence {instance_date.isoformat()} of task {task.id} was deleted")

        fields = {}
        if existing is not None and isinstance(existing.exception, ModifiedOccurrence):
            fields = existing.exception.model_dump(exclude_none=True, exclude={"kind"})
        fields.update(updates.changes())
        override = ModifiedOccurrence(**fields)

        with self._db_step("upsert_instance", result):
            self.instances.upsert(
                user_id=task.user_id,
                task_id=task.id,
                instance_date=instance_date,
                exception=override,
            )
        result.affected_instances = 1

        master = self.events.get_master(task.id)
        link = self._occurrence_link(task, instance_date, master, ExceptionType.MODIFIED, result)
        if link is None or self.calendar is None or not updates.touches_calendar():
            return result

        event_id, target_date = self._provider_target(link, instance_date)
        start = override.start_instant or self._occurrence_start(task, instance_date, tz)
        end = start + timedelta(minutes=self._duration(task, task.user_id, override.duration_minutes))
        moved = updates.start_instant is not None or updates.duration_minutes is not None
        response = self._call_provider(
            result,
            "update_occurrence",
            self.calendar.update_event,
            link_id=link.id,
            user_id=task.user_id,
            event_id=event_id,
            calendar_id=link.calendar_id,
            update_scope=UpdateScope.SINGLE,
            instance_date=target_date,
            summary=updates.title,
            start_time=start if moved else None,
            end_time=end if moved else None,
            time_zone=tz,
        )
        if response is not None:
            with self._db_step("mark_occurrence_synced", result):
                self.events.update_fields(
                    link.id,
                    calendar_event_id=response.get("event_id") or link.calendar_event_id,
                    sync_status=SyncStatus.SYNCED,
                    event_start=start,
                    event_end=end,
                )
        return result

    def _edit_future(self, task: Task, split_date: date, updates: SeriesUpdate, tz: str) -> SeriesChangeResult:
        end_date = split_date - timedelta(days=1)
        result = SeriesChangeResult(
            scope=UpdateScope.FUTURE, task_id=task.id, split_date=split_date, end_date=end_date
        )
        zone = get_zone(tz)
        pinned_day = task.recurrence_day_of_month
        if pinned_day is None and RecurrencePattern(task.recurrence_pattern) in _MONTH_BASED:
            pinned_day = task.start_instant.astimezone(zone).day

        now = utcnow()
        truncated = task.model_copy(update={
            "recurrence_ends": end_date,
            "recurrence_day_of_month": pinned_day,
            "updated_at": now,
        })
        changes = {k: v for k, v in updates.changes().items() if k != "start_instant"}
        changes["recurrence_day_of_month"] = pinned_day
        new_start = self._anchor_on(task, split_date, updates, tz).start_instant
        head = clone_series_head(task, start_instant=new_start, changes=changes)

        with self._db_step("truncate_series", result):
            self.tasks.update(truncated)
        with self._db_step("create_series", result):
            head = self.tasks.create(head)
        with self._db_step("move_instances", result):
            result.affected_instances = self.instances.reassign_from(task.id, split_date, head.id)
        with self._db_step("drop_superseded_events", result):
            self.events.delete_exceptions_from(task.id, split_date)
        result.new_task_id = head.id

        master = self.events.get_master(task.id)
        if master is None or self.calendar is None:
            return result

        response = self._call_provider(
            result,
            "update_master",
            self.calendar.update_event,
            link_id=master.id,
            user_id=task.user_id,
            event_id=master.calendar_event_id,
            calendar_id=master.calendar_id,
            update_scope=UpdateScope.ALL,
            recurrence_rule=self._rule_for(truncated, tz, end_date),
            time_zone=tz,
        )
        if response is not None:
            with self._db_step("mark_master_synced", result):
                self.events.update_fields(
                    master.id, series_update_scope=UpdateScope.FUTURE, sync_status=SyncStatus.SYNCED
                )

        duration = self._duration(head, head.user_id)
        created = self._call_provider(
            result,
            "create_master",
            self.calendar.schedule_task,
            user_id=head.user_id,
            task_id=head.id,
            start_time=head.start_instant,
            duration_minutes=duration,
            calendar_id=master.calendar_id,
            summary=head.title,
            recurrence_rule=self._rule_for(head, tz, head.recurrence_ends),
            time_zone=tz,
        )
        if created is not None:
            with self._db_step("link_new_master", result):
                self.events.create(TaskCalendarEvent(
                    id=str(uuid.uuid4()),
                    task_id=head.id,
                    user_id=head.user_id,
                    calendar_event_id=created["event_id"],
                    calendar_id=master.calendar_id,
                    event_start=head.start_instant,
                    event_end=head.start_instant + timedelta(minutes=duration),
                    event_link=created.get("event_link"),
                    is_master_event=True,
                    series_update_scope=UpdateScope.FUTURE,
                    created_at=now,
                    updated_at=now,
                ))
        return result

    def _edit_all(
        self,
        task: Task,
        updates: SeriesUpdate,
        reset_exceptions: bool,
        tz: str,
        scope: UpdateScope,
    ) -> SeriesChangeResult:
        result = SeriesChangeResult(scope=scope, task_id=task.id)
        changes = updates.changes()
        if "start_instant" in changes:
            changes["start_instant"] = as_utc(changes["start_instant"])
        updated = task.model_copy(update={**changes, "updated_at": utcnow()})

        with self._db_step("update_series", result):
            updated = self.tasks.update(updated)
        if reset_exceptions:
            with self._db_step("reset_exceptions", result):
                result.affected_instances = self.instances.clear_modifications(task.id)
                self.events.reset_exceptions(task.id)
        with self._db_step("mark_series_events", result):
            self.events.set_scope_for_task(task.id, UpdateScope.ALL)

        master = self.events.get_master(task.id)
        if master is None or self.calendar is None or not updates.touches_calendar():
            return result

        moved = updates.start_instant is not None or updates.duration_minutes is not None
        start = updated.start_instant
        end = start + timedelta(minutes=self._duration(updated, updated.user_id))
        response = self._call_provider(
            result,
            "update_master",
            self.calendar.update_event,
            link_id=master.id,
            user_id=task.user_id,
            event_id=master.calendar_event_id,
            calendar_id=master.calendar_id,
            update_scope=UpdateScope.ALL,
            summary=updates.title,
            start_time=start if moved else None,
            end_time=end if moved else None,
            recurrence_rule=self._rule_for(updated, tz, updated.recurrence_ends) if updates.start_instant else None,
            time_zone=tz,
        )
        if response is not None:
            with self._db_step("mark_master_synced", result):
                self.events.update_fields(
                    master.id,
                    sync_status=SyncStatus.SYNCED,
                    event_start=start if moved else master.event_start,
                    event_end=end if moved else master.event_end,
                )
        return result

    # Delete

    def _delete_single(self, task: Task, instance_date: date, tz: str) -> SeriesChangeResult:
        result = SeriesChangeResult(scope=UpdateScope.SINGLE, task_id=task.id, instance_date=instance_date)
        with self._db_step("cancel_instance", result):
            self.instances.upsert(
                user_id=task.user_id,
                task_id=task.id,
                instance_date=instance_date,
                status=InstanceStatus.CANCELLED,
                exception=CancelledOccurrence(),
            )
        result.affected_instances = 1

        master = self.events.get_master(task.id)
        link = self._occurrence_link(task, instance_date, master, ExceptionType.CANCELLED, result)
        if link is None or self.calendar is None:
            return result

        event_id, target_date = self._provider_target(link, instance_date)
        response = self._call_provider(
            result,
            "delete_occurrence",
            self.calendar.delete_event,
            link_id=link.id,
            user_id=task.user_id,
            event_id=event_id,
            calendar_id=link.calendar_id,
            instance_date=target_date,
            time_zone=tz,
        )
        if response is not None:
            with self._db_step("mark_occurrence_deleted", result):
                self.events.update_fields(
                    link.id,
                    calendar_event_id=response.get("event_id") or link.calendar_event_id,
                    sync_status=SyncStatus.DELETED,
                )
        return result

    def _delete_future(self, task: Task, split_date: date, tz: str) -> SeriesChangeResult:
        end_date = split_date - timedelta(days=1)
        result = SeriesChangeResult(
            scope=UpdateScope.FUTURE, task_id=task.id, split_date=split_date, end_date=end_date
        )
        truncated = task.model_copy(update={"recurrence_ends": end_date, "updated_at": utcnow()})

        with self._db_step("truncate_series", result):
            self.tasks.update(truncated)
        with self._db_step("cancel_instances", result):
            result.affected_instances = self.instances.cancel_from(task.id, split_date)
        with self._db_step("drop_cancelled_events", result):
            self.events.delete_exceptions_from(task.id, split_date)

        master = self.events.get_master(task.id)
        if master is None or self.calendar is None:
            return result

        response = self._call_provider(
            result,
            "update_master",
            self.calendar.update_event,
            link_id=master.id,
            user_id=task.user_id,
            event_id=master.calendar_event_id,
            calendar_id=master.calendar_id,
            update_scope=UpdateScope.ALL,
            recurrence_rule=self._rule_for(truncated, tz, end_date),
            time_zone=tz,
        )
        if response is not None:
            with self._db_step("mark_master_synced", result):
                self.events.update_fields(
                    master.id, series_update_scope=UpdateScope.FUTURE, sync_status=SyncStatus.SYNCED
                )
        return result

    def _delete_all(self, task: Task, tz: str, scope: UpdateScope) -> SeriesChangeResult:
        result = SeriesChangeResult(scope=scope, task_id=task.id)
        links = self.events.list_for_task(task.id)

        with self._db_step("delete_instances", result):
            result.affected_instances = self.instances.delete_for_task(task.id)
        with self._db_step("delete_event_links", result):
            self.events.delete_for_task(task.id)
        with self._db_step("delete_task", result):
            self.tasks.purge(task.user_id, task.id)
        result.task_deleted = True

        if self.calendar is None:
            return result

        # Deleting a master removes its occurrences at the provider too.
        master_ids = {link.calendar_event_id for link in links if link.is_master_event}
        for link in links:
            if not link.is_master_event and (
                link.recurrence_master_id in master_ids or link.calendar_event_id in master_ids
            ):
                continue
            if link.sync_status == SyncStatus.DELETED:
                continue
            self._call_provider(
                result,
                "delete_event",
                self.calendar.delete_event,
                user_id=task.user_id,
                event_id=link.calendar_event_id,
                calendar_id=link.calendar_id,
                time_zone=tz,
            )
        return result

    # Instance status

    def _set_instance_status(
        self, user_id: str, task_id: str, instance_date: date, status: InstanceStatus
    ) -> RecurringTaskInstance:
        task = self._load_series(user_id, task_id)
        tz = self.preferences.get_preferences(user_id).timezone
        self._require_occurrence(task, instance_date, tz)
        existing = self.instances.get(task.id, instance_date)
        if existing is not None and existing.status == InstanceStatus.CANCELLED:
            raise SeriesInputError(f"Occurrence {instance_date.isoformat()} of task {task.id} was deleted")

        with self._db_step(f"mark_instance_{status.value}"):
            return self.instances.upsert(
                user_id=task.user_id,
                task_id=task.id,
                instance_date=instance_date,
                status=status,
                completed_at=self.clock() if status == InstanceStatus.COMPLETED else None,
            )
