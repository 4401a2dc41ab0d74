"""Tests for SeriesManager edits and deletes on recurring series."""

import uuid
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from slotkeeper.database.calendar_event_repository import CalendarEventRepository
from slotkeeper.database.recurring_instance_repository import RecurringInstanceRepository
from slotkeeper.database.repository import TaskRepository
from slotkeeper.engine.errors import SeriesInputError, SeriesPersistenceError, TaskNotFoundError
from slotkeeper.engine.series_manager import SeriesManager
from slotkeeper.integrations.google_calendar import CalendarProviderError
from slotkeeper.models.calendar_event import ExceptionType, SyncStatus, TaskCalendarEvent, UpdateScope
from slotkeeper.models.recurrence import (
    CancelledOccurrence,
    InstanceStatus,
    ModifiedOccurrence,
)
from slotkeeper.models.series import SeriesUpdate
from slotkeeper.models.task import RecurrencePattern
from slotkeeper.recurrence.rules import config_for_task, occurrence_dates


ANCHOR = datetime(2025, 3, 3, 10, 0, tzinfo=timezone.utc)  # Monday


@pytest.fixture
def tasks(db_session):
    return TaskRepository(db_session)


@pytest.fixture
def instances(db_session):
    return RecurringInstanceRepository(db_session)


@pytest.fixture
def events(db_session):
    return CalendarEventRepository(db_session)


@pytest.fixture
def manager(db_session, calendar_client, preferences_reader):
    return SeriesManager(db_session, calendar_client, preferences_reader)


@pytest.fixture
def series(tasks, make_series):
    return tasks.create(make_series(start_instant=ANCHOR))


def link(events, task, calendar_event_id, **fields):
    now = datetime.now(timezone.utc)
    return events.create(TaskCalendarEvent(
        id=str(uuid.uuid4()),
        task_id=task.id,
        user_id=task.user_id,
        calendar_event_id=calendar_event_id,
        calendar_id="primary",
        created_at=now,
        updated_at=now,
        **fields,
    ))


@pytest.fixture
def master(events, series):
    return link(events, series, "master-1", is_master_event=True)


class TestEditSingle:
    def test_records_override_without_touching_series(self, manager, series, master, tasks, instances, events, calendar_client, test_user_id):
        instances.upsert(user_id=test_user_id, task_id=series.id, instance_date=date(2025, 3, 17),
                         status=InstanceStatus.COMPLETED)

        result = manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"title": "Moved standup"})

        assert result.scope == UpdateScope.SINGLE
        assert result.affected_instances == 1
        assert result.sync_errors == []

        instance = instances.get(series.id, date(2025, 3, 10))
        assert isinstance(instance.exception, ModifiedOccurrence)
        assert instance.exception.title == "Moved standup"

        # Series row, master link and other occurrences are untouched.
        assert tasks.get(test_user_id, series.id) == series
        assert events.get_master(series.id) == master
        assert instances.get(series.id, date(2025, 3, 17)).status == InstanceStatus.COMPLETED

        calendar_client.update_event.assert_called_once()
        kwargs = calendar_client.update_event.call_args.kwargs
        assert kwargs["event_id"] == "master-1"
        assert kwargs["update_scope"] == UpdateScope.SINGLE
        assert kwargs["instance_date"] == date(2025, 3, 10)
        assert kwargs["summary"] == "Moved standup"
        assert kwargs.get("recurrence_rule") is None
        assert kwargs["start_time"] is None

    def test_records_exception_link_for_master_only_series(self, manager, series, master, events, test_user_id):
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"title": "Moved"})

        exception = events.find_for_instance(series.id, date(2025, 3, 10))
        assert exception.is_exception
        assert exception.exception_type == ExceptionType.MODIFIED
        assert exception.series_update_scope == UpdateScope.SINGLE
        assert exception.recurrence_master_id == "master-1"
        assert exception.calendar_event_id == "instance-1"
        assert exception.sync_status == SyncStatus.SYNCED

    def test_flags_existing_occurrence_link(self, manager, series, master, events, calendar_client, test_user_id):
        occurrence = link(events, series, "occ-10", recurrence_master_id="master-1",
                          recurrence_instance_date=date(2025, 3, 10))
        calendar_client.update_event.return_value = {"event_id": "occ-10"}

        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10),
                     {"start_instant": datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)})

        flagged = events.find_for_instance(series.id, date(2025, 3, 10))
        assert flagged.id == occurrence.id
        assert flagged.is_exception
        assert flagged.exception_type == ExceptionType.MODIFIED
        kwargs = calendar_client.update_event.call_args.kwargs
        assert kwargs["event_id"] == "occ-10"
        assert kwargs["instance_date"] is None
        assert kwargs["start_time"] == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)
        assert kwargs["end_time"] == datetime(2025, 3, 10, 14, 30, tzinfo=timezone.utc)

    def test_overrides_accumulate(self, manager, series, instances, test_user_id):
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"title": "A"})
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"duration_minutes": 90})

        override = instances.get(series.id, date(2025, 3, 10)).exception
        assert override.title == "A"
        assert override.duration_minutes == 90

    def test_notes_only_edit_skips_provider(self, manager, series, master, calendar_client, test_user_id):
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), SeriesUpdate(notes="bring slides"))

        calendar_client.update_event.assert_not_called()

    def test_deleted_occurrence_cannot_be_edited(self, manager, series, test_user_id):
        manager.delete(test_user_id, series.id, "single", date(2025, 3, 10))

        with pytest.raises(SeriesInputError):
            manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"title": "Back"})


class TestEditFuture:
    def test_splits_series(self, manager, series, master, tasks, instances, events, calendar_client, test_user_id):
        instances.upsert(user_id=test_user_id, task_id=series.id, instance_date=date(2025, 3, 10),
                         status=InstanceStatus.COMPLETED)
        instances.upsert(user_id=test_user_id, task_id=series.id, instance_date=date(2025, 3, 24),
                         exception=ModifiedOccurrence(title="Special"))
        link(events, series, "occ-24", recurrence_master_id="master-1",
             recurrence_instance_date=date(2025, 3, 24), is_exception=True)

        result = manager.edit(test_user_id, series.id, "future", date(2025, 3, 17), {"title": "New sync"})

        original = tasks.get(test_user_id, series.id)
        head = tasks.get(test_user_id, result.new_task_id)
        assert original.recurrence_ends == date(2025, 3, 16)
        assert original.title == "Weekly sync"
        assert head.title == "New sync"
        assert head.start_instant == datetime(2025, 3, 17, 10, 0, tzinfo=timezone.utc)
        assert head.recurrence_pattern == RecurrencePattern.WEEKLY
        assert result.split_date == date(2025, 3, 17)
        assert result.end_date == date(2025, 3, 16)

        # Materialized occurrences on or after the split belong to the new series.
        assert instances.get(series.id, date(2025, 3, 10)).status == InstanceStatus.COMPLETED
        assert instances.get(series.id, date(2025, 3, 24)) is None
        assert instances.get(head.id, date(2025, 3, 24)).exception.title == "Special"
        assert result.affected_instances == 1
        assert events.find_for_instance(series.id, date(2025, 3, 24)) is None

        update_kwargs = calendar_client.update_event.call_args.kwargs
        assert update_kwargs["event_id"] == "master-1"
        assert update_kwargs["update_scope"] == UpdateScope.ALL
        assert update_kwargs["recurrence_rule"] == "RRULE:FREQ=WEEKLY;BYDAY=MO;UNTIL=20250316T235959Z"

        schedule_kwargs = calendar_client.schedule_task.call_args.kwargs
        assert schedule_kwargs["task_id"] == head.id
        assert schedule_kwargs["recurrence_rule"] == "RRULE:FREQ=WEEKLY;BYDAY=MO"
        new_master = events.get_master(head.id)
        assert new_master.calendar_event_id == "new-master-1"

    def test_split_preserves_coverage(self, manager, tasks, make_series, test_user_id):
        series = tasks.create(make_series(
            start_instant=datetime(2025, 1, 31, 9, 0, tzinfo=timezone.utc),
            recurrence_pattern=RecurrencePattern.MONTHLY,
            recurrence_ends=date(2025, 12, 31),
        ))
        before = occurrence_dates(config_for_task(series, "UTC"), limit=50)

        result = manager.edit(test_user_id, series.id, "future", date(2025, 2, 28), {"title": "Renamed"})

        old = occurrence_dates(config_for_task(tasks.get(test_user_id, series.id), "UTC"), limit=50)
        new = occurrence_dates(config_for_task(tasks.get(test_user_id, result.new_task_id), "UTC"), limit=50)
        assert old + new == before
        assert old == [date(2025, 1, 31)]

    def test_new_head_uses_updated_time_of_day(self, manager, series, tasks, test_user_id):
        result = manager.edit(
            test_user_id, series.id, "future", date(2025, 3, 17),
            {"start_instant": datetime(2025, 3, 20, 15, 30, tzinfo=timezone.utc)},
        )

        head = tasks.get(test_user_id, result.new_task_id)
        assert head.start_instant == datetime(2025, 3, 17, 15, 30, tzinfo=timezone.utc)

    def test_first_occurrence_edits_in_place(self, manager, series, tasks, calendar_client, test_user_id):
        result = manager.edit(test_user_id, series.id, "future", date(2025, 3, 3), {"title": "Renamed"})

        assert result.new_task_id is None
        assert tasks.get(test_user_id, series.id).title == "Renamed"
        assert len(tasks.get_all(test_user_id)) == 1
        calendar_client.schedule_task.assert_not_called()

    def test_without_master_event_only_database_changes(self, manager, series, tasks, calendar_client, test_user_id):
        result = manager.edit(test_user_id, series.id, "future", date(2025, 3, 17), {"title": "New"})

        assert tasks.get(test_user_id, result.new_task_id) is not None
        calendar_client.update_event.assert_not_called()
        calendar_client.schedule_task.assert_not_called()

    def test_truncated_rule_ends_on_local_day(self, db_session, calendar_client, utc_prefs, tasks, make_series, events, test_user_id):
        # Mondays 08:00 in Tokyo are Sunday 23:00 in UTC.
        reader = MagicMock()
        reader.get_preferences.return_value = utc_prefs.model_copy(update={"timezone": "Asia/Tokyo"})
        manager = SeriesManager(db_session, calendar_client, reader)
        series = tasks.create(make_series(start_instant=datetime(2025, 3, 2, 23, 0, tzinfo=timezone.utc)))
        link(events, series, "master-1", is_master_event=True)

        result = manager.edit(test_user_id, series.id, "future", date(2025, 3, 17), {"title": "New sync"})

        update_kwargs = calendar_client.update_event.call_args.kwargs
        # Last second of 2025-03-16 in Tokyo, so the old master stops before the 17th.
        assert update_kwargs["recurrence_rule"] == "RRULE:FREQ=WEEKLY;BYDAY=MO;UNTIL=20250316T145959Z"
        assert update_kwargs["time_zone"] == "Asia/Tokyo"
        head = tasks.get(test_user_id, result.new_task_id)
        assert head.start_instant == datetime(2025, 3, 16, 23, 0, tzinfo=timezone.utc)
        assert calendar_client.schedule_task.call_args.kwargs["start_time"] == head.start_instant


class TestEditAll:
    def test_updates_series_and_master(self, manager, series, master, tasks, events, calendar_client, test_user_id):
        occurrence = link(events, series, "occ-10", recurrence_master_id="master-1",
                          recurrence_instance_date=date(2025, 3, 10))

        result = manager.edit(test_user_id, series.id, UpdateScope.ALL, updates={"title": "Renamed"})

        assert result.scope == UpdateScope.ALL
        assert tasks.get(test_user_id, series.id).title == "Renamed"
        assert events.get_master(series.id).series_update_scope == UpdateScope.ALL
        assert events.find_for_instance(series.id, date(2025, 3, 10)).series_update_scope == UpdateScope.ALL
        kwargs = calendar_client.update_event.call_args.kwargs
        assert kwargs["update_scope"] == UpdateScope.ALL
        assert kwargs["summary"] == "Renamed"
        assert kwargs.get("recurrence_rule") is None
        assert occurrence.id

    def test_new_start_rebuilds_rule(self, manager, series, master, calendar_client, test_user_id):
        new_start = datetime(2025, 3, 4, 8, 0, tzinfo=timezone.utc)  # Tuesday

        manager.edit(test_user_id, series.id, "all", updates={"start_instant": new_start})

        kwargs = calendar_client.update_event.call_args.kwargs
        assert kwargs["recurrence_rule"] == "RRULE:FREQ=WEEKLY;BYDAY=TU"
        assert kwargs["start_time"] == new_start
        assert kwargs["end_time"] == new_start + timedelta(minutes=30)

    def test_reset_exceptions(self, manager, series, master, instances, events, test_user_id):
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"title": "Moved"})
        manager.complete_instance(test_user_id, series.id, date(2025, 3, 17))

        result = manager.edit(test_user_id, series.id, "all", reset_exceptions=True)

        assert result.affected_instances == 1
        assert instances.get(series.id, date(2025, 3, 10)).exception is None
        assert instances.get(series.id, date(2025, 3, 17)).status == InstanceStatus.COMPLETED
        assert not events.find_for_instance(series.id, date(2025, 3, 10)).is_exception


class TestDelete:
    def test_delete_future_truncates_and_cancels(self, manager, series, master, tasks, instances, events, calendar_client, test_user_id):
        for day in (date(2025, 3, 3), date(2025, 3, 10), date(2025, 3, 24)):
            instances.upsert(user_id=test_user_id, task_id=series.id, instance_date=day,
                             status=InstanceStatus.COMPLETED)
        for day in (date(2025, 3, 3), date(2025, 3, 24)):
            link(events, series, f"master-1_{day:%Y%m%d}", is_exception=True,
                 exception_type=ExceptionType.MODIFIED, recurrence_master_id="master-1",
                 recurrence_instance_date=day)

        result = manager.delete(test_user_id, series.id, "future", date(2025, 3, 10))

        assert tasks.get(test_user_id, series.id).recurrence_ends == date(2025, 3, 9)
        assert instances.get(series.id, date(2025, 3, 3)).status == InstanceStatus.COMPLETED
        assert instances.get(series.id, date(2025, 3, 10)).status == InstanceStatus.CANCELLED
        assert instances.get(series.id, date(2025, 3, 24)).status == InstanceStatus.CANCELLED
        assert result.affected_instances == 2
        assert result.new_task_id is None
        assert len(tasks.get_all(test_user_id)) == 1
        kwargs = calendar_client.update_event.call_args.kwargs
        assert kwargs["recurrence_rule"].endswith("UNTIL=20250309T235959Z")
        calendar_client.schedule_task.assert_not_called()

        # Occurrence links past the cut are gone; earlier ones and the master stay.
        assert events.find_for_instance(series.id, date(2025, 3, 24)) is None
        assert events.find_for_instance(series.id, date(2025, 3, 3)) is not None
        assert events.get_master(series.id) == master

    def test_delete_single(self, manager, series, master, instances, events, calendar_client, test_user_id):
        result = manager.delete(test_user_id, series.id, "single", date(2025, 3, 10))

        assert result.affected_instances == 1
        instance = instances.get(series.id, date(2025, 3, 10))
        assert instance.status == InstanceStatus.CANCELLED
        assert isinstance(instance.exception, CancelledOccurrence)
        assert instances.get(series.id, date(2025, 3, 17)) is None

        kwargs = calendar_client.delete_event.call_args.kwargs
        assert kwargs["event_id"] == "master-1"
        assert kwargs["instance_date"] == date(2025, 3, 10)

        row = events.find_for_instance(series.id, date(2025, 3, 10))
        assert row.exception_type == ExceptionType.CANCELLED
        assert row.sync_status == SyncStatus.DELETED
        assert events.get_master(series.id).sync_status == SyncStatus.SYNCED

    def test_delete_single_uses_resolved_occurrence_id(self, manager, series, master, calendar_client, test_user_id):
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"title": "Moved"})

        manager.delete(test_user_id, series.id, "single", date(2025, 3, 10))

        kwargs = calendar_client.delete_event.call_args.kwargs
        assert kwargs["event_id"] == "instance-1"
        assert kwargs["instance_date"] is None

    def test_delete_all(self, manager, series, master, tasks, instances, events, calendar_client, test_user_id):
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 10), {"title": "Moved"})
        standalone = link(events, series, "loose-1")

        result = manager.delete(test_user_id, series.id, "all")

        assert result.task_deleted
        assert result.affected_instances == 1
        assert tasks.get(test_user_id, series.id) is None
        assert instances.list_for_task(series.id) == []
        assert events.list_for_task(series.id) == []
        deleted = sorted(c.kwargs["event_id"] for c in calendar_client.delete_event.call_args_list)
        assert deleted == ["loose-1", "master-1"]
        assert standalone.id

    def test_delete_future_at_first_occurrence_removes_series(self, manager, series, tasks, test_user_id):
        result = manager.delete(test_user_id, series.id, "future", date(2025, 3, 3))

        assert result.task_deleted
        assert tasks.get(test_user_id, series.id) is None


class TestFailures:
    def test_provider_failure_keeps_database_change(self, manager, series, master, tasks, events, calendar_client, test_user_id):
        calendar_client.update_event.side_effect = CalendarProviderError("update calendar event", "boom", 500)

        result = manager.delete(test_user_id, series.id, "future", date(2025, 3, 10))

        assert result.sync_errors == ["calendar:update_master"]
        assert tasks.get(test_user_id, series.id).recurrence_ends == date(2025, 3, 9)
        assert events.get_master(series.id).sync_status == SyncStatus.FAILED

    def test_failed_master_creation_is_reported(self, manager, series, master, tasks, events, calendar_client, test_user_id):
        calendar_client.schedule_task.side_effect = CalendarProviderError("create calendar event", "quota", 403)

        result = manager.edit(test_user_id, series.id, "future", date(2025, 3, 17), {"title": "New"})

        assert result.sync_errors == ["calendar:create_master"]
        assert tasks.get(test_user_id, result.new_task_id) is not None
        assert events.get_master(result.new_task_id) is None

    def test_database_failure_names_step(self, manager, series, master, calendar_client, test_user_id, monkeypatch):
        monkeypatch.setattr(
            manager.tasks, "update",
            MagicMock(side_effect=OperationalError("UPDATE tasks", {}, Exception("db down"))),
        )

        with pytest.raises(SeriesPersistenceError) as excinfo:
            manager.delete(test_user_id, series.id, "future", date(2025, 3, 10))

        assert excinfo.value.step == "truncate_series"
        calendar_client.update_event.assert_not_called()

    def test_without_calendar_client(self, db_session, preferences_reader, series, master, test_user_id):
        manager = SeriesManager(db_session, None, preferences_reader)

        result = manager.delete(test_user_id, series.id, "single", date(2025, 3, 10))

        assert result.sync_errors == []


class TestInputErrors:
    def test_missing_instance_date(self, manager, series, test_user_id):
        with pytest.raises(SeriesInputError):
            manager.delete(test_user_id, series.id, "future")

    def test_date_that_is_not_an_occurrence(self, manager, series, instances, test_user_id):
        with pytest.raises(SeriesInputError):
            manager.edit(test_user_id, series.id, "single", date(2025, 3, 11), {"title": "x"})
        assert instances.list_for_task(series.id) == []

    def test_unknown_scope(self, manager, series, test_user_id):
        with pytest.raises(SeriesInputError):
            manager.delete(test_user_id, series.id, "everything")

    def test_unknown_task(self, manager, test_user_id):
        with pytest.raises(TaskNotFoundError):
            manager.delete(test_user_id, "missing", "all")

    def test_other_users_task(self, manager, series):
        with pytest.raises(TaskNotFoundError):
            manager.delete("someone-else", series.id, "all")

    def test_one_off_task(self, manager, tasks, make_task, test_user_id):
        task = tasks.create(make_task(start_instant=ANCHOR))
        with pytest.raises(SeriesInputError):
            manager.delete(test_user_id, task.id, "all")

    def test_empty_update(self, manager, series, calendar_client, test_user_id):
        with pytest.raises(SeriesInputError):
            manager.edit(test_user_id, series.id, "all", updates={})
        calendar_client.update_event.assert_not_called()


class TestDescribeAndStatus:
    def test_describe(self, db_session, calendar_client, preferences_reader, series, test_user_id):
        manager = SeriesManager(
            db_session, calendar_client, preferences_reader,
            clock=lambda: datetime(2025, 3, 12, 9, 0, tzinfo=timezone.utc),
        )
        manager.complete_instance(test_user_id, series.id, date(2025, 3, 3))
        manager.skip_instance(test_user_id, series.id, date(2025, 3, 10))
        manager.edit(test_user_id, series.id, "single", date(2025, 3, 17), {"title": "Moved"})

        overview = manager.describe(test_user_id, series.id, limit=5)

        assert overview.task.id == series.id
        assert overview.statistics.total_instances == 3
        assert overview.statistics.completed_instances == 1
        assert overview.statistics.skipped_instances == 1
        assert overview.statistics.exceptions_count == 1
        assert len(overview.next_occurrences) == 5
        assert overview.next_occurrence == overview.next_occurrences[0]
        assert overview.next_occurrences == [
            datetime(2025, 3, 17, 10, 0, tzinfo=timezone.utc) + timedelta(weeks=i) for i in range(5)
        ]

    def test_describe_starts_after_clock(self, db_session, preferences_reader, series, test_user_id):
        # 10:30 on a Monday: that day's 10:00 occurrence is already past.
        manager = SeriesManager(
            db_session, preferences_reader=preferences_reader,
            clock=lambda: datetime(2025, 3, 10, 10, 30, tzinfo=timezone.utc),
        )

        overview = manager.describe(test_user_id, series.id, limit=2)

        assert overview.next_occurrences == [
            datetime(2025, 3, 17, 10, 0, tzinfo=timezone.utc),
            datetime(2025, 3, 24, 10, 0, tzinfo=timezone.utc),
        ]

    def test_describe_skips_cancelled_occurrences(self, manager, series, test_user_id):
        upcoming = manager.describe(test_user_id, series.id, limit=3).next_occurrences
        manager.delete(test_user_id, series.id, "single", upcoming[0].date())

        after = manager.describe(test_user_id, series.id, limit=3).next_occurrences

        assert upcoming[0] not in after
        assert after[0] == upcoming[1]

    def test_complete_instance(self, manager, series, test_user_id):
        instance = manager.complete_instance(test_user_id, series.id, date(2025, 3, 10))

        assert instance.status == InstanceStatus.COMPLETED
        assert instance.completed_at is not None

    def test_cancelled_instance_cannot_be_completed(self, manager, series, test_user_id):
        manager.delete(test_user_id, series.id, "single", date(2025, 3, 10))

        with pytest.raises(SeriesInputError):
            manager.complete_instance(test_user_id, series.id, date(2025, 3, 10))
