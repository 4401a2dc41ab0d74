"""Repository for TaskCalendarEvent database operations."""

import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from slotkeeper.database.models import TaskCalendarEventDB, enum_to_value, optional_enum_value, to_db_datetime
from slotkeeper.models.calendar_event import TaskCalendarEvent
from slotkeeper.models.task_factory import utcnow

logger = logging.getLogger(__name__)
_UNSET = object()


class CalendarEventRepository:
    """Repository for the links between tasks and calendar provider events."""

    def __init__(self, db: Session):
        self.db = db

    def list_for_task(self, task_id: str) -> List[TaskCalendarEvent]:
        rows = (
            self.db.query(TaskCalendarEventDB)
            .filter(TaskCalendarEventDB.task_id == task_id)
            .order_by(TaskCalendarEventDB.created_at)
            .all()
        )
        return [row.to_pydantic() for row in rows]

    def get_master(self, task_id: str) -> Optional[TaskCalendarEvent]:
        row = self.db.query(TaskCalendarEventDB).filter(
            TaskCalendarEventDB.task_id == task_id,
            TaskCalendarEventDB.is_master_event.is_(True),
        ).first()
        return row.to_pydantic() if row else None

    def find_for_instance(self, task_id: str, instance_date: date) -> Optional[TaskCalendarEvent]:
        row = self.db.query(TaskCalendarEventDB).filter(
            TaskCalendarEventDB.task_id == task_id,
            TaskCalendarEventDB.recurrence_instance_date == instance_date,
        ).first()
        return row.to_pydantic() if row else None

    def create(self, event: TaskCalendarEvent) -> TaskCalendarEvent:
        try:
            row = TaskCalendarEventDB.from_pydantic(event)
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Linked task {event.task_id} to calendar event {event.calendar_event_id}")
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to link calendar event for task {event.task_id}: {type(e).__name__}: {str(e)}")
            raise

    def update_fields(
        self,
        event_id: str,
        *,
        calendar_event_id=_UNSET,
        is_exception=_UNSET,
        exception_type=_UNSET,
        series_update_scope=_UNSET,
        sync_status=_UNSET,
        event_start=_UNSET,
        event_end=_UNSET,
    ) -> Optional[TaskCalendarEvent]:
        """Update flags on one link row.

        Uses an UNSET sentinel so callers can explicitly clear values by passing None.
        """
        try:
            row = self.db.query(TaskCalendarEventDB).filter(TaskCalendarEventDB.id == event_id).first()
            if row is None:
                return None
            if calendar_event_id is not _UNSET:
                row.calendar_event_id = calendar_event_id
            if is_exception is not _UNSET:
                row.is_exception = bool(is_exception)
            if exception_type is not _UNSET:
                row.exception_type = optional_enum_value(exception_type)
            if series_update_scope is not _UNSET:
                row.series_update_scope = optional_enum_value(series_update_scope)
            if sync_status is not _UNSET:
                row.sync_status = enum_to_value(sync_status)
            if event_start is not _UNSET:
                row.event_start = to_db_datetime(event_start)
            if event_end is not _UNSET:
                row.event_end = to_db_datetime(event_end)
            row.updated_at = to_db_datetime(utcnow())
            self.db.commit()
            self.db.refresh(row)
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update calendar event link {event_id}: {type(e).__name__}: {str(e)}")
            raise

    def set_scope_for_task(self, task_id: str, scope) -> int:
        """Record which series scope last touched every event of a task."""
        try:
            affected = (
                self.db.query(TaskCalendarEventDB)
                .filter(TaskCalendarEventDB.task_id == task_id)
                .update(
                    {
                        TaskCalendarEventDB.series_update_scope: enum_to_value(scope),
                        TaskCalendarEventDB.updated_at: to_db_datetime(utcnow()),
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            return int(affected)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to set update scope for task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def reset_exceptions(self, task_id: str) -> int:
        """Clear exception flags on all of a task's events."""
        try:
            affected = (
                self.db.query(TaskCalendarEventDB)
                .filter(
                    TaskCalendarEventDB.task_id == task_id,
                    TaskCalendarEventDB.is_exception.is_(True),
                )
                .update(
                    {
                        TaskCalendarEventDB.is_exception: False,
                        TaskCalendarEventDB.exception_type: None,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            return int(affected)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to reset exceptions for task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def delete_exceptions_from(self, task_id: str, from_date: date) -> int:
        """Delete occurrence rows on or after `from_date` (superseded by a series split)."""
        try:
            deleted = (
                self.db.query(TaskCalendarEventDB)
                .filter(
                    TaskCalendarEventDB.task_id == task_id,
                    TaskCalendarEventDB.is_master_event.is_(False),
                    TaskCalendarEventDB.recurrence_instance_date >= from_date,
                )
                .delete(synchronize_session=False)
            )
            self.db.commit()
            return int(deleted)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete superseded events of task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def delete_for_task(self, task_id: str) -> int:
        try:
            deleted = (
                self.db.query(TaskCalendarEventDB)
                .filter(TaskCalendarEventDB.task_id == task_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
            logger.debug(f"Deleted {deleted} calendar event links of task {task_id}")
            return int(deleted)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete calendar event links of task {task_id}: {type(e).__name__}: {str(e)}")
            raise
