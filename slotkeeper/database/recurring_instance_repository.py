"""Repository for RecurringTaskInstance database operations."""

import logging
import uuid
from datetime import date
from typing import List, Optional

from sqlalchemy.orm import Session

from slotkeeper.database.models import RecurringTaskInstanceDB, enum_to_value, to_db_datetime
from slotkeeper.models.recurrence import InstanceStatus, RecurringTaskInstance
from slotkeeper.models.task_factory import utcnow

logger = logging.getLogger(__name__)
_UNSET = object()


class RecurringInstanceRepository:
    def __init__(self, db: Session):
        self.db = db

    def _row(self, task_id: str, instance_date: date) -> Optional[RecurringTaskInstanceDB]:
        return self.db.query(RecurringTaskInstanceDB).filter(
            RecurringTaskInstanceDB.task_id == task_id,
            RecurringTaskInstanceDB.instance_date == instance_date,
        ).first()

    def get(self, task_id: str, instance_date: date) -> Optional[RecurringTaskInstance]:
        row = self._row(task_id, instance_date)
        return row.to_pydantic() if row else None

    def list_for_task(self, task_id: str) -> List[RecurringTaskInstance]:
        rows = (
            self.db.query(RecurringTaskInstanceDB)
            .filter(RecurringTaskInstanceDB.task_id == task_id)
            .order_by(RecurringTaskInstanceDB.instance_date)
            .all()
        )
        return [row.to_pydantic() for row in rows]

    def upsert(
        self,
        *,
        user_id: str,
        task_id: str,
        instance_date: date,
        status=_UNSET,
        exception=_UNSET,
        completed_at=_UNSET,
    ) -> RecurringTaskInstance:
        """Create or update the occurrence row keyed by (task_id, instance_date).

        Uses an UNSET sentinel so callers can explicitly clear values by passing None.
        """
        try:
            row = self._row(task_id, instance_date)
            if row is None:
                row = RecurringTaskInstanceDB(
                    id=str(uuid.uuid4()),
                    task_id=task_id,
                    user_id=user_id,
                    instance_date=instance_date,
                    status=InstanceStatus.SCHEDULED.value,
                )
                self.db.add(row)
            if status is not _UNSET:
                row.status = enum_to_value(status)
            if exception is not _UNSET:
                row.exception = RecurringTaskInstanceDB.dump_exception(exception)
            if completed_at is not _UNSET:
                row.completed_at = to_db_datetime(completed_at)
            row.updated_at = to_db_datetime(utcnow())
            self.db.commit()
            self.db.refresh(row)
            logger.debug(f"Upserted instance {task_id}@{instance_date.isoformat()}")
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to upsert instance {task_id}@{instance_date.isoformat()}: {type(e).__name__}: {str(e)}"
            )
            raise

    def cancel_from(self, task_id: str, from_date: date) -> int:
        """Mark every materialized occurrence on or after `from_date` cancelled."""
        try:
            affected = (
                self.db.query(RecurringTaskInstanceDB)
                .filter(
                    RecurringTaskInstanceDB.task_id == task_id,
                    RecurringTaskInstanceDB.instance_date >= from_date,
                )
                .update(
                    {
                        RecurringTaskInstanceDB.status: InstanceStatus.CANCELLED.value,
                        RecurringTaskInstanceDB.updated_at: to_db_datetime(utcnow()),
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            logger.debug(f"Cancelled {affected} instances of task {task_id} from {from_date.isoformat()}")
            return int(affected)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to cancel instances of task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def reassign_from(self, task_id: str, from_date: date, new_task_id: str) -> int:
        """Move occurrences on or after `from_date` onto another series (used by series splits)."""
        try:
            affected = (
                self.db.query(RecurringTaskInstanceDB)
                .filter(
                    RecurringTaskInstanceDB.task_id == task_id,
                    RecurringTaskInstanceDB.instance_date >= from_date,
                )
                .update({RecurringTaskInstanceDB.task_id: new_task_id}, synchronize_session=False)
            )
            self.db.commit()
            logger.debug(f"Moved {affected} instances from task {task_id} to {new_task_id}")
            return int(affected)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to move instances of task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def clear_modifications(self, task_id: str) -> int:
        """Drop modified-occurrence overrides so every occurrence follows the series again."""
        rows = self.db.query(RecurringTaskInstanceDB).filter(
            RecurringTaskInstanceDB.task_id == task_id,
            RecurringTaskInstanceDB.exception.isnot(None),
        ).all()
        try:
            cleared = 0
            for row in rows:
                if (row.exception or {}).get("kind") == "modified":
                    row.exception = None
                    cleared += 1
            self.db.commit()
            return cleared
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to clear instance overrides of task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def delete_for_task(self, task_id: str) -> int:
        try:
            deleted = (
                self.db.query(RecurringTaskInstanceDB)
                .filter(RecurringTaskInstanceDB.task_id == task_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
            logger.debug(f"Deleted {deleted} instances of task {task_id}")
            return int(deleted)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to delete instances of task {task_id}: {type(e).__name__}: {str(e)}")
            raise
