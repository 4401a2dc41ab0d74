"""Repository layer for task database operations."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy import desc

from slotkeeper.models.task import Task, TaskStatus
from slotkeeper.models.task_factory import utcnow
from slotkeeper.database.models import TaskDB, to_db_datetime

logger = logging.getLogger(__name__)


class TaskRepository:
    """Repository for Task database operations.

    Also serves as the slot finder's task reader (`list_tasks`).
    """

    def __init__(self, db: Session):
        self.db = db

    def _active_row(self, user_id: str, task_id: str) -> Optional[TaskDB]:
        return self.db.query(TaskDB).filter(
            TaskDB.id == task_id,
            TaskDB.user_id == user_id,
            TaskDB.deleted_at.is_(None),
        ).first()

    def create(self, task: Task) -> Task:
        """Create a new task."""
        try:
            task_db = TaskDB.from_pydantic(task)
            self.db.add(task_db)
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Created task {task.id}: {task.title[:50]}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create task {task.id}: {type(e).__name__}: {str(e)}")
            raise

    def get(self, user_id: str, task_id: str) -> Optional[Task]:
        """Get task by ID for a specific user."""
        task_db = self._active_row(user_id, task_id)
        return task_db.to_pydantic() if task_db else None

    def get_all(self, user_id: str) -> List[Task]:
        """Get all tasks for a user sorted by creation date (newest first)."""
        tasks_db = self.db.query(TaskDB).filter(
            TaskDB.user_id == user_id,
            TaskDB.deleted_at.is_(None),
        ).order_by(desc(TaskDB.created_at)).all()
        return [task_db.to_pydantic() for task_db in tasks_db]

    def list_tasks(self, user_id: str, range_start: datetime, range_end: datetime) -> List[Task]:
        """Open, non-deleted tasks whose start falls in [range_start, range_end), ordered by start."""
        tasks_db = self.db.query(TaskDB).filter(
            TaskDB.user_id == user_id,
            TaskDB.status != TaskStatus.COMPLETED.value,
            TaskDB.deleted_at.is_(None),
            TaskDB.start_instant.isnot(None),
            TaskDB.start_instant >= to_db_datetime(range_start),
            TaskDB.start_instant < to_db_datetime(range_end),
        ).order_by(TaskDB.start_instant).all()
        return [task_db.to_pydantic() for task_db in tasks_db]

    def update(self, task: Task) -> Task:
        """Update an existing task (user_id must match task.user_id)."""
        task_db = self._active_row(task.user_id, task.id)
        if not task_db:
            raise ValueError(f"Task {task.id} not found")

        task_db.apply(task)
        try:
            self.db.commit()
            self.db.refresh(task_db)
            logger.debug(f"Updated task {task.id}: {task.title[:50]}")
            return task_db.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to update task {task.id}: {type(e).__name__}: {str(e)}")
            raise

    def save_start_instants(self, user_id: str, tasks: Iterable[Task]) -> int:
        """Persist the start instants chosen by a scheduling run in one commit."""
        by_id = {t.id: t for t in tasks}
        if not by_id:
            return 0
        rows = self.db.query(TaskDB).filter(
            TaskDB.user_id == user_id,
            TaskDB.id.in_(list(by_id)),
            TaskDB.deleted_at.is_(None),
        ).all()
        try:
            changed = 0
            now = to_db_datetime(utcnow())
            for row in rows:
                new_start = to_db_datetime(by_id[row.id].start_instant)
                if row.start_instant != new_start:
                    row.start_instant = new_start
                    row.updated_at = now
                    changed += 1
            self.db.commit()
            logger.debug(f"Saved {changed} rescheduled tasks for user {user_id}")
            return changed
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to save schedule for user {user_id}: {type(e).__name__}: {str(e)}")
            raise

    def delete(self, user_id: str, task_id: str) -> bool:
        """Soft-delete a task by ID for a specific user."""
        task_db = self._active_row(user_id, task_id)
        if not task_db:
            return False

        try:
            task_db.deleted_at = to_db_datetime(utcnow())
            self.db.commit()
            logger.debug(f"Soft-deleted task {task_id}")
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to soft-delete task {task_id}: {type(e).__name__}: {str(e)}")
            raise

    def purge(self, user_id: str, task_id: str) -> bool:
        """Permanently delete a task by ID for a specific user."""
        task_db = self.db.query(TaskDB).filter(
            TaskDB.id == task_id,
            TaskDB.user_id == user_id,
        ).first()
        if not task_db:
            return False

        try:
            self.db.delete(task_db)
            self.db.commit()
            logger.debug(f"Purged task {task_id}")
            return True
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to purge task {task_id}: {type(e).__name__}: {str(e)}")
            raise
