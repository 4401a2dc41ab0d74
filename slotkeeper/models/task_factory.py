"""Task creation factory for slotkeeper.

Centralizes task creation so ids, timestamps and recurrence fields are
filled consistently.
"""

import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from slotkeeper.models.task import RecurrencePattern, Task, TaskStatus, TaskType


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def create_task_defaults() -> Dict[str, Any]:
    """Get default task values as a dictionary."""
    return {
        "status": TaskStatus.OPEN,
        "project_id": None,
        "notes": None,
        "start_instant": None,
        "duration_minutes": None,
        "task_type": TaskType.ONE_OFF,
        "recurrence_pattern": None,
        "recurrence_ends": None,
        "recurrence_day_of_month": None,
    }


def create_task_base(
    user_id: str,
    title: str,
    notes: Optional[str] = None,
    project_id: Optional[str] = None,
    start_instant: Optional[datetime] = None,
    duration_minutes: Optional[int] = None,
    recurrence_pattern: Optional[RecurrencePattern] = None,
    recurrence_ends: Optional[date] = None,
    recurrence_day_of_month: Optional[int] = None,
) -> Task:
    """Create a task with defaults, allowing overrides.

    A task is created as `recurring` exactly when a recurrence pattern is
    given.

    Args:
        user_id: User ID who owns this task (required)
        title: Task title (required)
        notes: Task notes or description
        project_id: Owning project
        start_instant: Start (or series anchor for recurring tasks)
        duration_minutes: Duration; None means the user's default applies
        recurrence_pattern: Recurrence preset for a series
        recurrence_ends: Last date an occurrence may fall on
        recurrence_day_of_month: Pinned day of month for month-based series

    Returns:
        Task object with defaults applied
    """
    now = utcnow()
    defaults = create_task_defaults()
    task_type = TaskType.RECURRING if recurrence_pattern is not None else defaults["task_type"]

    return Task(
        id=str(uuid.uuid4()),
        user_id=user_id,
        title=title,
        notes=notes,
        project_id=project_id,
        status=defaults["status"],
        created_at=now,
        updated_at=now,
        start_instant=start_instant,
        duration_minutes=duration_minutes,
        task_type=task_type,
        recurrence_pattern=recurrence_pattern,
        recurrence_ends=recurrence_ends if recurrence_pattern is not None else defaults["recurrence_ends"],
        recurrence_day_of_month=recurrence_day_of_month,
    )


def clone_series_head(original: Task, *, start_instant: datetime, changes: Dict[str, Any]) -> Task:
    """Create the head of a new series split off `original`.

    The clone gets a fresh id and timestamps; `changes` are applied on top of
    the original fields, then the start instant is forced.
    """
    now = utcnow()
    update = {
        **changes,
        "id": str(uuid.uuid4()),
        "start_instant": start_instant,
        "created_at": now,
        "updated_at": now,
        "completed_at": None,
        "deleted_at": None,
    }
    return original.model_copy(update=update)
