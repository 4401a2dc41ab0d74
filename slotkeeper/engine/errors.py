"""Exceptions raised by the scheduling engine."""

from typing import Optional


class SchedulingError(Exception):
    """Base class for slotkeeper engine errors."""


class SeriesInputError(SchedulingError, ValueError):
    """Rejected edit/delete request; nothing has been mutated."""


class TaskNotFoundError(SchedulingError, LookupError):
    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class SeriesPersistenceError(SchedulingError):
    """A database step of a series edit/delete failed.

    `step` names the sub-step so callers can report which side failed;
    provider sub-steps that already ran are listed in `sync_errors`.
    """

    def __init__(self, step: str, cause: Exception, sync_errors: Optional[list] = None):
        super().__init__(f"Database step '{step}' failed: {type(cause).__name__}: {cause}")
        self.step = step
        self.cause = cause
        self.sync_errors = list(sync_errors or [])
