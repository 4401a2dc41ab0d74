"""Task data model for slotkeeper."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class TaskStatus(str, Enum):
    """Task status enumeration."""
    OPEN = "open"
    COMPLETED = "completed"


class TaskType(str, Enum):
    """Whether a task is a single placement or the head of a recurring series."""
    ONE_OFF = "one_off"
    RECURRING = "recurring"


class RecurrencePattern(str, Enum):
    """Recurrence presets supported for series."""
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class Task(BaseModel):
    """Canonical Task model.

    `start_instant` is an absolute timestamp (timezone-aware, UTC). For a
    recurring task it is the series anchor, not a specific occurrence.
    """

    id: str = Field(..., description="Unique task identifier (UUID v4)")
    user_id: str = Field(..., description="User ID who owns this task")
    project_id: Optional[str] = Field(None, description="Project this task belongs to")
    title: str = Field(..., description="Task title")
    notes: Optional[str] = Field(None, description="Task notes or description")
    status: TaskStatus = Field(TaskStatus.OPEN, description="Task status")
    created_at: datetime = Field(..., description="Task creation timestamp")
    updated_at: datetime = Field(..., description="Task last update timestamp")
    deleted_at: Optional[datetime] = Field(None, description="Soft-delete timestamp (null if active)")
    completed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    start_instant: Optional[datetime] = Field(None, description="Scheduled start (absolute instant)")
    duration_minutes: Optional[int] = Field(
        None, ge=1, description="Duration in minutes (null means the user's default applies)"
    )
    task_type: TaskType = Field(TaskType.ONE_OFF, description="one_off or recurring")
    recurrence_pattern: Optional[RecurrencePattern] = Field(None, description="Recurrence preset")
    recurrence_ends: Optional[date] = Field(
        None, description="Last local date on which an occurrence may fall (inclusive)"
    )
    recurrence_day_of_month: Optional[int] = Field(
        None,
        ge=1,
        le=31,
        description="Pinned day of month for monthly/quarterly/yearly series (defaults to the anchor's day)",
    )

    @field_validator("start_instant")
    @classmethod
    def _as_utc(cls, v):
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_recurrence_fields(self):
        is_recurring = self.task_type == TaskType.RECURRING
        if is_recurring and self.recurrence_pattern is None:
            raise ValueError("recurring tasks require a recurrence_pattern")
        if not is_recurring and self.recurrence_pattern is not None:
            raise ValueError("recurrence_pattern is only allowed on recurring tasks")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.task_type == TaskType.RECURRING

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
