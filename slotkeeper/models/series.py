"""Request/result models for recurring series edits."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from slotkeeper.models.calendar_event import UpdateScope
from slotkeeper.models.recurrence import RecurringTaskInstance
from slotkeeper.models.task import Task


class SeriesUpdate(BaseModel):
    """Fields a caller may change on a series or a single occurrence."""

    title: Optional[str] = None
    notes: Optional[str] = None
    start_instant: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(None, ge=1)

    @field_validator("start_instant")
    @classmethod
    def _as_utc(cls, v):
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)

    def touches_calendar(self) -> bool:
        """Whether the provider event needs to change (notes are not synced)."""
        return any(v is not None for v in (self.title, self.start_instant, self.duration_minutes))


class SeriesChangeResult(BaseModel):
    """Summary returned by SeriesManager.edit/delete."""

    scope: UpdateScope
    task_id: str
    affected_instances: int = Field(0, description="Materialized occurrence records changed")
    instance_date: Optional[date] = None
    new_task_id: Optional[str] = Field(None, description="Series head created by a future-scope edit")
    split_date: Optional[date] = None
    end_date: Optional[date] = None
    task_deleted: bool = False
    sync_errors: List[str] = Field(
        default_factory=list, description="Calendar provider sub-steps that failed"
    )

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class SeriesStatistics(BaseModel):
    total_instances: int = 0
    completed_instances: int = 0
    skipped_instances: int = 0
    exceptions_count: int = 0


class SeriesOverview(BaseModel):
    """Read model for one series: materialized state plus upcoming occurrences."""

    task: Task
    instances: List[RecurringTaskInstance] = Field(default_factory=list)
    next_occurrences: List[datetime] = Field(default_factory=list)
    next_occurrence: Optional[datetime] = None
    statistics: SeriesStatistics = Field(default_factory=SeriesStatistics)
