"""Recurrence models for slotkeeper.

A recurring series is one canonical Task; RecurringTaskInstance rows are only
materialized for occurrences that deviate from the series (an edit, a
cancellation, a completion or a skip).
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from slotkeeper.models.task import RecurrencePattern


class InstanceStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class ModifiedOccurrence(BaseModel):
    """Per-occurrence overrides. Unset fields fall back to the series."""

    kind: Literal["modified"] = "modified"
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


class CancelledOccurrence(BaseModel):
    kind: Literal["cancelled"] = "cancelled"


OccurrenceException = Annotated[
    Union[ModifiedOccurrence, CancelledOccurrence], Field(discriminator="kind")
]


class RecurringTaskInstance(BaseModel):
    """Materialized state of one occurrence of a series."""

    id: str = Field(..., description="Unique instance identifier")
    task_id: str = Field(..., description="Series (task) this occurrence belongs to")
    user_id: str = Field(..., description="Owner")
    instance_date: date = Field(..., description="Local calendar date of the occurrence")
    status: InstanceStatus = Field(InstanceStatus.SCHEDULED)
    exception: Optional[OccurrenceException] = Field(
        None, description="Deviation from the series default, if any"
    )
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        """Pydantic configuration."""
        use_enum_values = True


class RecurrenceConfig(BaseModel):
    """Everything needed to expand a series into occurrence timestamps."""

    pattern: RecurrencePattern
    start: datetime = Field(..., description="Series anchor (timezone-aware)")
    until: Optional[date] = Field(None, description="Last local date allowed (inclusive)")
    timezone: str = Field("UTC", description="IANA zone occurrences are generated in")
    day_of_month: Optional[int] = Field(None, ge=1, le=31)

    @field_validator("start")
    @classmethod
    def _aware(cls, v):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
