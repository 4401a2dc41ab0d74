"""TaskCalendarEvent data model for slotkeeper."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class UpdateScope(str, Enum):
    """Which occurrences of a series an edit or delete applies to."""
    SINGLE = "single"
    FUTURE = "future"
    ALL = "all"


class ExceptionType(str, Enum):
    MODIFIED = "modified"
    CANCELLED = "cancelled"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    DELETED = "deleted"


class TaskCalendarEvent(BaseModel):
    """Link between a task (or one occurrence of a series) and a provider event."""

    id: str = Field(..., description="Unique link identifier")
    task_id: str = Field(..., description="Task this event belongs to")
    user_id: str = Field(..., description="Owner")
    calendar_event_id: str = Field(..., description="Provider event id")
    calendar_id: str = Field("primary", description="Provider calendar id")
    event_start: Optional[datetime] = None
    event_end: Optional[datetime] = None
    event_link: Optional[str] = None
    is_master_event: bool = Field(False, description="True for the event carrying the series rule")
    is_exception: bool = Field(False, description="True for an occurrence deviating from the master")
    exception_type: Optional[ExceptionType] = None
    recurrence_master_id: Optional[str] = Field(
        None, description="Provider event id of the master this exception belongs to"
    )
    recurrence_instance_date: Optional[date] = None
    series_update_scope: Optional[UpdateScope] = Field(
        None, description="Scope of the last series edit that touched this event"
    )
    sync_status: SyncStatus = Field(SyncStatus.SYNCED)
    created_at: datetime
    updated_at: datetime

    class Config:
        """Pydantic configuration."""
        use_enum_values = True
