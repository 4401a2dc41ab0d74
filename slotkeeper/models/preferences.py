"""User calendar preferences for slotkeeper."""

from datetime import time
from typing import List

from pydantic import BaseModel, Field, field_validator

from slotkeeper.models.constants import (
    DEFAULT_TASK_DURATION_MINUTES,
    DEFAULT_TIMEZONE,
    DEFAULT_WORK_END_TIME,
    DEFAULT_WORK_START_TIME,
    DEFAULT_WORKING_DAYS,
)


class UserCalendarPreferences(BaseModel):
    """Working hours and defaults used when placing tasks.

    Times are local clock times in `timezone`.
    """

    user_id: str
    timezone: str = Field(DEFAULT_TIMEZONE, description="IANA time zone id")
    working_days: List[int] = Field(
        default_factory=lambda: list(DEFAULT_WORKING_DAYS),
        description="ISO weekdays (Monday=1 ... Sunday=7)",
    )
    work_start_time: time = DEFAULT_WORK_START_TIME
    work_end_time: time = DEFAULT_WORK_END_TIME
    default_task_duration_minutes: int = Field(DEFAULT_TASK_DURATION_MINUTES, ge=1)

    @field_validator("working_days")
    @classmethod
    def _validate_working_days(cls, v):
        # Deduplicate but preserve order
        seen = set()
        out: List[int] = []
        for day in v:
            if day < 1 or day > 7:
                raise ValueError("working_days must be ISO weekdays 1-7")
            if day not in seen:
                seen.add(day)
                out.append(day)
        return out
