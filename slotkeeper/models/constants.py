"""Constants for slotkeeper.

This module centralizes default values used throughout the engine.
"""

from datetime import time


# Calendar preference defaults (used when a user has no stored preferences)
DEFAULT_TIMEZONE = "UTC"
DEFAULT_WORKING_DAYS = [1, 2, 3, 4, 5]  # ISO weekdays, Monday=1 ... Sunday=7
DEFAULT_WORK_START_TIME = time(9, 0)
DEFAULT_WORK_END_TIME = time(17, 0)
DEFAULT_TASK_DURATION_MINUTES = 60

# Scheduling
MAX_LOOKAHEAD_DAYS = 7

# Recurrence
DEFAULT_OCCURRENCE_PREVIEW_LIMIT = 10
MAX_RECURRENCE_ITERATIONS = 1000

# Calendar provider
DEFAULT_CALENDAR_ID = "primary"
