"""Repository for user calendar preferences."""

import logging
import os

from dotenv import load_dotenv
from sqlalchemy.orm import Session

from slotkeeper.database.models import UserCalendarPreferencesDB
from slotkeeper.models.constants import DEFAULT_TIMEZONE
from slotkeeper.models.preferences import UserCalendarPreferences

load_dotenv()

logger = logging.getLogger(__name__)


class PreferencesRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_preferences(self, user_id: str) -> UserCalendarPreferences:
        """Stored preferences, or defaults when the user has none (defaults are not persisted)."""
        row = self.db.query(UserCalendarPreferencesDB).filter(
            UserCalendarPreferencesDB.user_id == user_id
        ).first()
        if row is not None:
            return row.to_pydantic()
        logger.debug(f"No calendar preferences for user {user_id}, using defaults")
        return UserCalendarPreferences(
            user_id=user_id,
            timezone=os.getenv("SLOTKEEPER_DEFAULT_TIMEZONE", DEFAULT_TIMEZONE),
        )

    def save(self, prefs: UserCalendarPreferences) -> UserCalendarPreferences:
        """Create or replace a user's preferences."""
        try:
            row = self.db.query(UserCalendarPreferencesDB).filter(
                UserCalendarPreferencesDB.user_id == prefs.user_id
            ).first()
            if row is None:
                row = UserCalendarPreferencesDB.from_pydantic(prefs)
                self.db.add(row)
            else:
                row.timezone = prefs.timezone
                row.working_days = list(prefs.working_days)
                row.work_start_time = prefs.work_start_time
                row.work_end_time = prefs.work_end_time
                row.default_task_duration_minutes = prefs.default_task_duration_minutes
            self.db.commit()
            self.db.refresh(row)
            return row.to_pydantic()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to save calendar preferences for user {prefs.user_id}: {type(e).__name__}: {str(e)}")
            raise
