"""Google Calendar integration for slotkeeper."""

import logging
import os
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from dotenv import load_dotenv

from slotkeeper.models.calendar_event import UpdateScope
from slotkeeper.models.constants import DEFAULT_CALENDAR_ID
from slotkeeper.timeutils import get_zone, local_date

load_dotenv()

logger = logging.getLogger(__name__)

# Google Calendar API scopes
SCOPES = ['https://www.googleapis.com/auth/calendar']


class CalendarProviderError(Exception):
    """A Google Calendar API call failed."""

    def __init__(self, operation: str, message: str, status: Optional[int] = None):
        super().__init__(f"Failed to {operation}: {message}")
        self.operation = operation
        self.status = status


def _http_status(error: HttpError) -> Optional[int]:
    resp = getattr(error, "resp", None)
    status = getattr(resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _rfc3339(instant: datetime) -> str:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _event_time(instant: datetime, time_zone: str) -> dict:
    return {'dateTime': _rfc3339(instant), 'timeZone': time_zone}


class GoogleCalendarClient:
    """Client for Google Calendar API integration.

    Acts as the calendar provider for the series manager: it creates events
    for tasks (optionally carrying an RRULE), and updates or deletes either a
    whole series or one occurrence of it.
    """

    def __init__(
        self,
        credentials: Optional[Credentials] = None,
        calendar_id: Optional[str] = None,
        credentials_path: Optional[str] = None,
        token_path: str = "token.json",
    ):
        """Initialize Google Calendar client.

        Args:
            credentials: Already-authorized credentials. When given, the OAuth
                         file flow is skipped.
            calendar_id: Google Calendar ID to use.
                        If None, reads from GOOGLE_CALENDAR_ID env var (defaults to 'primary').
            credentials_path: Path to OAuth2 credentials JSON file.
                             If None, reads from GOOGLE_CALENDAR_CREDENTIALS_PATH env var.
            token_path: Path to store OAuth2 token (defaults to 'token.json').
        """
        self.credentials_path = credentials_path or os.getenv("GOOGLE_CALENDAR_CREDENTIALS_PATH", "credentials.json")
        self.calendar_id = calendar_id or os.getenv("GOOGLE_CALENDAR_ID", DEFAULT_CALENDAR_ID)
        self.token_path = token_path
        self.creds = credentials
        self.service = None
        if credentials is not None:
            self.service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        else:
            self._authenticate()

    def _authenticate(self):
        """Authenticate with Google Calendar API using OAuth2."""
        creds = None

        # Load existing token if available
        if os.path.exists(self.token_path):
            creds = Credentials.from_authorized_user_file(self.token_path, SCOPES)

        # If no valid credentials, get new ones
        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                if not os.path.exists(self.credentials_path):
                    raise FileNotFoundError(
                        f"Google Calendar credentials not found at {self.credentials_path}. "
                        "Please download OAuth2 credentials from Google Cloud Console."
                    )
                flow = InstalledAppFlow.from_client_secrets_file(self.credentials_path, SCOPES)
                creds = flow.run_local_server(port=0)

            with open(self.token_path, 'w') as token:
                token.write(creds.to_json())

        self.creds = creds
        self.service = build('calendar', 'v3', credentials=creds, cache_discovery=False)

    def schedule_task(
        self,
        user_id: str,
        task_id: str,
        start_time: datetime,
        duration_minutes: int,
        calendar_id: Optional[str] = None,
        summary: Optional[str] = None,
        recurrence_rule: Optional[str] = None,
        time_zone: str = "UTC",
    ) -> dict:
        """Create an event for a task (a master event when `recurrence_rule` is set).

        Returns:
            {"event_id": ..., "event_link": ...}

        Raises:
            CalendarProviderError: If the API call fails
        """
        end_time = start_time + timedelta(minutes=duration_minutes)
        body = {
            'summary': summary or f"Task {task_id}",
            'start': _event_time(start_time, time_zone),
            'end': _event_time(end_time, time_zone),
            'extendedProperties': {
                'private': {
                    'slotkeeper_task_id': task_id,
                    'slotkeeper_user_id': user_id,
                }
            },
        }
        if recurrence_rule:
            body['recurrence'] = [recurrence_rule]

        try:
            event = self.service.events().insert(
                calendarId=calendar_id or self.calendar_id,
                body=body,
            ).execute()
        except HttpError as error:
            raise CalendarProviderError("create calendar event", str(error), _http_status(error)) from error

        logger.debug(f"Created calendar event {event.get('id')} for task {task_id}")
        return {"event_id": event.get('id'), "event_link": event.get('htmlLink')}

    def _find_instance_id(
        self, event_id: str, calendar_id: str, instance_date: date, time_zone: str
    ) -> str:
        """Provider id of the occurrence of master `event_id` that falls on `instance_date`."""
        zone = get_zone(time_zone)
        window_start = datetime.combine(instance_date - timedelta(days=1), time(0, 0), tzinfo=timezone.utc)
        window_end = window_start + timedelta(days=3)
        try:
            response = self.service.events().instances(
                calendarId=calendar_id,
                eventId=event_id,
                timeMin=_rfc3339(window_start),
                timeMax=_rfc3339(window_end),
                showDeleted=False,
            ).execute()
        except HttpError as error:
            raise CalendarProviderError("list event instances", str(error), _http_status(error)) from error

        for item in response.get('items', []):
            original = item.get('originalStartTime') or item.get('start') or {}
            if 'dateTime' in original:
                day = local_date(datetime.fromisoformat(original['dateTime'].replace("Z", "+00:00")), zone)
            elif 'date' in original:
                day = date.fromisoformat(original['date'])
            else:
                continue
            if day == instance_date:
                return item['id']

        raise CalendarProviderError(
            "resolve event instance",
            f"no occurrence of {event_id} on {instance_date.isoformat()}",
            404,
        )

    def update_event(
        self,
        user_id: str,
        event_id: str,
        calendar_id: Optional[str],
        update_scope: UpdateScope,
        instance_date: Optional[date] = None,
        summary: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        recurrence_rule: Optional[str] = None,
        time_zone: str = "UTC",
    ) -> dict:
        """Patch an event, or a single occurrence of a recurring event.

        With `update_scope=single` and an `instance_date`, `event_id` is the
        master event and only the matching occurrence is changed.
        """
        calendar_id = calendar_id or self.calendar_id
        target_id = event_id
        if UpdateScope(update_scope) == UpdateScope.SINGLE and instance_date is not None:
            target_id = self._find_instance_id(event_id, calendar_id, instance_date, time_zone)

        body: dict = {}
        if summary is not None:
            body['summary'] = summary
        if start_time is not None:
            body['start'] = _event_time(start_time, time_zone)
        if end_time is not None:
            body['end'] = _event_time(end_time, time_zone)
        if recurrence_rule is not None:
            body['recurrence'] = [recurrence_rule]
        if not body:
            return {"event_id": target_id, "event_link": None}

        try:
            event = self.service.events().patch(
                calendarId=calendar_id,
                eventId=target_id,
                body=body,
            ).execute()
        except HttpError as error:
            raise CalendarProviderError("update calendar event", str(error), _http_status(error)) from error

        logger.debug(f"Updated calendar event {target_id} ({update_scope}) for user {user_id}")
        return {"event_id": event.get('id', target_id), "event_link": event.get('htmlLink')}

    def delete_event(
        self,
        user_id: str,
        event_id: str,
        calendar_id: Optional[str] = None,
        instance_date: Optional[date] = None,
        time_zone: str = "UTC",
    ) -> dict:
        """Delete an event (a whole series for a master), or one occurrence when `instance_date` is given."""
        calendar_id = calendar_id or self.calendar_id
        target_id = event_id
        if instance_date is not None:
            target_id = self._find_instance_id(event_id, calendar_id, instance_date, time_zone)

        try:
            self.service.events().delete(calendarId=calendar_id, eventId=target_id).execute()
        except HttpError as error:
            if _http_status(error) == 410:
                logger.info(f"Calendar event {target_id} was already deleted")
                return {"event_id": target_id}
            raise CalendarProviderError("delete calendar event", str(error), _http_status(error)) from error

        logger.debug(f"Deleted calendar event {target_id} for user {user_id}")
        return {"event_id": target_id}
