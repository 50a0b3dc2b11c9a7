"""
Google Calendar adapter for doctor busy periods and appointment events.

Busy-period lookups are advisory: every failure is logged and reported as
"no busy periods" so availability queries keep working while the calendar
is unreachable or not configured. Event creation raises
:class:`GoogleCalendarError` and is only called from the reconciliation
pipeline, which records the failure.
"""

import logging
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from medibook.core import config
from medibook.scheduling.errors import InvalidInterval
from medibook.scheduling.intervals import TimeInterval

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ['https://www.googleapis.com/auth/calendar']


class GoogleCalendarError(Exception):
    """Raised when a Google Calendar write fails."""
    pass


def parse_rfc3339(value: str) -> datetime:
    """Parse the RFC3339 timestamps returned by the Calendar API."""
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    return datetime.fromisoformat(value)


class GoogleCalendarService:
    """
    Thin wrapper around a Calendar v3 API resource.

    Attributes:
        service: Google Calendar API service client (``googleapiclient`` resource)
        time_zone: IANA time zone name sent with free/busy queries
    """

    def __init__(self, service: Any, time_zone: str = config.DEFAULT_DOCTOR_TIMEZONE) -> None:
        self.service = service
        self.time_zone = time_zone

    @classmethod
    def from_refresh_token(
        cls,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        token_uri: str = config.GOOGLE_TOKEN_URI,
    ) -> 'GoogleCalendarService':
        """
        Build a service from a long-lived OAuth2 refresh token.

        Raises:
            GoogleCalendarError: If the API client cannot be built
        """
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            client_id=client_id,
            client_secret=client_secret,
            token_uri=token_uri,
            scopes=CALENDAR_SCOPES,
        )
        try:
            service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        except Exception as e:
            raise GoogleCalendarError(f"Failed to initialize Google Calendar service: {e}") from e
        return cls(service)

    def query_busy_periods(self, calendar_id: str, time_min: datetime, time_max: datetime) -> List[TimeInterval]:
        """
        Return the busy intervals of ``calendar_id`` between ``time_min`` and ``time_max``.

        Never raises: API, auth and transport failures all yield an empty list.
        """
        body = {
            'timeMin': time_min.isoformat(),
            'timeMax': time_max.isoformat(),
            'timeZone': self.time_zone,
            'items': [{'id': calendar_id}],
        }

        try:
            response = self.service.freebusy().query(body=body).execute()
        except Exception:
            logger.warning('Free/busy query failed for calendar %s; treating as no busy periods', calendar_id, exc_info=True)
            return []

        calendar = (response.get('calendars') or {}).get(calendar_id) or {}
        if calendar.get('errors'):
            logger.warning('Free/busy query returned errors for calendar %s: %s', calendar_id, calendar['errors'])
            return []

        busy_periods: List[TimeInterval] = []
        for period in calendar.get('busy', []):
            try:
                busy_periods.append(TimeInterval(parse_rfc3339(period['start']), parse_rfc3339(period['end'])))
            except (KeyError, ValueError, InvalidInterval):
                logger.warning('Ignoring malformed busy period %r from calendar %s', period, calendar_id)

        return busy_periods

    def create_event(self, calendar_id: str, event_payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert an event and notify its attendees.

        Returns:
            Google Calendar event data including ``id`` and ``htmlLink``

        Raises:
            GoogleCalendarError: If event creation fails
        """
        try:
            event = self.service.events().insert(
                calendarId=calendar_id,
                body=event_payload,
                sendUpdates='all',
            ).execute()
        except (HttpError, GoogleAuthError) as e:
            raise GoogleCalendarError(f"Failed to create event in calendar {calendar_id}: {e}") from e

        logger.info("Calendar event created: %s", event.get('id'))
        return event


_calendar_service: Optional[GoogleCalendarService] = None
_calendar_service_lock = Lock()


def get_calendar_service() -> Optional[GoogleCalendarService]:
    """Return the shared calendar service, or None when Google credentials are not configured."""
    global _calendar_service

    if _calendar_service is not None:
        return _calendar_service

    if not config.google_calendar_configured():
        logger.warning('Google Calendar not configured; busy periods and event sync are skipped')
        return None

    with _calendar_service_lock:
        if _calendar_service is None:
            try:
                _calendar_service = GoogleCalendarService.from_refresh_token(
                    config.GOOGLE_CLIENT_ID,
                    config.GOOGLE_CLIENT_SECRET,
                    config.GOOGLE_REFRESH_TOKEN,
                )
            except GoogleCalendarError:
                logger.exception('Google Calendar client could not be created')
                return None

    return _calendar_service
