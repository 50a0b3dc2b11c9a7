from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from googleapiclient.errors import HttpError

from medibook.scheduling.intervals import TimeInterval
from medibook.services import google_calendar_service
from medibook.services.google_calendar_service import GoogleCalendarError, GoogleCalendarService, parse_rfc3339

IST = timezone(timedelta(hours=5, minutes=30))
TIME_MIN = datetime(2026, 1, 5, 0, 0, tzinfo=IST)
TIME_MAX = datetime(2026, 1, 6, 0, 0, tzinfo=IST)


class _Request:
    def __init__(self, response=None, error: Exception | None = None):
        self.response = response
        self.error = error

    def execute(self):
        if self.error:
            raise self.error
        return self.response


class FakeApi:
    def __init__(self, freebusy_response=None, freebusy_error=None, event=None, insert_error=None):
        self.freebusy_response = freebusy_response
        self.freebusy_error = freebusy_error
        self.event = event
        self.insert_error = insert_error
        self.calls = []

    def freebusy(self):
        return self

    def events(self):
        return self

    def query(self, body):
        self.calls.append(('query', body))
        return _Request(self.freebusy_response, self.freebusy_error)

    def insert(self, **kwargs):
        self.calls.append(('insert', kwargs))
        return _Request(self.event, self.insert_error)


def _http_error(status: int = 403) -> HttpError:
    return HttpError(SimpleNamespace(status=status, reason='Forbidden'), b'{"error": {"message": "quota"}}')


def test_query_busy_periods_parses_busy_blocks() -> None:
    api = FakeApi(
        freebusy_response={
            'calendars': {
                'cal-1': {
                    'busy': [
                        {'start': '2026-01-05T04:00:00Z', 'end': '2026-01-05T04:30:00Z'},
                        {'start': '2026-01-05T11:00:00+05:30', 'end': '2026-01-05T11:30:00+05:30'},
                    ]
                }
            }
        }
    )

    busy = GoogleCalendarService(api, time_zone='Asia/Kolkata').query_busy_periods('cal-1', TIME_MIN, TIME_MAX)

    assert busy == [
        TimeInterval(datetime(2026, 1, 5, 9, 30, tzinfo=IST), datetime(2026, 1, 5, 10, 0, tzinfo=IST)),
        TimeInterval(datetime(2026, 1, 5, 11, 0, tzinfo=IST), datetime(2026, 1, 5, 11, 30, tzinfo=IST)),
    ]
    assert api.calls[0] == (
        'query',
        {
            'timeMin': '2026-01-05T00:00:00+05:30',
            'timeMax': '2026-01-06T00:00:00+05:30',
            'timeZone': 'Asia/Kolkata',
            'items': [{'id': 'cal-1'}],
        },
    )


@pytest.mark.parametrize(
    'api',
    [
        FakeApi(freebusy_error=_http_error()),
        FakeApi(freebusy_error=ConnectionError('network unreachable')),
        FakeApi(freebusy_response={'calendars': {'cal-1': {'errors': [{'reason': 'notFound'}]}}}),
        FakeApi(freebusy_response={}),
    ],
)
def test_query_busy_periods_degrades_to_empty(api) -> None:
    assert GoogleCalendarService(api).query_busy_periods('cal-1', TIME_MIN, TIME_MAX) == []


def test_query_busy_periods_skips_malformed_entries() -> None:
    api = FakeApi(
        freebusy_response={
            'calendars': {
                'cal-1': {
                    'busy': [
                        {'start': '2026-01-05T04:30:00Z', 'end': '2026-01-05T04:00:00Z'},
                        {'start': 'not-a-date', 'end': '2026-01-05T04:00:00Z'},
                        {'end': '2026-01-05T04:00:00Z'},
                        {'start': '2026-01-05T05:00:00Z', 'end': '2026-01-05T05:30:00Z'},
                    ]
                }
            }
        }
    )

    busy = GoogleCalendarService(api).query_busy_periods('cal-1', TIME_MIN, TIME_MAX)

    assert len(busy) == 1
    assert busy[0].start == datetime(2026, 1, 5, 5, 0, tzinfo=timezone.utc)


def test_create_event_inserts_and_notifies_attendees() -> None:
    api = FakeApi(event={'id': 'evt-1', 'htmlLink': 'https://calendar.test/evt-1'})

    event = GoogleCalendarService(api).create_event('cal-1', {'summary': 'In-Person - Ravi'})

    assert event['id'] == 'evt-1'
    assert api.calls == [('insert', {'calendarId': 'cal-1', 'body': {'summary': 'In-Person - Ravi'}, 'sendUpdates': 'all'})]


def test_create_event_wraps_api_errors() -> None:
    with pytest.raises(GoogleCalendarError):
        GoogleCalendarService(FakeApi(insert_error=_http_error(500))).create_event('cal-1', {})


def test_get_calendar_service_returns_none_when_unconfigured(monkeypatch) -> None:
    monkeypatch.setattr(google_calendar_service, '_calendar_service', None)
    monkeypatch.setattr(google_calendar_service.config, 'GOOGLE_REFRESH_TOKEN', '')

    assert google_calendar_service.get_calendar_service() is None


def test_parse_rfc3339_handles_zulu_suffix() -> None:
    assert parse_rfc3339('2026-01-05T04:00:00Z') == datetime(2026, 1, 5, 4, 0, tzinfo=timezone.utc)
