"""Half-open time intervals and the clock-label formats used at the API boundary.

Every interval holds timezone-aware instants. Comparisons are done on absolute
instants, so two intervals expressed in different UTC offsets compare
correctly.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from medibook.scheduling.errors import InvalidInterval

_CLOCK_PATTERN = r'(\d{1,2}):(\d{2})\s*([AaPp][Mm])'
_SLOT_LABEL_RE = re.compile(rf'^\s*{_CLOCK_PATTERN}\s*(?:-\s*{_CLOCK_PATTERN}\s*)?$')
_UTC_OFFSET_RE = re.compile(r'^([+-])(\d{2}):?(\d{2})$')


@dataclass(frozen=True)
class TimeInterval:
    """An immutable ``[start, end)`` interval between two aware instants."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise InvalidInterval('Interval bounds must carry a UTC offset.')
        if self.start >= self.end:
            raise InvalidInterval(
                f'Interval start {self.start.isoformat()} must be before end {self.end.isoformat()}.'
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: 'TimeInterval') -> bool:
        return overlaps(self, other)

    def astimezone(self, tz: tzinfo) -> 'TimeInterval':
        return TimeInterval(self.start.astimezone(tz), self.end.astimezone(tz))


@dataclass(frozen=True)
class WorkingWindow:
    """A doctor's declared hours for one weekday, as wall-clock times."""

    is_available: bool
    start: time
    end: time


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    # Touching endpoints do not overlap.
    return a.start < b.end and b.start < a.end


def window_bounds(window: WorkingWindow, on_date: date, tz: tzinfo) -> tuple[datetime, datetime]:
    return datetime.combine(on_date, window.start, tzinfo=tz), datetime.combine(on_date, window.end, tzinfo=tz)


def within_window(interval: TimeInterval, window: WorkingWindow, on_date: date, tz: tzinfo | None = None) -> bool:
    """Return True when ``interval`` lies entirely inside ``window`` on ``on_date``.

    ``tz`` is the offset the window's wall-clock times are expressed in; it
    defaults to the offset of the interval's start.
    """
    if not window.is_available:
        return False

    window_start, window_end = window_bounds(window, on_date, tz or interval.start.tzinfo)
    return window_start <= interval.start and interval.end <= window_end


def to_utc(value: datetime) -> datetime:
    """Normalise a stored or supplied timestamp to an aware UTC instant.

    Naive values are taken to already be UTC, which is how SQLite hands back
    ``DateTime(timezone=True)`` columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_utc_offset(value: str) -> timezone:
    """Parse ``+05:30`` / ``-0800`` / ``Z`` into a fixed-offset timezone."""
    normalized = value.strip()
    if normalized.upper() in {'Z', 'UTC'}:
        return timezone.utc

    match = _UTC_OFFSET_RE.match(normalized)
    if not match:
        raise ValueError(f'Invalid UTC offset {value!r}; expected a value such as +05:30.')

    sign, hours, minutes = match.groups()
    if int(hours) > 23 or int(minutes) > 59:
        raise ValueError(f'Invalid UTC offset {value!r}.')

    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == '-' else delta)


def _clock_to_time(hour_text: str, minute_text: str, meridiem: str) -> time:
    hour = int(hour_text)
    minute = int(minute_text)
    if not 1 <= hour <= 12:
        raise InvalidInterval(f'Hour {hour} is outside 1-12.')
    if not 0 <= minute <= 59:
        raise InvalidInterval(f'Minute {minute} is outside 0-59.')

    hour %= 12
    if meridiem.upper() == 'PM':
        hour += 12
    return time(hour, minute)


def parse_slot_label(label: str) -> tuple[time, time | None]:
    """Parse ``"HH:MM AM"`` or ``"HH:MM AM - HH:MM PM"`` into times of day.

    The meridiem is mandatory. Anything else raises :class:`InvalidInterval`.
    """
    match = _SLOT_LABEL_RE.match(label or '')
    if not match:
        raise InvalidInterval('Invalid time slot format. Use: HH:MM AM/PM')

    groups = match.groups()
    start = _clock_to_time(*groups[:3])
    end = _clock_to_time(*groups[3:]) if groups[3] is not None else None
    return start, end


def format_clock_label(value: time) -> str:
    return value.strftime('%I:%M %p')


def format_slot_label(interval: TimeInterval, tz: tzinfo) -> str:
    local = interval.astimezone(tz)
    return f'{format_clock_label(local.start.time())} - {format_clock_label(local.end.time())}'


def interval_from_label(on_date: date, label: str, granularity_minutes: int, tz: tzinfo) -> TimeInterval:
    """Turn a human slot label on ``on_date`` into an absolute interval.

    A bare start time gets an end of ``start + granularity_minutes``.
    """
    start_of_day, end_of_day = parse_slot_label(label)
    start = datetime.combine(on_date, start_of_day, tzinfo=tz)

    if end_of_day is None:
        end = start + timedelta(minutes=granularity_minutes)
    else:
        end = datetime.combine(on_date, end_of_day, tzinfo=tz)

    return TimeInterval(start, end)
