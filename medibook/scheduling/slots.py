"""Candidate slot generation for a doctor's working day."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from medibook.scheduling.intervals import TimeInterval, WorkingWindow, format_slot_label, window_bounds


@dataclass(frozen=True)
class Slot:
    interval: TimeInterval
    label: str

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end


def generate_slots(on_date: date, window: WorkingWindow, granularity_minutes: int, tz: tzinfo) -> list[Slot]:
    """Build the ordered, gap-free slots of ``granularity_minutes`` inside ``window``.

    Slots start at ``window.start``; a trailing remainder shorter than the
    granularity is dropped, so the last slot never ends after ``window.end``.
    """
    if granularity_minutes <= 0:
        raise ValueError('Slot granularity must be a positive number of minutes.')

    if not window.is_available:
        return []

    step = timedelta(minutes=granularity_minutes)
    current, window_end = window_bounds(window, on_date, tz)
    slots: list[Slot] = []

    while current + step <= window_end:
        interval = TimeInterval(current, current + step)
        slots.append(Slot(interval=interval, label=format_slot_label(interval, tz)))
        current += step

    return slots
