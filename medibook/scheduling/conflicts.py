"""Filtering candidate slots against busy periods and the reservation ledger."""

from typing import Iterable, Protocol, Sequence

from medibook.scheduling.intervals import TimeInterval, overlaps
from medibook.scheduling.slots import Slot

CONFIRMED = 'confirmed'


class ReservedInterval(Protocol):
    status: str

    @property
    def interval(self) -> TimeInterval: ...


def confirmed_intervals(reservations: Iterable[ReservedInterval]) -> list[TimeInterval]:
    return [reservation.interval for reservation in reservations if reservation.status == CONFIRMED]


def find_conflict(candidate: TimeInterval, taken: Iterable[TimeInterval]) -> TimeInterval | None:
    for interval in taken:
        if overlaps(candidate, interval):
            return interval
    return None


def filter_available(
    candidates: Sequence[Slot],
    busy_periods: Iterable[TimeInterval],
    existing_reservations: Iterable[ReservedInterval],
) -> list[Slot]:
    """Keep the candidates that overlap no busy period and no confirmed reservation.

    Cancelled reservations are ignored. Candidate order is preserved.
    """
    taken = list(busy_periods) + confirmed_intervals(existing_reservations)
    return [slot for slot in candidates if find_conflict(slot.interval, taken) is None]
