import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy.orm import Session

from medibook.core import config
from medibook.models.doctor import Doctor, WorkingHours
from medibook.scheduling.conflicts import filter_available
from medibook.scheduling.errors import DoctorNotFound
from medibook.scheduling.intervals import TimeInterval, WorkingWindow, parse_utc_offset
from medibook.scheduling.slots import Slot, generate_slots
from medibook.services.reservation_store import ReservationStore

logger = logging.getLogger(__name__)


@dataclass
class AvailabilityResult:
    doctor: Doctor
    date: date
    working_window: WorkingWindow | None
    available_slots: list[Slot] = field(default_factory=list)

    @property
    def total_slots(self) -> int:
        return len(self.available_slots)


def display_timezone() -> timezone:
    return parse_utc_offset(config.DISPLAY_UTC_OFFSET)


def get_doctor(db: Session, doctor_id: str) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.doctor_id == doctor_id).first()
    if doctor is None:
        raise DoctorNotFound(doctor_id)
    return doctor


def get_working_window(db: Session, doctor_id: str, on_date: date) -> WorkingWindow | None:
    hours = db.query(WorkingHours).filter(
        WorkingHours.doctor_id == doctor_id,
        WorkingHours.weekday == on_date.weekday(),
    ).first()
    if hours is None or not hours.is_available:
        return None
    return hours.to_window()


def day_bounds(on_date: date, tz: timezone) -> tuple[datetime, datetime]:
    day_start = datetime.combine(on_date, time.min, tzinfo=tz)
    return day_start, day_start + timedelta(days=1)


def fetch_busy_periods(calendar, doctor: Doctor, range_start: datetime, range_end: datetime) -> list[TimeInterval]:
    """Ask the external calendar for busy periods, degrading to none on any failure."""
    if calendar is None or not doctor.calendar_id:
        return []

    try:
        return list(calendar.query_busy_periods(doctor.calendar_id, range_start, range_end))
    except Exception:
        logger.warning('Calendar check skipped for doctor %s', doctor.doctor_id, exc_info=True)
        return []


def get_availability(
    db: Session,
    doctor_id: str,
    on_date: date,
    calendar=None,
    granularity_minutes: int | None = None,
    tz: timezone | None = None,
) -> AvailabilityResult:
    """Bookable slots for ``doctor_id`` on ``on_date``.

    Raises :class:`DoctorNotFound`. A day without working hours yields an
    empty result rather than an error.
    """
    doctor = get_doctor(db, doctor_id)
    tz = tz or display_timezone()
    window = get_working_window(db, doctor_id, on_date)

    if window is None:
        return AvailabilityResult(doctor=doctor, date=on_date, working_window=None)

    candidates = generate_slots(on_date, window, granularity_minutes or config.SLOT_GRANULARITY_MINUTES, tz)
    range_start, range_end = day_bounds(on_date, tz)

    busy_periods = fetch_busy_periods(calendar, doctor, range_start, range_end)
    existing = ReservationStore(db).find_confirmed_reservations(doctor_id, range_start, range_end)

    return AvailabilityResult(
        doctor=doctor,
        date=on_date,
        working_window=window,
        available_slots=filter_available(candidates, busy_periods, existing),
    )
