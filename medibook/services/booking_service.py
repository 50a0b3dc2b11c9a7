"""Reserve-or-reject booking decisions and cancellation.

A successful :func:`book` call has committed the reservation before it
returns. Calendar and email follow-up is the reconciliation pipeline's job
and never runs inside this module.
"""

import logging
from dataclasses import dataclass
from datetime import date
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy.orm import Session

from medibook.models.patient import Patient
from medibook.models.reservation import (
    NOTIFICATION_PENDING,
    STATUS_CONFIRMED,
    SYNC_PENDING,
    Reservation,
)
from medibook.scheduling.errors import InvalidInterval
from medibook.scheduling.intervals import TimeInterval
from medibook.services.availability_service import display_timezone, get_doctor
from medibook.services.reservation_store import ReservationStore

logger = logging.getLogger(__name__)

DEFAULT_APPOINTMENT_TYPE = 'In-Person'
DEFAULT_REASON = 'General consultation'
SLOT_CONFLICT_REASON = 'This time slot is no longer available'


@dataclass(frozen=True)
class BookingMetadata:
    reason: str | None = None
    appointment_type: str = DEFAULT_APPOINTMENT_TYPE
    payment_order_id: str | None = None
    payment_method: str | None = None


@dataclass(frozen=True)
class BookingResult:
    reservation: Reservation | None = None
    rejected_reason: str | None = None

    @property
    def confirmed(self) -> bool:
        return self.reservation is not None


@dataclass(frozen=True)
class CancellationResult:
    reservation_id: str
    already_cancelled: bool


def new_reservation_id() -> str:
    return f'A-{uuid4().hex[:8]}'


def new_patient_id() -> str:
    return f'P-{uuid4().hex[:8]}'


def upsert_patient(db: Session, name: str, email: str | None, phone: str | None) -> Patient:
    """Find a patient by email or phone and refresh their details, or create one.

    Only flushes; the change is committed together with the reservation by :func:`book`.
    """
    filters = []
    if email:
        filters.append(Patient.email == email)
    if phone:
        filters.append(Patient.phone == phone)
    if not filters:
        raise ValueError('Either email or phone is required.')

    patient = db.query(Patient).filter(or_(*filters)).first()
    if patient is None:
        patient = Patient(patient_id=new_patient_id(), name=name, email=email, phone=phone)
        db.add(patient)
    else:
        patient.name = name
        if email:
            patient.email = email
        if phone:
            patient.phone = phone

    db.flush()
    return patient


def book(
    db: Session,
    doctor_id: str,
    patient_id: str,
    interval: TimeInterval,
    metadata: BookingMetadata | None = None,
    appointment_date: date | None = None,
) -> BookingResult:
    """Reserve ``interval`` for ``patient_id`` with ``doctor_id``.

    Raises :class:`DoctorNotFound` for unknown doctors. An overlap with an
    existing confirmed reservation is returned as a rejected result.
    """
    if not isinstance(interval, TimeInterval):
        raise InvalidInterval('A booking needs a TimeInterval.')

    metadata = metadata or BookingMetadata()
    get_doctor(db, doctor_id)

    reservation = Reservation(
        reservation_id=new_reservation_id(),
        doctor_id=doctor_id,
        patient_id=patient_id,
        appointment_date=appointment_date or interval.start.astimezone(display_timezone()).date(),
        start_time=interval.start,
        end_time=interval.end,
        status=STATUS_CONFIRMED,
        external_sync_status=SYNC_PENDING,
        notification_status=NOTIFICATION_PENDING,
        reason=metadata.reason or DEFAULT_REASON,
        appointment_type=metadata.appointment_type or DEFAULT_APPOINTMENT_TYPE,
        payment_status='pending' if metadata.payment_order_id else 'unpaid',
        payment_order_id=metadata.payment_order_id,
        payment_method=metadata.payment_method,
    )

    if not ReservationStore(db).atomic_insert_if_no_overlap(reservation):
        return BookingResult(rejected_reason=SLOT_CONFLICT_REASON)

    logger.info(
        'Reservation %s confirmed for doctor %s at %s',
        reservation.reservation_id,
        doctor_id,
        interval.start.isoformat(),
    )
    return BookingResult(reservation=reservation)


def cancel_reservation(db: Session, reservation_id: str) -> CancellationResult:
    """Cancel a reservation. Cancelling twice is a no-op; unknown ids raise ReservationNotFound."""
    cancelled = ReservationStore(db).cancel(reservation_id)
    if cancelled:
        logger.info('Reservation %s cancelled', reservation_id)
    else:
        logger.info('Reservation %s was already cancelled', reservation_id)
    return CancellationResult(reservation_id=reservation_id, already_cancelled=not cancelled)
