from datetime import date, datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth.dependencies import require_api_key
from medibook.core import config
from medibook.models.patient import Patient
from medibook.models.reservation import Reservation
from medibook.routes.deps import database_unavailable, ensure_database_ready, get_db
from medibook.scheduling.errors import DoctorNotFound, InvalidInterval, ReservationNotFound
from medibook.scheduling.intervals import format_slot_label, interval_from_label
from medibook.services.availability_service import display_timezone, get_doctor
from medibook.services.booking_service import (
    DEFAULT_APPOINTMENT_TYPE,
    BookingMetadata,
    book,
    cancel_reservation,
    upsert_patient,
)
from medibook.services.reconciliation_service import reconcile_reservation
from medibook.services.reservation_store import ReservationStore, doctor_lock

router = APIRouter(tags=['appointments'])

MAX_REASON_LENGTH = 600


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class BookAppointmentRequest(BaseModel):
    doctor_id: str
    patient_name: str
    patient_email: str | None = None
    patient_phone: str | None = None
    date: date
    time_slot: str
    reason: str | None = None
    appointment_type: str = DEFAULT_APPOINTMENT_TYPE
    payment_order_id: str | None = None
    payment_method: str | None = None

    @field_validator('doctor_id', 'patient_name', 'time_slot')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized

    @field_validator('patient_email')
    @classmethod
    def validate_patient_email(cls, value: str | None) -> str | None:
        normalized = _strip_or_none(value)
        return normalized.lower() if normalized else None

    @field_validator('patient_phone', 'payment_order_id', 'payment_method')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        return value.strip() or DEFAULT_APPOINTMENT_TYPE

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        normalized = _strip_or_none(value)
        if normalized and len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')
        return normalized

    @model_validator(mode='after')
    def validate_contact(self) -> 'BookAppointmentRequest':
        if not self.patient_email and not self.patient_phone:
            raise ValueError('Either email or phone is required.')
        return self


class PatientResponse(BaseModel):
    patient_id: str
    name: str
    email: str | None = None
    phone: str | None = None

    class Config:
        from_attributes = True


class ReservationResponse(BaseModel):
    reservation_id: str
    doctor_id: str
    patient_id: str
    date: date
    time: str
    start_time: datetime
    end_time: datetime
    status: str
    external_sync_status: str
    external_event_id: str | None = None
    notification_status: str
    appointment_type: str | None = None
    reason: str | None = None
    payment_status: str | None = None


class BookAppointmentResponse(BaseModel):
    success: bool = True
    message: str = 'Appointment booked successfully'
    appointment: ReservationResponse
    patient: PatientResponse


class CancelAppointmentResponse(BaseModel):
    success: bool = True
    message: str
    reservation_id: str
    already_cancelled: bool


def to_reservation_response(reservation: Reservation) -> ReservationResponse:
    tz = display_timezone()
    interval = reservation.interval.astimezone(tz)
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        doctor_id=reservation.doctor_id,
        patient_id=reservation.patient_id,
        date=reservation.appointment_date,
        time=format_slot_label(interval, tz),
        start_time=interval.start,
        end_time=interval.end,
        status=reservation.status,
        external_sync_status=reservation.external_sync_status,
        external_event_id=reservation.external_event_id,
        notification_status=reservation.notification_status,
        appointment_type=reservation.appointment_type,
        reason=reservation.reason,
        payment_status=reservation.payment_status,
    )


@router.post(
    '/appointments/book',
    response_model=BookAppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_api_key)],
)
def book_appointment(
    data: BookAppointmentRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    try:
        interval = interval_from_label(data.date, data.time_slot, config.SLOT_GRANULARITY_MINUTES, display_timezone())
    except InvalidInterval as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    ensure_database_ready()

    try:
        doctor = get_doctor(db, data.doctor_id)
        with doctor_lock(doctor.doctor_id):
            patient = upsert_patient(db, data.patient_name, data.patient_email, data.patient_phone)
            result = book(
                db,
                doctor.doctor_id,
                patient.patient_id,
                interval,
                BookingMetadata(
                    reason=data.reason,
                    appointment_type=data.appointment_type,
                    payment_order_id=data.payment_order_id,
                    payment_method=data.payment_method,
                ),
                appointment_date=data.date,
            )
    except DoctorNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    if not result.confirmed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={'error': result.rejected_reason, 'message': 'Please select a different time'},
        )

    reservation = result.reservation
    background_tasks.add_task(reconcile_reservation, reservation.reservation_id)

    return BookAppointmentResponse(
        appointment=to_reservation_response(reservation),
        patient=PatientResponse.model_validate(patient),
    )


@router.get('/appointments/{reservation_id}', response_model=ReservationResponse)
def get_appointment(reservation_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        reservation = ReservationStore(db).get(reservation_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if reservation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')

    return to_reservation_response(reservation)


@router.post(
    '/appointments/{reservation_id}/cancel',
    response_model=CancelAppointmentResponse,
    dependencies=[Depends(require_api_key)],
)
def cancel_appointment(reservation_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        result = cancel_reservation(db, reservation_id)
    except ReservationNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return CancelAppointmentResponse(
        message='Appointment already cancelled' if result.already_cancelled else 'Appointment cancelled successfully',
        reservation_id=result.reservation_id,
        already_cancelled=result.already_cancelled,
    )
