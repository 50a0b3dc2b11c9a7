"""Post-commit follow-up for confirmed reservations.

Runs after the booking response has been sent. The calendar step and the
email step are attempted independently; neither can change a reservation's
``status``. Outcomes are written to ``external_sync_status`` and
``notification_status`` so pending work can be picked up again after a
restart by :func:`reconcile_pending_reservations`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from medibook.core import config
from medibook.database import SessionLocal
from medibook.models.doctor import Doctor
from medibook.models.patient import Patient
from medibook.models.reservation import (
    NOTIFICATION_FAILED,
    NOTIFICATION_PENDING,
    NOTIFICATION_SKIPPED,
    STATUS_CANCELLED,
    SYNC_FAILED,
    SYNC_PENDING,
    SYNC_SKIPPED,
    SYNC_SYNCED,
    Reservation,
)
from medibook.scheduling.intervals import format_slot_label
from medibook.services.availability_service import display_timezone
from medibook.services.email_service import NotificationResult, ReservationSummary, get_email_service
from medibook.services.google_calendar_service import get_calendar_service
from medibook.services.reservation_store import ReservationStore

logger = logging.getLogger(__name__)

BOOKED_THROUGH = 'Medicare AI Bot'


@dataclass
class ReconciliationOutcome:
    reservation_id: str
    sync_status: str | None = None
    notification_status: str | None = None
    external_event_id: str | None = None


def build_event_description(reservation: Reservation, patient: Patient | None) -> str:
    rows = [
        ('Patient Name', patient.name if patient else None),
        ('Patient Email', patient.email if patient else None),
        ('Patient Phone', patient.phone if patient else None),
        ('Patient ID', reservation.patient_id),
        ('Appointment Type', reservation.appointment_type),
        ('Payment Status', reservation.payment_status),
        ('Reason / Symptoms', reservation.reason),
        ('Booked Through', BOOKED_THROUGH),
        ('Booking Time', reservation.created_at.isoformat() if reservation.created_at else None),
    ]
    return '\n'.join(f'{label:<17}: {value or "-"}' for label, value in rows)


def build_event_payload(reservation: Reservation, doctor: Doctor, patient: Patient | None) -> dict:
    local = reservation.interval.astimezone(display_timezone())
    event_timezone = doctor.timezone or config.DEFAULT_DOCTOR_TIMEZONE
    attendees = [{'email': email} for email in (doctor.email, patient.email if patient else None) if email]

    return {
        'summary': f'{reservation.appointment_type} - {patient.name if patient else reservation.patient_id}',
        'description': build_event_description(reservation, patient),
        'start': {'dateTime': local.start.isoformat(), 'timeZone': event_timezone},
        'end': {'dateTime': local.end.isoformat(), 'timeZone': event_timezone},
        'attendees': attendees,
        'reminders': {
            'useDefault': False,
            'overrides': [
                {'method': 'email', 'minutes': 24 * 60},
                {'method': 'popup', 'minutes': 30},
            ],
        },
    }


def build_summary(reservation: Reservation, doctor: Doctor, patient: Patient | None, calendar_link: str | None) -> ReservationSummary:
    return ReservationSummary(
        reservation_id=reservation.reservation_id,
        patient_name=patient.name if patient else '',
        doctor_name=doctor.name,
        specialty=doctor.specialty or '',
        date=reservation.appointment_date.isoformat(),
        time_label=format_slot_label(reservation.interval, display_timezone()),
        appointment_type=reservation.appointment_type or '',
        consultation_fee=doctor.consultation_fee,
        calendar_link=calendar_link,
    )


def _sync_calendar(store: ReservationStore, reservation: Reservation, doctor: Doctor, patient: Patient | None, calendar_provider, outcome: ReconciliationOutcome) -> str | None:
    if reservation.external_sync_status != SYNC_PENDING:
        outcome.sync_status = reservation.external_sync_status
        outcome.external_event_id = reservation.external_event_id
        return reservation.external_event_link

    status, event_id, event_link = SYNC_SKIPPED, None, None
    calendar = calendar_provider() if doctor.calendar_id else None

    if calendar is None:
        logger.info('Calendar sync skipped for reservation %s', reservation.reservation_id)
    else:
        try:
            event = calendar.create_event(doctor.calendar_id, build_event_payload(reservation, doctor, patient))
            event_id, event_link = event.get('id'), event.get('htmlLink')
            status = SYNC_SYNCED if event_id else SYNC_FAILED
        except Exception:
            logger.error('Calendar sync failed for reservation %s', reservation.reservation_id, exc_info=True)
            status = SYNC_FAILED

    try:
        store.update_sync_status(reservation.reservation_id, status, event_id, event_link)
    except SQLAlchemyError:
        store.db.rollback()
        logger.exception('Could not record calendar sync status for reservation %s', reservation.reservation_id)

    outcome.sync_status = status
    outcome.external_event_id = event_id
    return event_link


def _send_notification(store: ReservationStore, reservation: Reservation, doctor: Doctor, patient: Patient | None, email_provider, calendar_link: str | None, outcome: ReconciliationOutcome) -> None:
    if reservation.notification_status != NOTIFICATION_PENDING:
        outcome.notification_status = reservation.notification_status
        return

    try:
        result = email_provider().send_confirmation(
            patient.email if patient else None,
            build_summary(reservation, doctor, patient, calendar_link),
        )
    except Exception as exc:
        logger.error('Confirmation email failed for reservation %s', reservation.reservation_id, exc_info=True)
        result = NotificationResult(NOTIFICATION_FAILED, str(exc))

    logger.info('Email status for reservation %s: %s', reservation.reservation_id, result.status)

    try:
        store.update_notification_status(reservation.reservation_id, result.status)
    except SQLAlchemyError:
        store.db.rollback()
        logger.exception('Could not record email status for reservation %s', reservation.reservation_id)

    outcome.notification_status = result.status


def reconcile_reservation(
    reservation_id: str,
    session_factory=SessionLocal,
    calendar_provider=get_calendar_service,
    email_provider=get_email_service,
) -> ReconciliationOutcome | None:
    """Sync one confirmed reservation to the calendar, then email the patient.

    Never raises; returns None when the reservation cannot be loaded.
    """
    db = session_factory()
    try:
        store = ReservationStore(db)
        reservation = store.get(reservation_id)
        if reservation is None:
            logger.error('Reservation %s vanished before reconciliation', reservation_id)
            return None

        doctor = db.get(Doctor, reservation.doctor_id)
        patient = db.get(Patient, reservation.patient_id)
        outcome = ReconciliationOutcome(reservation_id=reservation_id)

        if reservation.status == STATUS_CANCELLED:
            logger.info('Reservation %s was cancelled before reconciliation', reservation_id)
            store.update_sync_status(reservation_id, SYNC_SKIPPED)
            store.update_notification_status(reservation_id, NOTIFICATION_SKIPPED)
            outcome.sync_status = SYNC_SKIPPED
            outcome.notification_status = NOTIFICATION_SKIPPED
            return outcome

        calendar_link = _sync_calendar(store, reservation, doctor, patient, calendar_provider, outcome)
        _send_notification(store, reservation, doctor, patient, email_provider, calendar_link, outcome)

        logger.info(
            'Reconciliation complete for reservation %s (calendar=%s, email=%s)',
            reservation_id,
            outcome.sync_status,
            outcome.notification_status,
        )
        return outcome
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Reconciliation aborted for reservation %s', reservation_id)
        return None
    finally:
        db.close()


def reconcile_pending_reservations(
    session_factory=SessionLocal,
    stale_minutes: int | None = None,
    calendar_provider=get_calendar_service,
    email_provider=get_email_service,
) -> int:
    """Re-run reconciliation for confirmed reservations left pending by an earlier process."""
    minutes = config.RECONCILIATION_STALE_MINUTES if stale_minutes is None else stale_minutes
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)

    db = session_factory()
    try:
        reservation_ids = ReservationStore(db).find_unreconciled(cutoff)
    except SQLAlchemyError:
        logger.exception('Could not load pending reservations for reconciliation')
        return 0
    finally:
        db.close()

    if reservation_ids:
        logger.info('Resuming reconciliation for %d reservation(s)', len(reservation_ids))

    for reservation_id in reservation_ids:
        reconcile_reservation(
            reservation_id,
            session_factory=session_factory,
            calendar_provider=calendar_provider,
            email_provider=email_provider,
        )

    return len(reservation_ids)
