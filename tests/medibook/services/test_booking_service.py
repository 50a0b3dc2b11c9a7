from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from threading import Barrier

import pytest

from medibook.models.patient import Patient
from medibook.models.reservation import Reservation
from medibook.scheduling.errors import DoctorNotFound, ReservationNotFound
from medibook.scheduling.intervals import TimeInterval, overlaps
from medibook.services.booking_service import (
    SLOT_CONFLICT_REASON,
    BookingMetadata,
    book,
    cancel_reservation,
    upsert_patient,
)
from medibook.services.reservation_store import doctor_lock

IST = timezone(timedelta(hours=5, minutes=30))


def _interval(start_hour: int, start_minute: int, end_hour: int, end_minute: int) -> TimeInterval:
    return TimeInterval(
        datetime(2026, 1, 5, start_hour, start_minute, tzinfo=IST),
        datetime(2026, 1, 5, end_hour, end_minute, tzinfo=IST),
    )


def test_book_persists_confirmed_pending_reservation(db, add_doctor, add_patient) -> None:
    add_doctor()
    add_patient()

    result = book(
        db,
        'D-100',
        'P-100',
        _interval(9, 0, 9, 30),
        BookingMetadata(reason='Chest pain', payment_order_id='order-1'),
    )

    assert result.confirmed
    reservation = result.reservation
    assert reservation.reservation_id.startswith('A-')
    assert reservation.status == 'confirmed'
    assert reservation.external_sync_status == 'pending'
    assert reservation.notification_status == 'pending'
    assert reservation.external_event_id is None
    assert reservation.appointment_date == date(2026, 1, 5)
    assert reservation.reason == 'Chest pain'
    assert reservation.payment_status == 'pending'
    assert reservation.interval == _interval(9, 0, 9, 30)


def test_book_rejects_overlapping_interval(db, add_doctor, add_patient) -> None:
    add_doctor()
    add_patient()
    assert book(db, 'D-100', 'P-100', _interval(9, 0, 9, 30)).confirmed

    result = book(db, 'D-100', 'P-100', _interval(9, 15, 9, 45))

    assert not result.confirmed
    assert result.rejected_reason == SLOT_CONFLICT_REASON
    assert db.query(Reservation).count() == 1


def test_book_accepts_interval_abutting_existing_reservation(db, add_doctor, add_patient) -> None:
    add_doctor()
    add_patient()
    assert book(db, 'D-100', 'P-100', _interval(9, 0, 9, 30)).confirmed

    assert book(db, 'D-100', 'P-100', _interval(9, 30, 10, 0)).confirmed
    assert book(db, 'D-100', 'P-100', _interval(8, 30, 9, 0)).confirmed


def test_book_allows_same_interval_for_different_doctors(db, add_doctor, add_patient) -> None:
    add_doctor()
    add_doctor(doctor_id='D-200')
    add_patient()

    assert book(db, 'D-100', 'P-100', _interval(9, 0, 9, 30)).confirmed
    assert book(db, 'D-200', 'P-100', _interval(9, 0, 9, 30)).confirmed


def test_book_reuses_slot_after_cancellation(db, add_doctor, add_patient) -> None:
    add_doctor()
    add_patient()
    first = book(db, 'D-100', 'P-100', _interval(9, 0, 9, 30))
    cancel_reservation(db, first.reservation.reservation_id)

    assert book(db, 'D-100', 'P-100', _interval(9, 0, 9, 30)).confirmed


def test_book_raises_for_unknown_doctor(db) -> None:
    with pytest.raises(DoctorNotFound):
        book(db, 'D-missing', 'P-100', _interval(9, 0, 9, 30))


def test_concurrent_bookings_for_same_slot_yield_one_success(session_factory, db, add_doctor, add_patient) -> None:
    add_doctor()
    add_patient()
    attempts = 8
    barrier = Barrier(attempts)

    def attempt(_):
        session = session_factory()
        try:
            barrier.wait()
            return book(session, 'D-100', 'P-100', _interval(10, 0, 10, 30)).confirmed
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=attempts) as executor:
        outcomes = list(executor.map(attempt, range(attempts)))

    assert outcomes.count(True) == 1
    assert outcomes.count(False) == attempts - 1
    assert db.query(Reservation).filter(Reservation.status == 'confirmed').count() == 1


def test_concurrent_overlapping_bookings_never_overlap(session_factory, db, add_doctor, add_patient) -> None:
    add_doctor()
    add_patient()
    requested = [_interval(9, 0, 9, 30), _interval(9, 15, 9, 45), _interval(9, 30, 10, 0), _interval(9, 45, 10, 15)]
    barrier = Barrier(len(requested))

    def attempt(interval):
        session = session_factory()
        try:
            barrier.wait()
            return book(session, 'D-100', 'P-100', interval).confirmed
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(requested)) as executor:
        list(executor.map(attempt, requested))

    confirmed = [reservation.interval for reservation in db.query(Reservation).filter(Reservation.status == 'confirmed')]
    assert confirmed
    for index, first in enumerate(confirmed):
        for second in confirmed[index + 1:]:
            assert not overlaps(first, second)


def test_cancel_reservation_is_idempotent(db, add_doctor, add_patient) -> None:
    add_doctor()
    add_patient()
    reservation_id = book(db, 'D-100', 'P-100', _interval(9, 0, 9, 30)).reservation.reservation_id

    first = cancel_reservation(db, reservation_id)
    cancelled_at = db.get(Reservation, reservation_id).cancelled_at
    second = cancel_reservation(db, reservation_id)

    assert first.already_cancelled is False
    assert second.already_cancelled is True
    db.expire_all()
    reservation = db.get(Reservation, reservation_id)
    assert reservation.status == 'cancelled'
    assert reservation.cancelled_at == cancelled_at


def test_cancel_reservation_raises_for_unknown_id(db) -> None:
    with pytest.raises(ReservationNotFound):
        cancel_reservation(db, 'A-missing')


def test_upsert_patient_creates_then_refreshes_by_email(db) -> None:
    created = upsert_patient(db, 'Ravi', 'ravi@example.com', None)
    updated = upsert_patient(db, 'Ravi Kumar', 'ravi@example.com', '+91-9000000000')

    assert created.patient_id == updated.patient_id
    assert created.patient_id.startswith('P-')
    assert db.query(Patient).count() == 1
    assert updated.name == 'Ravi Kumar'
    assert updated.phone == '+91-9000000000'


def test_upsert_patient_matches_by_phone(db) -> None:
    created = upsert_patient(db, 'Ravi', None, '+91-9000000000')

    assert upsert_patient(db, 'Ravi', 'ravi@example.com', '+91-9000000000').patient_id == created.patient_id


def test_upsert_patient_requires_contact(db) -> None:
    with pytest.raises(ValueError):
        upsert_patient(db, 'Ravi', None, None)


def test_conflicting_booking_discards_patient_changes(db, add_doctor) -> None:
    add_doctor()
    patient = upsert_patient(db, 'Ravi', None, '+91-1')
    assert book(db, 'D-100', patient.patient_id, _interval(9, 0, 9, 30)).confirmed

    same_phone = upsert_patient(db, 'Mallory', None, '+91-1')
    result = book(db, 'D-100', same_phone.patient_id, _interval(9, 0, 9, 30))

    assert not result.confirmed
    db.expire_all()
    assert db.get(Patient, patient.patient_id).name == 'Ravi'


def test_doctor_lock_is_reentrant() -> None:
    with doctor_lock('D-100'):
        with doctor_lock('D-100'):
            pass
