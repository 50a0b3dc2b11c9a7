import os
from datetime import time, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medibook.database import Base  # noqa: E402
from medibook.models.doctor import Doctor, WorkingHours  # noqa: E402
from medibook.models.patient import Patient  # noqa: E402
from medibook.models.reservation import Reservation  # noqa: E402

IST = timezone(timedelta(hours=5, minutes=30))


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "medibook.db"}',
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def add_doctor(db):
    def _add_doctor(
        doctor_id: str = 'D-100',
        hours: dict[int, tuple[time, time]] | None = None,
        calendar_id: str | None = None,
        email: str | None = 'doctor@clinic.test',
    ) -> Doctor:
        doctor = Doctor(
            doctor_id=doctor_id,
            name='Asha Rao',
            email=email,
            specialty='Cardiology',
            consultation_fee=500.0,
            calendar_id=calendar_id,
            timezone='Asia/Kolkata',
            is_active=True,
        )
        db.add(doctor)
        for weekday, (start, end) in (hours if hours is not None else {0: (time(9, 0), time(11, 0))}).items():
            db.add(WorkingHours(doctor_id=doctor_id, weekday=weekday, is_available=True, start_time=start, end_time=end))
        db.commit()
        return doctor

    return _add_doctor


@pytest.fixture
def add_patient(db):
    def _add_patient(patient_id: str = 'P-100', email: str | None = 'patient@example.com') -> Patient:
        patient = Patient(patient_id=patient_id, name='Ravi Kumar', email=email, phone='+91-9000000000')
        db.add(patient)
        db.commit()
        return patient

    return _add_patient


@pytest.fixture
def add_reservation(db):
    def _add_reservation(reservation_id: str, doctor_id: str, start, end, status: str = 'confirmed', **fields) -> Reservation:
        reservation = Reservation(
            reservation_id=reservation_id,
            doctor_id=doctor_id,
            patient_id=fields.pop('patient_id', 'P-100'),
            appointment_date=start.date(),
            start_time=start.astimezone(timezone.utc),
            end_time=end.astimezone(timezone.utc),
            status=status,
            appointment_type=fields.pop('appointment_type', 'In-Person'),
            **fields,
        )
        db.add(reservation)
        db.commit()
        return reservation

    return _add_reservation
