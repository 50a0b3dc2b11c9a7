"""Reservation model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, ForeignKey, String

from medibook.database import Base
from medibook.scheduling.intervals import TimeInterval, to_utc

STATUS_CONFIRMED = 'confirmed'
STATUS_CANCELLED = 'cancelled'

SYNC_PENDING = 'pending'
SYNC_SYNCED = 'synced'
SYNC_FAILED = 'failed'
SYNC_SKIPPED = 'skipped'

NOTIFICATION_PENDING = 'pending'
NOTIFICATION_SENT = 'sent'
NOTIFICATION_SKIPPED = 'skipped'
NOTIFICATION_FAILED = 'failed'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Reservation(Base):
    """Represents a booked (or cancelled) appointment slot."""
    __tablename__ = "reservations"

    reservation_id = Column(String, primary_key=True)
    doctor_id = Column(String, ForeignKey("doctors.doctor_id"), nullable=False)
    patient_id = Column(String, ForeignKey("patients.patient_id"), nullable=False)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default=STATUS_CONFIRMED)
    external_sync_status = Column(String, nullable=False, default=SYNC_PENDING)
    external_event_id = Column(String)
    external_event_link = Column(String)
    notification_status = Column(String, nullable=False, default=NOTIFICATION_PENDING)
    reason = Column(String)
    appointment_type = Column(String)
    payment_status = Column(String, default='unpaid')
    payment_order_id = Column(String)
    payment_method = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    cancelled_at = Column(DateTime(timezone=True))

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(to_utc(self.start_time), to_utc(self.end_time))
