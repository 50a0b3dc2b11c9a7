"""Persistence operations the booking core relies on.

The store is the point of truth for the no-double-booking check. Inserts are
serialised per doctor by an in-process lock, a row lock on the doctor record
and, on PostgreSQL, the ``reservations_no_confirmed_overlap`` exclusion
constraint.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock, RLock
from typing import Iterator

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medibook.database import RESERVATION_OVERLAP_CONSTRAINT
from medibook.models.doctor import Doctor
from medibook.models.reservation import (
    NOTIFICATION_PENDING,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    SYNC_PENDING,
    Reservation,
)
from medibook.scheduling.errors import ReservationNotFound
from medibook.scheduling.intervals import to_utc

logger = logging.getLogger(__name__)

_doctor_locks: dict[str, RLock] = {}
_doctor_locks_guard = Lock()


@contextmanager
def doctor_lock(doctor_id: str) -> Iterator[None]:
    with _doctor_locks_guard:
        lock = _doctor_locks.setdefault(doctor_id, RLock())
    with lock:
        yield


class ReservationStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, reservation_id: str) -> Reservation | None:
        return self.db.query(Reservation).filter(Reservation.reservation_id == reservation_id).first()

    def find_confirmed_reservations(self, doctor_id: str, range_start: datetime, range_end: datetime) -> list[Reservation]:
        return self._confirmed_overlapping(doctor_id, range_start, range_end).order_by(Reservation.start_time.asc()).all()

    def _confirmed_overlapping(self, doctor_id: str, range_start: datetime, range_end: datetime):
        return self.db.query(Reservation).filter(
            Reservation.doctor_id == doctor_id,
            Reservation.status == STATUS_CONFIRMED,
            Reservation.start_time < to_utc(range_end),
            Reservation.end_time > to_utc(range_start),
        )

    def atomic_insert_if_no_overlap(self, reservation: Reservation) -> bool:
        """Insert ``reservation`` unless it overlaps a confirmed one for the same doctor.

        Returns False on conflict. Other database errors propagate after a rollback.
        """
        reservation.start_time = to_utc(reservation.start_time)
        reservation.end_time = to_utc(reservation.end_time)

        with doctor_lock(reservation.doctor_id):
            try:
                self.db.query(Doctor).filter(Doctor.doctor_id == reservation.doctor_id).with_for_update().first()

                overlapping = self._confirmed_overlapping(
                    reservation.doctor_id,
                    reservation.start_time,
                    reservation.end_time,
                ).first()
                if overlapping is not None:
                    self.db.rollback()
                    logger.info(
                        'Reservation for doctor %s at %s overlaps %s',
                        reservation.doctor_id,
                        reservation.start_time.isoformat(),
                        overlapping.reservation_id,
                    )
                    return False

                self.db.add(reservation)
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                if RESERVATION_OVERLAP_CONSTRAINT in str(exc.orig):
                    logger.info('Overlap constraint rejected reservation for doctor %s', reservation.doctor_id)
                    return False
                raise
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(reservation)
        return True

    def update_sync_status(
        self,
        reservation_id: str,
        status: str,
        external_event_id: str | None = None,
        external_event_link: str | None = None,
    ) -> bool:
        """Record the calendar sync outcome. Only a ``pending`` status is ever overwritten."""
        updated = self.db.query(Reservation).filter(
            Reservation.reservation_id == reservation_id,
            Reservation.external_sync_status == SYNC_PENDING,
        ).update(
            {
                Reservation.external_sync_status: status,
                Reservation.external_event_id: external_event_id,
                Reservation.external_event_link: external_event_link,
            },
            synchronize_session=False,
        )
        self.db.commit()
        return updated > 0

    def update_notification_status(self, reservation_id: str, status: str) -> bool:
        updated = self.db.query(Reservation).filter(
            Reservation.reservation_id == reservation_id,
            Reservation.notification_status == NOTIFICATION_PENDING,
        ).update({Reservation.notification_status: status}, synchronize_session=False)
        self.db.commit()
        return updated > 0

    def cancel(self, reservation_id: str) -> bool:
        """Flip a confirmed reservation to cancelled.

        Returns False when it was already cancelled. Raises
        :class:`ReservationNotFound` for unknown ids.
        """
        updated = self.db.query(Reservation).filter(
            Reservation.reservation_id == reservation_id,
            Reservation.status == STATUS_CONFIRMED,
        ).update(
            {
                Reservation.status: STATUS_CANCELLED,
                Reservation.cancelled_at: datetime.now(timezone.utc),
            },
            synchronize_session=False,
        )
        self.db.commit()

        if updated:
            return True

        if self.db.query(Reservation.reservation_id).filter(Reservation.reservation_id == reservation_id).first() is None:
            raise ReservationNotFound(reservation_id)
        return False

    def find_unreconciled(self, created_before: datetime) -> list[str]:
        rows = self.db.query(Reservation.reservation_id).filter(
            Reservation.status == STATUS_CONFIRMED,
            or_(
                Reservation.external_sync_status == SYNC_PENDING,
                Reservation.notification_status == NOTIFICATION_PENDING,
            ),
            Reservation.created_at < to_utc(created_before),
        ).order_by(Reservation.created_at.asc()).all()
        return [reservation_id for (reservation_id,) in rows]
