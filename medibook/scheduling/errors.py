"""Errors raised by the scheduling and booking core."""


class BookingError(Exception):
    """Base class for booking failures surfaced to the caller."""


class InvalidInterval(BookingError, ValueError):
    """A time interval or slot label could not be turned into a valid interval."""


class DoctorNotFound(BookingError):
    def __init__(self, doctor_id: str):
        super().__init__(f'Doctor {doctor_id!r} not found.')
        self.doctor_id = doctor_id


class ReservationNotFound(BookingError):
    def __init__(self, reservation_id: str):
        super().__init__(f'Reservation {reservation_id!r} not found.')
        self.reservation_id = reservation_id
