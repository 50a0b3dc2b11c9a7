"""Doctor and weekly working-hours model definitions."""

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, String, Time, UniqueConstraint

from medibook.database import Base
from medibook.scheduling.intervals import WorkingWindow


class Doctor(Base):
    """Represents a bookable doctor."""
    __tablename__ = "doctors"

    doctor_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String)
    phone = Column(String)
    specialty = Column(String, index=True)
    qualification = Column(String)
    experience_years = Column(Integer)
    consultation_fee = Column(Float)
    rating = Column(Float)
    calendar_id = Column(String)
    timezone = Column(String)
    is_active = Column(Boolean, default=True)


class WorkingHours(Base):
    """A doctor's declared hours for one weekday (0 = Monday)."""
    __tablename__ = "working_hours"
    __table_args__ = (UniqueConstraint('doctor_id', 'weekday', name='uq_working_hours_doctor_weekday'),)

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String, ForeignKey("doctors.doctor_id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    is_available = Column(Boolean, default=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    def to_window(self) -> WorkingWindow:
        return WorkingWindow(
            is_available=bool(self.is_available),
            start=self.start_time,
            end=self.end_time,
        )
