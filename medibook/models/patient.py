"""Patient model definitions."""

from sqlalchemy import Column, String

from medibook.database import Base


class Patient(Base):
    """Represents a patient who booked at least one appointment."""
    __tablename__ = "patients"

    patient_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, index=True)
    phone = Column(String, index=True)
