"""Appointment model definitions."""

from enum import IntEnum

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from clinic_backend.database import Base
from clinic_backend.models.patient import Patient


class AppointmentStatus(IntEnum):
    """Catalog of appointment states, keyed by their stored ids."""
    SCHEDULED = 1
    CONFIRMED = 2
    COMPLETED = 3
    CANCELLED = 4


ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)

NOTES_MAX_LENGTH = 1000


class Appointment(Base):
    """Represents a booked appointment between a patient and, optionally, a professional."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    professional_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    service_type_id = Column(Integer, nullable=False)
    status_id = Column(Integer, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    notes = Column(String(NOTES_MAX_LENGTH))
    updated_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    patient = relationship(Patient, lazy="joined")
