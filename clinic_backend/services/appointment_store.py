"""SQLAlchemy-backed appointment store used by the appointment engine."""

import zlib
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Any

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from clinic_backend.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus

_booking_lock = Lock()


def _advisory_key(kind: str, subject_id: int) -> int:
    return zlib.crc32(f'{kind}:{subject_id}'.encode())


class SqlAppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def _active(self):
        return self.db.query(Appointment).filter(
            Appointment.status_id.in_([status.value for status in ACTIVE_STATUSES])
        )

    def list_active_by_professional(self, professional_id: int) -> list[Appointment]:
        return self._active().filter(Appointment.professional_id == professional_id).all()

    def list_active_by_patient(self, patient_id: int) -> list[Appointment]:
        return self._active().filter(Appointment.patient_id == patient_id).all()

    def insert(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    def load_by_id(self, appointment_id: int) -> Appointment | None:
        return self.db.get(Appointment, appointment_id)

    def update(self, appointment_id: int, fields: dict[str, Any]) -> Appointment | None:
        appointment = self.load_by_id(appointment_id)
        if appointment is None:
            return None

        for name, value in fields.items():
            setattr(appointment, name, value)
        self.db.commit()
        self.db.refresh(appointment)
        return appointment

    def list_for_calendar(
        self,
        window_start: datetime | None,
        window_end: datetime | None,
        professional_id: int | None,
    ) -> list[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.status_id != AppointmentStatus.CANCELLED.value)
        if window_start is not None:
            query = query.filter(Appointment.start_time >= window_start)
        if window_end is not None:
            query = query.filter(Appointment.end_time <= window_end)
        if professional_id is not None:
            query = query.filter(Appointment.professional_id == professional_id)
        return query.order_by(Appointment.start_time.asc()).all()

    def search(
        self,
        *,
        page: int,
        limit: int,
        start_from: datetime | None = None,
        end_until: datetime | None = None,
        status_id: int | None = None,
        professional_id: int | None = None,
        service_type_id: int | None = None,
        patient_id: int | None = None,
    ) -> tuple[list[Appointment], int]:
        conditions = []
        if start_from is not None:
            conditions.append(Appointment.start_time >= start_from)
        if end_until is not None:
            conditions.append(Appointment.end_time <= end_until)
        if status_id is not None:
            conditions.append(Appointment.status_id == status_id)
        if professional_id is not None:
            conditions.append(Appointment.professional_id == professional_id)
        if service_type_id is not None:
            conditions.append(Appointment.service_type_id == service_type_id)
        if patient_id is not None:
            conditions.append(Appointment.patient_id == patient_id)

        total = self.db.query(func.count(Appointment.id)).filter(*conditions).scalar() or 0
        appointments = (
            self.db.query(Appointment)
            .filter(*conditions)
            .order_by(Appointment.start_time.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return appointments, total

    def rollback(self) -> None:
        self.db.rollback()

    @contextmanager
    def booking_guard(self, professional_id: int | None, patient_id: int):
        """Serialize conflict checks and the write that follows them.

        Holds a process-wide lock for the duration; on PostgreSQL it also takes
        transaction-scoped advisory locks per subject so separate workers queue
        behind each other. The transaction is committed on exit, which releases
        the advisory locks.
        """
        with _booking_lock:
            try:
                if self.db.get_bind().dialect.name == 'postgresql':
                    keys = {_advisory_key('patient', patient_id)}
                    if professional_id is not None:
                        keys.add(_advisory_key('professional', professional_id))
                    for key in sorted(keys):
                        self.db.execute(text('SELECT pg_advisory_xact_lock(:key)'), {'key': key})
                yield
            except Exception:
                self.db.rollback()
                raise
            else:
                self.db.commit()
