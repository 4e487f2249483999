"""Appointment conflict detection and lifecycle rules.

The engine decides whether an appointment may be booked, moved or cancelled.
It does not talk to the database itself: reads and writes go through an
``AppointmentStore`` and the current time comes from an injected clock.

Domain failures are returned, not raised. Every mutating operation answers
with an ``EngineResult`` carrying either the appointment or exactly one
``AppointmentError``; the HTTP layer turns the error kind into a status code
using ``ERRORS``.
"""

import logging
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Protocol

from clinic_backend.core import config
from clinic_backend.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from clinic_backend.schemas.appointment import UpdateAppointmentRequest, status_name

logger = logging.getLogger(__name__)


class AppointmentError(str, Enum):
    INVALID_WINDOW = 'invalid_window'
    PAST_SCHEDULE = 'past_schedule'
    PROFESSIONAL_CONFLICT = 'professional_conflict'
    PATIENT_CONFLICT = 'patient_conflict'
    NOT_FOUND = 'not_found'
    PAST_EDIT_FORBIDDEN = 'past_edit_forbidden'
    NO_FIELDS_TO_UPDATE = 'no_fields_to_update'


ERRORS = {
    AppointmentError.INVALID_WINDOW: {'status_code': 400, 'detail': 'End date must be after start date.'},
    AppointmentError.PAST_SCHEDULE: {'status_code': 400, 'detail': 'Appointment cannot be scheduled in the past.'},
    AppointmentError.NO_FIELDS_TO_UPDATE: {'status_code': 400, 'detail': 'No valid fields to update.'},
    AppointmentError.PAST_EDIT_FORBIDDEN: {'status_code': 403, 'detail': 'Cannot modify past appointments.'},
    AppointmentError.NOT_FOUND: {'status_code': 404, 'detail': 'Appointment not found.'},
    AppointmentError.PROFESSIONAL_CONFLICT: {
        'status_code': 409,
        'detail': 'Professional has a conflicting appointment at this time.',
    },
    AppointmentError.PATIENT_CONFLICT: {
        'status_code': 409,
        'detail': 'Patient has a conflicting appointment at this time.',
    },
}


class SubjectRole(str, Enum):
    PATIENT = 'patient'
    PROFESSIONAL = 'professional'


STATUS_COLORS = {
    AppointmentStatus.SCHEDULED: '#007bff',
    AppointmentStatus.CONFIRMED: '#28a745',
    AppointmentStatus.COMPLETED: '#ffc107',
    AppointmentStatus.CANCELLED: '#dc3545',
}


@dataclass(frozen=True)
class EngineResult:
    value: Any = None
    error: AppointmentError | None = None
    conflicts: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> 'EngineResult':
        return cls(value=value)

    @classmethod
    def failure(cls, error: AppointmentError, conflicts: list[int] | None = None) -> 'EngineResult':
        return cls(error=error, conflicts=list(conflicts or []))


@dataclass(frozen=True)
class CalendarEntry:
    id: int
    title: str | None
    start: datetime
    end: datetime
    description: str | None
    patient_id: int
    professional_id: int | None
    service_type_id: int
    status_id: int
    status: str
    color: str


class AppointmentStore(Protocol):
    def list_active_by_professional(self, professional_id: int) -> list[Appointment]: ...

    def list_active_by_patient(self, patient_id: int) -> list[Appointment]: ...

    def insert(self, appointment: Appointment) -> Appointment: ...

    def load_by_id(self, appointment_id: int) -> Appointment | None: ...

    def update(self, appointment_id: int, fields: dict[str, Any]) -> Appointment | None: ...

    def list_for_calendar(
        self,
        window_start: datetime | None,
        window_end: datetime | None,
        professional_id: int | None,
    ) -> list[Appointment]: ...

    def booking_guard(self, professional_id: int | None, patient_id: int) -> AbstractContextManager: ...


def windows_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap; intervals that only touch do not overlap."""
    return a_start < b_end and a_end > b_start


def validate_window(start: datetime, end: datetime, now: datetime) -> EngineResult:
    if start >= end:
        return EngineResult.failure(AppointmentError.INVALID_WINDOW)
    if start < now:
        return EngineResult.failure(AppointmentError.PAST_SCHEDULE)
    return EngineResult.success()


def status_color(status_id: int) -> str:
    try:
        return STATUS_COLORS[AppointmentStatus(status_id)]
    except ValueError:
        return STATUS_COLORS[AppointmentStatus.CANCELLED]


class AppointmentEngine:
    def __init__(
        self,
        store: AppointmentStore,
        clock: Callable[[], datetime] = datetime.now,
        admin_role_id: int | None = None,
        reschedule_conflict_check: bool | None = None,
    ):
        self.store = store
        self.clock = clock
        self.admin_role_id = config.ADMIN_ROLE_ID if admin_role_id is None else admin_role_id
        if reschedule_conflict_check is None:
            reschedule_conflict_check = config.RESCHEDULE_CONFLICT_CHECK
        self.reschedule_conflict_check = reschedule_conflict_check

    def find_conflicts(
        self,
        subject_id: int,
        subject_role: SubjectRole,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> list[int]:
        if subject_role == SubjectRole.PROFESSIONAL:
            candidates = self.store.list_active_by_professional(subject_id)
        else:
            candidates = self.store.list_active_by_patient(subject_id)

        return [
            candidate.id
            for candidate in candidates
            if candidate.id != exclude_appointment_id
            and candidate.status_id in ACTIVE_STATUSES
            and windows_overlap(candidate.start_time, candidate.end_time, start, end)
        ]

    def _check_subjects(
        self,
        patient_id: int,
        professional_id: int | None,
        start: datetime,
        end: datetime,
        exclude_appointment_id: int | None = None,
    ) -> EngineResult:
        if professional_id is not None:
            conflicts = self.find_conflicts(
                professional_id, SubjectRole.PROFESSIONAL, start, end, exclude_appointment_id
            )
            if conflicts:
                return EngineResult.failure(AppointmentError.PROFESSIONAL_CONFLICT, conflicts)

        conflicts = self.find_conflicts(patient_id, SubjectRole.PATIENT, start, end, exclude_appointment_id)
        if conflicts:
            return EngineResult.failure(AppointmentError.PATIENT_CONFLICT, conflicts)

        return EngineResult.success()

    def book(
        self,
        *,
        patient_id: int,
        professional_id: int | None,
        start: datetime,
        end: datetime,
        service_type_id: int,
        notes: str | None = None,
        acting_user_id: int,
    ) -> EngineResult:
        now = self.clock()
        window = validate_window(start, end, now)
        if not window.ok:
            logger.info('Rejected booking for patient %s: %s', patient_id, window.error.value)
            return window

        with self.store.booking_guard(professional_id, patient_id):
            check = self._check_subjects(patient_id, professional_id, start, end)
            if not check.ok:
                logger.info(
                    'Rejected booking for patient %s: %s with appointments %s',
                    patient_id,
                    check.error.value,
                    check.conflicts,
                )
                return check

            appointment = self.store.insert(
                Appointment(
                    patient_id=patient_id,
                    professional_id=professional_id,
                    start_time=start,
                    end_time=end,
                    service_type_id=service_type_id,
                    status_id=AppointmentStatus.SCHEDULED.value,
                    notes=notes,
                    updated_by=acting_user_id,
                    created_at=now,
                    updated_at=now,
                )
            )

        logger.info('Booked appointment %s for patient %s by user %s', appointment.id, patient_id, acting_user_id)
        return EngineResult.success(appointment)

    def reschedule(
        self,
        appointment_id: int,
        patch: UpdateAppointmentRequest,
        *,
        acting_user_id: int,
        acting_user_role: int,
    ) -> EngineResult:
        now = self.clock()
        existing = self.store.load_by_id(appointment_id)
        if existing is None:
            return EngineResult.failure(AppointmentError.NOT_FOUND)

        if existing.start_time < now and acting_user_role != self.admin_role_id:
            logger.warning('User %s attempted to edit past appointment %s', acting_user_id, appointment_id)
            return EngineResult.failure(AppointmentError.PAST_EDIT_FORBIDDEN)

        changes = patch.changes()
        if not changes:
            return EngineResult.failure(AppointmentError.NO_FIELDS_TO_UPDATE)

        start = changes.get('start_time', existing.start_time)
        end = changes.get('end_time', existing.end_time)
        if ('start_time' in changes or 'end_time' in changes) and start >= end:
            return EngineResult.failure(AppointmentError.INVALID_WINDOW)

        professional_id = changes.get('professional_id', existing.professional_id)
        status_id = changes.get('status_id', existing.status_id)
        recheck = bool(
            self.reschedule_conflict_check
            and status_id in ACTIVE_STATUSES
            and {'start_time', 'end_time', 'professional_id'} & changes.keys()
        )
        changed_fields = ', '.join(sorted(changes))

        guard = self.store.booking_guard(professional_id, existing.patient_id) if recheck else nullcontext()
        with guard:
            if recheck:
                check = self._check_subjects(existing.patient_id, professional_id, start, end, appointment_id)
                if not check.ok:
                    logger.info(
                        'Rejected reschedule of appointment %s: %s with appointments %s',
                        appointment_id,
                        check.error.value,
                        check.conflicts,
                    )
                    return check

            changes.update(updated_by=acting_user_id, updated_at=now)
            appointment = self.store.update(appointment_id, changes)

        if appointment is None:
            return EngineResult.failure(AppointmentError.NOT_FOUND)

        logger.info('Updated appointment %s (%s) by user %s', appointment_id, changed_fields, acting_user_id)
        return EngineResult.success(appointment)

    def cancel(self, appointment_id: int, *, acting_user_id: int) -> EngineResult:
        appointment = self.store.update(
            appointment_id,
            {
                'status_id': AppointmentStatus.CANCELLED.value,
                'updated_by': acting_user_id,
                'updated_at': self.clock(),
            },
        )
        if appointment is None:
            return EngineResult.failure(AppointmentError.NOT_FOUND)

        logger.info('Cancelled appointment %s by user %s', appointment_id, acting_user_id)
        return EngineResult.success(appointment)

    def list_for_calendar(
        self,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
        professional_id: int | None = None,
    ) -> list[CalendarEntry]:
        appointments = self.store.list_for_calendar(window_start, window_end, professional_id)
        return [
            CalendarEntry(
                id=appointment.id,
                title=appointment.patient.full_name if appointment.patient is not None else None,
                start=appointment.start_time,
                end=appointment.end_time,
                description=appointment.notes,
                patient_id=appointment.patient_id,
                professional_id=appointment.professional_id,
                service_type_id=appointment.service_type_id,
                status_id=appointment.status_id,
                status=status_name(appointment.status_id),
                color=status_color(appointment.status_id),
            )
            for appointment in appointments
            if appointment.status_id != AppointmentStatus.CANCELLED
        ]
