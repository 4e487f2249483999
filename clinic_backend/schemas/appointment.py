"""Request and response models for the appointment endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from clinic_backend.models.appointment import NOTES_MAX_LENGTH, AppointmentStatus


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > NOTES_MAX_LENGTH:
        raise ValueError(f'Notes must be {NOTES_MAX_LENGTH} characters or fewer.')

    return normalized


def _to_local_naive(value: datetime | None) -> datetime | None:
    # Stored instants are naive local time; offsets such as a trailing "Z" are converted first.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class CreateAppointmentRequest(BaseModel):
    patient_id: int = Field(gt=0)
    professional_id: int | None = Field(default=None, gt=0)
    start_time: datetime
    end_time: datetime
    service_type_id: int = Field(gt=0)
    notes: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return _to_local_naive(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateAppointmentRequest(BaseModel):
    """Partial update of an appointment.

    Only the fields the caller actually sent are applied; an omitted field
    keeps its stored value, while ``professional_id: null`` unassigns the
    professional.
    """

    professional_id: int | None = Field(default=None, gt=0)
    start_time: datetime | None = None
    end_time: datetime | None = None
    service_type_id: int | None = Field(default=None, gt=0)
    notes: str | None = None
    status_id: AppointmentStatus | None = None

    class Config:
        extra = 'forbid'

    @field_validator('start_time', 'end_time', 'service_type_id', 'status_id')
    @classmethod
    def reject_explicit_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError('This field cannot be cleared.')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return _to_local_naive(value)

    @field_validator('status_id')
    @classmethod
    def validate_status(cls, value: AppointmentStatus) -> AppointmentStatus:
        if value == AppointmentStatus.CANCELLED:
            raise ValueError('Use the cancel endpoint to cancel an appointment.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)

    def changes(self) -> dict[str, Any]:
        """Sent fields as plain column values."""
        changes = {name: getattr(self, name) for name in self.model_fields_set}
        if 'status_id' in changes:
            changes['status_id'] = int(changes['status_id'])
        return changes


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    patient_name: str | None = None
    professional_id: int | None = None
    start_time: datetime
    end_time: datetime
    service_type_id: int
    status_id: int
    status: str
    notes: str | None = None
    updated_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class AppointmentListResponse(BaseModel):
    data: list[AppointmentResponse]
    pagination: PaginationResponse


class CalendarEntryResponse(BaseModel):
    id: int
    title: str | None = None
    start: datetime
    end: datetime
    description: str | None = None
    patient_id: int
    professional_id: int | None = None
    service_type_id: int
    status_id: int
    status: str
    color: str

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    message: str


def status_name(status_id: int) -> str:
    try:
        return AppointmentStatus(status_id).name.lower()
    except ValueError:
        return 'unknown'


def to_appointment_response(appointment) -> AppointmentResponse:
    patient = appointment.patient
    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        patient_name=patient.full_name if patient is not None else None,
        professional_id=appointment.professional_id,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        service_type_id=appointment.service_type_id,
        status_id=appointment.status_id,
        status=status_name(appointment.status_id),
        notes=appointment.notes,
        updated_by=appointment.updated_by,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
    )
