"""Request and response models for the patient endpoints."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from clinic_backend.schemas.appointment import AppointmentResponse, PaginationResponse


def _strip_required(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        raise ValueError('This field is required.')
    return normalized


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class CreatePatientRequest(BaseModel):
    document: str = Field(max_length=20)
    first_names: str = Field(max_length=100)
    last_names: str = Field(max_length=100)
    birth_date: date | None = None
    phone: str | None = Field(default=None, max_length=20)
    email: str | None = Field(default=None, max_length=100)
    address: str | None = Field(default=None, max_length=200)

    @field_validator('document', 'first_names', 'last_names')
    @classmethod
    def validate_required(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator('phone', 'email', 'address')
    @classmethod
    def validate_optional(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class UpdatePatientRequest(BaseModel):
    document: str | None = Field(default=None, max_length=20)
    first_names: str | None = Field(default=None, max_length=100)
    last_names: str | None = Field(default=None, max_length=100)
    birth_date: date | None = None
    phone: str | None = Field(default=None, max_length=20)
    email: str | None = Field(default=None, max_length=100)
    address: str | None = Field(default=None, max_length=200)

    class Config:
        extra = 'forbid'

    @field_validator('document', 'first_names', 'last_names')
    @classmethod
    def validate_required(cls, value: str | None) -> str:
        if value is None:
            raise ValueError('This field cannot be cleared.')
        return _strip_required(value)

    @field_validator('phone', 'email', 'address')
    @classmethod
    def validate_optional(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class PatientResponse(BaseModel):
    id: int
    document: str
    first_names: str
    last_names: str
    birth_date: date | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class PatientListResponse(BaseModel):
    data: list[PatientResponse]
    pagination: PaginationResponse


class PatientDetailResponse(BaseModel):
    patient: PatientResponse
    recent_appointments: list[AppointmentResponse]
