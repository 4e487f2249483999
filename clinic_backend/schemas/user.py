"""Request and response models for staff users."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from clinic_backend.schemas.appointment import PaginationResponse

PASSWORD_MIN_LENGTH = 8


class CreateUserRequest(BaseModel):
    document: str = Field(max_length=20)
    first_names: str = Field(max_length=100)
    last_names: str = Field(max_length=100)
    phone: str | None = Field(default=None, max_length=20)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    role_id: int = Field(gt=0)

    @field_validator('document', 'first_names', 'last_names')
    @classmethod
    def validate_required(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized


class UpdateUserRequest(BaseModel):
    """Partial update of a staff user; ``role_id`` and ``active`` are admin-only."""

    document: str | None = Field(default=None, max_length=20)
    first_names: str | None = Field(default=None, max_length=100)
    last_names: str | None = Field(default=None, max_length=100)
    phone: str | None = Field(default=None, max_length=20)
    password: str | None = Field(default=None, min_length=PASSWORD_MIN_LENGTH)
    role_id: int | None = Field(default=None, gt=0)
    active: bool | None = None

    class Config:
        extra = 'forbid'

    @field_validator('document', 'first_names', 'last_names', 'password', 'role_id', 'active')
    @classmethod
    def reject_explicit_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError('This field cannot be cleared.')
        if isinstance(value, str) and not value.strip():
            raise ValueError('This field is required.')
        return value

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class UserResponse(BaseModel):
    id: int
    document: str
    first_names: str | None = None
    last_names: str | None = None
    phone: str | None = None
    role_id: int
    active: bool | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    data: list[UserResponse]
    pagination: PaginationResponse
