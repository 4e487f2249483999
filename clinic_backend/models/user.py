"""User model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from clinic_backend.database import Base


class User(Base):
    """Represents a clinic staff member."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    document = Column(String(20), unique=True, index=True, nullable=False)
    first_names = Column(String(100))
    last_names = Column(String(100))
    phone = Column(String(20))
    hashed_password = Column(String)
    role_id = Column(Integer, nullable=False)  # 1 = admin
    active = Column(Boolean, default=True)
    updated_by = Column(Integer)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)
