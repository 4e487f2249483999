"""Patient model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String
from clinic_backend.database import Base


class Patient(Base):
    """Represents a registered clinic patient."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    document = Column(String(20), unique=True, index=True, nullable=False)
    first_names = Column(String(100), nullable=False)
    last_names = Column(String(100), nullable=False)
    birth_date = Column(Date)
    phone = Column(String(20))
    email = Column(String(100))
    address = Column(String(200))
    updated_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    @property
    def full_name(self) -> str:
        return f"{self.first_names} {self.last_names}".strip()
