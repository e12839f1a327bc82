"""User model definitions."""

from sqlalchemy import JSON, Column, ForeignKey, Integer, String
from clinic_backend.database import Base

STAFF_ROLES = frozenset({'owner', 'admin', 'receptionist', 'professional'})
SCHEDULE_ADMIN_ROLES = frozenset({'owner', 'admin'})
PATIENT_ROLE = 'patient'


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True)
    name = Column(String)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # owner/admin/receptionist/professional/patient
    business_hours = Column(JSON, nullable=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True)

    @property
    def is_staff(self) -> bool:
        return (self.role or '').lower() in STAFF_ROLES

    @property
    def can_manage_schedule(self) -> bool:
        return (self.role or '').lower() in SCHEDULE_ADMIN_ROLES

    @property
    def can_take_appointments(self) -> bool:
        return (self.role or '').lower() in STAFF_ROLES
