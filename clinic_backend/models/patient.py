"""Patient model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from clinic_backend.database import Base


class Patient(Base):
    """A clinic patient; ``last_visit`` is stamped when an appointment completes."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True)
    name = Column(String, nullable=False)
    email = Column(String)
    phone = Column(String)
    last_visit = Column(DateTime, nullable=True)
