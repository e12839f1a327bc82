"""Company model definitions."""

from sqlalchemy import JSON, Column, Integer, String
from clinic_backend.database import Base


class Company(Base):
    """A clinic tenant and its default scheduling configuration."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    business_hours = Column(JSON, nullable=True)
    booking_config = Column(JSON, nullable=True)
