"""Unavailability rule model definitions."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Time, func
from clinic_backend.database import Base


class UnavailabilityRule(Base):
    """A blackout window applied on a set of dates to some or all professionals.

    ``professional_ids`` may hold the sentinel ``"all"``; rules are replaced by
    delete and create, never edited in place.
    """
    __tablename__ = "unavailability_rules"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True, nullable=False)
    description = Column(String, nullable=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    dates = Column(JSON, nullable=False, default=list)
    professional_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, server_default=func.now())
