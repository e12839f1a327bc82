"""Procedure model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from clinic_backend.database import Base


class Procedure(Base):
    """A bookable service with a fixed duration."""
    __tablename__ = "procedures"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True)
    name = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), default=0)

    supplies = relationship("ProcedureSupply", back_populates="procedure", cascade="all, delete-orphan")


class ProcedureSupply(Base):
    """Inventory consumed each time the procedure is performed."""
    __tablename__ = "procedure_supplies"

    id = Column(Integer, primary_key=True)
    procedure_id = Column(Integer, ForeignKey("procedures.id"), nullable=False)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False)
    quantity_used = Column(Numeric(10, 3), nullable=False)

    procedure = relationship("Procedure", back_populates="supplies")
