"""Inventory model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, func
from clinic_backend.database import Base


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), index=True)
    name = Column(String, nullable=False)
    unit = Column(String, default="un")
    current_stock = Column(Numeric(10, 3), default=0)
    min_stock = Column(Numeric(10, 3), default=0)


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)
    quantity = Column(Numeric(10, 3), nullable=False)
    movement_type = Column(String, nullable=False)  # in/out
    reason = Column(String)
    created_at = Column(DateTime, server_default=func.now())
