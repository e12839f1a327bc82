"""Stock deduction performed when an appointment is completed."""

import logging

from sqlalchemy.orm import Session

from clinic_backend.models.appointment import Appointment
from clinic_backend.models.inventory import InventoryItem, StockMovement
from clinic_backend.models.procedure import ProcedureSupply

logger = logging.getLogger(__name__)


def deduct_procedure_supplies(db: Session, appointment: Appointment) -> bool:
    """
    Decrement stock for every supply of the appointment's procedure.

    Guarded by ``appointment.stock_deducted``; returns False when the stock
    was already deducted. Runs in the caller's transaction.
    """
    if appointment.stock_deducted:
        return False

    supplies = db.query(ProcedureSupply).filter(ProcedureSupply.procedure_id == appointment.procedure_id).all()

    for supply in supplies:
        item = db.query(InventoryItem).filter(InventoryItem.id == supply.inventory_item_id).with_for_update().first()
        if item is None:
            continue

        item.current_stock = (item.current_stock or 0) - supply.quantity_used
        db.add(
            StockMovement(
                inventory_item_id=item.id,
                appointment_id=appointment.id,
                quantity=supply.quantity_used,
                movement_type='out',
                reason=f'Procedure - appointment {appointment.id}',
            )
        )

        if item.min_stock is not None and item.current_stock <= item.min_stock:
            logger.warning('Low stock for %s: %s %s', item.name, item.current_stock, item.unit)

    appointment.stock_deducted = True
    return True
