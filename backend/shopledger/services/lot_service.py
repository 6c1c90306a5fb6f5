# Overview: Lot store - cost-bearing stock batches in FIFO order.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryLot
from shopledger.time_utils import normalize_datetime
from ..validation import require_positive_qty, require_amount
from .concurrency import lock_for_update
from .errors import ValidationError


def receive_lot(
    *,
    product_id: int,
    unit_cost: int,
    qty: int,
    received_at: datetime | str | None = None,
    purchase_id: int | None = None,
    shipment_id: int | None = None,
) -> InventoryLot:
    """
    Create a lot with qty_remaining = qty. Flushes, never commits.

    The caller appends the matching IN movement in the same transaction.
    """
    qty = require_positive_qty(qty, "qty")
    unit_cost = require_amount(unit_cost, "unit_cost")
    try:
        received_dt = normalize_datetime(received_at, default_now=True)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    lot = InventoryLot(
        product_id=product_id,
        purchase_id=purchase_id,
        shipment_id=shipment_id,
        unit_cost=unit_cost,
        qty_received=qty,
        qty_remaining=qty,
        received_at=received_dt,
    )
    db.session.add(lot)
    db.session.flush()
    return lot


def list_consumable_lots(product_id: int, *, lock: bool = False) -> list[InventoryLot]:
    """
    Lots with stock left, oldest first (received_at, then insertion order).

    This ordering is the FIFO contract. With lock=True the rows are selected
    FOR UPDATE and any cached state is overwritten with what the DB holds.
    """
    q = db.session.query(InventoryLot).filter(
        InventoryLot.product_id == product_id,
        InventoryLot.qty_remaining > 0,
    ).order_by(InventoryLot.received_at.asc(), InventoryLot.id.asc())
    if lock:
        q = lock_for_update(q).populate_existing()
    return q.all()


def decrement_remaining(lot: InventoryLot, amount: int) -> InventoryLot:
    """Only mutation path for a lot. Call from the allocation engine only."""
    if amount <= 0:
        raise ValidationError("Decrement amount must be positive")
    if amount > lot.qty_remaining:
        raise ValidationError(
            f"Cannot take {amount} from lot {lot.id} with {lot.qty_remaining} remaining"
        )
    lot.qty_remaining = lot.qty_remaining - amount
    db.session.flush()
    return lot


def list_lots(product_id: int) -> list[InventoryLot]:
    return (
        db.session.query(InventoryLot)
        .filter(InventoryLot.product_id == product_id)
        .order_by(InventoryLot.received_at.asc(), InventoryLot.id.asc())
        .all()
    )


def get_stock_from_lots(product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(InventoryLot.qty_remaining), 0)
    ).filter(InventoryLot.product_id == product_id)
    return int(q.scalar() or 0)


def get_inventory_value(product_id: int) -> int:
    """FIFO value of what is left: SUM(qty_remaining * unit_cost)."""
    q = db.session.query(
        func.coalesce(func.sum(InventoryLot.qty_remaining * InventoryLot.unit_cost), 0)
    ).filter(InventoryLot.product_id == product_id)
    return int(q.scalar() or 0)
