# Overview: Manual stock receipts, adjustments and per-product inventory summaries.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import InventoryLot, Product
from ..models.inventory import MOVEMENT_ADJUST, MOVEMENT_IN, SOURCE_MANUAL
from ..validation import coerce_int, optional_text, require_amount, require_positive_qty, MAX_QUANTITY
from .concurrency import run_in_transaction
from .errors import NotFoundError, OutOfStockError, ValidationError
from .ledger_service import append_movement, get_current_stock
from .lot_service import get_inventory_value, get_stock_from_lots, list_consumable_lots, receive_lot
from .notification_service import emit, stock_received, write_off_recorded
from .write_off_service import record_write_off
"""
Inventory Invariants (authoritative)

- Stock is ledger-derived: SUM(inventory_movements.quantity). There is no
  stock column to edit.
- Every stock increase creates a lot AND a positive movement in the same
  transaction; every decrease goes through the allocation engine AND a
  negative movement. So SUM(movements) == SUM(lot.qty_remaining) per product
  holds after every commit, adjustments included.
- A negative adjustment is a write-off (reason = note) whose movement kind is
  ADJUST. It has FIFO cost like any other write-off.
"""


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product with id {product_id} not found")
    return product


def _resolve_unit_cost(product: Product, unit_cost) -> int:
    if unit_cost is None:
        if product.cost_price is None:
            raise ValidationError(
                f"unit_cost is required: product {product.title} has no cost_price",
                details={"product_id": product.id},
            )
        return product.cost_price
    return require_amount(unit_cost, "unit_cost")


def receive_stock(
    product_id: int,
    qty,
    unit_cost=None,
    note: str | None = None,
    received_at: datetime | str | None = None,
) -> InventoryLot:
    """
    Receive stock without a purchase document: one lot + one IN movement.

    unit_cost defaults to the product's cost_price.
    """
    qty = require_positive_qty(qty, "qty")
    note = optional_text(note, "note")
    product = _get_product(product_id)
    cost = _resolve_unit_cost(product, unit_cost)

    def _op():
        lot = receive_lot(
            product_id=product_id,
            unit_cost=cost,
            qty=qty,
            received_at=received_at,
        )
        append_movement(
            product_id=product_id,
            quantity=qty,
            kind=MOVEMENT_IN,
            source_kind=SOURCE_MANUAL,
            source_id=lot.id,
            note=note,
        )
        return lot

    lot = run_in_transaction(_op)

    current_app.logger.info(
        "Received %s x product %s at %s (lot %s)", qty, product_id, cost, lot.id
    )
    emit(stock_received, lot=lot)
    return lot


def adjust_stock(
    product_id: int,
    quantity_delta,
    unit_cost=None,
    note: str | None = None,
) -> dict:
    """
    Correct stock by a signed delta.

    Returns {"product_id", "quantity_delta", "lot_id" | "write_off_id", "stock"}.
    """
    delta = coerce_int(quantity_delta, "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    if abs(delta) > MAX_QUANTITY:
        raise ValidationError(f"quantity_delta must be within +/-{MAX_QUANTITY}")
    note = optional_text(note, "note")
    product = _get_product(product_id)

    if delta > 0:
        cost = _resolve_unit_cost(product, unit_cost)

        def _op():
            lot = receive_lot(product_id=product_id, unit_cost=cost, qty=delta)
            append_movement(
                product_id=product_id,
                quantity=delta,
                kind=MOVEMENT_ADJUST,
                source_kind=SOURCE_MANUAL,
                source_id=lot.id,
                note=note,
            )
            return {"lot_id": lot.id}

        outcome = run_in_transaction(_op)
        current_app.logger.info("Adjusted product %s by %+d (lot %s)", product_id, delta, outcome["lot_id"])
    else:
        qty = require_positive_qty(-delta, "quantity_delta")
        available = get_current_stock(product_id)
        if available < qty:
            raise OutOfStockError(
                product_id=product_id,
                product_title=product.title,
                available=available,
                requested=qty,
            )

        wo = run_in_transaction(
            lambda: record_write_off(
                product_id=product_id,
                qty=qty,
                reason=note,
                movement_kind=MOVEMENT_ADJUST,
            )
        )
        outcome = {"write_off_id": wo.id}
        current_app.logger.info(
            "Adjusted product %s by %+d (write-off %s, cost %s)", product_id, delta, wo.id, wo.total_cost
        )
        emit(write_off_recorded, write_off=wo)

    outcome.update(
        {
            "product_id": product_id,
            "quantity_delta": delta,
            "stock": get_current_stock(product_id),
        }
    )
    return outcome


def get_inventory_summary(product_id: int) -> dict:
    product = _get_product(product_id)
    consumable = list_consumable_lots(product_id)
    return {
        "product_id": product.id,
        "title": product.title,
        "stock": get_current_stock(product_id),
        "stock_from_lots": get_stock_from_lots(product_id),
        "inventory_value": get_inventory_value(product_id),
        "open_lots": len(consumable),
        "next_fifo_unit_cost": consumable[0].unit_cost if consumable else None,
    }
