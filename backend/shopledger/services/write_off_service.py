# Overview: Write-offs - removing damaged/lost stock at its FIFO cost.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, WriteOff
from ..models.inventory import MOVEMENT_OUT, SOURCE_WRITE_OFF, WriteOffRef
from ..validation import optional_text, require_positive_qty
from .allocation_service import allocate
from .concurrency import run_in_transaction
from .errors import NotFoundError, OutOfStockError
from .ledger_service import append_movement, get_current_stock
from .notification_service import emit, write_off_recorded


def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product with id {product_id} not found")
    return product


def record_write_off(
    *,
    product_id: int,
    qty: int,
    reason: str | None = None,
    movement_kind: str = MOVEMENT_OUT,
) -> WriteOff:
    """
    Write-off body for an already-open transaction. Flushes, never commits.

    inventory_service reuses it for negative adjustments (movement_kind=ADJUST).
    """
    wo = WriteOff(product_id=product_id, qty=qty, total_cost=0, reason=reason)
    db.session.add(wo)
    db.session.flush()

    result = allocate(product_id, qty, WriteOffRef(wo.id))
    wo.total_cost = result.total_cost

    append_movement(
        product_id=product_id,
        quantity=-qty,
        kind=movement_kind,
        source_kind=SOURCE_WRITE_OFF,
        source_id=wo.id,
        note=reason,
    )
    return wo


def write_off(product_id: int, qty, reason: str | None = None) -> WriteOff:
    """
    Remove stock from FIFO lots at its recorded cost.

    Archived/draft products can still be written off; only ordering requires
    an ACTIVE product.

    Raises:
        ValidationError: qty is not a positive integer
        NotFoundError: product does not exist
        OutOfStockError: stock is below qty (InsufficientStockError if the
            lots ran out under a concurrent writer)
    """
    qty = require_positive_qty(qty, "qty")
    reason = optional_text(reason, "reason")

    # Fast-fail checks before taking the write lock
    product = _get_product(product_id)
    available = get_current_stock(product_id)
    if available < qty:
        raise OutOfStockError(
            product_id=product_id,
            product_title=product.title,
            available=available,
            requested=qty,
        )

    wo = run_in_transaction(
        lambda: record_write_off(product_id=product_id, qty=qty, reason=reason)
    )

    current_app.logger.info(
        "Write-off %s committed: product %s qty %s cost %s",
        wo.id, product_id, qty, wo.total_cost,
    )
    emit(write_off_recorded, write_off=wo)
    return wo


def list_write_offs(product_id: int | None = None) -> list[WriteOff]:
    q = db.session.query(WriteOff)
    if product_id is not None:
        q = q.filter(WriteOff.product_id == product_id)
    return q.order_by(WriteOff.created_at.desc(), WriteOff.id.desc()).all()
