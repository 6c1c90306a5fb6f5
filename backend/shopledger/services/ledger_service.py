# Overview: Append-only stock ledger (inventory movements) and stock queries.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryMovement
from ..models.inventory import MOVEMENT_KINDS, SOURCE_KINDS
from .errors import ValidationError
"""
Ledger Invariants (authoritative)

- Append-only: movements are inserted, never updated or deleted.
- Stock on hand for a product is SUM(quantity) over its movements.
- Every movement is written inside the same DB transaction as the lot
  change it mirrors, so SUM(movements) == SUM(lot.qty_remaining) per product.
- Corrections are new ADJUST movements, never edits.
"""


def append_movement(
    *,
    product_id: int,
    quantity: int,
    kind: str,
    source_kind: str,
    source_id: int | None = None,
    note: str | None = None,
) -> InventoryMovement:
    """
    Insert one signed movement. Flushes so the id is assigned; never commits.
    """
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"Unknown movement kind {kind!r}")
    if source_kind not in SOURCE_KINDS:
        raise ValidationError(f"Unknown movement source {source_kind!r}")
    if not quantity:
        raise ValidationError("Movement quantity must be non-zero")

    movement = InventoryMovement(
        product_id=product_id,
        quantity=quantity,
        kind=kind,
        source_kind=source_kind,
        source_id=source_id,
        note=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def get_current_stock(product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(InventoryMovement.quantity), 0)
    ).filter(InventoryMovement.product_id == product_id)
    return int(q.scalar() or 0)


def get_stock_levels(product_ids: list[int] | None = None) -> dict[int, int]:
    """Stock for many products in one GROUP BY. Products with no movements are absent."""
    q = db.session.query(
        InventoryMovement.product_id,
        func.coalesce(func.sum(InventoryMovement.quantity), 0),
    )
    if product_ids is not None:
        if not product_ids:
            return {}
        q = q.filter(InventoryMovement.product_id.in_(product_ids))
    rows = q.group_by(InventoryMovement.product_id).all()
    return {product_id: int(total or 0) for product_id, total in rows}


def list_movements(
    *,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    product_id: int | None = None,
    kind: str | None = None,
    source_kind: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    """Movement history, newest first. Date bounds are inclusive."""
    page = max(1, page)
    page_size = min(100, max(1, page_size))

    q = db.session.query(InventoryMovement)
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if kind is not None:
        q = q.filter(InventoryMovement.kind == kind)
    if source_kind is not None:
        q = q.filter(InventoryMovement.source_kind == source_kind)
    if date_from is not None:
        q = q.filter(InventoryMovement.created_at >= date_from)
    if date_to is not None:
        q = q.filter(InventoryMovement.created_at <= date_to)

    total = q.count()
    rows = (
        q.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [m.to_dict() for m in rows],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
