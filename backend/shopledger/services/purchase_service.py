# Overview: Supplier purchase documents; posting turns them into FIFO lots.

"""
Purchase Document Service

LIFECYCLE:
1. DRAFT: created, items can be replaced
2. POSTED: one lot + one IN movement per item, all at posted_at
3. CANCELED: abandoned before posting

IMMUTABLE: Once POSTED, a purchase cannot be edited or canceled. Stock that
should not have been received is corrected with an adjustment instead.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Product, Purchase, PurchaseItem
from ..models.documents import STATUS_CANCELED, STATUS_DRAFT, STATUS_POSTED
from ..models.inventory import MOVEMENT_IN, SOURCE_PURCHASE
from ..validation import coerce_int, optional_text, require_amount, require_positive_qty
from shopledger.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .errors import NotFoundError, ValidationError
from .ledger_service import append_movement
from .lot_service import receive_lot
from .notification_service import emit, stock_received

PURCHASE_STATUSES = (STATUS_DRAFT, STATUS_POSTED, STATUS_CANCELED)


def _normalize_items(items) -> list[dict]:
    if not items:
        raise ValidationError("Purchase must have at least one item")

    normalized = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = item.get("product_id")
        if product_id is None:
            raise ValidationError(f"items[{index}].product_id is required")
        normalized.append(
            {
                "product_id": coerce_int(product_id, f"items[{index}].product_id"),
                "qty": require_positive_qty(item.get("qty"), f"items[{index}].qty"),
                "unit_cost": require_amount(item.get("unit_cost"), f"items[{index}].unit_cost"),
            }
        )

    product_ids = {item["product_id"] for item in normalized}
    found = db.session.query(Product.id).filter(Product.id.in_(product_ids)).count()
    if found != len(product_ids):
        raise ValidationError("One or more products not found")
    return normalized


def get_purchase(purchase_id: int, *, lock: bool = False) -> Purchase:
    q = db.session.query(Purchase).filter_by(id=purchase_id)
    if lock:
        q = lock_for_update(q).populate_existing()
    purchase = q.first()
    if purchase is None:
        raise NotFoundError(f"Purchase with id {purchase_id} not found")
    return purchase


def create_purchase(items, supplier: str | None = None, comment: str | None = None) -> Purchase:
    supplier = optional_text(supplier, "supplier")
    comment = optional_text(comment, "comment", max_length=2000)
    normalized = _normalize_items(items)

    def _op():
        purchase = Purchase(supplier=supplier, comment=comment, status=STATUS_DRAFT)
        db.session.add(purchase)
        for item in normalized:
            purchase.items.append(PurchaseItem(**item))
        db.session.flush()
        return purchase

    purchase = run_in_transaction(_op)
    current_app.logger.info("Purchase %s created with %s items", purchase.id, len(normalized))
    return purchase


_MISSING = object()


def update_purchase(purchase_id: int, *, items=None, supplier=_MISSING, comment=_MISSING) -> Purchase:
    """Edit a DRAFT purchase. Passing items replaces the whole item list."""
    normalized = _normalize_items(items) if items is not None else None

    def _op():
        purchase = get_purchase(purchase_id, lock=True)
        if purchase.status != STATUS_DRAFT:
            raise ValidationError("Only DRAFT purchases can be edited")

        if supplier is not _MISSING:
            purchase.supplier = optional_text(supplier, "supplier")
        if comment is not _MISSING:
            purchase.comment = optional_text(comment, "comment", max_length=2000)
        if normalized is not None:
            purchase.items.clear()
            db.session.flush()
            for item in normalized:
                purchase.items.append(PurchaseItem(**item))
        db.session.flush()
        return purchase

    return run_in_transaction(_op)


def post_purchase(purchase_id: int, update_cost_price: bool = False) -> Purchase:
    """
    Post a DRAFT purchase: lots and IN movements for every item.

    With update_cost_price, each product's cost_price becomes the unit cost
    of its last item in the purchase.

    Raises:
        NotFoundError: purchase does not exist
        ValidationError: purchase is not DRAFT or has no items
    """
    lots = []

    def _op():
        lots.clear()
        purchase = get_purchase(purchase_id, lock=True)
        if purchase.status != STATUS_DRAFT:
            raise ValidationError("Only DRAFT purchases can be posted")
        if not purchase.items:
            raise ValidationError("Purchase must have items to post")

        posted_at = utcnow()
        for item in purchase.items:
            lot = receive_lot(
                product_id=item.product_id,
                unit_cost=item.unit_cost,
                qty=item.qty,
                received_at=posted_at,
                purchase_id=purchase.id,
            )
            append_movement(
                product_id=item.product_id,
                quantity=item.qty,
                kind=MOVEMENT_IN,
                source_kind=SOURCE_PURCHASE,
                source_id=purchase.id,
            )
            lots.append(lot)

        purchase.status = STATUS_POSTED
        purchase.posted_at = posted_at

        if update_cost_price:
            last_cost = {}
            for item in purchase.items:
                last_cost[item.product_id] = item.unit_cost
            for product_id, unit_cost in last_cost.items():
                db.session.get(Product, product_id).cost_price = unit_cost

        db.session.flush()
        return purchase

    purchase = run_in_transaction(_op)

    current_app.logger.info(
        "Purchase %s posted: %s lots, total cost %s", purchase.id, len(lots), purchase.total_cost
    )
    for lot in lots:
        emit(stock_received, lot=lot)
    return purchase


def cancel_purchase(purchase_id: int) -> Purchase:
    def _op():
        purchase = get_purchase(purchase_id, lock=True)
        if purchase.status == STATUS_POSTED:
            raise ValidationError("Cannot cancel a POSTED purchase")
        if purchase.status == STATUS_CANCELED:
            raise ValidationError("Purchase is already canceled")
        purchase.status = STATUS_CANCELED
        return purchase

    return run_in_transaction(_op)


def list_purchases(
    *,
    status: str | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    page = max(1, page)
    page_size = min(100, max(1, page_size))

    q = db.session.query(Purchase)
    if status:
        if status not in PURCHASE_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(PURCHASE_STATUSES)}")
        q = q.filter(Purchase.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(or_(Purchase.supplier.ilike(pattern), Purchase.comment.ilike(pattern)))

    total = q.count()
    purchases = (
        q.order_by(Purchase.created_at.desc(), Purchase.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [p.to_dict(include_items=False) for p in purchases],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
