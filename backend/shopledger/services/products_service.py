# backend/shopledger/services/products_service.py
"""
Products Service

The catalogue is owned elsewhere; this is the minimal seam the engine and
the CLI need: create a product, look it up, move it through its lifecycle.
Stock is never stored here (see ledger_service).
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..models.catalog import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUSES
from ..validation import optional_text, require_amount, require_text
from .concurrency import run_in_transaction
from .errors import NotFoundError, ValidationError


def _require_status(status: str) -> str:
    status = (status or "").strip().upper()
    if status not in PRODUCT_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(PRODUCT_STATUSES)}")
    return status


def create_product(
    title: str,
    price,
    cost_price=None,
    packaging_cost=None,
    sku: str | None = None,
    status: str = PRODUCT_STATUS_ACTIVE,
) -> Product:
    title = require_text(title, "title")
    price = require_amount(price, "price")
    cost_price = require_amount(cost_price, "cost_price", allow_none=True)
    packaging_cost = require_amount(packaging_cost, "packaging_cost", allow_none=True)
    sku = optional_text(sku, "sku", max_length=64)
    status = _require_status(status)

    def _op():
        product = Product(
            title=title,
            sku=sku,
            price=price,
            cost_price=cost_price,
            packaging_cost=packaging_cost,
            currency=current_app.config["DEFAULT_CURRENCY"],
            status=status,
        )
        db.session.add(product)
        db.session.flush()
        return product

    try:
        return run_in_transaction(_op)
    except IntegrityError as exc:
        raise ValidationError(f"SKU {sku!r} already exists", details={"sku": sku}) from exc


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product with id {product_id} not found")
    return product


def set_product_status(product_id: int, status: str) -> Product:
    status = _require_status(status)

    def _op():
        product = get_product(product_id)
        product.status = status
        return product

    return run_in_transaction(_op)


def list_products(status: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if status:
        q = q.filter(Product.status == _require_status(status))
    return q.order_by(Product.title.asc(), Product.id.asc()).all()
