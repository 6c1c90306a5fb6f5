from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z

PRODUCT_STATUS_DRAFT = "DRAFT"
PRODUCT_STATUS_ACTIVE = "ACTIVE"
PRODUCT_STATUS_ARCHIVED = "ARCHIVED"
PRODUCT_STATUSES = (PRODUCT_STATUS_DRAFT, PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_ARCHIVED)


class Product(db.Model):
    """
    Product master data, as far as the warehouse engine needs it.

    The catalogue owns these rows; the engine only reads them and snapshots
    title/price/cost fields onto order items at order time.

    Money fields are integer minor units (kopecks). There is deliberately no
    stock column: stock is SUM(inventory_movements.quantity).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_status_title", "status", "title"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    title = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    # Sale price per unit
    price = db.Column(db.Integer, nullable=False, default=0)
    # Reference cost basis; real COGS always comes from lots
    cost_price = db.Column(db.Integer, nullable=True)
    packaging_cost = db.Column(db.Integer, nullable=True)
    currency = db.Column(db.String(8), nullable=False, default="RUB")

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Product id={self.id} title={self.title!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "sku": self.sku,
            "price": self.price,
            "cost_price": self.cost_price,
            "packaging_cost": self.packaging_cost,
            "currency": self.currency,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
