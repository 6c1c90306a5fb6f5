from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import utcnow, to_utc_z

STATUS_DRAFT = "DRAFT"
STATUS_POSTED = "POSTED"
STATUS_CANCELED = "CANCELED"


class Purchase(db.Model):
    """
    Supplier purchase document.

    LIFECYCLE: DRAFT -> POSTED (creates lots + IN movements) or DRAFT -> CANCELED.
    IMMUTABLE once POSTED.
    """
    __tablename__ = "purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    supplier = db.Column(db.String(255), nullable=True)
    comment = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "PurchaseItem",
        backref=db.backref("purchase", lazy=True),
        lazy=True,
        order_by="PurchaseItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def total_cost(self) -> int:
        return sum(item.qty * item.unit_cost for item in self.items)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "supplier": self.supplier,
            "comment": self.comment,
            "status": self.status,
            "posted_at": to_utc_z(self.posted_at) if self.posted_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "items_count": len(self.items),
            "total_cost": self.total_cost,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    qty = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "product_title": self.product.title if self.product else None,
            "qty": self.qty,
            "unit_cost": self.unit_cost,
        }


class Shipment(db.Model):
    """
    Inbound batch ("flight") whose freight and other costs are spread over
    its lines when posted, giving each lot a landed unit cost.
    """
    __tablename__ = "shipments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(128), nullable=True)
    freight_cost = db.Column(db.Integer, nullable=False, default=0)
    other_costs = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)
    posted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    lines = db.relationship(
        "ShipmentLine",
        backref=db.backref("shipment", lazy=True),
        lazy=True,
        order_by="ShipmentLine.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "freight_cost": self.freight_cost,
            "other_costs": self.other_costs,
            "status": self.status,
            "posted_at": to_utc_z(self.posted_at) if self.posted_at else None,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class ShipmentLine(db.Model):
    __tablename__ = "shipment_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey("shipments.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    qty = db.Column(db.Integer, nullable=False)
    goods_unit_cost = db.Column(db.Integer, nullable=False)
    # Filled in when the shipment is posted
    landed_unit_cost = db.Column(db.Integer, nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shipment_id": self.shipment_id,
            "product_id": self.product_id,
            "qty": self.qty,
            "goods_unit_cost": self.goods_unit_cost,
            "landed_unit_cost": self.landed_unit_cost,
        }
