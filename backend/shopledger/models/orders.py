from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import utcnow, to_utc_z

ORDER_STATUS_NEW = "NEW"
ORDER_STATUS_CONFIRMED = "CONFIRMED"
ORDER_STATUS_IN_PROGRESS = "IN_PROGRESS"
ORDER_STATUS_DONE = "DONE"
ORDER_STATUS_CANCELED = "CANCELED"
ORDER_STATUSES = (
    ORDER_STATUS_NEW,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_IN_PROGRESS,
    ORDER_STATUS_DONE,
    ORDER_STATUS_CANCELED,
)


class Order(db.Model):
    """
    Customer order.

    Created once, atomically, by order_service.create_order together with its
    items, lot allocations and ledger movements. Later flows only change
    status and the soft-delete marker.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("channel", "seq", name="uq_orders_channel_seq"),
        db.UniqueConstraint("number", name="uq_orders_number"),
        # Storage-level guard for retried requests
        db.UniqueConstraint("idempotency_key", name="uq_orders_idempotency_key"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_NEW, index=True)

    # Intake channel and its human-readable sequence ("№00042/AS")
    channel = db.Column(db.String(16), nullable=False)
    seq = db.Column(db.Integer, nullable=False)
    number = db.Column(db.String(32), nullable=False)

    idempotency_key = db.Column(db.String(128), nullable=True)

    total_amount = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="RUB")

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=False)
    customer_address = db.Column(db.String(512), nullable=True)
    comment = db.Column(db.Text, nullable=True)

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "OrderItem",
        backref=db.backref("order", lazy=True),
        lazy=True,
        order_by="OrderItem.id",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "channel": self.channel,
            "seq": self.seq,
            "number": self.number,
            "idempotency_key": self.idempotency_key,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "comment": self.comment,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line with snapshots taken at order time.

    cogs_total stays NULL until the allocation engine has run for the line,
    which happens in the same transaction that creates the order.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_order_items_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    title_snapshot = db.Column(db.String(255), nullable=False)
    price_snapshot = db.Column(db.Integer, nullable=False)
    cost_price_at_time = db.Column(db.Integer, nullable=True)
    packaging_cost_at_time = db.Column(db.Integer, nullable=True)

    qty = db.Column(db.Integer, nullable=False)

    cogs_total = db.Column(db.BigInteger, nullable=True)
    profit_total = db.Column(db.BigInteger, nullable=True)

    product = db.relationship("Product")

    @property
    def line_total(self) -> int:
        return self.price_snapshot * self.qty

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "title_snapshot": self.title_snapshot,
            "price_snapshot": self.price_snapshot,
            "cost_price_at_time": self.cost_price_at_time,
            "packaging_cost_at_time": self.packaging_cost_at_time,
            "qty": self.qty,
            "cogs_total": self.cogs_total,
            "profit_total": self.profit_total,
        }


class OrderCounter(db.Model):
    """One row per channel; the only source of order sequence numbers."""
    __tablename__ = "order_counters"

    channel = db.Column(db.String(16), primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
