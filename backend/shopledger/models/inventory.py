from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..extensions import db
from shopledger.time_utils import utcnow, to_utc_z

# Movement kinds
MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"
MOVEMENT_ADJUST = "ADJUST"
MOVEMENT_KINDS = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUST)

# What caused the movement
SOURCE_ORDER = "ORDER"
SOURCE_PURCHASE = "PURCHASE"
SOURCE_MANUAL = "MANUAL"
SOURCE_WRITE_OFF = "WRITE_OFF"
SOURCE_SHIPMENT = "SHIPMENT"
SOURCE_KINDS = (SOURCE_ORDER, SOURCE_PURCHASE, SOURCE_MANUAL, SOURCE_WRITE_OFF, SOURCE_SHIPMENT)


@dataclass(frozen=True)
class OrderItemRef:
    """Allocation consumer: one order line."""
    order_item_id: int


@dataclass(frozen=True)
class WriteOffRef:
    """Allocation consumer: one write-off."""
    write_off_id: int


ConsumerRef = Union[OrderItemRef, WriteOffRef]


class InventoryMovement(db.Model):
    """
    Append-only stock ledger entry.

    Stock on hand for a product is SUM(quantity) over its movements. Rows are
    never updated or deleted; a correction is a new ADJUST row.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_movements_product_created", "product_id", "created_at"),
        db.Index("ix_movements_source", "source_kind", "source_id"),
        db.CheckConstraint("quantity <> 0", name="ck_movements_quantity_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Signed: positive = received, negative = consumed
    quantity = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(16), nullable=False, index=True)
    source_kind = db.Column(db.String(16), nullable=False, index=True)
    source_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_title": self.product.title if self.product else None,
            "quantity": self.quantity,
            "kind": self.kind,
            "source_kind": self.source_kind,
            "source_id": self.source_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryLot(db.Model):
    """
    A batch of stock received together at one unit cost.

    received_at is the FIFO key; id breaks ties so insertion order wins.
    unit_cost is fixed at receipt. qty_remaining is only ever decremented by
    the allocation engine, under a row lock.
    """
    __tablename__ = "inventory_lots"
    __table_args__ = (
        db.Index("ix_lots_product_received", "product_id", "received_at", "id"),
        db.CheckConstraint("qty_received > 0", name="ck_lots_qty_received_positive"),
        db.CheckConstraint(
            "qty_remaining >= 0 AND qty_remaining <= qty_received",
            name="ck_lots_qty_remaining_range",
        ),
        db.CheckConstraint("unit_cost >= 0", name="ck_lots_unit_cost_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=True, index=True)
    shipment_id = db.Column(db.Integer, db.ForeignKey("shipments.id"), nullable=True, index=True)

    unit_cost = db.Column(db.Integer, nullable=False)
    qty_received = db.Column(db.Integer, nullable=False)
    qty_remaining = db.Column(db.Integer, nullable=False)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "purchase_id": self.purchase_id,
            "shipment_id": self.shipment_id,
            "unit_cost": self.unit_cost,
            "qty_received": self.qty_received,
            "qty_remaining": self.qty_remaining,
            "received_at": to_utc_z(self.received_at),
            "created_at": to_utc_z(self.created_at),
        }


class WriteOff(db.Model):
    """Stock removed for loss/damage. total_cost is derived from its allocations."""
    __tablename__ = "write_offs"
    __table_args__ = (
        db.CheckConstraint("qty > 0", name="ck_write_offs_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    qty = db.Column(db.Integer, nullable=False)
    total_cost = db.Column(db.BigInteger, nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "qty": self.qty,
            "total_cost": self.total_cost,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class LotAllocation(db.Model):
    """
    Audit row: how much of one lot one consumption event took, and at what cost.

    Exactly one of order_item_id / write_off_id is set (CHECK below); code
    works with the `consumer` tagged value instead of the raw columns.
    """
    __tablename__ = "lot_allocations"
    __table_args__ = (
        db.CheckConstraint(
            "(order_item_id IS NULL) <> (write_off_id IS NULL)",
            name="ck_allocations_single_consumer",
        ),
        db.CheckConstraint("qty > 0", name="ck_allocations_qty_positive"),
        db.UniqueConstraint("lot_id", "order_item_id", name="uq_allocations_lot_order_item"),
        db.UniqueConstraint("lot_id", "write_off_id", name="uq_allocations_lot_write_off"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    lot_id = db.Column(db.Integer, db.ForeignKey("inventory_lots.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)
    write_off_id = db.Column(db.Integer, db.ForeignKey("write_offs.id"), nullable=True, index=True)

    qty = db.Column(db.Integer, nullable=False)
    # Captured from the lot at allocation time
    unit_cost = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    lot = db.relationship("InventoryLot")

    @classmethod
    def for_consumer(cls, consumer: ConsumerRef, **kwargs) -> "LotAllocation":
        if isinstance(consumer, OrderItemRef):
            return cls(order_item_id=consumer.order_item_id, **kwargs)
        if isinstance(consumer, WriteOffRef):
            return cls(write_off_id=consumer.write_off_id, **kwargs)
        raise TypeError(f"unsupported allocation consumer: {consumer!r}")

    @property
    def consumer(self) -> ConsumerRef:
        if self.order_item_id is not None:
            return OrderItemRef(self.order_item_id)
        return WriteOffRef(self.write_off_id)

    @property
    def cost(self) -> int:
        return self.qty * self.unit_cost

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lot_id": self.lot_id,
            "order_item_id": self.order_item_id,
            "write_off_id": self.write_off_id,
            "qty": self.qty,
            "unit_cost": self.unit_cost,
            "created_at": to_utc_z(self.created_at),
        }
