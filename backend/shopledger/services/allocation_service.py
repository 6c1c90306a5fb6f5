# Overview: FIFO allocation engine - consumes lots oldest-first and records the audit trail.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import InventoryLot, LotAllocation, Product
from ..models.inventory import ConsumerRef, OrderItemRef, WriteOffRef
from ..validation import require_positive_qty
from .errors import InsufficientStockError, InvariantViolation
from .lot_service import decrement_remaining, list_consumable_lots
"""
Allocation Invariants (authoritative, always checked)

- Lots are consumed in FIFO order: received_at ASC, then id ASC.
- Allocation is all-or-nothing. If lots run out before the request is met,
  InsufficientStockError is raised and the caller's transaction rolls back,
  which undoes every decrement and allocation row made so far.
- After a successful allocation:
    sum(allocation.qty) == requested quantity
    0 <= lot.qty_remaining <= lot.qty_received for every touched lot
    total_cost == sum(allocation.qty * allocation.unit_cost)
- Integer arithmetic only. Any rounding (landed cost, freight) happens
  upstream when lots are created, never here.

Concurrency:
- Lots are selected FOR UPDATE (and the SQLite write lock is already held via
  begin_write), so only one transaction mutates a given lot at a time.
"""


@dataclass(frozen=True)
class AllocationLine:
    lot_id: int
    qty: int
    unit_cost: int

    @property
    def cost(self) -> int:
        return self.qty * self.unit_cost


@dataclass
class AllocationResult:
    product_id: int
    quantity: int
    allocations: list[AllocationLine] = field(default_factory=list)
    total_cost: int = 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "allocations": [
                {"lot_id": a.lot_id, "qty": a.qty, "unit_cost": a.unit_cost}
                for a in self.allocations
            ],
            "total_cost": self.total_cost,
        }


def _violation(message: str) -> InvariantViolation:
    current_app.logger.critical("INVARIANT VIOLATION: %s", message)
    return InvariantViolation(message)


def _insufficient(product_id: int, requested: int, available: int, message: str) -> InsufficientStockError:
    product = db.session.get(Product, product_id)
    return InsufficientStockError(
        product_id=product_id,
        product_title=product.title if product is not None else None,
        available=available,
        requested=requested,
        message=message,
    )


def _check_lot_bounds(lot: InventoryLot, stage: str) -> None:
    if lot.qty_remaining < 0 or lot.qty_remaining > lot.qty_received:
        raise _violation(
            f"{stage}: lot {lot.id} has qty_remaining={lot.qty_remaining} "
            f"outside [0, {lot.qty_received}]"
        )


def _check_result(result: AllocationResult, touched: list[InventoryLot]) -> None:
    allocated = sum(a.qty for a in result.allocations)
    if allocated != result.quantity:
        raise _violation(
            f"allocations for product {result.product_id} sum to {allocated}, "
            f"requested {result.quantity}"
        )

    expected_cost = sum(a.cost for a in result.allocations)
    if expected_cost != result.total_cost:
        raise _violation(
            f"COGS mismatch for product {result.product_id}: "
            f"accumulated {result.total_cost}, recomputed {expected_cost}"
        )

    for lot in touched:
        _check_lot_bounds(lot, "after allocation")


def allocate(product_id: int, quantity: int, consumer: ConsumerRef) -> AllocationResult:
    """
    Consume `quantity` units of `product_id` from its lots, oldest first.

    Must run inside the caller's write transaction; the caller appends the
    matching OUT movement before committing. Creates one LotAllocation per
    lot touched. Never commits and never catches its own failures.

    Raises:
        ValidationError: quantity is not a positive integer
        InsufficientStockError: lots ran out before the request was met
        InvariantViolation: a postcondition failed (bug; abort the transaction)
    """
    quantity = require_positive_qty(quantity, "quantity")

    lots = list_consumable_lots(product_id, lock=True)

    available = 0
    for lot in lots:
        _check_lot_bounds(lot, "before allocation")
        available += lot.qty_remaining

    # Fail before touching anything; the rollback guarantee still covers the
    # case where another writer slipped in between.
    if available < quantity:
        raise _insufficient(
            product_id,
            quantity,
            available,
            f"Not enough stock in lots for product {product_id}. "
            f"Needed: {quantity}, available: {available}",
        )

    result = AllocationResult(product_id=product_id, quantity=quantity)
    touched: list[InventoryLot] = []
    remaining_needed = quantity

    for lot in lots:
        if remaining_needed <= 0:
            break

        take = min(remaining_needed, lot.qty_remaining)
        unit_cost = lot.unit_cost

        decrement_remaining(lot, take)
        db.session.add(
            LotAllocation.for_consumer(consumer, lot_id=lot.id, qty=take, unit_cost=unit_cost)
        )

        result.allocations.append(AllocationLine(lot_id=lot.id, qty=take, unit_cost=unit_cost))
        result.total_cost += take * unit_cost
        touched.append(lot)
        remaining_needed -= take

    if remaining_needed > 0:
        raise _insufficient(
            product_id,
            quantity,
            quantity - remaining_needed,
            f"Not enough stock in lots for product {product_id}. "
            f"Needed: {quantity}, allocated: {quantity - remaining_needed}",
        )

    db.session.flush()
    _check_result(result, touched)
    return result


def get_allocations(consumer: ConsumerRef) -> list[LotAllocation]:
    """Audit trail for one order line or write-off, in FIFO order."""
    q = db.session.query(LotAllocation).join(InventoryLot, InventoryLot.id == LotAllocation.lot_id)
    if isinstance(consumer, OrderItemRef):
        q = q.filter(LotAllocation.order_item_id == consumer.order_item_id)
    elif isinstance(consumer, WriteOffRef):
        q = q.filter(LotAllocation.write_off_id == consumer.write_off_id)
    else:
        raise TypeError(f"unsupported allocation consumer: {consumer!r}")
    return q.order_by(InventoryLot.received_at.asc(), InventoryLot.id.asc()).all()
