import logging
from datetime import datetime

import pytest

from shopledger.extensions import db
from shopledger.models import InventoryLot, InventoryMovement, LotAllocation, Order, OrderItem, WriteOff
from shopledger.models.inventory import MOVEMENT_OUT, OrderItemRef, WriteOffRef
from shopledger.services import order_service
from shopledger.services.allocation_service import AllocationLine, allocate, get_allocations
from shopledger.services.concurrency import run_in_transaction
from shopledger.services.errors import (
    FulfillmentError,
    InsufficientStockError,
    InvariantViolation,
    OutOfStockError,
    ValidationError,
)
from shopledger.services.order_counter_service import current_order_seq


def _allocate_for_write_off(product_id, qty, write_off_qty=None):
    """Allocate inside a transaction against a fresh write-off consumer."""
    def _op():
        wo = WriteOff(product_id=product_id, qty=write_off_qty or qty, total_cost=0)
        db.session.add(wo)
        db.session.flush()
        result = allocate(product_id, qty, WriteOffRef(wo.id))
        wo.total_cost = result.total_cost
        return wo.id, result

    return run_in_transaction(_op)


def _remaining(product_id):
    lots = (
        db.session.query(InventoryLot)
        .filter_by(product_id=product_id)
        .order_by(InventoryLot.id.asc())
        .all()
    )
    return [lot.qty_remaining for lot in lots]


def test_allocates_oldest_lot_first_and_spills_into_next(make_product, receive):
    product = make_product()
    first = receive(product.id, 10, 500, received_at=datetime(2026, 1, 1))
    second = receive(product.id, 10, 700, received_at=datetime(2026, 1, 2))

    _, result = _allocate_for_write_off(product.id, 12)

    assert [(a.lot_id, a.qty, a.unit_cost) for a in result.allocations] == [
        (first.id, 10, 500),
        (second.id, 2, 700),
    ]
    assert result.total_cost == 6400
    assert _remaining(product.id) == [0, 8]


def test_fifo_key_is_received_at_not_insertion_order(make_product, receive):
    product = make_product()
    newer = receive(product.id, 5, 900, received_at=datetime(2026, 3, 1))
    older = receive(product.id, 5, 100, received_at=datetime(2026, 2, 1))

    _, result = _allocate_for_write_off(product.id, 3)

    assert [a.lot_id for a in result.allocations] == [older.id]
    assert result.total_cost == 300
    assert newer.id != older.id


def test_same_received_at_falls_back_to_insertion_order(make_product, receive):
    product = make_product()
    ts = datetime(2026, 1, 1, 12, 0, 0)
    a = receive(product.id, 2, 100, received_at=ts)
    b = receive(product.id, 2, 200, received_at=ts)

    _, result = _allocate_for_write_off(product.id, 3)

    assert [(x.lot_id, x.qty) for x in result.allocations] == [(a.id, 2), (b.id, 1)]


def test_insufficient_lots_fail_without_mutating_anything(make_product, receive):
    product = make_product(title="Gyokuro")
    receive(product.id, 5, 400)

    with pytest.raises(InsufficientStockError) as excinfo:
        _allocate_for_write_off(product.id, 6)

    assert isinstance(excinfo.value, OutOfStockError)
    assert excinfo.value.available == 5
    assert excinfo.value.requested == 6
    assert excinfo.value.product_title == "Gyokuro"
    assert _remaining(product.id) == [5]
    assert db.session.query(LotAllocation).count() == 0
    assert db.session.query(WriteOff).count() == 0


@pytest.mark.parametrize("qty", [0, -3, "abc", 1.5, True])
def test_rejects_non_positive_or_non_integer_quantity(make_product, receive, qty):
    product = make_product()
    receive(product.id, 5, 400)

    with pytest.raises(ValidationError):
        _allocate_for_write_off(product.id, qty, write_off_qty=1)

    assert _remaining(product.id) == [5]


def test_audit_trail_matches_result(make_product, receive):
    product = make_product()
    receive(product.id, 3, 100, received_at=datetime(2026, 1, 1))
    receive(product.id, 3, 250, received_at=datetime(2026, 1, 2))

    wo_id, result = _allocate_for_write_off(product.id, 5)

    rows = get_allocations(WriteOffRef(wo_id))
    assert [(r.qty, r.unit_cost) for r in rows] == [(3, 100), (2, 250)]
    assert sum(r.cost for r in rows) == result.total_cost == 800
    assert all(r.consumer == WriteOffRef(wo_id) for r in rows)
    assert get_allocations(OrderItemRef(wo_id)) == []


def test_exhausted_lots_are_skipped(make_product, receive):
    product = make_product()
    receive(product.id, 2, 100, received_at=datetime(2026, 1, 1))
    last = receive(product.id, 4, 300, received_at=datetime(2026, 1, 2))

    _allocate_for_write_off(product.id, 2)
    _, result = _allocate_for_write_off(product.id, 3)

    assert [(a.lot_id, a.qty) for a in result.allocations] == [(last.id, 3)]
    assert _remaining(product.id) == [0, 1]


def test_allocation_result_to_dict(make_product, receive):
    product = make_product()
    lot = receive(product.id, 4, 150)

    _, result = _allocate_for_write_off(product.id, 4)

    assert result.to_dict() == {
        "product_id": product.id,
        "quantity": 4,
        "allocations": [{"lot_id": lot.id, "qty": 4, "unit_cost": 150}],
        "total_cost": 600,
    }


def test_cogs_mismatch_aborts_the_whole_order(make_product, receive, customer, monkeypatch, caplog):
    product = make_product()
    receive(product.id, 4, 250, received_at=datetime(2026, 1, 1))
    receive(product.id, 4, 300, received_at=datetime(2026, 1, 2))
    # Recomputed line cost disagrees with what the engine accumulated
    monkeypatch.setattr(AllocationLine, "cost", property(lambda self: self.qty * self.unit_cost + 1))

    with caplog.at_level(logging.CRITICAL):
        with pytest.raises(InvariantViolation) as excinfo:
            order_service.create_order([(product.id, 6)], customer)

    assert not isinstance(excinfo.value, FulfillmentError)
    assert any(
        r.levelno == logging.CRITICAL and "COGS mismatch" in r.getMessage() for r in caplog.records
    )
    assert db.session.query(Order).count() == 0
    assert db.session.query(OrderItem).count() == 0
    assert db.session.query(LotAllocation).count() == 0
    assert db.session.query(InventoryMovement).filter_by(kind=MOVEMENT_OUT).count() == 0
    assert _remaining(product.id) == [4, 4]
    assert current_order_seq("AS") == 0


def test_lot_outside_bounds_is_an_invariant_violation(make_product, receive, monkeypatch, caplog):
    product = make_product()
    lot = receive(product.id, 3, 100)

    def corrupt_lots(product_id, lock=False):
        # In-memory state the storage CHECK would never accept
        stored = db.session.get(InventoryLot, lot.id)
        stored.qty_remaining = stored.qty_received + 2
        return [stored]

    monkeypatch.setattr(
        "shopledger.services.allocation_service.list_consumable_lots", corrupt_lots
    )

    with caplog.at_level(logging.CRITICAL):
        with pytest.raises(InvariantViolation):
            _allocate_for_write_off(product.id, 1)

    assert any(r.levelno == logging.CRITICAL for r in caplog.records)
    assert _remaining(product.id) == [3]
    assert db.session.query(LotAllocation).count() == 0
    assert db.session.query(WriteOff).count() == 0
