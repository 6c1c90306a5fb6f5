from datetime import datetime

import pytest

from shopledger.extensions import db
from shopledger.models import InventoryLot, InventoryMovement, LotAllocation, WriteOff
from shopledger.models.inventory import MOVEMENT_OUT, SOURCE_WRITE_OFF, WriteOffRef
from shopledger.services import write_off_service
from shopledger.services.allocation_service import get_allocations
from shopledger.services.errors import NotFoundError, OutOfStockError, ValidationError
from shopledger.services.ledger_service import get_current_stock
from shopledger.services.notification_service import write_off_recorded


def test_write_off_costs_fifo_lots(make_product, receive):
    product = make_product()
    receive(product.id, 5, 100, received_at=datetime(2026, 1, 1))
    receive(product.id, 5, 200, received_at=datetime(2026, 1, 2))

    wo = write_off_service.write_off(product.id, 7, reason="water damage")

    assert wo.total_cost == 900
    assert wo.reason == "water damage"
    assert [(a.qty, a.unit_cost) for a in get_allocations(WriteOffRef(wo.id))] == [(5, 100), (2, 200)]

    movement = db.session.query(InventoryMovement).filter_by(source_kind=SOURCE_WRITE_OFF).one()
    assert movement.quantity == -7
    assert movement.kind == MOVEMENT_OUT
    assert movement.source_id == wo.id
    assert get_current_stock(product.id) == 3


def test_write_off_more_than_stock_is_rejected(make_product, receive):
    product = make_product()
    receive(product.id, 2, 100)

    with pytest.raises(OutOfStockError) as excinfo:
        write_off_service.write_off(product.id, 3)

    assert excinfo.value.available == 2
    assert db.session.query(WriteOff).count() == 0
    assert db.session.query(LotAllocation).count() == 0
    assert db.session.query(InventoryLot).one().qty_remaining == 2


@pytest.mark.parametrize("qty", [0, -1, "x", "³", "1e3"])
def test_write_off_requires_positive_qty(make_product, receive, qty):
    product = make_product()
    receive(product.id, 2, 100)

    with pytest.raises(ValidationError):
        write_off_service.write_off(product.id, qty)


def test_write_off_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        write_off_service.write_off(424242, 1)


def test_archived_product_can_still_be_written_off(make_product, receive):
    product = make_product(status="ARCHIVED")
    receive(product.id, 4, 150)

    wo = write_off_service.write_off(product.id, 4)

    assert wo.total_cost == 600
    assert get_current_stock(product.id) == 0


def test_write_off_notifies_after_commit(make_product, receive):
    product = make_product()
    receive(product.id, 1, 100)
    seen = []

    def recorder(sender, write_off=None, **kwargs):
        seen.append((write_off.id, write_off.total_cost))

    with write_off_recorded.connected_to(recorder):
        wo = write_off_service.write_off(product.id, 1)

    assert seen == [(wo.id, 100)]


def test_list_write_offs(make_product, receive):
    a = make_product()
    b = make_product()
    receive(a.id, 5, 100)
    receive(b.id, 5, 100)
    write_off_service.write_off(a.id, 1)
    write_off_service.write_off(b.id, 2)
    write_off_service.write_off(a.id, 3)

    assert [wo.qty for wo in write_off_service.list_write_offs(a.id)] == [3, 1]
    assert len(write_off_service.list_write_offs()) == 3


def test_write_off_cost_beyond_32_bit(make_product, receive):
    product = make_product()
    receive(product.id, 10, 999_999_999)

    wo = write_off_service.write_off(product.id, 10)

    assert db.session.get(WriteOff, wo.id).total_cost == 9_999_999_990
    assert isinstance(WriteOff.total_cost.property.columns[0].type, db.BigInteger)
