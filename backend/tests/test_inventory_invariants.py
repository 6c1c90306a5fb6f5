import random

import pytest
from sqlalchemy import func

from shopledger.extensions import db
from shopledger.models import InventoryLot, InventoryMovement, LotAllocation, Order, OrderItem, WriteOff
from shopledger.models.inventory import MOVEMENT_ADJUST, SOURCE_MANUAL, SOURCE_WRITE_OFF
from shopledger.services import inventory_service, ledger_service, order_service, write_off_service
from shopledger.services.errors import NotFoundError, OutOfStockError, ValidationError
from shopledger.services.ledger_service import get_current_stock
from shopledger.services.lot_service import get_stock_from_lots


def _assert_invariants(product_ids):
    for lot in db.session.query(InventoryLot).all():
        assert 0 <= lot.qty_remaining <= lot.qty_received

    for product_id in product_ids:
        assert get_current_stock(product_id) == get_stock_from_lots(product_id)

    for item in db.session.query(OrderItem).all():
        cost = (
            db.session.query(func.coalesce(func.sum(LotAllocation.qty * LotAllocation.unit_cost), 0))
            .filter(LotAllocation.order_item_id == item.id)
            .scalar()
        )
        qty = (
            db.session.query(func.coalesce(func.sum(LotAllocation.qty), 0))
            .filter(LotAllocation.order_item_id == item.id)
            .scalar()
        )
        assert item.cogs_total == cost
        assert item.qty == qty

    for wo in db.session.query(WriteOff).all():
        cost = (
            db.session.query(func.coalesce(func.sum(LotAllocation.qty * LotAllocation.unit_cost), 0))
            .filter(LotAllocation.write_off_id == wo.id)
            .scalar()
        )
        assert wo.total_cost == cost


def test_receive_order_write_off_keeps_ledger_and_lots_equal(make_product, customer):
    product = make_product(cost_price=250)

    inventory_service.receive_stock(product.id, 10)
    order_service.create_order([(product.id, 7)], customer)
    write_off_service.write_off(product.id, 2)

    assert get_current_stock(product.id) == 1
    assert get_stock_from_lots(product.id) == 1
    _assert_invariants([product.id])


def test_randomized_operation_sequence_preserves_invariants(make_product, customer):
    rng = random.Random(20261019)
    products = [make_product(price=1500) for _ in range(3)]
    ids = [p.id for p in products]

    for step in range(120):
        product_id = rng.choice(ids)
        action = rng.choice(["receive", "receive", "order", "order", "write_off", "adjust"])
        qty = rng.randint(1, 8)
        before_lots = get_stock_from_lots(product_id)
        try:
            if action == "receive":
                inventory_service.receive_stock(product_id, qty, unit_cost=rng.randint(0, 900))
            elif action == "order":
                order_service.create_order(
                    [(product_id, qty)], customer, idempotency_key=f"step-{step}"
                )
            elif action == "write_off":
                write_off_service.write_off(product_id, qty)
            else:
                inventory_service.adjust_stock(
                    product_id, rng.choice([qty, -qty]), unit_cost=rng.randint(0, 900)
                )
        except OutOfStockError:
            # Failed consumption leaves every lot untouched
            assert get_stock_from_lots(product_id) == before_lots

        _assert_invariants(ids)

    # Replaying any stored key changes nothing
    replay_keys = [
        key for (key,) in db.session.query(Order.idempotency_key).all()
    ]
    stock_before = {pid: get_current_stock(pid) for pid in ids}
    for key in replay_keys[:5]:
        order_service.create_order([(ids[0], 1)], customer, idempotency_key=key)
    assert {pid: get_current_stock(pid) for pid in ids} == stock_before
    _assert_invariants(ids)


def test_receive_stock_defaults_to_cost_price(make_product):
    product = make_product(cost_price=333)

    lot = inventory_service.receive_stock(product.id, 4, note="first delivery")

    assert lot.unit_cost == 333
    movement = db.session.query(InventoryMovement).one()
    assert movement.source_kind == SOURCE_MANUAL
    assert movement.source_id == lot.id
    assert movement.note == "first delivery"


def test_receive_stock_without_any_cost_is_rejected(make_product):
    product = make_product(cost_price=None)

    with pytest.raises(ValidationError):
        inventory_service.receive_stock(product.id, 4)

    assert db.session.query(InventoryLot).count() == 0


def test_receive_stock_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        inventory_service.receive_stock(31337, 1, unit_cost=10)


def test_positive_adjustment_creates_lot_and_adjust_movement(make_product):
    product = make_product(cost_price=120)

    result = inventory_service.adjust_stock(product.id, 6, note="found in back room")

    assert result["stock"] == 6
    lot = db.session.get(InventoryLot, result["lot_id"])
    assert lot.unit_cost == 120
    movement = db.session.query(InventoryMovement).one()
    assert movement.kind == MOVEMENT_ADJUST
    assert movement.source_kind == SOURCE_MANUAL


def test_negative_adjustment_goes_through_fifo_write_off(make_product, receive):
    product = make_product()
    receive(product.id, 3, 100)
    receive(product.id, 3, 400)

    result = inventory_service.adjust_stock(product.id, -4, note="recount")

    assert result["stock"] == 2
    wo = db.session.get(WriteOff, result["write_off_id"])
    assert wo.total_cost == 3 * 100 + 1 * 400
    assert wo.reason == "recount"
    movement = (
        db.session.query(InventoryMovement)
        .filter_by(source_kind=SOURCE_WRITE_OFF)
        .one()
    )
    assert movement.kind == MOVEMENT_ADJUST
    assert movement.quantity == -4
    _assert_invariants([product.id])


def test_adjustment_validation(make_product, receive):
    product = make_product(cost_price=100)
    receive(product.id, 1, 100)

    with pytest.raises(ValidationError):
        inventory_service.adjust_stock(product.id, 0)
    with pytest.raises(OutOfStockError):
        inventory_service.adjust_stock(product.id, -2)

    assert get_current_stock(product.id) == 1


def test_inventory_summary(make_product, receive):
    product = make_product()
    receive(product.id, 2, 100)
    receive(product.id, 3, 300)
    write_off_service.write_off(product.id, 2)

    summary = inventory_service.get_inventory_summary(product.id)

    assert summary["stock"] == 3
    assert summary["stock_from_lots"] == 3
    assert summary["inventory_value"] == 900
    assert summary["open_lots"] == 1
    assert summary["next_fifo_unit_cost"] == 300


def test_list_movements_newest_first_with_filters(make_product, receive, customer):
    product = make_product()
    other = make_product()
    receive(product.id, 5, 100)
    receive(other.id, 5, 100)
    order_service.create_order([(product.id, 2)], customer)

    page = ledger_service.list_movements(product_id=product.id)
    assert [m["quantity"] for m in page["items"]] == [-2, 5]
    assert page["total"] == 2

    outs = ledger_service.list_movements(kind="OUT")
    assert [m["product_id"] for m in outs["items"]] == [product.id]

    clamped = ledger_service.list_movements(page_size=1000)
    assert clamped["page_size"] == 100
