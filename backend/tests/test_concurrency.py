"""
Thread stress against a file-backed SQLite database.

Every worker runs in its own app context (own session, own connection),
so the write lock taken by run_in_transaction is what serializes them.
"""
import threading

import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import InventoryLot, Order
from shopledger.services import inventory_service, order_service, products_service, write_off_service
from shopledger.services.errors import OutOfStockError
from shopledger.services.ledger_service import get_current_stock
from shopledger.services.lot_service import get_stock_from_lots

CUSTOMER = {"name": "Concurrent Buyer", "phone": "+79000000000"}


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30, "check_same_thread": False}},
        'LOCK_RETRY_ATTEMPTS': 5,
        'LOCK_RETRY_BACKOFF': 0.01,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def stocked_product(file_app):
    with file_app.app_context():
        product = products_service.create_product("Concurrent Product", 1000)
        inventory_service.receive_stock(product.id, 6, unit_cost=400)
        inventory_service.receive_stock(product.id, 4, unit_cost=500)
        product_id = product.id
        db.session.remove()
    return product_id


def _run_workers(app, target, count):
    results = []
    errors = []
    lock = threading.Lock()

    def worker(index):
        with app.app_context():
            try:
                value = target(index)
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def test_concurrent_orders_never_oversell(file_app, stocked_product):
    def place(_index):
        order = order_service.create_order([(stocked_product, 3)], CUSTOMER)
        return order.id

    results, errors = _run_workers(file_app, place, 8)

    # 10 units, 3 per order
    assert len(results) == 3
    assert len(errors) == 5
    assert all(isinstance(exc, OutOfStockError) for exc in errors)

    with file_app.app_context():
        lots = db.session.query(InventoryLot).filter_by(product_id=stocked_product).all()
        assert all(lot.qty_remaining >= 0 for lot in lots)
        assert get_current_stock(stocked_product) == get_stock_from_lots(stocked_product) == 1
        assert db.session.query(Order).count() == 3


def test_concurrent_orders_and_write_offs_share_the_lots(file_app, stocked_product):
    def act(index):
        if index % 2:
            return write_off_service.write_off(stocked_product, 2).qty
        return order_service.create_order([(stocked_product, 2)], CUSTOMER).items[0].qty

    results, errors = _run_workers(file_app, act, 8)

    assert sum(results) == 10
    assert all(isinstance(exc, OutOfStockError) for exc in errors)

    with file_app.app_context():
        assert get_current_stock(stocked_product) == 0
        assert get_stock_from_lots(stocked_product) == 0


def test_concurrent_order_numbers_are_unique(file_app, stocked_product):
    def place(index):
        channel = "AS" if index % 2 else "LAB"
        return order_service.create_order([(stocked_product, 1)], CUSTOMER, channel=channel).number

    numbers, errors = _run_workers(file_app, place, 10)

    assert not errors
    assert len(numbers) == len(set(numbers)) == 10
    assert sorted(n for n in numbers if n.endswith("/AS")) == [f"№{i:05d}/AS" for i in range(1, 6)]


def test_same_idempotency_key_creates_one_order(file_app, stocked_product):
    def place(_index):
        order = order_service.create_order(
            [(stocked_product, 1)], CUSTOMER, idempotency_key="checkout-42"
        )
        return order.id

    ids, errors = _run_workers(file_app, place, 6)

    assert not errors
    assert len(set(ids)) == 1

    with file_app.app_context():
        assert db.session.query(Order).count() == 1
        assert get_current_stock(stocked_product) == 9
