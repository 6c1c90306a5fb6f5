from datetime import datetime, timedelta

import pytest

from shopledger.extensions import db
from shopledger.models import Order, OrderItem
from shopledger.services import analytics_service, order_service, write_off_service
from shopledger.services.errors import ValidationError
from shopledger.time_utils import utcnow


@pytest.fixture
def window():
    now = utcnow()
    return now - timedelta(days=1), now + timedelta(days=1)


def _done_order(product_id, qty, customer):
    order = order_service.create_order([(product_id, qty)], customer)
    return order_service.update_order_status(order.id, "DONE")


def test_profit_analytics_sums_done_orders(make_product, receive, customer, window):
    tea = make_product(title="Tea", price=1000, packaging_cost=20)
    cup = make_product(title="Cup", price=3000)
    receive(tea.id, 10, 400)
    receive(cup.id, 5, 1000)

    _done_order(tea.id, 3, customer)
    _done_order(cup.id, 2, customer)
    # NEW orders are not counted by default
    order_service.create_order([(tea.id, 1)], customer)

    report = analytics_service.get_profit_analytics(*window)

    assert report["order_count"] == 2
    assert report["revenue"] == 3 * 1000 + 2 * 3000
    assert report["cogs"] == 3 * 400 + 2 * 1000
    assert report["packaging"] == 3 * 20
    assert report["gross_profit"] == 9000 - 3200 - 60
    assert report["margin_percent"] == round(5740 / 9000 * 100, 2)
    assert [row["title"] for row in report["product_breakdown"]] == ["Cup", "Tea"]
    assert report["product_breakdown"][1] == {
        "product_id": tea.id,
        "title": "Tea",
        "revenue": 3000,
        "cogs": 1200,
        "packaging": 60,
        "quantity": 3,
        "profit": 1740,
    }


def test_profit_analytics_status_filter_and_soft_delete(make_product, receive, customer, window):
    product = make_product(price=500)
    receive(product.id, 10, 100)
    new_order = order_service.create_order([(product.id, 1)], customer)
    deleted = order_service.create_order([(product.id, 1)], customer)
    order_service.soft_delete_order(deleted.id)

    report = analytics_service.get_profit_analytics(*window, status_filter="NEW")

    assert report["order_count"] == 1
    assert report["revenue"] == 500
    assert new_order.id != deleted.id


def test_profit_analytics_respects_date_range(make_product, receive, customer):
    product = make_product()
    receive(product.id, 5, 100)
    _done_order(product.id, 1, customer)

    past = analytics_service.get_profit_analytics("2020-01-01T00:00:00Z", "2020-12-31T23:59:59Z")

    assert past["order_count"] == 0
    assert past["revenue"] == 0
    assert past["margin_percent"] == 0
    assert past["product_breakdown"] == []


def test_cogs_falls_back_to_cost_snapshot(make_product, customer, window):
    product = make_product(price=1000, cost_price=600)
    order = Order(
        status="DONE",
        channel="AS",
        seq=900,
        number="№00900/AS",
        total_amount=2000,
        currency="RUB",
        customer_name=customer["name"],
        customer_phone=customer["phone"],
    )
    db.session.add(order)
    db.session.flush()
    db.session.add(OrderItem(
        order_id=order.id,
        product_id=product.id,
        title_snapshot=product.title,
        price_snapshot=1000,
        cost_price_at_time=600,
        qty=2,
        cogs_total=None,
    ))
    db.session.commit()

    report = analytics_service.get_profit_analytics(*window)

    assert report["cogs"] == 1200
    assert report["gross_profit"] == 800


def test_analytics_input_validation(db_session, window):
    with pytest.raises(ValidationError):
        analytics_service.get_profit_analytics("yesterday", window[1])
    with pytest.raises(ValidationError):
        analytics_service.get_profit_analytics(None, window[1])
    with pytest.raises(ValidationError):
        analytics_service.get_profit_analytics(*window, status_filter="SHIPPED")
    with pytest.raises(ValidationError):
        analytics_service.profit_by_period(*window, group_by="year")


def test_profit_by_period_buckets(make_product, receive, customer):
    product = make_product(price=1000)
    receive(product.id, 10, 300)
    first = _done_order(product.id, 1, customer)
    second = _done_order(product.id, 2, customer)
    third = _done_order(product.id, 3, customer)

    # Spread the orders over two months
    for order, when in (
        (first, datetime(2026, 1, 5, 10, 0)),
        (second, datetime(2026, 1, 20, 10, 0)),
        (third, datetime(2026, 2, 3, 10, 0)),
    ):
        db.session.get(Order, order.id).created_at = when
    db.session.commit()

    monthly = analytics_service.profit_by_period("2026-01-01", "2026-02-28", group_by="month")
    assert [(r["period"], r["order_count"], r["revenue"]) for r in monthly["rows"]] == [
        ("2026-01", 2, 3000),
        ("2026-02", 1, 3000),
    ]
    assert monthly["rows"][0]["gross_profit"] == 3000 - 900

    weekly = analytics_service.profit_by_period("2026-01-01", "2026-02-28", group_by="week")
    assert [r["period"] for r in weekly["rows"]] == ["2026-W02", "2026-W04", "2026-W06"]

    daily = analytics_service.profit_by_period("2026-01-01", "2026-02-28")
    assert [r["period"] for r in daily["rows"]] == ["2026-01-05", "2026-01-20", "2026-02-03"]


def test_stock_snapshot(make_product, receive, customer):
    priced = make_product(title="A", price=1000, cost_price=600, packaging_cost=100)
    make_product(title="B", price=800)
    make_product(title="C", price=0, cost_price=10)
    receive(priced.id, 4, 600)
    order_service.create_order([(priced.id, 1)], customer)

    rows = {row["title"]: row for row in analytics_service.stock_snapshot()}

    assert rows["A"]["current_stock"] == 3
    assert rows["A"]["unit_profit"] == 300
    assert rows["A"]["margin_percent"] == 30.0
    assert rows["B"]["current_stock"] == 0
    assert rows["B"]["unit_profit"] is None
    assert rows["B"]["margin_percent"] is None
    assert rows["C"]["unit_profit"] == -10
    assert rows["C"]["margin_percent"] is None


def test_inventory_valuation_uses_remaining_lot_costs(make_product, receive):
    a = make_product(title="A")
    b = make_product(title="B")
    receive(a.id, 2, 100)
    receive(a.id, 3, 200)
    receive(b.id, 1, 50)
    write_off_service.write_off(a.id, 3)
    write_off_service.write_off(b.id, 1)

    report = analytics_service.inventory_valuation()

    assert report["rows"] == [
        {"product_id": a.id, "title": "A", "sku": None, "quantity_on_hand": 2, "inventory_value": 400},
    ]
    assert report["total_quantity"] == 2
    assert report["total_value"] == 400
