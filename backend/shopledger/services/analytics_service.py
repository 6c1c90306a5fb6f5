# Overview: Read-only rollups over the ledger, lots and orders (stock, profit, valuation).

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryLot, Order, OrderItem, Product
from ..models.orders import ORDER_STATUS_DONE, ORDER_STATUSES
from shopledger.time_utils import normalize_datetime, to_utc_z
from .errors import ValidationError
from .ledger_service import get_stock_levels

GROUP_BY_CHOICES = ("day", "week", "month")


def _parse_bound(value, field: str) -> datetime:
    try:
        dt = normalize_datetime(value)
    except ValueError as exc:
        raise ValidationError(f"{field}: {exc}") from exc
    if dt is None:
        raise ValidationError(f"{field} is required")
    return dt


def _resolve_status(status_filter: str | None) -> str:
    status = status_filter or ORDER_STATUS_DONE
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
    return status


def _margin_percent(profit: int, revenue: int) -> float:
    if revenue <= 0:
        return 0.0
    return round(profit / revenue * 100.0, 2)


def _item_costs(item: OrderItem) -> tuple[int, int, int]:
    """(revenue, cogs, packaging) for one order line."""
    revenue = item.price_snapshot * item.qty
    if item.cogs_total is not None:
        cogs = item.cogs_total
    else:
        # Lines that never went through allocation
        cogs = (item.cost_price_at_time or 0) * item.qty
    packaging = (item.packaging_cost_at_time or 0) * item.qty
    return revenue, cogs, packaging


def _order_lines(date_from: datetime, date_to: datetime, status: str):
    return (
        db.session.query(OrderItem, Order.id, Order.created_at)
        .join(Order, OrderItem.order_id == Order.id)
        .filter(
            Order.deleted_at.is_(None),
            Order.status == status,
            Order.created_at >= date_from,
            Order.created_at <= date_to,
        )
        .order_by(Order.created_at.asc(), OrderItem.id.asc())
        .all()
    )


def stock_snapshot() -> list[dict]:
    """
    Current stock and unit economics for every product.

    unit_profit is None when the product has neither cost_price nor
    packaging_cost; margin_percent is None when unit_profit is None or
    the price is 0.
    """
    products = db.session.query(Product).order_by(Product.title.asc(), Product.id.asc()).all()
    levels = get_stock_levels()

    rows = []
    for product in products:
        if product.cost_price is not None or product.packaging_cost is not None:
            unit_profit = product.price - (product.cost_price or 0) - (product.packaging_cost or 0)
        else:
            unit_profit = None
        margin = (
            round(unit_profit / product.price * 100.0, 2)
            if unit_profit is not None and product.price > 0
            else None
        )
        rows.append(
            {
                "product_id": product.id,
                "title": product.title,
                "sku": product.sku,
                "status": product.status,
                "current_stock": levels.get(product.id, 0),
                "price": product.price,
                "cost_price": product.cost_price,
                "packaging_cost": product.packaging_cost,
                "unit_profit": unit_profit,
                "margin_percent": margin,
            }
        )
    return rows


def get_profit_analytics(date_from, date_to, status_filter: str | None = ORDER_STATUS_DONE) -> dict:
    """
    Revenue, COGS, packaging and gross profit for orders created in
    [date_from, date_to] (both inclusive).

    Soft-deleted orders are excluded. status_filter None means DONE.
    """
    start = _parse_bound(date_from, "date_from")
    end = _parse_bound(date_to, "date_to")
    status = _resolve_status(status_filter)

    revenue = cogs = packaging = 0
    order_ids = set()
    breakdown: dict[int, dict] = {}

    for item, order_id, _created_at in _order_lines(start, end, status):
        item_revenue, item_cogs, item_packaging = _item_costs(item)
        revenue += item_revenue
        cogs += item_cogs
        packaging += item_packaging
        order_ids.add(order_id)

        row = breakdown.get(item.product_id)
        if row is None:
            row = breakdown[item.product_id] = {
                "product_id": item.product_id,
                "title": item.product.title if item.product else item.title_snapshot,
                "revenue": 0,
                "cogs": 0,
                "packaging": 0,
                "quantity": 0,
            }
        row["revenue"] += item_revenue
        row["cogs"] += item_cogs
        row["packaging"] += item_packaging
        row["quantity"] += item.qty

    for row in breakdown.values():
        row["profit"] = row["revenue"] - row["cogs"] - row["packaging"]

    gross_profit = revenue - cogs - packaging
    return {
        "date_from": to_utc_z(start),
        "date_to": to_utc_z(end),
        "status": status,
        "revenue": revenue,
        "cogs": cogs,
        "packaging": packaging,
        "gross_profit": gross_profit,
        "margin_percent": _margin_percent(gross_profit, revenue),
        "order_count": len(order_ids),
        "product_breakdown": sorted(
            breakdown.values(), key=lambda r: (-r["profit"], r["product_id"])
        ),
    }


def _period_key(dt: datetime, group_by: str) -> str:
    if group_by == "day":
        return dt.strftime("%Y-%m-%d")
    if group_by == "week":
        year, week, _ = dt.isocalendar()
        return f"{year}-W{week:02d}"
    return dt.strftime("%Y-%m")


def profit_by_period(
    date_from,
    date_to,
    group_by: str = "day",
    status_filter: str | None = ORDER_STATUS_DONE,
) -> dict:
    """Same sums as get_profit_analytics, bucketed by day, ISO week or month (UTC)."""
    if group_by not in GROUP_BY_CHOICES:
        raise ValidationError("group_by must be day, week, or month")
    start = _parse_bound(date_from, "date_from")
    end = _parse_bound(date_to, "date_to")
    status = _resolve_status(status_filter)

    buckets: dict[str, dict] = {}
    for item, order_id, created_at in _order_lines(start, end, status):
        key = _period_key(created_at, group_by)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = {
                "period": key,
                "revenue": 0,
                "cogs": 0,
                "packaging": 0,
                "items_sold": 0,
                "_orders": set(),
            }
        item_revenue, item_cogs, item_packaging = _item_costs(item)
        bucket["revenue"] += item_revenue
        bucket["cogs"] += item_cogs
        bucket["packaging"] += item_packaging
        bucket["items_sold"] += item.qty
        bucket["_orders"].add(order_id)

    rows = []
    for key in sorted(buckets):
        bucket = buckets[key]
        profit = bucket["revenue"] - bucket["cogs"] - bucket["packaging"]
        rows.append(
            {
                "period": key,
                "order_count": len(bucket.pop("_orders")),
                "items_sold": bucket["items_sold"],
                "revenue": bucket["revenue"],
                "cogs": bucket["cogs"],
                "packaging": bucket["packaging"],
                "gross_profit": profit,
                "margin_percent": _margin_percent(profit, bucket["revenue"]),
            }
        )

    return {
        "group_by": group_by,
        "status": status,
        "date_from": to_utc_z(start),
        "date_to": to_utc_z(end),
        "rows": rows,
    }


def inventory_valuation() -> dict:
    """FIFO valuation: what is left in each lot at the cost it was received at."""
    value_expr = func.coalesce(func.sum(InventoryLot.qty_remaining * InventoryLot.unit_cost), 0)
    qty_expr = func.coalesce(func.sum(InventoryLot.qty_remaining), 0)

    rows = (
        db.session.query(Product, qty_expr.label("qty"), value_expr.label("value"))
        .join(InventoryLot, InventoryLot.product_id == Product.id)
        .group_by(Product.id)
        .order_by(Product.title.asc(), Product.id.asc())
        .all()
    )

    items = []
    total_qty = 0
    total_value = 0
    for product, qty, value in rows:
        qty = int(qty or 0)
        value = int(value or 0)
        if qty <= 0:
            continue
        total_qty += qty
        total_value += value
        items.append(
            {
                "product_id": product.id,
                "title": product.title,
                "sku": product.sku,
                "quantity_on_hand": qty,
                "inventory_value": value,
            }
        )

    return {
        "total_quantity": total_qty,
        "total_value": total_value,
        "rows": items,
    }
