# Overview: Flask CLI command groups for bootstrap, stock operations, orders and reports.

# backend/shopledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Products:
# - python -m flask products create --title "Tea" --price 50000 --cost-price 30000 --packaging-cost 2000
# - python -m flask products list [--status ACTIVE]
# - python -m flask products set-status 1 ARCHIVED
#
# Stock:
# - python -m flask stock receive 1 10 [--unit-cost 30000] [--note "initial"]
# - python -m flask stock adjust --note "recount" 1 -- -2
# - python -m flask stock write-off 1 2 --reason "damaged"
# - python -m flask stock show 1
# - python -m flask stock movements [--product-id 1] [--page 1]
#
# Orders:
# - python -m flask orders create --item 1:2 --item 3:1 --name "Ivan" --phone "+7900..." [--channel LAB] [--key abc]
# - python -m flask orders list [--status DONE] [--search 00042]
# - python -m flask orders show 1
# - python -m flask orders set-status 1 DONE
#
# Reports:
# - python -m flask reports stock
# - python -m flask reports profit --from 2026-01-01 --to 2026-01-31 [--status DONE]
# - python -m flask reports by-period --from 2026-01-01 --to 2026-03-31 --group-by month
# - python -m flask reports valuation

import functools

import click
from flask.cli import with_appcontext

from .extensions import db
from .services.errors import FulfillmentError
from .services import (
    analytics_service,
    inventory_service,
    ledger_service,
    order_service,
    products_service,
    write_off_service,
)


def _fail_on_domain_error(func):
    """Turn caller-actionable errors into a clean CLI error message."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except FulfillmentError as exc:
            raise click.ClickException(str(exc)) from exc
    return wrapper


def _parse_item(value: str) -> dict:
    product_id, sep, qty = value.partition(":")
    if not sep:
        raise click.BadParameter(f"expected PRODUCT_ID:QTY, got {value!r}")
    return {"product_id": product_id.strip(), "qty": qty.strip()}


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('products')
def products_group():
    """Product seam: create and inspect products."""


@products_group.command('create')
@click.option('--title', required=True)
@click.option('--price', type=int, required=True, help='Sale price in minor units')
@click.option('--cost-price', type=int, default=None)
@click.option('--packaging-cost', type=int, default=None)
@click.option('--sku', default=None)
@click.option('--status', default='ACTIVE', show_default=True)
@with_appcontext
@_fail_on_domain_error
def create_product_cli(title, price, cost_price, packaging_cost, sku, status):
    product = products_service.create_product(
        title,
        price,
        cost_price=cost_price,
        packaging_cost=packaging_cost,
        sku=sku,
        status=status,
    )
    click.echo(f"PASS Created product {product.id}: {product.title}")


@products_group.command('list')
@click.option('--status', default=None)
@with_appcontext
@_fail_on_domain_error
def list_products_cli(status):
    products = products_service.list_products(status=status)
    if not products:
        click.echo("No products found.")
        return
    click.echo(f"{'ID':<6} {'Title':<32} {'SKU':<14} {'Price':>10} {'Cost':>10} {'Status':<10}")
    click.echo("-" * 88)
    for p in products:
        cost = "" if p.cost_price is None else p.cost_price
        click.echo(f"{p.id:<6} {p.title[:32]:<32} {(p.sku or ''):<14} {p.price:>10} {cost:>10} {p.status:<10}")


@products_group.command('set-status')
@click.argument('product_id', type=int)
@click.argument('status')
@with_appcontext
@_fail_on_domain_error
def set_product_status_cli(product_id, status):
    product = products_service.set_product_status(product_id, status)
    click.echo(f"PASS Product {product.id} is now {product.status}")


@click.group('stock')
def stock_group():
    """Receive, adjust and write off stock."""


@stock_group.command('receive')
@click.argument('product_id', type=int)
@click.argument('qty', type=int)
@click.option('--unit-cost', type=int, default=None, help='Defaults to the product cost price')
@click.option('--note', default=None)
@with_appcontext
@_fail_on_domain_error
def receive_cli(product_id, qty, unit_cost, note):
    lot = inventory_service.receive_stock(product_id, qty, unit_cost=unit_cost, note=note)
    click.echo(f"PASS Lot {lot.id}: {lot.qty_received} @ {lot.unit_cost}")


@stock_group.command('adjust')
@click.argument('product_id', type=int)
@click.argument('delta', type=int)
@click.option('--unit-cost', type=int, default=None)
@click.option('--note', default=None)
@with_appcontext
@_fail_on_domain_error
def adjust_cli(product_id, delta, unit_cost, note):
    result = inventory_service.adjust_stock(product_id, delta, unit_cost=unit_cost, note=note)
    click.echo(f"PASS Product {product_id} adjusted by {delta:+d}; stock now {result['stock']}")


@stock_group.command('write-off')
@click.argument('product_id', type=int)
@click.argument('qty', type=int)
@click.option('--reason', default=None)
@with_appcontext
@_fail_on_domain_error
def write_off_cli(product_id, qty, reason):
    wo = write_off_service.write_off(product_id, qty, reason=reason)
    click.echo(f"PASS Write-off {wo.id}: {wo.qty} units, cost {wo.total_cost}")


@stock_group.command('show')
@click.argument('product_id', type=int)
@with_appcontext
@_fail_on_domain_error
def show_stock_cli(product_id):
    summary = inventory_service.get_inventory_summary(product_id)
    for key, value in summary.items():
        click.echo(f"{key:<20} {value}")


@stock_group.command('movements')
@click.option('--product-id', type=int, default=None)
@click.option('--page', type=int, default=1, show_default=True)
@click.option('--page-size', type=int, default=20, show_default=True)
@with_appcontext
def movements_cli(product_id, page, page_size):
    result = ledger_service.list_movements(product_id=product_id, page=page, page_size=page_size)
    click.echo(f"{'ID':<6} {'When':<21} {'Product':<24} {'Qty':>6} {'Kind':<7} {'Source':<10} {'Src ID':<7}")
    click.echo("-" * 88)
    for m in result["items"]:
        click.echo(
            f"{m['id']:<6} {m['created_at']:<21} {(m['product_title'] or '')[:24]:<24} "
            f"{m['quantity']:>6} {m['kind']:<7} {m['source_kind']:<10} {str(m['source_id'] or ''):<7}"
        )
    click.echo(f"\nPage {result['page']} ({result['total']} movements)")


@click.group('orders')
def orders_group():
    """Create and inspect orders."""


@orders_group.command('create')
@click.option('--item', 'items', multiple=True, required=True, help='PRODUCT_ID:QTY (repeatable)')
@click.option('--name', required=True, help='Customer name')
@click.option('--phone', required=True, help='Customer phone')
@click.option('--address', default=None)
@click.option('--comment', default=None)
@click.option('--channel', default=None, help='Order channel (AS, LAB)')
@click.option('--key', 'idempotency_key', default=None, help='Idempotency key')
@with_appcontext
@_fail_on_domain_error
def create_order_cli(items, name, phone, address, comment, channel, idempotency_key):
    order = order_service.create_order(
        [_parse_item(value) for value in items],
        {"name": name, "phone": phone, "address": address, "comment": comment},
        channel=channel,
        idempotency_key=idempotency_key,
    )
    click.echo(f"PASS Order {order.number} (id {order.id}), total {order.total_amount} {order.currency}")
    for item in order.items:
        click.echo(
            f"  {item.title_snapshot[:32]:<32} x{item.qty:<4} cogs {item.cogs_total:>10} profit {item.profit_total:>10}"
        )


@orders_group.command('list')
@click.option('--status', default=None)
@click.option('--search', default=None)
@click.option('--page', type=int, default=1, show_default=True)
@with_appcontext
def list_orders_cli(status, search, page):
    result = order_service.list_orders(page=page, status=status, search=search)
    if not result["items"]:
        click.echo("No orders found.")
        return
    click.echo(f"{'ID':<6} {'Number':<14} {'Status':<12} {'Total':>10} {'Customer':<24} {'Created':<21}")
    click.echo("-" * 92)
    for o in result["items"]:
        click.echo(
            f"{o['id']:<6} {o['number']:<14} {o['status']:<12} {o['total_amount']:>10} "
            f"{o['customer_name'][:24]:<24} {o['created_at']:<21}"
        )
    meta = result["meta"]
    click.echo(f"\nPage {meta['page']}/{max(meta['total_pages'], 1)} ({meta['total']} orders)")


@orders_group.command('show')
@click.argument('order_id', type=int)
@with_appcontext
@_fail_on_domain_error
def show_order_cli(order_id):
    order = order_service.get_order(order_id)
    click.echo(f"Order {order.number} [{order.status}] {order.customer_name} {order.customer_phone}")
    for item in order.items:
        click.echo(
            f"  {item.title_snapshot[:32]:<32} x{item.qty:<4} price {item.price_snapshot:>8} "
            f"cogs {item.cogs_total if item.cogs_total is not None else '-':>10}"
        )
    click.echo(f"Total: {order.total_amount} {order.currency}")


@orders_group.command('set-status')
@click.argument('order_id', type=int)
@click.argument('status')
@with_appcontext
@_fail_on_domain_error
def set_order_status_cli(order_id, status):
    order = order_service.update_order_status(order_id, status.upper())
    click.echo(f"PASS Order {order.number} is now {order.status}")


@click.group('reports')
def reports_group():
    """Stock and profit reports."""


@reports_group.command('stock')
@with_appcontext
def stock_report_cli():
    rows = analytics_service.stock_snapshot()
    click.echo(f"{'ID':<6} {'Title':<32} {'Stock':>7} {'Price':>10} {'Unit profit':>12} {'Margin %':>9}")
    click.echo("-" * 82)
    for r in rows:
        unit_profit = "" if r["unit_profit"] is None else r["unit_profit"]
        margin = "" if r["margin_percent"] is None else f"{r['margin_percent']:.2f}"
        click.echo(
            f"{r['product_id']:<6} {r['title'][:32]:<32} {r['current_stock']:>7} "
            f"{r['price']:>10} {unit_profit:>12} {margin:>9}"
        )


@reports_group.command('profit')
@click.option('--from', 'date_from', required=True, help='ISO date/datetime (inclusive)')
@click.option('--to', 'date_to', required=True, help='ISO date/datetime (inclusive)')
@click.option('--status', default='DONE', show_default=True)
@with_appcontext
@_fail_on_domain_error
def profit_report_cli(date_from, date_to, status):
    report = analytics_service.get_profit_analytics(date_from, date_to, status_filter=status)
    click.echo(f"Orders:       {report['order_count']}")
    click.echo(f"Revenue:      {report['revenue']}")
    click.echo(f"COGS:         {report['cogs']}")
    click.echo(f"Packaging:    {report['packaging']}")
    click.echo(f"Gross profit: {report['gross_profit']} ({report['margin_percent']:.2f}%)")
    if report["product_breakdown"]:
        click.echo("")
        for row in report["product_breakdown"]:
            click.echo(f"  {row['title'][:32]:<32} x{row['quantity']:<5} profit {row['profit']:>10}")


@reports_group.command('by-period')
@click.option('--from', 'date_from', required=True)
@click.option('--to', 'date_to', required=True)
@click.option('--group-by', type=click.Choice(['day', 'week', 'month']), default='day', show_default=True)
@click.option('--status', default='DONE', show_default=True)
@with_appcontext
@_fail_on_domain_error
def profit_by_period_cli(date_from, date_to, group_by, status):
    report = analytics_service.profit_by_period(date_from, date_to, group_by=group_by, status_filter=status)
    click.echo(f"{'Period':<12} {'Orders':>7} {'Revenue':>12} {'COGS':>12} {'Profit':>12} {'Margin %':>9}")
    click.echo("-" * 70)
    for r in report["rows"]:
        click.echo(
            f"{r['period']:<12} {r['order_count']:>7} {r['revenue']:>12} {r['cogs']:>12} "
            f"{r['gross_profit']:>12} {r['margin_percent']:>9.2f}"
        )


@reports_group.command('valuation')
@with_appcontext
def valuation_report_cli():
    report = analytics_service.inventory_valuation()
    for r in report["rows"]:
        click.echo(f"{r['product_id']:<6} {r['title'][:32]:<32} {r['quantity_on_hand']:>7} {r['inventory_value']:>12}")
    click.echo(f"\nTotal: {report['total_quantity']} units, value {report['total_value']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(products_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(reports_group)
