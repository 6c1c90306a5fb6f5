"""
Order Fulfillment Service

WHY: An order is only real once its stock is allocated and its cost of goods
is known. Creating the order, issuing its number, consuming FIFO lots and
writing ledger movements therefore happen in ONE transaction: either all of
it commits or none of it does.

FLOW (create_order):
1. Idempotency lookup - an existing order with the same key is returned as is
2. Validate lines: product exists, is ACTIVE, ledger stock covers the request
3. Next per-channel sequence -> order number "№00042/AS"
4. Insert order + items (cogs_total NULL)
5. Allocate each item FIFO; fill cogs_total / profit_total
6. One OUT movement per product
7. Commit, then fire-and-forget notifications

The stock check in step 2 is advisory. The allocation engine works on locked
lots and is what actually prevents overselling.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, Product
from ..models.inventory import MOVEMENT_OUT, SOURCE_ORDER, OrderItemRef
from ..models.orders import ORDER_STATUS_NEW, ORDER_STATUSES
from ..validation import coerce_int, optional_text, require_positive_qty, require_text
from shopledger.time_utils import utcnow
from .allocation_service import allocate
from .concurrency import run_in_transaction
from .errors import NotFoundError, OutOfStockError, ValidationError
from .ledger_service import append_movement, get_current_stock
from .notification_service import emit, order_created
from .order_counter_service import format_order_number, next_order_seq


@dataclass(frozen=True)
class OrderLine:
    product_id: int
    qty: int


@dataclass(frozen=True)
class CustomerInfo:
    name: str
    phone: str
    address: str | None = None
    comment: str | None = None


def _normalize_lines(items) -> list[OrderLine]:
    if not items:
        raise ValidationError("Order must have at least one item")

    lines = []
    for index, item in enumerate(items):
        if isinstance(item, OrderLine):
            product_id, qty = item.product_id, item.qty
        elif isinstance(item, dict):
            product_id, qty = item.get("product_id"), item.get("qty")
        else:
            try:
                product_id, qty = item
            except (TypeError, ValueError):
                raise ValidationError(f"items[{index}] must be (product_id, qty)")
        if product_id is None:
            raise ValidationError(f"items[{index}].product_id is required")
        lines.append(
            OrderLine(
                product_id=coerce_int(product_id, f"items[{index}].product_id"),
                qty=require_positive_qty(qty, f"items[{index}].qty"),
            )
        )
    return lines


def _normalize_customer(customer) -> CustomerInfo:
    if isinstance(customer, CustomerInfo):
        data = {
            "name": customer.name,
            "phone": customer.phone,
            "address": customer.address,
            "comment": customer.comment,
        }
    elif isinstance(customer, dict):
        data = customer
    else:
        raise ValidationError("customer info is required")

    return CustomerInfo(
        name=require_text(data.get("name"), "customer.name"),
        phone=require_text(data.get("phone"), "customer.phone", max_length=64),
        address=optional_text(data.get("address"), "customer.address", max_length=512),
        comment=optional_text(data.get("comment"), "customer.comment", max_length=2000),
    )


def _resolve_channel(channel: str | None) -> str:
    channel = (channel or current_app.config["DEFAULT_ORDER_CHANNEL"]).strip().upper()
    allowed = current_app.config["ORDER_CHANNELS"]
    if channel not in allowed:
        raise ValidationError(
            f"Unknown order channel {channel!r}. Must be one of: {', '.join(allowed)}"
        )
    return channel


def _load_and_check_products(lines: list[OrderLine]) -> dict[int, Product]:
    """
    Load every product and check ledger stock against the summed request.

    Lines for the same product are summed, so two lines of 3 against stock 5
    are rejected here rather than half-way through allocation.
    """
    products: dict[int, Product] = {}
    requested: dict[int, int] = {}

    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            product = db.session.get(Product, line.product_id)
            if product is None:
                raise NotFoundError(
                    f"Product with id {line.product_id} not found",
                    details={"product_id": line.product_id},
                )
            if not product.is_active:
                raise ValidationError(
                    f"Product {product.title} is not available for ordering",
                    details={"product_id": product.id, "status": product.status},
                )
            products[product.id] = product
        requested[line.product_id] = requested.get(line.product_id, 0) + line.qty

    for product_id, qty in requested.items():
        available = get_current_stock(product_id)
        if available < qty:
            raise OutOfStockError(
                product_id=product_id,
                product_title=products[product_id].title,
                available=available,
                requested=qty,
            )

    return products


def find_order_by_idempotency_key(idempotency_key: str) -> Order | None:
    return db.session.query(Order).filter_by(idempotency_key=idempotency_key).first()


def _create_order_locked(
    *,
    lines: list[OrderLine],
    customer: CustomerInfo,
    channel: str,
    idempotency_key: str | None,
    user_id: int | None,
) -> tuple[Order, bool]:
    """Body of the create transaction. Returns (order, created)."""
    if idempotency_key:
        # Re-checked under the write lock: a concurrent twin may have just committed
        existing = find_order_by_idempotency_key(idempotency_key)
        if existing is not None:
            return existing, False

    products = _load_and_check_products(lines)

    seq = next_order_seq(channel)

    order = Order(
        user_id=user_id,
        status=ORDER_STATUS_NEW,
        channel=channel,
        seq=seq,
        number=format_order_number(seq, channel),
        idempotency_key=idempotency_key,
        total_amount=sum(products[line.product_id].price * line.qty for line in lines),
        currency=current_app.config["DEFAULT_CURRENCY"],
        customer_name=customer.name,
        customer_phone=customer.phone,
        customer_address=customer.address,
        comment=customer.comment,
    )
    db.session.add(order)
    db.session.flush()

    items = []
    for line in lines:
        product = products[line.product_id]
        item = OrderItem(
            order_id=order.id,
            product_id=product.id,
            title_snapshot=product.title,
            price_snapshot=product.price,
            cost_price_at_time=product.cost_price,
            packaging_cost_at_time=product.packaging_cost,
            qty=line.qty,
            cogs_total=None,
        )
        db.session.add(item)
        items.append(item)
    db.session.flush()

    shipped: dict[int, int] = {}
    for item in items:
        result = allocate(item.product_id, item.qty, OrderItemRef(item.id))
        packaging = (item.packaging_cost_at_time or 0) * item.qty
        item.cogs_total = result.total_cost
        item.profit_total = item.line_total - result.total_cost - packaging
        shipped[item.product_id] = shipped.get(item.product_id, 0) + item.qty

    for product_id, qty in shipped.items():
        append_movement(
            product_id=product_id,
            quantity=-qty,
            kind=MOVEMENT_OUT,
            source_kind=SOURCE_ORDER,
            source_id=order.id,
            note=f"Order {order.number}",
        )

    return order, True


def create_order(
    items,
    customer,
    channel: str | None = None,
    idempotency_key: str | None = None,
    user_id: int | None = None,
) -> Order:
    """
    Create an order and fulfil it from FIFO lots in one transaction.

    Args:
        items: list of {"product_id", "qty"} dicts, (product_id, qty) tuples or OrderLine
        customer: dict or CustomerInfo with name, phone, optional address/comment
        channel: intake channel (defaults to DEFAULT_ORDER_CHANNEL)
        idempotency_key: client token; a repeat returns the original order untouched
        user_id: optional owning user

    Raises:
        ValidationError: malformed input, inactive product, unknown channel
        NotFoundError: a product does not exist
        OutOfStockError: stock does not cover a product's requested quantity
    """
    idempotency_key = optional_text(idempotency_key, "idempotency_key", max_length=128)

    if idempotency_key:
        existing = find_order_by_idempotency_key(idempotency_key)
        if existing is not None:
            current_app.logger.warning(
                "Idempotent replay for key %r -> order %s", idempotency_key, existing.number
            )
            return existing

    lines = _normalize_lines(items)
    customer_info = _normalize_customer(customer)
    channel = _resolve_channel(channel)

    try:
        order, created = run_in_transaction(
            lambda: _create_order_locked(
                lines=lines,
                customer=customer_info,
                channel=channel,
                idempotency_key=idempotency_key,
                user_id=user_id,
            )
        )
    except IntegrityError:
        # Lost the race on uq_orders_idempotency_key: the twin request won
        if not idempotency_key:
            raise
        existing = find_order_by_idempotency_key(idempotency_key)
        if existing is None:
            raise
        current_app.logger.warning(
            "Concurrent duplicate for key %r resolved to order %s", idempotency_key, existing.number
        )
        return existing

    if not created:
        current_app.logger.warning(
            "Idempotent replay for key %r -> order %s", idempotency_key, order.number
        )
        return order

    current_app.logger.info(
        "Order %s committed (id=%s, total=%s)", order.number, order.id, order.total_amount
    )
    emit(order_created, order=order)
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order with id {order_id} not found")
    return order


def list_orders(
    *,
    page: int = 1,
    page_size: int = 20,
    status: str | None = None,
    search: str | None = None,
    include_deleted: bool = False,
) -> dict:
    page = max(1, page)
    page_size = min(100, max(1, page_size))

    q = db.session.query(Order)
    if not include_deleted:
        q = q.filter(Order.deleted_at.is_(None))
    if status:
        q = q.filter(Order.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(
            or_(
                Order.customer_phone.ilike(pattern),
                Order.customer_name.ilike(pattern),
                Order.number.ilike(pattern),
            )
        )

    total = q.count()
    orders = (
        q.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "items": [o.to_dict(include_items=False) for o in orders],
        "meta": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": (total + page_size - 1) // page_size,
        },
    }


def update_order_status(order_id: int, status: str) -> Order:
    """Status bookkeeping only; lots and the ledger are not touched."""
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")

    def _op():
        order = get_order(order_id)
        order.status = status
        return order

    return run_in_transaction(_op)


def soft_delete_order(order_id: int) -> Order:
    def _op():
        order = get_order(order_id)
        if order.deleted_at is None:
            order.deleted_at = utcnow()
        return order

    return run_in_transaction(_op)
