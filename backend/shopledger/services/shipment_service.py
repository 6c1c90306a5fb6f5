# Overview: Inbound shipments (batches) - landed cost apportioning and lot creation on posting.

"""
Shipment Service

A shipment is one inbound batch: a list of product lines at their goods
cost, plus freight and other costs paid for the batch as a whole.

LIFECYCLE: DRAFT (lines editable) -> POSTED (immutable).

Posting spreads freight_cost + other_costs over the lines by quantity:
    share(line)          = round_half_up(extra * line.qty / total_qty)
    per_unit_extra(line) = round_half_up(share / line.qty)
    landed_unit_cost     = goods_unit_cost + per_unit_extra
and creates one lot (at landed_unit_cost) and one IN movement per line.
Because both steps round, the lots may carry a few minor units more or less
than the batch actually cost in total.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, Shipment, ShipmentLine
from ..models.documents import STATUS_DRAFT, STATUS_POSTED
from ..models.inventory import MOVEMENT_IN, SOURCE_SHIPMENT
from ..validation import optional_text, require_amount, require_positive_qty
from shopledger.time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from .errors import NotFoundError, ValidationError
from .ledger_service import append_movement
from .lot_service import receive_lot
from .notification_service import emit, stock_received


def _round_half_up(numerator: int, denominator: int) -> int:
    """Nearest integer, halves up. Non-negative operands only."""
    return (numerator + (denominator // 2)) // denominator


def apportion_landed_costs(lines: list[ShipmentLine], total_extra: int) -> dict[int, int]:
    """Per-unit extra cost for each line id. Pure; does not touch the lines."""
    total_qty = sum(line.qty for line in lines)
    if total_qty <= 0:
        return {line.id: 0 for line in lines}

    per_unit = {}
    for line in lines:
        share = _round_half_up(total_extra * line.qty, total_qty)
        per_unit[line.id] = _round_half_up(share, line.qty)
    return per_unit


def get_shipment(shipment_id: int, *, lock: bool = False) -> Shipment:
    q = db.session.query(Shipment).filter_by(id=shipment_id)
    if lock:
        q = lock_for_update(q).populate_existing()
    shipment = q.first()
    if shipment is None:
        raise NotFoundError(f"Shipment with id {shipment_id} not found")
    return shipment


def _require_draft(shipment: Shipment) -> None:
    if shipment.status != STATUS_DRAFT:
        raise ValidationError(
            f"Cannot modify {shipment.status} shipment. Only DRAFT shipments can be edited."
        )


def create_shipment(reference: str | None = None, freight_cost=0, other_costs=0) -> Shipment:
    reference = optional_text(reference, "reference", max_length=128)
    freight_cost = require_amount(freight_cost, "freight_cost")
    other_costs = require_amount(other_costs, "other_costs")

    def _op():
        shipment = Shipment(
            reference=reference,
            freight_cost=freight_cost,
            other_costs=other_costs,
            status=STATUS_DRAFT,
        )
        db.session.add(shipment)
        db.session.flush()
        return shipment

    return run_in_transaction(_op)


def add_line(shipment_id: int, product_id: int, qty, goods_unit_cost) -> ShipmentLine:
    qty = require_positive_qty(qty, "qty")
    goods_unit_cost = require_amount(goods_unit_cost, "goods_unit_cost")

    def _op():
        shipment = get_shipment(shipment_id, lock=True)
        _require_draft(shipment)
        if db.session.get(Product, product_id) is None:
            raise NotFoundError(f"Product with id {product_id} not found")
        line = ShipmentLine(product_id=product_id, qty=qty, goods_unit_cost=goods_unit_cost)
        shipment.lines.append(line)
        db.session.flush()
        return line

    return run_in_transaction(_op)


def remove_line(shipment_id: int, line_id: int) -> None:
    def _op():
        shipment = get_shipment(shipment_id, lock=True)
        _require_draft(shipment)
        line = next((ln for ln in shipment.lines if ln.id == line_id), None)
        if line is None:
            raise NotFoundError(f"Line {line_id} not found in shipment {shipment_id}")
        shipment.lines.remove(line)
        db.session.flush()

    run_in_transaction(_op)


def post_shipment(shipment_id: int) -> Shipment:
    """
    Fix landed costs and receive every line as a lot.

    Raises:
        NotFoundError: shipment does not exist
        ValidationError: not DRAFT, or no lines
    """
    lots = []

    def _op():
        lots.clear()
        shipment = get_shipment(shipment_id, lock=True)
        _require_draft(shipment)
        if not shipment.lines:
            raise ValidationError("Cannot post a shipment without lines")

        per_unit_extra = apportion_landed_costs(
            shipment.lines, shipment.freight_cost + shipment.other_costs
        )

        posted_at = utcnow()
        for line in shipment.lines:
            line.landed_unit_cost = line.goods_unit_cost + per_unit_extra[line.id]
            lot = receive_lot(
                product_id=line.product_id,
                unit_cost=line.landed_unit_cost,
                qty=line.qty,
                received_at=posted_at,
                shipment_id=shipment.id,
            )
            append_movement(
                product_id=line.product_id,
                quantity=line.qty,
                kind=MOVEMENT_IN,
                source_kind=SOURCE_SHIPMENT,
                source_id=shipment.id,
                note=f"Shipment {shipment.reference}" if shipment.reference else None,
            )
            lots.append(lot)

        shipment.status = STATUS_POSTED
        shipment.posted_at = posted_at
        db.session.flush()
        return shipment

    shipment = run_in_transaction(_op)

    current_app.logger.info(
        "Shipment %s posted: %s lots, extra costs %s",
        shipment.id, len(lots), shipment.freight_cost + shipment.other_costs,
    )
    for lot in lots:
        emit(stock_received, lot=lot)
    return shipment
