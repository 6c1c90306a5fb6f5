# Overview: Per-channel order number sequences.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderCounter
from .errors import ValidationError


def format_order_number(seq: int, channel: str) -> str:
    return f"№{seq:05d}/{channel}"


def next_order_seq(channel: str) -> int:
    """
    Atomically allocate the next sequence number for a channel.

    Runs inside the caller's transaction (no commit), so a rolled-back order
    also gives its number back. The UPDATE takes the counter row lock; a
    missing row is created under a savepoint so a concurrent creator only
    costs a retry of the UPDATE, not the whole transaction.
    """
    if not channel:
        raise ValidationError("channel is required")

    stmt = (
        update(OrderCounter)
        .where(OrderCounter.channel == channel)
        .values(value=OrderCounter.value + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(OrderCounter(channel=channel, value=1))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    return int(
        db.session.query(OrderCounter.value)
        .filter_by(channel=channel)
        .scalar()
    )


def current_order_seq(channel: str) -> int:
    value = db.session.query(OrderCounter.value).filter_by(channel=channel).scalar()
    return int(value or 0)
