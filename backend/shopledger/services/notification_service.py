# Overview: Post-commit side effects (buyer/admin notifications, analytics events).

"""
Side effects are signals sent AFTER the transaction commits.

- Receivers (Telegram bot, e-mail, analytics sinks) live outside the engine
  and connect to these signals.
- A failing receiver is logged and ignored: it never rolls back or retries
  the order/write-off that triggered it.
"""

from __future__ import annotations

from blinker import Namespace
from flask import current_app


_signals = Namespace()

order_created = _signals.signal("order-created")
write_off_recorded = _signals.signal("write-off-recorded")
stock_received = _signals.signal("stock-received")


def emit(signal, sender=None, **payload) -> None:
    """
    Send a signal receiver by receiver, logging (never raising) failures.

    blinker's own send() stops at the first failing receiver; here every
    receiver gets its turn.
    """
    if not signal.receivers:
        return
    app = current_app._get_current_object()
    sender = sender if sender is not None else app
    for receiver in signal.receivers_for(sender):
        try:
            receiver(sender, **payload)
        except Exception:
            app.logger.exception("Receiver %r for %s failed", receiver, signal.name)


def _log_order_created(sender, order=None, **_extra):
    current_app.logger.info(
        "Order %s created: %s items, total %s %s",
        order.number,
        len(order.items),
        order.total_amount,
        order.currency,
    )


def _log_write_off_recorded(sender, write_off=None, **_extra):
    current_app.logger.info(
        "Write-off %s recorded: product %s qty %s cost %s",
        write_off.id,
        write_off.product_id,
        write_off.qty,
        write_off.total_cost,
    )


def connect_default_receivers() -> None:
    """Idempotent: blinker keeps one registration per receiver."""
    order_created.connect(_log_order_created)
    write_off_recorded.connect(_log_write_off_recorded)
