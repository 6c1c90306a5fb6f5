# Overview: Error taxonomy shared by the warehouse and fulfillment services.

from __future__ import annotations


class FulfillmentError(Exception):
    """
    Base for errors the caller can act on (bad input, missing rows, no stock).

    `details` carries a structured payload for API layers to serialize.
    """
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(FulfillmentError):
    """Referenced product/order/lot/document does not exist."""


class ValidationError(FulfillmentError):
    """Non-positive quantity, inactive product, wrong document state, malformed input."""


class OutOfStockError(FulfillmentError):
    """Requested quantity exceeds what is on hand. Safe to retry after restocking."""

    def __init__(
        self,
        *,
        product_id: int,
        available: int,
        requested: int,
        product_title: str | None = None,
        message: str | None = None,
    ):
        self.product_id = product_id
        self.product_title = product_title
        self.available = available
        self.requested = requested
        label = product_title or f"product {product_id}"
        super().__init__(
            message or f"Not enough stock for {label}. Available: {available}, requested: {requested}",
            details={
                "product_id": product_id,
                "product_title": product_title,
                "available": available,
                "requested": requested,
            },
        )


class InsufficientStockError(OutOfStockError):
    """Raised by the allocation engine when consumable lots run out mid-allocation."""


class InvariantViolation(Exception):
    """
    Internal consistency check failed (negative lot, allocation/COGS mismatch).

    Deliberately not a FulfillmentError: this is a bug, not a user error, and
    must abort the transaction.
    """
