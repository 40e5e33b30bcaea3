# Overview: Typed error taxonomy shared by services and routes.

"""
Every failure the core can report to the admin/storefront layers is one of
these classes. Routes translate them to JSON using ``status_code`` and
``details``; anything else is treated as an internal error.
"""

from __future__ import annotations


class ShopCoreError(Exception):
    """Base class for all expected, typed failures."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class ValidationError(ShopCoreError):
    """400-level input problem, rejected before any mutation."""
    status_code = 400


class NotFoundError(ShopCoreError):
    """404-level: referenced product, order, PO or supplier does not exist."""
    status_code = 404


class InsufficientStock(ShopCoreError):
    """409-level: a decrement would take stock below zero."""
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, sku: str | None = None):
        label = sku or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "sku": sku,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidTransition(ShopCoreError):
    """409-level state machine violation (programming or race error)."""
    status_code = 409

    def __init__(self, machine: str, current: str, target: str, reason: str | None = None):
        message = f"Illegal {machine} transition {current} -> {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"machine": machine, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class InvalidReceipt(ShopCoreError):
    """Over-receipt, regression of a received quantity, or a foreign line."""
    status_code = 400


class PurchaseOrderStateError(ShopCoreError):
    """Operation is invalid for the purchase order's current status."""
    status_code = 409


class PaymentFailed(ShopCoreError):
    """
    The gateway reported failure, cancellation or timed out.

    Raised after the order has already been cancelled and its stock restored;
    ``order`` carries the final (cancelled) order.
    """
    status_code = 402

    def __init__(self, message: str, order=None, gateway_status: str | None = None):
        details = {"gateway_status": gateway_status}
        if order is not None:
            details["order_id"] = order.id
            details["order_number"] = order.order_number
        super().__init__(message, details=details)
        self.order = order
        self.gateway_status = gateway_status
