# Overview: Service-layer operations for orders; owns the fulfillment and payment state machines.

"""
Order Service

LIFECYCLE (fulfillment):
    pending -> confirmed -> shipped -> delivered -> returned -> refunded
    pending / confirmed / shipped -> cancelled
    cancelled and refunded are terminal.

LIFECYCLE (payment):
    pending -> paid -> refunded
    pending -> failed

COUPLING:
- Fulfillment cannot become confirmed while payment is failed.
- Cancelling an order whose payment is paid moves payment to refunded.
- Fulfillment refunded with payment paid moves payment to refunded.
- Payment cannot become paid once the order is cancelled; that case is a
  reconciliation alert, never a resurrection.
- Payment can only fail while fulfillment is pending or cancelled.

STOCK:
- Cancellation returns every line to stock ('return' movements referencing
  the order number) exactly once, guarded by Order.stock_restored.
- Returned / refunded are bookkeeping only; goods coming back are restocked
  through the stock ledger explicitly.

Every transition locks the order row, appends an audit event and commits as
one unit (or joins the caller's unit with commit=False).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..models import AuditEvent, Order
from ..models.inventory import MOVEMENT_RETURN
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_DELIVERED,
    ORDER_PENDING,
    ORDER_REFUNDED,
    ORDER_RETURNED,
    ORDER_SHIPPED,
    ORDER_STATUSES,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
)
from ..validation import clean_str
from .audit_service import (
    CATEGORY_ORDER,
    CATEGORY_PAYMENT,
    CATEGORY_RECONCILIATION,
    append_audit_event,
    list_audit_events,
)
from .concurrency import finish_unit, lock_for_update, run_with_retry
from .stock_service import adjust_stock
from shopcore.time_utils import normalize_datetime, utcnow


# =============================================================================
# TRANSITION TABLES
# =============================================================================

FULFILLMENT_TRANSITIONS = {
    ORDER_PENDING: {ORDER_CONFIRMED, ORDER_CANCELLED},
    ORDER_CONFIRMED: {ORDER_SHIPPED, ORDER_CANCELLED},
    ORDER_SHIPPED: {ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_DELIVERED: {ORDER_RETURNED},
    ORDER_RETURNED: {ORDER_REFUNDED},
    ORDER_CANCELLED: set(),
    ORDER_REFUNDED: set(),
}

PAYMENT_TRANSITIONS = {
    PAYMENT_PENDING: {PAYMENT_PAID, PAYMENT_FAILED},
    PAYMENT_PAID: {PAYMENT_REFUNDED},
    PAYMENT_FAILED: set(),
    PAYMENT_REFUNDED: set(),
}

# Fulfillment states in which a payment failure may be recorded
PAYMENT_FAILABLE_STATUSES = {ORDER_PENDING, ORDER_CANCELLED}

ENTITY_ORDER = "order"


@dataclass(frozen=True)
class PaymentConfirmation:
    order: Order
    reconciliation_required: bool


# =============================================================================
# LOADING
# =============================================================================

def _load_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter(Order.id == order_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    order = query.first()
    if order is None:
        raise NotFoundError("order not found", {"order_id": order_id})
    return order


def get_order(order_id: int) -> Order:
    return _load_order(order_id)


def get_order_by_number(order_number: str) -> Order:
    order = db.session.query(Order).filter(Order.order_number == order_number).first()
    if order is None:
        raise NotFoundError("order not found", {"order_number": order_number})
    return order


def get_order_detail(order_id: int) -> dict:
    order = _load_order(order_id)
    data = order.to_dict()
    data["items"] = [item.to_dict() for item in order.items]
    return data


def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    customer_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    """Newest first. Returns (orders, total) for pagination."""
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ORDER_STATUSES)}")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")

    query = db.session.query(Order)
    if status is not None:
        query = query.filter(Order.status == status)
    if payment_status is not None:
        query = query.filter(Order.payment_status == payment_status)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)

    total = query.count()
    orders = query.order_by(Order.id.desc()).limit(limit).offset(offset).all()
    return orders, total


def list_reconciliation_alerts(*, limit: int = 100) -> list[AuditEvent]:
    return list_audit_events(event_category=CATEGORY_RECONCILIATION, limit=limit)


# =============================================================================
# STATE MACHINE CORE
# =============================================================================

def _reject(machine: str, order: Order, current: str, target: str, reason: str | None = None):
    current_app.logger.warning(
        "Rejected %s transition %s -> %s for order %s%s",
        machine, current, target, order.order_number, f" ({reason})" if reason else "",
    )
    raise InvalidTransition(machine, current, target, reason)


def _restore_stock(order: Order, *, actor_user_id: int | None) -> None:
    """Return every line to stock once; later calls are no-ops."""
    if order.stock_restored:
        return
    for item in order.items:
        adjust_stock(
            item.product_id,
            item.quantity,
            MOVEMENT_RETURN,
            reason="order cancelled",
            reference=order.order_number,
            actor_user_id=actor_user_id,
            commit=False,
        )
    order.stock_restored = True


def _audit(order: Order, event_type: str, category: str, *, actor_user_id, occurred_at, note=None, payload=None):
    append_audit_event(
        event_type=event_type,
        event_category=category,
        entity_type=ENTITY_ORDER,
        entity_id=order.id,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at,
        note=note,
        payload={"order_number": order.order_number, **(payload or {})},
    )


def _apply_payment_status(
    order: Order,
    new_payment_status: str,
    *,
    now: datetime,
    actor_user_id: int | None,
    gateway_reference: str | None = None,
) -> None:
    current = order.payment_status
    if new_payment_status not in PAYMENT_TRANSITIONS.get(current, set()):
        _reject("payment", order, current, new_payment_status)

    if new_payment_status == PAYMENT_PAID and order.status == ORDER_CANCELLED:
        _reject("payment", order, current, new_payment_status, "order is cancelled")
    if new_payment_status == PAYMENT_FAILED and order.status not in PAYMENT_FAILABLE_STATUSES:
        _reject("payment", order, current, new_payment_status, f"order is {order.status}")

    order.payment_status = new_payment_status
    if new_payment_status == PAYMENT_PAID:
        order.paid_at = now
        if gateway_reference:
            order.gateway_reference = gateway_reference
    elif new_payment_status == PAYMENT_REFUNDED:
        order.refunded_at = order.refunded_at or now

    _audit(
        order,
        f"payment.{new_payment_status}",
        CATEGORY_PAYMENT,
        actor_user_id=actor_user_id,
        occurred_at=now,
        payload={"from": current, "to": new_payment_status, "gateway_reference": gateway_reference},
    )


def _apply_fulfillment_status(
    order: Order,
    new_status: str,
    *,
    now: datetime,
    actor_user_id: int | None,
    cancel_reason: str | None = None,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
) -> bool:
    """Apply one fulfillment transition with its side effects. Returns False for a no-op."""
    current = order.status

    # Retried cancellation
    if new_status == ORDER_CANCELLED and current == ORDER_CANCELLED:
        return False

    if new_status not in FULFILLMENT_TRANSITIONS.get(current, set()):
        _reject("fulfillment", order, current, new_status)
    if new_status == ORDER_CONFIRMED and order.payment_status == PAYMENT_FAILED:
        _reject("fulfillment", order, current, new_status, "payment failed")

    order.status = new_status

    if new_status == ORDER_CONFIRMED:
        order.confirmed_at = now
    elif new_status == ORDER_SHIPPED:
        order.shipped_at = now
        if tracking_number:
            order.tracking_number = tracking_number
        if tracking_url:
            order.tracking_url = tracking_url
    elif new_status == ORDER_DELIVERED:
        order.delivered_at = now
    elif new_status == ORDER_RETURNED:
        order.returned_at = now
    elif new_status == ORDER_CANCELLED:
        order.cancelled_at = now
        order.cancel_reason = cancel_reason
        _restore_stock(order, actor_user_id=actor_user_id)
    elif new_status == ORDER_REFUNDED:
        order.refunded_at = now

    _audit(
        order,
        f"order.{new_status}",
        CATEGORY_ORDER,
        actor_user_id=actor_user_id,
        occurred_at=now,
        note=cancel_reason if new_status == ORDER_CANCELLED else None,
        payload={"from": current, "to": new_status},
    )

    if new_status in (ORDER_CANCELLED, ORDER_REFUNDED) and order.payment_status == PAYMENT_PAID:
        _apply_payment_status(order, PAYMENT_REFUNDED, now=now, actor_user_id=actor_user_id)

    return True


# =============================================================================
# PUBLIC TRANSITIONS
# =============================================================================

def transition_order(
    order_id: int,
    new_status: str,
    *,
    timestamp: datetime | None = None,
    actor_user_id: int | None = None,
    cancel_reason: str | None = None,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
    commit: bool = True,
) -> Order:
    """
    Move an order's fulfillment status.

    Raises:
        ValidationError: unknown status
        NotFoundError: order does not exist
        InvalidTransition: illegal for the current state (nothing changes)
    """
    if new_status not in ORDER_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(ORDER_STATUSES)}",
            {"field": "status", "value": new_status},
        )
    cancel_reason = clean_str(cancel_reason, max_length=255)
    tracking_number = clean_str(tracking_number, max_length=128)
    tracking_url = clean_str(tracking_url, max_length=512)

    def _op():
        order = _load_order(order_id, lock=True)
        _apply_fulfillment_status(
            order,
            new_status,
            now=normalize_datetime(timestamp) or utcnow(),
            actor_user_id=actor_user_id,
            cancel_reason=cancel_reason,
            tracking_number=tracking_number,
            tracking_url=tracking_url,
        )
        finish_unit(commit)
        return order

    if not commit:
        return _op()
    return run_with_retry(_op)


def transition_payment(
    order_id: int,
    new_payment_status: str,
    *,
    gateway_reference: str | None = None,
    timestamp: datetime | None = None,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> Order:
    """Move an order's payment status; same validation, locking and audit as transition_order."""
    if new_payment_status not in PAYMENT_STATUSES:
        raise ValidationError(
            f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}",
            {"field": "payment_status", "value": new_payment_status},
        )
    gateway_reference = clean_str(gateway_reference, max_length=128)

    def _op():
        order = _load_order(order_id, lock=True)
        _apply_payment_status(
            order,
            new_payment_status,
            now=normalize_datetime(timestamp) or utcnow(),
            actor_user_id=actor_user_id,
            gateway_reference=gateway_reference,
        )
        finish_unit(commit)
        return order

    if not commit:
        return _op()
    return run_with_retry(_op)


def record_late_payment_confirmation(
    order_id: int,
    gateway_reference: str,
    *,
    actor_user_id: int | None = None,
) -> PaymentConfirmation:
    """
    Apply a gateway "payment succeeded" confirmation, whether it comes back
    inline from checkout or later through the gateway's verification callback.

    - Payment pending on a live order: payment -> paid, and a pending order -> confirmed.
    - Already paid: no-op (duplicate callback).
    - Anything else (order cancelled, payment failed/refunded): the order is left
      untouched and a reconciliation alert is recorded for manual follow-up.
    """
    gateway_reference = clean_str(gateway_reference, max_length=128)
    if not gateway_reference:
        raise ValidationError("gateway_reference is required", {"field": "gateway_reference"})

    def _op():
        order = _load_order(order_id, lock=True)
        now = utcnow()

        if order.payment_status == PAYMENT_PAID:
            db.session.commit()
            return PaymentConfirmation(order=order, reconciliation_required=False)

        if order.payment_status == PAYMENT_PENDING and order.status != ORDER_CANCELLED:
            _apply_payment_status(
                order,
                PAYMENT_PAID,
                now=now,
                actor_user_id=actor_user_id,
                gateway_reference=gateway_reference,
            )
            if order.status == ORDER_PENDING:
                _apply_fulfillment_status(order, ORDER_CONFIRMED, now=now, actor_user_id=actor_user_id)
            db.session.commit()
            return PaymentConfirmation(order=order, reconciliation_required=False)

        _audit(
            order,
            "reconciliation.late_payment",
            CATEGORY_RECONCILIATION,
            actor_user_id=actor_user_id,
            occurred_at=now,
            note="payment confirmed after order was closed",
            payload={
                "gateway_reference": gateway_reference,
                "status": order.status,
                "payment_status": order.payment_status,
                "amount_cents": order.total_amount_cents,
            },
        )
        db.session.commit()
        current_app.logger.warning(
            "Late payment confirmation for order %s (status=%s, payment=%s, ref=%s); reconciliation required",
            order.order_number, order.status, order.payment_status, gateway_reference,
        )
        return PaymentConfirmation(order=order, reconciliation_required=True)

    return run_with_retry(_op)


def cancel_for_payment_failure(
    order_id: int,
    *,
    gateway_status: str,
    message: str | None = None,
) -> Order:
    """
    Cancel an unpaid order after a failed, abandoned or timed-out payment.

    Fulfillment -> cancelled (stock restored) and payment -> failed in one unit.
    If a confirmation already marked the order paid, it is left as is.
    """
    def _op():
        order = _load_order(order_id, lock=True)
        if order.payment_status == PAYMENT_PAID:
            db.session.commit()
            return order

        now = utcnow()
        reason = f"payment {gateway_status}"
        _apply_fulfillment_status(order, ORDER_CANCELLED, now=now, actor_user_id=None, cancel_reason=reason)
        if order.payment_status == PAYMENT_PENDING:
            _apply_payment_status(order, PAYMENT_FAILED, now=now, actor_user_id=None)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s cancelled after payment %s%s",
        order.order_number, gateway_status, f": {message}" if message else "",
    )
    return order
