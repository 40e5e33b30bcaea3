# Overview: Flask API routes for order lifecycle operations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import current_actor_id, handle_core_errors
from ..errors import ValidationError
from ..services import order_service
from ..validation import clamp_limit, clamp_offset
from shopcore.time_utils import parse_iso_datetime


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _parse_timestamp(value):
    if value in (None, ""):
        return None
    try:
        parsed = parse_iso_datetime(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None:
        raise ValidationError("timestamp must be an ISO-8601 datetime", {"field": "timestamp"})
    return parsed


@orders_bp.get("")
@handle_core_errors("list orders")
def list_orders_route():
    """
    Query parameters:
    - status, payment_status, customer_id: optional filters
    - limit (default 50, max 500), offset
    """
    limit = clamp_limit(request.args.get("limit"), default=50)
    offset = clamp_offset(request.args.get("offset"))
    orders, total = order_service.list_orders(
        status=request.args.get("status") or None,
        payment_status=request.args.get("payment_status") or None,
        customer_id=request.args.get("customer_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [o.to_dict() for o in orders],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@orders_bp.get("/reconciliation-alerts")
@handle_core_errors("list reconciliation alerts")
def reconciliation_alerts_route():
    limit = clamp_limit(request.args.get("limit"))
    alerts = order_service.list_reconciliation_alerts(limit=limit)
    return jsonify({"items": [a.to_dict() for a in alerts], "count": len(alerts)})


@orders_bp.get("/<int:order_id>")
@handle_core_errors("load order")
def get_order_route(order_id: int):
    return jsonify(order_service.get_order_detail(order_id))


@orders_bp.post("/<int:order_id>/transition")
@handle_core_errors("transition order")
def transition_order_route(order_id: int):
    """
    Request body:
    {
        "status": "shipped",               // required
        "timestamp": "...",                // optional, ISO-8601
        "cancel_reason": "...",            // optional, for cancelled
        "tracking_number": "...",          // optional, for shipped
        "tracking_url": "..."              // optional, for shipped
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        raise ValidationError("status is required", {"field": "status"})

    order = order_service.transition_order(
        order_id,
        data["status"],
        timestamp=_parse_timestamp(data.get("timestamp")),
        actor_user_id=current_actor_id(),
        cancel_reason=data.get("cancel_reason"),
        tracking_number=data.get("tracking_number"),
        tracking_url=data.get("tracking_url"),
    )
    return jsonify(order.to_dict())


@orders_bp.post("/<int:order_id>/payment")
@handle_core_errors("transition payment")
def transition_payment_route(order_id: int):
    """
    Request body:
    {
        "payment_status": "paid",          // required
        "gateway_reference": "...",        // optional
        "timestamp": "..."                 // optional, ISO-8601
    }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("payment_status"):
        raise ValidationError("payment_status is required", {"field": "payment_status"})

    order = order_service.transition_payment(
        order_id,
        data["payment_status"],
        gateway_reference=data.get("gateway_reference"),
        timestamp=_parse_timestamp(data.get("timestamp")),
        actor_user_id=current_actor_id(),
    )
    return jsonify(order.to_dict())


@orders_bp.post("/<int:order_id>/payment/confirm")
@handle_core_errors("confirm payment")
def confirm_payment_route(order_id: int):
    """
    Gateway verification callback.

    Request body: {"gateway_reference": "pay_..."}
    Returns the order plus reconciliation_required; a confirmation for an
    already-cancelled order is recorded as an alert, not applied.
    """
    data = request.get_json(silent=True) or {}
    confirmation = order_service.record_late_payment_confirmation(
        order_id,
        data.get("gateway_reference"),
        actor_user_id=current_actor_id(),
    )
    return jsonify({
        "order": confirmation.order.to_dict(),
        "reconciliation_required": confirmation.reconciliation_required,
    })
