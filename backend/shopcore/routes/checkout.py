# Overview: Flask API routes for checkout; parses input and returns JSON responses.

"""
Checkout Routes

POST /api/checkout honours an Idempotency-Key header (or "idempotency_key"
in the body): resubmitting the same key returns the first order with 200
instead of creating a second one (201).
"""

from flask import Blueprint, jsonify, request

from ..decorators import current_actor_id, handle_core_errors
from ..errors import PaymentFailed
from ..services import checkout_service


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _order_payload(order) -> dict:
    data = order.to_dict()
    data["items"] = [item.to_dict() for item in order.items]
    return data


@checkout_bp.post("/quote")
@handle_core_errors("quote cart")
def quote_route():
    """
    Request body:
    {
        "cart": [{"product_id": 1, "quantity": 2}],   // required
        "address": {...},                              // optional, decides GST split
        "coupon_code": "..."                           // optional
    }
    """
    data = request.get_json(silent=True) or {}
    quote = checkout_service.quote_cart(
        data.get("cart"),
        data.get("address"),
        coupon_code=data.get("coupon_code"),
    )
    return jsonify(quote.to_dict())


@checkout_bp.post("")
@handle_core_errors("place order")
def place_order_route():
    """
    Request body:
    {
        "cart": [{"product_id": 1, "quantity": 2}],    // required
        "address": {"full_name", "phone", "address_line1", "address_line2",
                    "city", "state", "pincode", "country"},
        "payment_method": "cod" | "razorpay" | "phonepe" | "paytm",
        "customer_id": 42,                              // or X-Actor-Id header
        "coupon_code": "...",
        "notes": "..."
    }

    Returns:
        201 {order} on a new order, 200 {order} for a replayed idempotency key,
        402 {error, details, order} when online payment failed.
    """
    data = request.get_json(silent=True) or {}
    customer_id = data.get("customer_id")
    if customer_id is None:
        customer_id = current_actor_id()

    try:
        result = checkout_service.place_order(
            data.get("cart"),
            data.get("address"),
            data.get("payment_method"),
            customer_id,
            idempotency_key=request.headers.get("Idempotency-Key") or data.get("idempotency_key"),
            coupon_code=data.get("coupon_code"),
            notes=data.get("notes"),
        )
    except PaymentFailed as e:
        body = e.to_dict()
        if e.order is not None:
            body["order"] = _order_payload(e.order)
        return jsonify(body), e.status_code

    body = {"order": _order_payload(result.order), "created": result.created}
    if result.warnings:
        body["warnings"] = result.warnings
    return jsonify(body), 201 if result.created else 200
