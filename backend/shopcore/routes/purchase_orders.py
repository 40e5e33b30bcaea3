# Overview: Flask API routes for purchase orders and receiving; parses input and returns JSON responses.

"""
Purchase Order Routes

Drafts are edited through the /items endpoints; /order freezes them and
/receive records cumulative received quantities per line.
"""

from flask import Blueprint, jsonify, request

from ..decorators import current_actor_id, handle_core_errors
from ..errors import ValidationError
from ..services import purchase_order_service
from ..validation import clamp_limit, clamp_offset


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("")
@handle_core_errors("list purchase orders")
def list_purchase_orders_route():
    limit = clamp_limit(request.args.get("limit"))
    offset = clamp_offset(request.args.get("offset"))
    pos, total = purchase_order_service.list_purchase_orders(
        status=request.args.get("status") or None,
        supplier_id=request.args.get("supplier_id", type=int),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [po.to_dict() for po in pos],
        "count": total,
        "limit": limit,
        "offset": offset,
    })


@purchase_orders_bp.post("")
@handle_core_errors("create purchase order")
def create_purchase_order_route():
    """
    Request body:
    {
        "supplier_id": 1,                        // required
        "items": [{"product_id", "quantity", "unit_price_cents", "tax_rate_bps"}],
        "order_date": "YYYY-MM-DD",              // optional
        "expected_date": "YYYY-MM-DD",           // optional
        "shipping_amount_cents": 0,
        "discount_amount_cents": 0,
        "notes": "..."
    }
    """
    data = request.get_json(silent=True) or {}
    if data.get("supplier_id") is None:
        raise ValidationError("supplier_id is required", {"field": "supplier_id"})

    po = purchase_order_service.create_purchase_order(
        supplier_id=data["supplier_id"],
        items=data.get("items") or [],
        notes=data.get("notes"),
        order_date=data.get("order_date"),
        expected_date=data.get("expected_date"),
        shipping_amount_cents=data.get("shipping_amount_cents") or 0,
        discount_amount_cents=data.get("discount_amount_cents") or 0,
        created_by_user_id=current_actor_id(),
    )
    return jsonify(purchase_order_service.get_purchase_order_detail(po.id)), 201


@purchase_orders_bp.get("/<int:po_id>")
@handle_core_errors("load purchase order")
def get_purchase_order_route(po_id: int):
    return jsonify(purchase_order_service.get_purchase_order_detail(po_id))


@purchase_orders_bp.post("/<int:po_id>/items")
@handle_core_errors("add purchase order item")
def add_item_route(po_id: int):
    data = request.get_json(silent=True) or {}
    item = purchase_order_service.add_purchase_order_item(
        po_id,
        product_id=data.get("product_id"),
        quantity=data.get("quantity"),
        unit_price_cents=data.get("unit_price_cents"),
        tax_rate_bps=data.get("tax_rate_bps"),
    )
    return jsonify(item.to_dict()), 201


@purchase_orders_bp.patch("/items/<int:item_id>")
@handle_core_errors("update purchase order item")
def update_item_route(item_id: int):
    data = request.get_json(silent=True) or {}
    item = purchase_order_service.update_purchase_order_item(
        item_id,
        quantity=data.get("quantity"),
        unit_price_cents=data.get("unit_price_cents"),
        tax_rate_bps=data.get("tax_rate_bps"),
    )
    return jsonify(item.to_dict())


@purchase_orders_bp.delete("/items/<int:item_id>")
@handle_core_errors("remove purchase order item")
def remove_item_route(item_id: int):
    po = purchase_order_service.remove_purchase_order_item(item_id)
    return jsonify(po.to_dict())


@purchase_orders_bp.post("/<int:po_id>/order")
@handle_core_errors("mark purchase order ordered")
def mark_ordered_route(po_id: int):
    data = request.get_json(silent=True) or {}
    po = purchase_order_service.mark_ordered(
        po_id,
        order_date=data.get("order_date"),
        actor_user_id=current_actor_id(),
    )
    return jsonify(po.to_dict())


@purchase_orders_bp.post("/<int:po_id>/cancel")
@handle_core_errors("cancel purchase order")
def cancel_route(po_id: int):
    data = request.get_json(silent=True) or {}
    po = purchase_order_service.cancel_purchase_order(
        po_id,
        reason=data.get("reason"),
        actor_user_id=current_actor_id(),
    )
    return jsonify(po.to_dict())


@purchase_orders_bp.post("/<int:po_id>/receive")
@handle_core_errors("receive purchase order items")
def receive_route(po_id: int):
    """
    Request body:
    {
        "items": [{"item_id": 7, "received_quantity": 10}]   // new cumulative values
    }
    """
    data = request.get_json(silent=True) or {}
    purchase_order_service.receive_items(
        po_id,
        data.get("items"),
        actor_user_id=current_actor_id(),
    )
    return jsonify(purchase_order_service.get_purchase_order_detail(po_id))
