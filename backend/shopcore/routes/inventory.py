# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import current_actor_id, handle_core_errors
from ..errors import ValidationError
from ..services import stock_service
from ..validation import clamp_limit, clamp_offset, parse_positive_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/summary")
@handle_core_errors("load inventory summary")
def summary_route():
    return jsonify(stock_service.get_inventory_summary())


@inventory_bp.get("/low-stock")
@handle_core_errors("list low stock")
def low_stock_route():
    include_out = request.args.get("include_out_of_stock", "true").lower() != "false"
    items = stock_service.list_low_stock(include_out_of_stock=include_out)
    return jsonify({"items": items, "count": len(items)})


@inventory_bp.get("/products/<int:product_id>")
@handle_core_errors("load stock level")
def stock_level_route(product_id: int):
    return jsonify(stock_service.get_stock_level(product_id))


def _movement_page(product_id=None, movement_type=None, reference=None):
    limit = clamp_limit(request.args.get("limit"))
    offset = clamp_offset(request.args.get("offset"))
    filters = {"product_id": product_id, "movement_type": movement_type, "reference": reference}
    movements = stock_service.list_movements(limit=limit, offset=offset, **filters)
    return jsonify({
        "items": [m.to_dict() for m in movements],
        "count": stock_service.count_movements(**filters),
        "limit": limit,
        "offset": offset,
    })


@inventory_bp.get("/products/<int:product_id>/movements")
@handle_core_errors("list product movements")
def product_movements_route(product_id: int):
    """
    Full movement history for one product, newest first.

    Query parameters:
    - limit (default 100, max 500), offset
    """
    # 404 for unknown products rather than an empty list
    stock_service.get_stock_level(product_id)
    return _movement_page(product_id=product_id)


@inventory_bp.get("/movements")
@handle_core_errors("list movements")
def movements_route():
    """
    Query parameters:
    - product_id, movement_type, reference: optional filters
    - limit: Maximum results (default 100, max 500), offset
    """
    product_id = request.args.get("product_id")
    return _movement_page(
        product_id=parse_positive_int(product_id, "product_id") if product_id else None,
        movement_type=request.args.get("movement_type") or None,
        reference=request.args.get("reference") or None,
    )


@inventory_bp.post("/adjust")
@handle_core_errors("adjust stock")
def adjust_route():
    """
    Manual stock adjustment.

    Request body:
    {
        "product_id": 1,                // required
        "delta": -3,                    // required, signed, non-zero
        "movement_type": "damage",      // optional, default "adjustment"
        "reason": "...",                // optional
        "reference": "..."              // optional
    }
    """
    data = request.get_json(silent=True) or {}
    if data.get("product_id") is None:
        raise ValidationError("product_id is required", {"field": "product_id"})
    if data.get("delta") is None:
        raise ValidationError("delta is required", {"field": "delta"})

    adjustment = stock_service.adjust_stock(
        parse_positive_int(data["product_id"], "product_id"),
        data["delta"],
        data.get("movement_type") or "adjustment",
        reason=data.get("reason"),
        reference=data.get("reference"),
        actor_user_id=current_actor_id(),
    )
    return jsonify(adjustment.to_dict()), 201


@inventory_bp.post("/restock")
@handle_core_errors("restock")
def restock_route():
    """
    Bulk restock in one unit.

    Request body:
    {
        "lines": [{"product_id": 1, "quantity": 10}, ...],  // required
        "reason": "...",                                      // optional
        "reference": "..."                                    // optional
    }
    """
    data = request.get_json(silent=True) or {}
    adjustments = stock_service.bulk_restock(
        data.get("lines") or [],
        reason=data.get("reason"),
        reference=data.get("reference"),
        actor_user_id=current_actor_id(),
    )
    return jsonify({"adjustments": [a.to_dict() for a in adjustments]}), 201
