# Overview: Request decorators for API routes; typed error translation and actor context.

from functools import wraps
from flask import current_app, jsonify, request

from .errors import ShopCoreError
from .validation import parse_positive_int


def handle_core_errors(action: str):
    """
    Translate service failures into JSON responses.

    - ShopCoreError subclasses -> {"error", "details"} with their status_code
    - anything else -> logged with the traceback, generic 500

    Usage:
        @inventory_bp.post("/adjust")
        @handle_core_errors("adjust stock")
        def adjust_route(): ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ShopCoreError as e:
                return jsonify(e.to_dict()), e.status_code
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator


def current_actor_id() -> int | None:
    """
    Acting admin/customer id supplied by the upstream auth layer (X-Actor-Id).

    Identities are opaque references here; they are never resolved.
    """
    raw = request.headers.get("X-Actor-Id")
    if raw is None or not raw.strip():
        return None
    return parse_positive_int(raw, "X-Actor-Id")
