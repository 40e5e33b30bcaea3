# Overview: Flask API routes for suppliers; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import handle_core_errors
from ..services import supplier_service


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("")
@handle_core_errors("list suppliers")
def list_suppliers_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    suppliers = supplier_service.list_suppliers(include_inactive=include_inactive)
    return jsonify({"items": [s.to_dict() for s in suppliers], "count": len(suppliers)})


@suppliers_bp.post("")
@handle_core_errors("create supplier")
def create_supplier_route():
    """
    Request body:
    {
        "name": "Acme Traders",     // required
        "code": "ACME",             // optional, unique
        "contact_person", "email", "phone", "gstin", "address", "notes"
    }
    """
    data = request.get_json(silent=True) or {}
    supplier = supplier_service.create_supplier(
        name=data.get("name"),
        code=data.get("code"),
        contact_person=data.get("contact_person"),
        email=data.get("email"),
        phone=data.get("phone"),
        gstin=data.get("gstin"),
        address=data.get("address"),
        notes=data.get("notes"),
    )
    return jsonify(supplier.to_dict()), 201


@suppliers_bp.get("/<int:supplier_id>")
@handle_core_errors("load supplier")
def get_supplier_route(supplier_id: int):
    return jsonify(supplier_service.get_supplier(supplier_id).to_dict())


@suppliers_bp.post("/<int:supplier_id>/deactivate")
@handle_core_errors("deactivate supplier")
def deactivate_supplier_route(supplier_id: int):
    return jsonify(supplier_service.deactivate_supplier(supplier_id).to_dict())
