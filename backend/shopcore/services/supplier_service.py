# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

Suppliers are the counterparty of every purchase order. Codes are optional
short identifiers, normalized to upper case and unique when present.
Suppliers are never deleted; deactivation keeps historical POs intact and
blocks new ones.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Supplier
from ..validation import clean_str


def create_supplier(
    *,
    name: str,
    code: str | None = None,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    gstin: str | None = None,
    address: str | None = None,
    notes: str | None = None,
) -> Supplier:
    """
    Create a new supplier.

    Raises:
        ValidationError: missing name or duplicate code
    """
    name = clean_str(name, max_length=255)
    if not name:
        raise ValidationError("Supplier name is required", {"field": "name"})

    # Normalize code
    code = clean_str(code, max_length=64)
    if code:
        code = code.upper()
        existing = db.session.query(Supplier.id).filter(Supplier.code == code).first()
        if existing:
            raise ValidationError(f"Supplier code '{code}' already exists", {"field": "code"})

    gstin = clean_str(gstin)
    if gstin is not None:
        gstin = gstin.upper()
        if len(gstin) != 15:
            raise ValidationError("gstin must be 15 characters", {"field": "gstin"})

    supplier = Supplier(
        name=name,
        code=code,
        contact_person=clean_str(contact_person, max_length=255),
        email=clean_str(email, max_length=255),
        phone=clean_str(phone, max_length=64),
        gstin=gstin,
        address=clean_str(address),
        notes=clean_str(notes),
        is_active=True,
    )
    db.session.add(supplier)
    db.session.commit()
    return supplier


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
    if supplier is None:
        raise NotFoundError("supplier not found", {"supplier_id": supplier_id})
    return supplier


def list_suppliers(*, include_inactive: bool = False) -> list[Supplier]:
    q = db.session.query(Supplier)
    if not include_inactive:
        q = q.filter(Supplier.is_active.is_(True))
    return q.order_by(Supplier.name.asc(), Supplier.id.asc()).all()


def deactivate_supplier(supplier_id: int) -> Supplier:
    supplier = get_supplier(supplier_id)
    supplier.is_active = False
    db.session.commit()
    return supplier
