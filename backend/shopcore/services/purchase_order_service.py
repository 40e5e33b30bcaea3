# Overview: Service-layer operations for purchase orders; drafting, sending and receiving.

"""
Purchase Order Service

LIFECYCLE:
1. draft: created, items editable, totals recomputed on every edit
2. ordered: sent to the supplier, items frozen, order_date defaulted to today
3. partial: some (not all) ordered quantity received
4. received: every line fully received, received_date set
5. cancelled: only from draft

RECEIVING:
- A receipt reports the new cumulative received_quantity per line.
- Every line is validated before anything is written; one bad line rejects
  the whole receipt.
- Stock moves by the delta (new - previous) only, as 'restock' movements
  referencing the PO number, inside the same unit as the line and status
  updates. A repeated receipt with unchanged quantities moves no stock.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InvalidReceipt, NotFoundError, PurchaseOrderStateError, ValidationError
from ..models import Product, PurchaseOrder, PurchaseOrderItem, Supplier
from ..models.inventory import MOVEMENT_RESTOCK
from ..models.purchasing import (
    PO_CANCELLED,
    PO_DRAFT,
    PO_ORDERED,
    PO_PARTIAL,
    PO_RECEIVED,
    PO_STATUSES,
)
from ..validation import (
    clean_str,
    parse_int,
    parse_non_negative_int,
    parse_optional_date,
    parse_positive_int,
    parse_price_cents,
    parse_quantity,
)
from .audit_service import CATEGORY_PURCHASE_ORDER, append_audit_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import DOCUMENT_TYPE_PURCHASE_ORDER, next_document_number
from .stock_service import adjust_stock
from shopcore.time_utils import utcnow


DEFAULT_TAX_RATE_BPS = 1800
RECEIVABLE_STATUSES = (PO_ORDERED, PO_PARTIAL)
ENTITY_PURCHASE_ORDER = "purchase_order"


# =============================================================================
# HELPERS
# =============================================================================

def _load_po(po_id: int, *, lock: bool = False) -> PurchaseOrder:
    query = db.session.query(PurchaseOrder).filter(PurchaseOrder.id == po_id)
    if lock:
        query = lock_for_update(query).populate_existing()
    po = query.first()
    if po is None:
        raise NotFoundError("purchase order not found", {"purchase_order_id": po_id})
    return po


def _load_item(item_id: int) -> PurchaseOrderItem:
    item = db.session.query(PurchaseOrderItem).filter(PurchaseOrderItem.id == item_id).first()
    if item is None:
        raise NotFoundError("purchase order item not found", {"item_id": item_id})
    return item


def _require_draft(po: PurchaseOrder, action: str) -> None:
    if po.status != PO_DRAFT:
        raise PurchaseOrderStateError(
            f"Cannot {action} purchase order in {po.status} status",
            {"purchase_order_id": po.id, "status": po.status},
        )


def _line_tax(line_total_cents: int, tax_rate_bps: int) -> int:
    # half-up to the minor unit
    return (line_total_cents * tax_rate_bps + 5000) // 10000


def _recompute_totals(po: PurchaseOrder, items: list[PurchaseOrderItem]) -> None:
    subtotal = 0
    tax = 0
    for item in items:
        item.total_price_cents = item.quantity * item.unit_price_cents
        subtotal += item.total_price_cents
        tax += _line_tax(item.total_price_cents, item.tax_rate_bps)

    total = subtotal + tax + (po.shipping_amount_cents or 0) - (po.discount_amount_cents or 0)
    if total < 0:
        raise ValidationError(
            "discount cannot exceed purchase order value",
            {"discount_amount_cents": po.discount_amount_cents},
        )
    po.subtotal_cents = subtotal
    po.tax_amount_cents = tax
    po.total_amount_cents = total


def _po_items(po: PurchaseOrder) -> list[PurchaseOrderItem]:
    return (
        db.session.query(PurchaseOrderItem)
        .filter(PurchaseOrderItem.purchase_order_id == po.id)
        .order_by(PurchaseOrderItem.id)
        .populate_existing()
        .all()
    )


def _parse_item_input(raw, idx: int | None = None) -> dict:
    prefix = f"items[{idx}]." if idx is not None else ""
    if not isinstance(raw, dict):
        raise ValidationError(f"{prefix or 'item '}must be an object")
    tax_rate = raw.get("tax_rate_bps")
    return {
        "product_id": parse_positive_int(raw.get("product_id"), f"{prefix}product_id"),
        "quantity": parse_quantity(raw.get("quantity"), f"{prefix}quantity"),
        "unit_price_cents": parse_price_cents(raw.get("unit_price_cents"), f"{prefix}unit_price_cents"),
        "tax_rate_bps": (
            DEFAULT_TAX_RATE_BPS if tax_rate is None
            else parse_non_negative_int(tax_rate, f"{prefix}tax_rate_bps")
        ),
    }


def _ensure_product(product_id: int) -> None:
    if db.session.query(Product.id).filter(Product.id == product_id).first() is None:
        raise ValidationError("product not found", {"product_id": product_id})


def _audit(po: PurchaseOrder, event_type: str, *, actor_user_id=None, note=None, payload=None):
    append_audit_event(
        event_type=event_type,
        event_category=CATEGORY_PURCHASE_ORDER,
        entity_type=ENTITY_PURCHASE_ORDER,
        entity_id=po.id,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
        note=note,
        payload={"po_number": po.po_number, **(payload or {})},
    )


# =============================================================================
# DRAFTING
# =============================================================================

def create_purchase_order(
    *,
    supplier_id: int,
    items: list[dict] | None = None,
    notes: str | None = None,
    order_date=None,
    expected_date=None,
    shipping_amount_cents: int = 0,
    discount_amount_cents: int = 0,
    created_by_user_id: int | None = None,
) -> PurchaseOrder:
    """
    Create a draft purchase order with an allocated PO number.

    Raises:
        NotFoundError: supplier does not exist
        ValidationError: inactive supplier, bad line input, duplicate product
    """
    supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
    if supplier is None:
        raise NotFoundError("supplier not found", {"supplier_id": supplier_id})
    if not supplier.is_active:
        raise ValidationError("supplier is not active", {"supplier_id": supplier_id})

    lines = [_parse_item_input(raw, idx) for idx, raw in enumerate(items or [])]
    seen = set()
    for line in lines:
        if line["product_id"] in seen:
            raise ValidationError(
                "each product may appear only once per purchase order",
                {"product_id": line["product_id"]},
            )
        seen.add(line["product_id"])
        _ensure_product(line["product_id"])

    shipping = parse_non_negative_int(shipping_amount_cents or 0, "shipping_amount_cents")
    discount = parse_non_negative_int(discount_amount_cents or 0, "discount_amount_cents")
    order_date = parse_optional_date(order_date, "order_date")
    expected_date = parse_optional_date(expected_date, "expected_date")
    notes = clean_str(notes)

    def _op():
        po = PurchaseOrder(
            po_number=next_document_number(
                document_type=DOCUMENT_TYPE_PURCHASE_ORDER,
                prefix=current_app.config.get("PO_NUMBER_PREFIX", "PO"),
            ),
            supplier_id=supplier_id,
            status=PO_DRAFT,
            order_date=order_date,
            expected_date=expected_date,
            shipping_amount_cents=shipping,
            discount_amount_cents=discount,
            notes=notes,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(po)
        db.session.flush()

        po_items = []
        for line in lines:
            item = PurchaseOrderItem(
                purchase_order_id=po.id,
                total_price_cents=line["quantity"] * line["unit_price_cents"],
                received_quantity=0,
                **line,
            )
            db.session.add(item)
            po_items.append(item)

        _recompute_totals(po, po_items)
        db.session.flush()
        _audit(po, "purchase_order.created", actor_user_id=created_by_user_id)
        db.session.commit()
        return po

    return run_with_retry(_op)


def add_purchase_order_item(
    po_id: int,
    *,
    product_id: int,
    quantity: int,
    unit_price_cents: int,
    tax_rate_bps: int | None = None,
) -> PurchaseOrderItem:
    line = _parse_item_input(
        {
            "product_id": product_id,
            "quantity": quantity,
            "unit_price_cents": unit_price_cents,
            "tax_rate_bps": tax_rate_bps,
        }
    )
    _ensure_product(line["product_id"])

    def _op():
        po = _load_po(po_id, lock=True)
        _require_draft(po, "add items to")
        items = _po_items(po)
        if any(i.product_id == line["product_id"] for i in items):
            raise ValidationError(
                "product already on this purchase order; update the existing line",
                {"product_id": line["product_id"]},
            )

        item = PurchaseOrderItem(
            purchase_order_id=po.id,
            total_price_cents=line["quantity"] * line["unit_price_cents"],
            received_quantity=0,
            **line,
        )
        db.session.add(item)
        _recompute_totals(po, items + [item])
        db.session.commit()
        return item

    return run_with_retry(_op)


def update_purchase_order_item(
    item_id: int,
    *,
    quantity: int | None = None,
    unit_price_cents: int | None = None,
    tax_rate_bps: int | None = None,
) -> PurchaseOrderItem:
    if quantity is not None:
        quantity = parse_quantity(quantity, "quantity")
    if unit_price_cents is not None:
        unit_price_cents = parse_price_cents(unit_price_cents, "unit_price_cents")
    if tax_rate_bps is not None:
        tax_rate_bps = parse_non_negative_int(tax_rate_bps, "tax_rate_bps")

    def _op():
        item = _load_item(item_id)
        po = _load_po(item.purchase_order_id, lock=True)
        _require_draft(po, "edit items of")

        items = _po_items(po)
        target = next((i for i in items if i.id == item_id), None)
        if target is None:
            raise NotFoundError("purchase order item not found", {"item_id": item_id})
        if quantity is not None:
            target.quantity = quantity
        if unit_price_cents is not None:
            target.unit_price_cents = unit_price_cents
        if tax_rate_bps is not None:
            target.tax_rate_bps = tax_rate_bps

        _recompute_totals(po, items)
        db.session.commit()
        return target

    return run_with_retry(_op)


def remove_purchase_order_item(item_id: int) -> PurchaseOrder:
    def _op():
        item = _load_item(item_id)
        po = _load_po(item.purchase_order_id, lock=True)
        _require_draft(po, "remove items from")

        db.session.delete(item)
        db.session.flush()
        _recompute_totals(po, _po_items(po))
        db.session.commit()
        return po

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def mark_ordered(
    po_id: int,
    *,
    order_date=None,
    actor_user_id: int | None = None,
) -> PurchaseOrder:
    """draft -> ordered. Freezes items; order_date defaults to today."""
    order_date = parse_optional_date(order_date, "order_date")

    def _op():
        po = _load_po(po_id, lock=True)
        _require_draft(po, "order")
        if not _po_items(po):
            raise ValidationError(
                "purchase order must have at least one item",
                {"purchase_order_id": po.id},
            )

        po.status = PO_ORDERED
        po.order_date = order_date or po.order_date or utcnow().date()
        _audit(po, "purchase_order.ordered", actor_user_id=actor_user_id)
        db.session.commit()
        return po

    return run_with_retry(_op)


def cancel_purchase_order(
    po_id: int,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> PurchaseOrder:
    """Only drafts can be cancelled; nothing has reached stock yet."""
    reason = clean_str(reason, max_length=255)

    def _op():
        po = _load_po(po_id, lock=True)
        if po.status == PO_CANCELLED:
            raise PurchaseOrderStateError(
                "Purchase order is already cancelled",
                {"purchase_order_id": po.id, "status": po.status},
            )
        _require_draft(po, "cancel")

        po.status = PO_CANCELLED
        po.cancellation_reason = reason
        _audit(po, "purchase_order.cancelled", actor_user_id=actor_user_id, note=reason)
        db.session.commit()
        return po

    return run_with_retry(_op)


# =============================================================================
# RECEIVING
# =============================================================================

def _parse_receipts(receipts) -> list[tuple[int, int]]:
    if not isinstance(receipts, (list, tuple)) or not receipts:
        raise InvalidReceipt("receipt must contain at least one line")

    parsed = []
    seen = set()
    for idx, raw in enumerate(receipts):
        if not isinstance(raw, dict):
            raise InvalidReceipt(f"receipt line {idx} must be an object", {"line": idx})
        try:
            item_id = parse_int(raw.get("item_id"), "item_id")
            received = parse_int(raw.get("received_quantity"), "received_quantity")
        except ValidationError as exc:
            raise InvalidReceipt(f"receipt line {idx}: {exc.message}", {"line": idx}) from exc
        if item_id in seen:
            raise InvalidReceipt("item listed more than once", {"item_id": item_id})
        seen.add(item_id)
        parsed.append((item_id, received))
    return parsed


def receive_items(
    po_id: int,
    receipts,
    *,
    actor_user_id: int | None = None,
) -> PurchaseOrder:
    """
    Record cumulative received quantities and restock the difference.

    receipts: [{"item_id": ..., "received_quantity": <new cumulative value>}]

    Raises:
        NotFoundError: PO does not exist
        PurchaseOrderStateError: PO is not ordered / partial
        InvalidReceipt: foreign item, regression below the recorded value,
            or more than ordered; nothing is written
    """
    parsed = _parse_receipts(receipts)

    def _op():
        po = _load_po(po_id, lock=True)
        if po.status not in RECEIVABLE_STATUSES:
            raise PurchaseOrderStateError(
                f"Cannot receive items for purchase order in {po.status} status",
                {"purchase_order_id": po.id, "status": po.status},
            )

        items = {item.id: item for item in _po_items(po)}

        # Validate everything before touching stock
        for item_id, received in parsed:
            item = items.get(item_id)
            if item is None:
                raise InvalidReceipt(
                    "item does not belong to this purchase order",
                    {"item_id": item_id, "purchase_order_id": po.id},
                )
            if received < item.received_quantity:
                raise InvalidReceipt(
                    "received quantity cannot decrease",
                    {"item_id": item_id, "received_quantity": item.received_quantity, "requested": received},
                )
            if received > item.quantity:
                raise InvalidReceipt(
                    "received quantity exceeds ordered quantity",
                    {"item_id": item_id, "quantity": item.quantity, "requested": received},
                )

        received_lines = []
        for item_id, received in parsed:
            item = items[item_id]
            delta = received - item.received_quantity
            if delta == 0:
                continue
            item.received_quantity = received
            adjust_stock(
                item.product_id,
                delta,
                MOVEMENT_RESTOCK,
                reason="purchase order receipt",
                reference=po.po_number,
                actor_user_id=actor_user_id,
                commit=False,
            )
            received_lines.append({"item_id": item_id, "product_id": item.product_id, "quantity": delta})

        previous_status = po.status
        if all(i.received_quantity >= i.quantity for i in items.values()):
            po.status = PO_RECEIVED
            po.received_date = utcnow().date()
        else:
            po.status = PO_PARTIAL
        # Always bump the PO version so concurrent receipts serialize on the header
        po.updated_at = utcnow()

        if received_lines or po.status != previous_status:
            _audit(
                po,
                "purchase_order.received",
                actor_user_id=actor_user_id,
                payload={"from": previous_status, "to": po.status, "lines": received_lines},
            )
        db.session.commit()
        return po

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_purchase_order(po_id: int) -> PurchaseOrder:
    return _load_po(po_id)


def get_purchase_order_detail(po_id: int) -> dict:
    po = _load_po(po_id)
    data = po.to_dict()
    data["supplier"] = po.supplier.to_dict() if po.supplier else None
    data["items"] = [item.to_dict() for item in po.items]
    return data


def list_purchase_orders(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    """Newest first. Returns (purchase orders, total count)."""
    if status is not None and status not in PO_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PO_STATUSES)}")

    query = db.session.query(PurchaseOrder)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)

    total = query.count()
    query = query.order_by(PurchaseOrder.id.desc()).offset(offset).limit(limit)
    return query.all(), total
