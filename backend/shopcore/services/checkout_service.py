# Overview: Service-layer operations for checkout; the only creator of orders.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db, gateways
from ..errors import InsufficientStock, PaymentFailed, ValidationError
from ..gateways.ports import PAYMENT_FAILURE, PAYMENT_TIMEOUT, CartLine, PaymentResult
from ..models import Order, OrderItem, Product
from ..models.inventory import MOVEMENT_ORDER
from ..models.orders import (
    ORDER_CONFIRMED,
    PAYMENT_METHOD_COD,
    PAYMENT_METHODS,
    PAYMENT_PAID,
)
from ..validation import MAX_QUANTITY, clean_str, parse_positive_int, parse_quantity
from .audit_service import CATEGORY_ORDER, append_audit_event
from .concurrency import run_with_retry
from .document_service import DOCUMENT_TYPE_ORDER, next_document_number
from .order_service import (
    ENTITY_ORDER,
    cancel_for_payment_failure,
    record_late_payment_confirmation,
    transition_order,
)
from .stock_service import adjust_stock
"""
Checkout Invariants (authoritative)

Money:
- All arithmetic is integer minor units; rates are basis points.
- tax = SUM(round_half_up(line_total * gst_bps / 10000)) per line.
- discount is clamped to [0, subtotal]; shipping must be a non-negative int.
- total = subtotal + shipping + tax - discount (also a CHECK constraint on orders).

Units of work:
1. Create: order number + Order + OrderItems + one 'order' movement per line + audit,
   committed together. InsufficientStock rolls back all of it.
2. Payment: the gateway is called with no transaction open.
3. Finalize: confirmation (paid + confirmed) or cancellation (stock restored + failed),
   each its own unit in order_service.

Idempotency:
- An idempotency_key that already has an order returns that order; the unique
  column turns a concurrent duplicate into the same answer.
"""

# Address snapshot stored on the order
REQUIRED_ADDRESS_FIELDS = ("full_name", "phone", "address_line1", "city", "state", "pincode")
OPTIONAL_ADDRESS_FIELDS = ("address_line2", "email", "country")
DEFAULT_COUNTRY = "India"


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    sku: str
    name: str
    quantity: int
    unit_price_cents: int
    gst_rate_bps: int
    line_total_cents: int
    tax_cents: int
    weight_grams: int

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "gst_rate_bps": self.gst_rate_bps,
            "line_total_cents": self.line_total_cents,
            "tax_cents": self.tax_cents,
        }


@dataclass(frozen=True)
class Quote:
    lines: tuple
    subtotal_cents: int
    shipping_amount_cents: int
    discount_amount_cents: int
    tax_amount_cents: int
    cgst_amount_cents: int
    sgst_amount_cents: int
    igst_amount_cents: int
    total_amount_cents: int
    currency: str
    coupon_code: str | None = None
    weight_grams: int = 0

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self.lines],
            "subtotal_cents": self.subtotal_cents,
            "shipping_amount_cents": self.shipping_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "cgst_amount_cents": self.cgst_amount_cents,
            "sgst_amount_cents": self.sgst_amount_cents,
            "igst_amount_cents": self.igst_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "currency": self.currency,
            "coupon_code": self.coupon_code,
            "weight_grams": self.weight_grams,
        }


@dataclass
class CheckoutResult:
    order: Order
    created: bool
    warnings: list[str] = field(default_factory=list)


def _round_half_up_bps(amount_cents: int, bps: int) -> int:
    return (amount_cents * bps + 5000) // 10000


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_cart(cart) -> list[tuple[int, int]]:
    """
    Returns [(product_id, quantity)] with duplicate products merged,
    ordered by product_id so concurrent checkouts touch rows in the same order.
    """
    if not isinstance(cart, (list, tuple)) or not cart:
        raise ValidationError("cart must contain at least one item", {"field": "cart"})

    merged: dict[int, int] = {}
    for idx, line in enumerate(cart):
        if not isinstance(line, dict):
            raise ValidationError(f"cart[{idx}] must be an object", {"field": f"cart[{idx}]"})
        product_id = parse_positive_int(line.get("product_id"), f"cart[{idx}].product_id")
        quantity = parse_quantity(line.get("quantity"), f"cart[{idx}].quantity")
        merged[product_id] = merged.get(product_id, 0) + quantity
        if merged[product_id] > MAX_QUANTITY:
            raise ValidationError(
                f"cart quantity for product {product_id} exceeds maximum of {MAX_QUANTITY}",
                {"field": f"cart[{idx}].quantity", "product_id": product_id},
            )

    return sorted(merged.items())


def _normalize_address(address) -> dict:
    if not isinstance(address, dict):
        raise ValidationError("shipping address is required", {"field": "address"})

    normalized = {}
    missing = []
    for key in REQUIRED_ADDRESS_FIELDS:
        value = clean_str(address.get(key), max_length=255)
        if value is None:
            missing.append(key)
        normalized[key] = value
    if missing:
        raise ValidationError(
            f"address is missing required fields: {', '.join(missing)}",
            {"field": "address", "missing": missing},
        )

    for key in OPTIONAL_ADDRESS_FIELDS:
        normalized[key] = clean_str(address.get(key), max_length=255)
    normalized["country"] = normalized["country"] or DEFAULT_COUNTRY
    return normalized


def _is_intra_state(address: dict | None) -> bool:
    store_state = (current_app.config.get("STORE_STATE") or "").strip().lower()
    if not address or not address.get("state"):
        return True
    return address["state"].strip().lower() == store_state


# =============================================================================
# PRICING
# =============================================================================

def _load_products(product_ids: list[int]) -> dict[int, Product]:
    # populate_existing: never price or pre-check against a stale identity map
    products = (
        db.session.query(Product)
        .filter(Product.id.in_(product_ids))
        .populate_existing()
        .all()
    )
    return {p.id: p for p in products}


def _price_lines(lines: list[tuple[int, int]], address: dict | None, coupon_code: str | None) -> Quote:
    products = _load_products([product_id for product_id, _ in lines])

    priced = []
    for product_id, quantity in lines:
        product = products.get(product_id)
        if product is None:
            raise ValidationError("product not found", {"product_id": product_id})
        if not product.is_active:
            raise ValidationError(f"product {product.sku} is not available", {"product_id": product_id})
        # Read-only pre-check; the conditional decrement is authoritative
        if product.stock_quantity < quantity:
            raise InsufficientStock(product_id, quantity, product.stock_quantity, sku=product.sku)

        line_total = product.price_cents * quantity
        priced.append(
            PricedLine(
                product_id=product_id,
                sku=product.sku,
                name=product.name,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                gst_rate_bps=product.gst_rate_bps,
                line_total_cents=line_total,
                tax_cents=_round_half_up_bps(line_total, product.gst_rate_bps),
                weight_grams=(product.weight_grams or 0) * quantity,
            )
        )

    subtotal = sum(line.line_total_cents for line in priced)
    tax = sum(line.tax_cents for line in priced)
    weight = sum(line.weight_grams for line in priced)

    if _is_intra_state(address):
        cgst = tax // 2
        sgst = tax - cgst
        igst = 0
    else:
        cgst = sgst = 0
        igst = tax

    cart_lines = [
        CartLine(
            product_id=line.product_id,
            sku=line.sku,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
        )
        for line in priced
    ]
    discount = gateways.discounts.evaluate_discounts(cart_lines, coupon_code) or 0
    discount = max(0, min(int(discount), subtotal))

    shipping = gateways.shipping.quote_shipping(address or {}, weight, subtotal)
    if not isinstance(shipping, int) or isinstance(shipping, bool) or shipping < 0:
        raise ValidationError("shipping quote must be a non-negative integer amount", {"shipping": shipping})

    total = subtotal + shipping + tax - discount
    if total < 0:
        raise ValidationError("order total cannot be negative", {"total_amount_cents": total})

    return Quote(
        lines=tuple(priced),
        subtotal_cents=subtotal,
        shipping_amount_cents=shipping,
        discount_amount_cents=discount,
        tax_amount_cents=tax,
        cgst_amount_cents=cgst,
        sgst_amount_cents=sgst,
        igst_amount_cents=igst,
        total_amount_cents=total,
        currency=current_app.config.get("CURRENCY", "INR"),
        coupon_code=coupon_code,
        weight_grams=weight,
    )


def quote_cart(cart, address: dict | None = None, coupon_code: str | None = None) -> Quote:
    """
    Price a cart without mutating anything (the checkout summary).

    The address only decides the GST split and shipping; without one the
    quote assumes an intra-state delivery.
    """
    lines = _normalize_cart(cart)
    coupon_code = clean_str(coupon_code, max_length=64)
    if address is not None and not isinstance(address, dict):
        raise ValidationError("address must be an object", {"field": "address"})
    return _price_lines(lines, address, coupon_code)


# =============================================================================
# PLACE ORDER
# =============================================================================

def _find_by_idempotency_key(idempotency_key: str | None) -> Order | None:
    if not idempotency_key:
        return None
    return db.session.query(Order).filter(Order.idempotency_key == idempotency_key).first()


def _create_order(
    *,
    quote: Quote,
    address: dict,
    payment_method: str,
    customer_id: int,
    idempotency_key: str | None,
    notes: str | None,
) -> Order:
    """One unit: number, header, lines, stock decrements, audit (and COD confirmation)."""

    def _op():
        order_number = next_document_number(
            document_type=DOCUMENT_TYPE_ORDER,
            prefix=current_app.config.get("ORDER_NUMBER_PREFIX", "ORD"),
        )
        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            idempotency_key=idempotency_key,
            payment_method=payment_method,
            currency=quote.currency,
            subtotal_cents=quote.subtotal_cents,
            shipping_amount_cents=quote.shipping_amount_cents,
            discount_amount_cents=quote.discount_amount_cents,
            tax_amount_cents=quote.tax_amount_cents,
            cgst_amount_cents=quote.cgst_amount_cents,
            sgst_amount_cents=quote.sgst_amount_cents,
            igst_amount_cents=quote.igst_amount_cents,
            total_amount_cents=quote.total_amount_cents,
            coupon_code=quote.coupon_code,
            shipping_address=address,
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        for line in quote.lines:
            db.session.add(
                OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    product_name=line.name,
                    sku=line.sku,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    gst_rate_bps=line.gst_rate_bps,
                    total_price_cents=line.line_total_cents,
                )
            )
        db.session.flush()

        for line in quote.lines:
            adjust_stock(
                line.product_id,
                -line.quantity,
                MOVEMENT_ORDER,
                reason="order placed",
                reference=order_number,
                actor_user_id=customer_id,
                commit=False,
            )

        append_audit_event(
            event_type="order.placed",
            event_category=CATEGORY_ORDER,
            entity_type=ENTITY_ORDER,
            entity_id=order.id,
            actor_user_id=customer_id,
            payload={
                "order_number": order_number,
                "payment_method": payment_method,
                "total_amount_cents": quote.total_amount_cents,
                "lines": [[line.product_id, line.quantity] for line in quote.lines],
            },
        )

        if payment_method == PAYMENT_METHOD_COD:
            transition_order(order.id, ORDER_CONFIRMED, actor_user_id=customer_id, commit=False)

        db.session.commit()
        return order

    return run_with_retry(_op)


def _collect_payment(order: Order) -> PaymentResult:
    """Call the gateway with no transaction open. Timeouts and gateway errors count as failure."""
    order_number = order.order_number
    amount_cents = order.total_amount_cents
    currency = order.currency
    db.session.commit()
    try:
        return gateways.payment.initiate_payment(
            amount_cents,
            currency,
            order_number,
            timeout=current_app.config.get("PAYMENT_TIMEOUT_SECONDS"),
        )
    except TimeoutError:
        return PaymentResult(status=PAYMENT_TIMEOUT, message="payment gateway timed out")
    except Exception as exc:
        current_app.logger.exception("Payment gateway error for order %s", order_number)
        return PaymentResult(status=PAYMENT_FAILURE, message=str(exc) or type(exc).__name__)


def place_order(
    cart,
    address: dict,
    payment_method: str,
    customer_id: int,
    *,
    idempotency_key: str | None = None,
    coupon_code: str | None = None,
    notes: str | None = None,
) -> CheckoutResult:
    """
    Turn a cart into an order, reserve its stock and settle payment.

    Raises:
        ValidationError: bad cart / address / payment method (nothing written)
        InsufficientStock: a line cannot be fulfilled (nothing written)
        PaymentFailed: online payment failed or timed out; the order is
            already cancelled with stock restored and is attached to the error
    """
    idempotency_key = clean_str(idempotency_key, max_length=128)
    existing = _find_by_idempotency_key(idempotency_key)
    if existing is not None:
        return CheckoutResult(order=existing, created=False)

    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            {"field": "payment_method", "value": payment_method},
        )
    customer_id = parse_positive_int(customer_id, "customer_id")
    address = _normalize_address(address)
    lines = _normalize_cart(cart)
    coupon_code = clean_str(coupon_code, max_length=64)
    notes = clean_str(notes)

    quote = _price_lines(lines, address, coupon_code)
    if payment_method != PAYMENT_METHOD_COD and quote.total_amount_cents <= 0:
        raise ValidationError("online payment requires a positive order total", {"total_amount_cents": 0})

    try:
        order = _create_order(
            quote=quote,
            address=address,
            payment_method=payment_method,
            customer_id=customer_id,
            idempotency_key=idempotency_key,
            notes=notes,
        )
    except IntegrityError:
        # Lost the race to a duplicate submission with the same key
        existing = _find_by_idempotency_key(idempotency_key)
        if existing is not None:
            return CheckoutResult(order=existing, created=False)
        raise

    if payment_method == PAYMENT_METHOD_COD:
        return CheckoutResult(order=order, created=True)

    result = _collect_payment(order)

    if result.succeeded:
        confirmation = record_late_payment_confirmation(
            order.id,
            result.gateway_reference or order.order_number,
            actor_user_id=customer_id,
        )
        warnings = []
        if confirmation.reconciliation_required:
            warnings.append("payment captured for a closed order; reconciliation required")
        return CheckoutResult(order=confirmation.order, created=True, warnings=warnings)

    order = cancel_for_payment_failure(order.id, gateway_status=result.status, message=result.message)
    if order.payment_status == PAYMENT_PAID:
        # A gateway callback confirmed the payment first
        return CheckoutResult(order=order, created=True)

    raise PaymentFailed(
        result.message or f"payment {result.status}",
        order=order,
        gateway_status=result.status,
    )
