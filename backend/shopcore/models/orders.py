from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z

# Fulfillment status
ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"
ORDER_RETURNED = "returned"
ORDER_REFUNDED = "refunded"

ORDER_STATUSES = (
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
    ORDER_RETURNED,
    ORDER_REFUNDED,
)

# Payment status
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_REFUNDED)

PAYMENT_METHOD_COD = "cod"
PAYMENT_METHOD_RAZORPAY = "razorpay"
PAYMENT_METHOD_PHONEPE = "phonepe"
PAYMENT_METHOD_PAYTM = "paytm"

PAYMENT_METHODS = (
    PAYMENT_METHOD_COD,
    PAYMENT_METHOD_RAZORPAY,
    PAYMENT_METHOD_PHONEPE,
    PAYMENT_METHOD_PAYTM,
)
ONLINE_PAYMENT_METHODS = (PAYMENT_METHOD_RAZORPAY, PAYMENT_METHOD_PHONEPE, PAYMENT_METHOD_PAYTM)


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Order(db.Model):
    """
    Customer order aggregate.

    Created only by checkout_service.place_order(). After creation the row is
    mutated only by order_service transitions (status, payment_status and
    their timestamps). Orders are never deleted; cancellation is a status.

    MONEY: all amounts in minor units, and
        total_amount_cents = subtotal + shipping + tax - discount
    holds for every row (enforced by a CHECK constraint).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint(_in_list("status", ORDER_STATUSES), name="ck_orders_status"),
        db.CheckConstraint(_in_list("payment_status", PAYMENT_STATUSES), name="ck_orders_payment_status"),
        db.CheckConstraint(_in_list("payment_method", PAYMENT_METHODS), name="ck_orders_payment_method"),
        db.CheckConstraint(
            "subtotal_cents >= 0 AND shipping_amount_cents >= 0 AND discount_amount_cents >= 0 "
            "AND tax_amount_cents >= 0 AND total_amount_cents >= 0",
            name="ck_orders_amounts_non_negative",
        ),
        db.CheckConstraint(
            "total_amount_cents = subtotal_cents + shipping_amount_cents + tax_amount_cents - discount_amount_cents",
            name="ck_orders_total_identity",
        ),
        db.Index("ix_orders_status_created", "status", "created_at"),
        db.Index("ix_orders_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-000123")
    order_number = db.Column(db.String(64), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, nullable=False)

    # Client-generated checkout attempt token; duplicates resolve to this order
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False)
    gateway_reference = db.Column(db.String(128), nullable=True)

    currency = db.Column(db.String(3), nullable=False, default="INR")
    subtotal_cents = db.Column(db.Integer, nullable=False)
    shipping_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    cgst_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    sgst_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    igst_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    coupon_code = db.Column(db.String(64), nullable=True)

    # Snapshot taken at checkout; never mutated afterwards
    shipping_address = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    tracking_number = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(512), nullable=True)

    # Guards the cancellation stock restore against retries
    stock_restored = db.Column(db.Boolean, nullable=False, default=False)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status} payment={self.payment_status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "gateway_reference": self.gateway_reference,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "shipping_amount_cents": self.shipping_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "cgst_amount_cents": self.cgst_amount_cents,
            "sgst_amount_cents": self.sgst_amount_cents,
            "igst_amount_cents": self.igst_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "coupon_code": self.coupon_code,
            "shipping_address": self.shipping_address,
            "notes": self.notes,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "stock_restored": self.stock_restored,
            "cancel_reason": self.cancel_reason,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "paid_at": to_utc_z(self.paid_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "returned_at": to_utc_z(self.returned_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """Order line; product name/SKU/price are snapshots taken at checkout. Immutable."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.CheckConstraint(
            "total_price_cents = unit_price_cents * quantity",
            name="ck_order_items_total",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    gst_rate_bps = db.Column(db.Integer, nullable=False, default=1800)
    total_price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "gst_rate_bps": self.gst_rate_bps,
            "total_price_cents": self.total_price_cents,
            "created_at": to_utc_z(self.created_at),
        }
