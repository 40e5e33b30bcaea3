from __future__ import annotations

from ..extensions import db
from shopcore.time_utils import to_utc_z

MOVEMENT_ORDER = "order"
MOVEMENT_RETURN = "return"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RESTOCK = "restock"
MOVEMENT_DAMAGE = "damage"
MOVEMENT_TRANSFER = "transfer"

MOVEMENT_TYPES = (
    MOVEMENT_ORDER,
    MOVEMENT_RETURN,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RESTOCK,
    MOVEMENT_DAMAGE,
    MOVEMENT_TRANSFER,
)


class Product(db.Model):
    """
    Product master data, as far as the order core needs it.

    STOCK OWNERSHIP:
    Catalog fields (name, price, GST rate) belong to the catalog layer.
    stock_quantity is owned by the stock ledger: it is only ever written by
    stock_service.adjust_stock(), which appends a StockMovement in the same
    transaction. Never assign product.stock_quantity directly.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_products_threshold_non_negative"),
        db.Index("ix_products_active_stock", "is_active", "stock_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in minor units (paise)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    # 1800 bps = 18% GST
    gst_rate_bps = db.Column(db.Integer, nullable=False, default=1800)
    weight_grams = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "gst_rate_bps": self.gst_rate_bps,
            "weight_grams": self.weight_grams,
            "stock_quantity": self.stock_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    INVARIANTS:
    - quantity is signed and never zero.
    - new_quantity = previous_quantity + quantity.
    - For a product, the latest movement's new_quantity equals
      Product.stock_quantity, and SUM(quantity) over all its movements does too.
    - Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity <> 0", name="ck_stock_movements_non_zero"),
        db.CheckConstraint("new_quantity >= 0", name="ck_stock_movements_new_non_negative"),
        db.CheckConstraint(
            "new_quantity = previous_quantity + quantity",
            name="ck_stock_movements_arithmetic",
        ),
        db.Index("ix_stock_movements_product_id_id", "product_id", "id"),
        db.Index("ix_stock_movements_reference", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    # Order number / PO number that caused the movement
    reference = db.Column(db.String(64), nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "reference": self.reference,
            "actor_user_id": self.actor_user_id,
            "created_at": to_utc_z(self.created_at),
        }
