# Overview: Service-layer operations for the stock ledger; the only writer of Product.stock_quantity.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import and_, case, func, update
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..errors import InsufficientStock, NotFoundError, ValidationError
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_RESTOCK, MOVEMENT_TYPES
from ..validation import clean_str, parse_positive_int, parse_quantity
from .concurrency import finish_unit, run_with_retry
"""
Stock Ledger Invariants (authoritative)

Stock model:
- Product.stock_quantity is the on-hand counter; StockMovement is its append-only log.
- Every change to stock_quantity is exactly one StockMovement, written in the same transaction.
- Replaying a product's movements in id order from 0 reproduces its stock_quantity, and
  the latest movement's new_quantity equals it.

Concurrency:
- A change is a single conditional UPDATE (stock_quantity + delta >= 0). The database row
  write lock serializes writers per product; there is no read-modify-write in Python.
- The new value is read back inside the same transaction, so the movement's
  previous/new pair is what this writer actually produced.
- stock_quantity never goes negative (conditional UPDATE + CHECK constraint).

Reads:
- Stock reads select the column directly so a stale identity-map Product is never trusted.
"""


@dataclass(frozen=True)
class StockAdjustment:
    product_id: int
    stock_quantity: int
    movement_id: int

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "stock_quantity": self.stock_quantity,
            "movement_id": self.movement_id,
        }


def _read_stock(product_id: int) -> int | None:
    return (
        db.session.query(Product.stock_quantity)
        .filter(Product.id == product_id)
        .scalar()
    )


def _expire_cached_product(product_id: int) -> None:
    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached, ["stock_quantity", "updated_at"])


def _apply_delta(
    *,
    product_id: int,
    delta: int,
    movement_type: str,
    reason: str | None,
    actor_user_id: int | None,
    reference: str | None,
) -> StockAdjustment:
    row = db.session.query(Product.id, Product.sku).filter(Product.id == product_id).first()
    if row is None:
        raise NotFoundError("product not found", {"product_id": product_id})

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
        .values(stock_quantity=Product.stock_quantity + delta, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount == 0:
        # One more attempt against a fresh read before giving up
        result = db.session.execute(stmt)
        if result.rowcount == 0:
            available = _read_stock(product_id) or 0
            raise InsufficientStock(product_id, -delta, available, sku=row.sku)

    new_quantity = _read_stock(product_id)

    movement = StockMovement(
        product_id=product_id,
        movement_type=movement_type,
        quantity=delta,
        previous_quantity=new_quantity - delta,
        new_quantity=new_quantity,
        reason=reason,
        reference=reference,
        actor_user_id=actor_user_id,
    )
    db.session.add(movement)
    db.session.flush()

    _expire_cached_product(product_id)

    return StockAdjustment(product_id=product_id, stock_quantity=new_quantity, movement_id=movement.id)


def _validate_adjustment(delta, movement_type) -> int:
    delta = parse_quantity(delta, "delta", allow_negative=True)
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"movement_type must be one of: {', '.join(MOVEMENT_TYPES)}",
            {"field": "movement_type", "value": movement_type},
        )
    return delta


def adjust_stock(
    product_id: int,
    delta: int,
    movement_type: str,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
    reference: str | None = None,
    commit: bool = True,
) -> StockAdjustment:
    """
    Apply a signed stock change and log it as one movement.

    Raises:
        ValidationError: delta is zero/non-integer or movement_type is unknown
        NotFoundError: product does not exist
        InsufficientStock: a decrement would take stock below zero

    With commit=False the change joins the caller's unit of work (checkout,
    cancellation, receiving); the caller commits or rolls back both together.
    """
    delta = _validate_adjustment(delta, movement_type)
    reason = clean_str(reason, max_length=255)
    reference = clean_str(reference, max_length=64)

    def _op():
        adjustment = _apply_delta(
            product_id=product_id,
            delta=delta,
            movement_type=movement_type,
            reason=reason,
            actor_user_id=actor_user_id,
            reference=reference,
        )
        finish_unit(commit)
        return adjustment

    if not commit:
        return _op()
    return run_with_retry(_op)


def bulk_restock(
    lines,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
    reference: str | None = None,
) -> list[StockAdjustment]:
    """
    Restock several products in one atomic unit; one 'restock' movement per line.

    lines: iterable of (product_id, quantity) pairs or {"product_id", "quantity"} dicts.
    """
    parsed: list[tuple[int, int]] = []
    for idx, line in enumerate(lines or []):
        if isinstance(line, dict):
            product_id, quantity = line.get("product_id"), line.get("quantity")
        elif isinstance(line, (list, tuple)) and len(line) == 2:
            product_id, quantity = line
        else:
            raise ValidationError(f"line {idx}: expected (product_id, quantity)", {"line": idx})
        parsed.append(
            (
                parse_positive_int(product_id, f"lines[{idx}].product_id"),
                parse_quantity(quantity, f"lines[{idx}].quantity"),
            )
        )
    if not parsed:
        raise ValidationError("at least one restock line is required")

    reason = clean_str(reason, max_length=255)
    reference = clean_str(reference, max_length=64)

    def _op():
        results = [
            _apply_delta(
                product_id=product_id,
                delta=quantity,
                movement_type=MOVEMENT_RESTOCK,
                reason=reason,
                actor_user_id=actor_user_id,
                reference=reference,
            )
            for product_id, quantity in parsed
        ]
        db.session.commit()
        return results

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def _stock_flags(stock_quantity: int, threshold: int) -> dict:
    return {
        "is_out_of_stock": stock_quantity == 0,
        "is_low_stock": 0 < stock_quantity <= threshold,
    }


def get_stock_level(product_id: int) -> dict:
    row = (
        db.session.query(
            Product.id,
            Product.sku,
            Product.name,
            Product.stock_quantity,
            Product.low_stock_threshold,
        )
        .filter(Product.id == product_id)
        .first()
    )
    if row is None:
        raise NotFoundError("product not found", {"product_id": product_id})

    return {
        "product_id": row.id,
        "sku": row.sku,
        "name": row.name,
        "stock_quantity": row.stock_quantity,
        "low_stock_threshold": row.low_stock_threshold,
        **_stock_flags(row.stock_quantity, row.low_stock_threshold),
    }


def _movement_query(product_id, movement_type, reference):
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(StockMovement.movement_type == movement_type)
    if reference is not None:
        q = q.filter(StockMovement.reference == reference)
    return q


def list_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reference: str | None = None,
    limit: int | None = 100,
    offset: int = 0,
) -> list[StockMovement]:
    """Newest first. limit=None returns the full history."""
    q = _movement_query(product_id, movement_type, reference).order_by(StockMovement.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.offset(offset).all()


def count_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reference: str | None = None,
) -> int:
    return _movement_query(product_id, movement_type, reference).count()


def get_inventory_summary() -> dict:
    """Dashboard counters: out of stock (0), low (0 < qty <= threshold), in stock (qty > threshold)."""
    out_of_stock_expr = func.sum(case((Product.stock_quantity == 0, 1), else_=0))
    low_stock_expr = func.sum(
        case(
            (
                and_(Product.stock_quantity > 0, Product.stock_quantity <= Product.low_stock_threshold),
                1,
            ),
            else_=0,
        )
    )
    in_stock_expr = func.sum(case((Product.stock_quantity > Product.low_stock_threshold, 1), else_=0))

    row = db.session.query(
        func.count(Product.id),
        out_of_stock_expr,
        low_stock_expr,
        in_stock_expr,
        func.coalesce(func.sum(Product.stock_quantity), 0),
    ).one()

    total, out_of_stock, low_stock, in_stock, total_units = row
    return {
        "total_products": int(total or 0),
        "out_of_stock": int(out_of_stock or 0),
        "low_stock": int(low_stock or 0),
        "in_stock": int(in_stock or 0),
        "total_units": int(total_units or 0),
    }


def list_low_stock(*, include_out_of_stock: bool = True, active_only: bool = True) -> list[dict]:
    """Products at or below their threshold, emptiest first."""
    q = db.session.query(Product).filter(Product.stock_quantity <= Product.low_stock_threshold)
    if not include_out_of_stock:
        q = q.filter(Product.stock_quantity > 0)
    if active_only:
        q = q.filter(Product.is_active.is_(True))

    products = q.order_by(Product.stock_quantity.asc(), Product.id.asc()).all()
    return [
        {
            "product_id": p.id,
            "sku": p.sku,
            "name": p.name,
            "stock_quantity": p.stock_quantity,
            "low_stock_threshold": p.low_stock_threshold,
            **_stock_flags(p.stock_quantity, p.low_stock_threshold),
        }
        for p in products
    ]


def verify_ledger(product_id: int | None = None) -> list[dict]:
    """
    Replay movements and report every product whose log disagrees with its counter.

    A product is consistent when SUM(movement.quantity) == stock_quantity and the
    latest movement's new_quantity == stock_quantity (a product with no movements
    must have zero stock). Returns an empty list when the ledger is consistent.
    """
    sums = (
        db.session.query(
            StockMovement.product_id.label("product_id"),
            func.sum(StockMovement.quantity).label("replayed"),
            func.max(StockMovement.id).label("last_id"),
        )
        .group_by(StockMovement.product_id)
        .subquery()
    )

    q = (
        db.session.query(
            Product.id,
            Product.sku,
            Product.stock_quantity,
            sums.c.replayed,
            StockMovement.new_quantity,
        )
        .outerjoin(sums, sums.c.product_id == Product.id)
        .outerjoin(StockMovement, StockMovement.id == sums.c.last_id)
    )
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    problems = []
    for pid, sku, stock, replayed, last_new in q.order_by(Product.id).all():
        replayed = int(replayed or 0)
        last_new = int(last_new) if last_new is not None else 0
        if replayed != stock or last_new != stock:
            problems.append(
                {
                    "product_id": pid,
                    "sku": sku,
                    "stock_quantity": stock,
                    "replayed_quantity": replayed,
                    "last_movement_quantity": last_new,
                }
            )
    return problems
