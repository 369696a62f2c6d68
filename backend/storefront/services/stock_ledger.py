# Overview: Service-layer operations for product stock; the only writer of Product.stock_quantity.

"""
Storefront Stock Ledger Invariants (authoritative)

Storage:
- Product.stock_quantity is the authoritative on-hand count.
- Every change is appended to StockMovement in the same DB transaction,
  with the caller's reason, actor and reference (order number).

Operations:
- set:      new = quantity                (quantity >= 0)
- add:      new = current + quantity
- subtract: new = current - quantity      (never below 0)
  An administrative override (force=True) clamps a short subtract to 0 and
  records the movement as forced instead of failing.

Concurrency:
- No in-process locks. Each write is a single UPDATE conditioned on the
  stock value that was read (optimistic concurrency). If another request
  changed the row in between, the UPDATE matches zero rows; the ledger
  re-reads and retries up to STOCK_WRITE_ATTEMPTS times, then raises
  ConcurrentModification.

Signals:
- Crossing from above low_stock_threshold to at-or-below it appends a
  low_stock StockAlert; reaching 0 from above 0 appends an out_of_stock one.

Units of work:
- commit=True (default) commits the change on its own.
- commit=False only flushes, so order creation/cancellation and bulk updates
  can enlist several stock changes in one transaction and roll them all back.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import select, update

from ..extensions import db
from ..errors import (
    ValidationError,
    InvalidQuantity,
    InsufficientStock,
    ConcurrentModification,
    ProductNotFound,
)
from ..models import Product, StockMovement, StockAlert
from ..validation import coerce_quantity, require_text, optional_text
from .concurrency import conditional_update, expire_cached, run_with_retry


OPERATION_SET = "set"
OPERATION_ADD = "add"
OPERATION_SUBTRACT = "subtract"
VALID_OPERATIONS = (OPERATION_SET, OPERATION_ADD, OPERATION_SUBTRACT)

ALERT_LOW_STOCK = "low_stock"
ALERT_OUT_OF_STOCK = "out_of_stock"


@dataclass(frozen=True)
class StockChange:
    """Result of one successful stock ledger write."""
    product_id: int
    operation: str
    quantity: int
    previous_stock: int
    new_stock: int
    movement_id: int
    forced: bool = False
    alerts: tuple[str, ...] = field(default_factory=tuple)

    @property
    def delta(self) -> int:
        return self.new_stock - self.previous_stock

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "operation": self.operation,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "delta": self.delta,
            "movement_id": self.movement_id,
            "forced": self.forced,
            "alerts": list(self.alerts),
        }


@dataclass(frozen=True)
class _StockRow:
    stock_quantity: int
    low_stock_threshold: int


def _read_stock(product_id: int) -> _StockRow:
    """Fresh read from the database, bypassing any cached ORM copy."""
    row = db.session.execute(
        select(Product.stock_quantity, Product.low_stock_threshold).where(Product.id == product_id)
    ).first()
    if row is None:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return _StockRow(stock_quantity=row.stock_quantity, low_stock_threshold=row.low_stock_threshold)


def _write_stock(product_id: int, *, expected: int, new: int) -> bool:
    return conditional_update(
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity == expected)
        .values(stock_quantity=new, version_id=Product.version_id + 1)
    )


def _compute_new_stock(operation: str, current: int, quantity: int, *, force: bool, product_id: int) -> tuple[int, bool]:
    if operation == OPERATION_SET:
        return quantity, False
    if operation == OPERATION_ADD:
        return current + quantity, False

    new = current - quantity
    if new >= 0:
        return new, False
    if force:
        return 0, True
    raise InsufficientStock(
        f"Cannot subtract {quantity} from product {product_id}: only {current} in stock",
        details={
            "product_id": product_id,
            "requested_quantity": quantity,
            "available": current,
        },
    )


def _alerts_for(previous: int, new: int, threshold: int) -> list[str]:
    alerts = []
    if previous > threshold and new <= threshold:
        alerts.append(ALERT_LOW_STOCK)
    if previous > 0 and new == 0:
        alerts.append(ALERT_OUT_OF_STOCK)
    return alerts


def apply_stock_change(
    product_id: int,
    operation: str,
    quantity,
    reason: str,
    *,
    actor: str | None = None,
    force: bool = False,
    reference: str | None = None,
    commit: bool = True,
) -> StockChange:
    """
    Apply a set/add/subtract to a product's stock with an audit reason.

    Args:
        product_id: Product to change
        operation: "set", "add" or "subtract"
        quantity: Non-negative integer amount (absolute for set)
        reason: Human-entered or system reason, persisted for audit
        actor: Who made the change (admin user, "system", ...)
        force: Administrative override; a short subtract clamps to 0
        reference: Business document reference (order number)
        commit: Commit immediately, or only flush into the caller's transaction

    Returns:
        StockChange with previous_stock and new_stock

    Raises:
        ValidationError: unknown operation, blank reason, force on non-subtract
        InvalidQuantity: quantity is negative or not an integer
        ProductNotFound: unknown product
        InsufficientStock: subtract would go negative without force
        ConcurrentModification: conditional write lost every retry
    """
    if operation not in VALID_OPERATIONS:
        raise ValidationError(
            f"Invalid stock operation '{operation}'. Must be one of: {', '.join(VALID_OPERATIONS)}"
        )
    qty = coerce_quantity(quantity, "quantity", minimum=0)
    reason = require_text(reason, "reason")
    actor = optional_text(actor, "actor", max_length=255)
    if force and operation != OPERATION_SUBTRACT:
        raise ValidationError("force is only valid for subtract")

    attempts = current_app.config.get("STOCK_WRITE_ATTEMPTS", 3)

    for _ in range(attempts):
        current = _read_stock(product_id)
        new_stock, forced = _compute_new_stock(
            operation, current.stock_quantity, qty, force=force, product_id=product_id
        )
        if _write_stock(product_id, expected=current.stock_quantity, new=new_stock):
            break
    else:
        raise ConcurrentModification(
            f"Stock for product {product_id} kept changing; gave up after {attempts} attempts",
            details={"product_id": product_id, "attempts": attempts},
        )

    expire_cached(Product, product_id)

    movement = StockMovement(
        product_id=product_id,
        operation=operation,
        quantity=qty,
        quantity_delta=new_stock - current.stock_quantity,
        previous_quantity=current.stock_quantity,
        resulting_quantity=new_stock,
        reason=reason,
        actor=actor,
        reference=reference,
        forced=forced,
    )
    db.session.add(movement)
    db.session.flush()

    if forced:
        current_app.logger.warning(
            "Forced stock subtract on product %s: requested %s, had %s, clamped to 0 (%s)",
            product_id, qty, current.stock_quantity, reason,
        )

    alerts = _alerts_for(current.stock_quantity, new_stock, current.low_stock_threshold)
    for alert_type in alerts:
        db.session.add(StockAlert(
            product_id=product_id,
            alert_type=alert_type,
            stock_quantity=new_stock,
            threshold=current.low_stock_threshold,
            stock_movement_id=movement.id,
        ))
        current_app.logger.warning(
            "Stock alert %s for product %s: %s left (threshold %s)",
            alert_type, product_id, new_stock, current.low_stock_threshold,
        )

    if commit:
        db.session.commit()
    else:
        db.session.flush()

    return StockChange(
        product_id=product_id,
        operation=operation,
        quantity=qty,
        previous_stock=current.stock_quantity,
        new_stock=new_stock,
        movement_id=movement.id,
        forced=forced,
        alerts=tuple(alerts),
    )


def adjust_stock(
    product_id: int,
    operation: str,
    quantity,
    reason: str,
    *,
    actor: str | None = None,
    force: bool = False,
) -> StockChange:
    """Standalone admin adjustment (manual restock / correction) as its own unit of work."""
    def _op():
        return apply_stock_change(
            product_id, operation, quantity, reason,
            actor=actor, force=force, commit=True,
        )

    return run_with_retry(_op)


def get_stock_level(product_id: int) -> int:
    """Authoritative stock read. Never served from a cached ORM object."""
    return _read_stock(product_id).stock_quantity


def list_stock_movements(product_id: int, limit: int = 200) -> list[StockMovement]:
    _read_stock(product_id)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def list_stock_alerts(product_id: int | None = None, limit: int = 200) -> list[StockAlert]:
    q = db.session.query(StockAlert)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    return q.order_by(StockAlert.id.desc()).limit(limit).all()


def list_low_stock_products(include_inactive: bool = False) -> list[Product]:
    """Products at or below their low-stock threshold, emptiest first."""
    q = db.session.query(Product).filter(Product.stock_quantity <= Product.low_stock_threshold)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.stock_quantity.asc(), Product.id.asc()).all()
