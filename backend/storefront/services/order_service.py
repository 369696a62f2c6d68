# Overview: Service-layer operations for orders; creation, status transitions, cancellation, refund and reorder.

"""
Storefront Order Service

CREATION (one DB transaction):
    1. validate addresses
    2. re-price the cart server-side (live prices, coupon, shipping, tax)
    3. subtract stock for every line through the stock ledger
    4. record coupon usage (only after every reservation succeeded)
    5. insert order + items + "order.created" event
    6. commit
Any failure in 2-5 rolls back every reservation and the coupon increment,
so there is never a reservation without an order or an order without its
reservations.

STOCK:
- Stock leaves the shelf at creation. Forward status moves never touch it.
- Cancellation (pending/confirmed) and refund (delivered) put every item
  back with reason "order cancelled" / "order refunded".

HISTORY:
- Every status or payment change appends an OrderEvent in the same
  transaction as the change.

Every mutating operation runs under run_with_retry: lock/busy errors and
stale order versions are retried, anything else rolls back and propagates.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..errors import (
    StorefrontError,
    ValidationError,
    ConflictError,
    InvalidStatusTransition,
    OrderNotFound,
    OrderNotCancellable,
    OrderCreationFailed,
)
from ..models import Order, OrderItem, OrderEvent, Product
from ..time_utils import utcnow
from ..validation import coerce_int, validate_address, optional_text, require_text
from . import order_status as st
from .concurrency import lock_for_update, run_with_retry
from .coupon_service import record_usage, release_usage
from .pricing_service import CartLine, price_cart
from .stock_ledger import OPERATION_ADD, OPERATION_SUBTRACT, apply_stock_change, get_stock_level


REASON_ORDER_PLACED = "order placed"
REASON_ORDER_CANCELLED = "order cancelled"
REASON_ORDER_REFUNDED = "order refunded"

_ORDER_NUMBER_ALPHABET = string.digits + string.ascii_uppercase


@dataclass(frozen=True)
class ReorderResult:
    order: Order
    skipped: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(),
            "skipped": list(self.skipped),
        }


def _generate_order_number() -> str:
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")
    for _ in range(5):
        millis = int(time.time() * 1000)
        suffix = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(6))
        number = f"{prefix}-{millis}-{suffix}"
        if not db.session.query(Order.id).filter_by(order_number=number).first():
            return number
    raise ConflictError("Could not generate a unique order number")


def _load_order(order_id: int, *, for_update: bool = False) -> Order:
    q = db.session.query(Order).filter_by(id=order_id)
    if for_update:
        q = lock_for_update(q)
    order = q.populate_existing().first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def _record_event(order: Order, event_type: str, *, from_status=None, to_status=None, actor=None, note=None) -> None:
    order.events.append(OrderEvent(
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        actor=actor,
        note=note,
    ))


def _set_status(order: Order, target: str) -> None:
    order.status = target
    stamp = st.STATUS_TIMESTAMPS.get(target)
    if stamp:
        setattr(order, stamp, utcnow())


def _restore_stock(order: Order, reason: str, actor: str | None) -> None:
    for item in order.items:
        apply_stock_change(
            item.product_id,
            OPERATION_ADD,
            item.quantity,
            reason,
            actor=actor,
            reference=order.order_number,
            commit=False,
        )


def get_order(order_id: int) -> Order:
    return _load_order(order_id)


def list_order_events(order_id: int) -> list[OrderEvent]:
    _load_order(order_id)
    return (
        db.session.query(OrderEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderEvent.id.asc())
        .all()
    )


def payment_request(order: Order) -> dict:
    """What the payment collaborator needs to start collecting money."""
    return {
        "orderId": order.id,
        "amount": order.total_amount,
        "orderNumber": order.order_number,
    }


def create_order(
    cart_items,
    shipping_address,
    billing_address,
    shipping_method: str | None = None,
    coupon_code: str | None = None,
    notes: str | None = None,
    *,
    customer_id: str | None = None,
    actor: str | None = None,
) -> Order:
    """
    Turn a cart into a pending, unpaid order.

    A losing checkout never sees InsufficientStock or CouponExhausted
    directly. Callers tell the reasons apart by branching on `exc.cause`
    (the typed error) or `exc.details["cause"]` (its code, e.g.
    "insufficient_stock", "coupon_exhausted"); the route layer returns the
    latter in the JSON body.

    Raises:
        ValidationError: address payloads are malformed
        OrderCreationFailed: pricing, stock or coupon failure; `.cause` holds
            the typed error (InsufficientStock, CouponExhausted, ...)
        ConcurrentModification: the unit of work kept losing to concurrent
            writers (busy database, stale order version)
    """
    shipping = validate_address(shipping_address, "shipping_address")
    billing = validate_address(billing_address, "billing_address")
    notes = optional_text(notes, "notes", max_length=1000)
    customer_id = optional_text(customer_id, "customer_id", max_length=64)

    def _op():
        order_number = _generate_order_number()
        try:
            breakdown = price_cart(cart_items, shipping_method, coupon_code)

            for line in breakdown.lines:
                apply_stock_change(
                    line.product_id,
                    OPERATION_SUBTRACT,
                    line.quantity,
                    REASON_ORDER_PLACED,
                    actor=actor,
                    reference=order_number,
                    commit=False,
                )

            if breakdown.coupon is not None:
                record_usage(breakdown.coupon.coupon_id)
        except StorefrontError as exc:
            raise OrderCreationFailed(f"Order could not be created: {exc.message}", cause=exc) from exc

        order = Order(
            order_number=order_number,
            customer_id=customer_id,
            status=st.STATUS_PENDING,
            payment_status=st.PAYMENT_UNPAID,
            shipping_address=shipping,
            billing_address=billing,
            shipping_method=breakdown.shipping_method,
            subtotal=breakdown.subtotal,
            discount_amount=breakdown.discount_amount,
            shipping_amount=breakdown.shipping_cost,
            tax_amount=breakdown.tax_amount,
            total_amount=breakdown.total,
            coupon_id=breakdown.coupon.coupon_id if breakdown.coupon else None,
            coupon_code=breakdown.coupon.code if breakdown.coupon else None,
            notes=notes,
        )
        for line in breakdown.lines:
            order.items.append(OrderItem(
                product_id=line.product_id,
                product_name=line.product_name,
                product_sku=line.product_sku,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            ))
        _record_event(order, "order.created", to_status=st.STATUS_PENDING, actor=actor)

        db.session.add(order)
        db.session.commit()
        return order

    try:
        order = run_with_retry(_op)
    except OrderCreationFailed as exc:
        current_app.logger.info("Order creation rejected: %s", exc.details.get("cause"))
        raise

    current_app.logger.info(
        "Order %s created: %s items, total %s",
        order.order_number, len(order.items), order.total_amount,
    )
    return order


def cancel_order(order_id: int, reason: str | None = None, *, actor: str | None = None) -> Order:
    """
    Cancel a pending or confirmed order and put its stock back.

    The coupon redemption (if any) is released in the same transaction.

    Raises:
        OrderNotFound
        OrderNotCancellable: order is past confirmed (or already closed)
    """
    reason = optional_text(reason, "reason", max_length=500)

    def _op():
        order = _load_order(order_id, for_update=True)
        if order.status not in st.CANCELLABLE_STATUSES:
            raise OrderNotCancellable(
                f"Order {order.order_number} cannot be cancelled in status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        _restore_stock(order, REASON_ORDER_CANCELLED, actor)
        if order.coupon_id is not None:
            release_usage(order.coupon_id)

        previous = order.status
        _set_status(order, st.STATUS_CANCELLED)
        if reason:
            order.admin_notes = _append_note(order.admin_notes, f"Cancelled: {reason}")
        _record_event(
            order, "order.cancelled",
            from_status=previous, to_status=st.STATUS_CANCELLED, actor=actor, note=reason,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s cancelled", order.order_number)
    return order


def refund_order(order_id: int, reason: str | None = None, *, actor: str | None = None) -> Order:
    """Refund a delivered order: restore stock and mark payment refunded."""
    reason = optional_text(reason, "reason", max_length=500)

    def _op():
        order = _load_order(order_id, for_update=True)
        st.require_transition(order.status, st.STATUS_REFUNDED)

        _restore_stock(order, REASON_ORDER_REFUNDED, actor)

        previous = order.status
        _set_status(order, st.STATUS_REFUNDED)
        order.payment_status = st.PAYMENT_REFUNDED
        if reason:
            order.admin_notes = _append_note(order.admin_notes, f"Refunded: {reason}")
        _record_event(
            order, "order.refunded",
            from_status=previous, to_status=st.STATUS_REFUNDED, actor=actor, note=reason,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s refunded", order.order_number)
    return order


def advance_order(
    order_id: int,
    target_status: str,
    *,
    actor: str | None = None,
    note: str | None = None,
    tracking_number: str | None = None,
) -> Order:
    """
    Move an order along the status table.

    cancelled and refunded have side effects on stock, so they are handed to
    cancel_order / refund_order.
    """
    st.validate_status(target_status)
    if target_status == st.STATUS_CANCELLED:
        return cancel_order(order_id, note, actor=actor)
    if target_status == st.STATUS_REFUNDED:
        return refund_order(order_id, note, actor=actor)

    note = optional_text(note, "note", max_length=500)
    tracking_number = optional_text(tracking_number, "tracking_number", max_length=100)

    def _op():
        order = _load_order(order_id, for_update=True)
        st.require_transition(order.status, target_status)

        previous = order.status
        _set_status(order, target_status)
        if tracking_number and target_status == st.STATUS_SHIPPED:
            order.tracking_number = tracking_number
        _record_event(
            order, f"order.{target_status}",
            from_status=previous, to_status=target_status, actor=actor, note=note,
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def set_payment_status(order_id: int, payment_status: str, *, actor: str | None = None) -> Order:
    """Payment collaborator callback. "refunded" is reserved for refund_order."""
    st.validate_payment_status(payment_status)
    if payment_status == st.PAYMENT_REFUNDED:
        raise InvalidStatusTransition(
            "Payment status refunded is only set by refunding the order",
            details={"order_id": order_id, "to_status": payment_status},
        )

    def _op():
        order = _load_order(order_id, for_update=True)
        if not st.can_transition_payment(order.payment_status, payment_status):
            raise InvalidStatusTransition(
                f"Cannot change payment status from {order.payment_status} to {payment_status}",
                details={
                    "order_id": order.id,
                    "from_status": order.payment_status,
                    "to_status": payment_status,
                },
            )
        previous = order.payment_status
        order.payment_status = payment_status
        _record_event(
            order, f"payment.{payment_status}",
            from_status=previous, to_status=payment_status, actor=actor,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s payment status %s", order.order_number, payment_status)
    return order


def add_tracking_number(
    order_id: int,
    tracking_number: str,
    *,
    carrier: str | None = None,
    actor: str | None = None,
) -> Order:
    """Attach shipment tracking; a processing order is marked shipped."""
    tracking_number = require_text(tracking_number, "tracking_number", max_length=100)
    carrier = optional_text(carrier, "carrier", max_length=100)

    def _op():
        order = _load_order(order_id, for_update=True)
        if order.status not in (st.STATUS_PROCESSING, st.STATUS_SHIPPED):
            raise InvalidStatusTransition(
                f"Tracking can only be added to processing or shipped orders (status {order.status})",
                details={"order_id": order.id, "status": order.status},
            )

        order.tracking_number = tracking_number
        if carrier:
            order.carrier = carrier

        if order.status == st.STATUS_PROCESSING:
            _set_status(order, st.STATUS_SHIPPED)
            _record_event(
                order, "order.shipped",
                from_status=st.STATUS_PROCESSING, to_status=st.STATUS_SHIPPED,
                actor=actor, note=f"Tracking {tracking_number}",
            )
        else:
            _record_event(order, "order.tracking_updated", actor=actor, note=f"Tracking {tracking_number}")

        db.session.commit()
        return order

    return run_with_retry(_op)


def update_shipping_address(order_id: int, address, *, actor: str | None = None) -> Order:
    """Replace the shipping address while the order has not started processing."""
    cleaned = validate_address(address, "shipping_address")

    def _op():
        order = _load_order(order_id, for_update=True)
        if order.status not in st.CANCELLABLE_STATUSES:
            raise ConflictError(
                f"Shipping address cannot be changed in status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )
        order.shipping_address = cleaned
        _record_event(order, "order.address_updated", actor=actor)
        db.session.commit()
        return order

    return run_with_retry(_op)


def _reorder_availability(original: Order) -> tuple[list[CartLine], list[dict]]:
    product_ids = [item.product_id for item in original.items]
    products = {
        p.id: p
        for p in db.session.query(Product).filter(Product.id.in_(product_ids)).populate_existing().all()
    }

    available: list[CartLine] = []
    skipped: list[dict] = []
    for item in original.items:
        entry = {
            "product_id": item.product_id,
            "product_name": item.product_name,
            "quantity": item.quantity,
        }
        product = products.get(item.product_id)
        if product is None:
            skipped.append({**entry, "reason": "not_found"})
        elif not product.is_active:
            skipped.append({**entry, "reason": "inactive"})
        else:
            in_stock = get_stock_level(product.id)
            if in_stock < item.quantity:
                skipped.append({**entry, "reason": "insufficient_stock", "available": in_stock})
            else:
                available.append(CartLine(product_id=product.id, quantity=item.quantity))
    return available, skipped


def reorder(order_id: int, *, actor: str | None = None) -> ReorderResult:
    """
    Place a new order with the items of an earlier one.

    Uses current prices, the default shipping method and the earlier
    order's addresses. Items that are gone, inactive or short on stock are
    skipped and reported. The earlier order is not modified. No coupon is
    carried over.

    Raises:
        OrderNotFound
        OrderCreationFailed: nothing is available, or creation itself failed
    """
    original = _load_order(order_id)
    available, skipped = _reorder_availability(original)

    if not available:
        raise OrderCreationFailed(
            f"None of the items from order {original.order_number} are available",
            details={"order_id": original.id, "skipped": skipped},
        )

    order = create_order(
        available,
        original.shipping_address,
        original.billing_address,
        current_app.config["DEFAULT_SHIPPING_METHOD"],
        notes=f"Reorder of {original.order_number}",
        customer_id=original.customer_id,
        actor=actor,
    )
    if skipped:
        current_app.logger.info(
            "Reorder of %s skipped %s item(s)", original.order_number, len(skipped),
        )
    return ReorderResult(order=order, skipped=skipped)


MAX_BULK_STATUS_ORDERS = 100


@dataclass(frozen=True)
class BulkStatusResult:
    status: str
    updated: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "updated": {"count": len(self.updated), "orders": list(self.updated)},
            "failed": list(self.failed),
        }


def bulk_update_order_status(
    order_ids,
    status,
    *,
    note: str | None = None,
    actor: str | None = None,
) -> BulkStatusResult:
    """
    Move many orders to the same status (admin order grid).

    Each order is its own unit of work through advance_order, so the status
    table is enforced per order and cancelled/refunded still put stock back
    through the ledger. Orders that cannot move are reported in `failed`
    as {id, order_number, error, code}; the rest are applied.

    Raises:
        ValidationError: malformed ids, more than MAX_BULK_STATUS_ORDERS ids,
            or an unknown status
    """
    if not isinstance(order_ids, (list, tuple)) or not order_ids:
        raise ValidationError("order_ids must be a non-empty list")
    if len(order_ids) > MAX_BULK_STATUS_ORDERS:
        raise ValidationError(f"At most {MAX_BULK_STATUS_ORDERS} orders can be updated at once")
    ids: list[int] = []
    for idx, raw in enumerate(order_ids):
        oid = coerce_int(raw, f"order_ids[{idx}]")
        if oid < 1:
            raise ValidationError(f"order_ids[{idx}] must be > 0")
        if oid not in ids:
            ids.append(oid)
    target = validate_target_status(status)
    note = optional_text(note, "note", max_length=500)

    updated: list[dict] = []
    failed: list[dict] = []
    for oid in ids:
        order_number = None
        try:
            current = _load_order(oid)
            order_number = current.order_number
            old_status = current.status
            advance_order(oid, target, actor=actor, note=note)
        except StorefrontError as exc:
            failed.append({
                "id": oid,
                "order_number": order_number,
                "error": exc.message,
                "code": exc.code,
            })
            continue
        updated.append({
            "id": oid,
            "order_number": order_number,
            "old_status": old_status,
            "new_status": target,
        })

    current_app.logger.info(
        "Bulk status %s: %s updated, %s failed", target, len(updated), len(failed),
    )
    return BulkStatusResult(status=target, updated=updated, failed=failed)


def validate_target_status(value) -> str:
    """Route helper: a status string from request input."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("status is required")
    status = value.strip().lower()
    st.validate_status(status)
    return status
