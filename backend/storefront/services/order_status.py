# Overview: Order status and payment status transition tables.

"""
Order State Machine

    pending -> confirmed -> processing -> shipped -> delivered -> refunded
       |           |
       +-----------+--> cancelled

RULES:
1. Only the transitions listed in ALLOWED_TRANSITIONS exist.
2. A transition to the same status is not a no-op; it is rejected.
3. Only pending and confirmed orders can be cancelled.
4. cancelled and refunded are terminal. delivered is terminal except for refund.
5. Forward moves never touch stock; cancellation and refund restore it.

Payment status is tracked separately and changed by the payment
collaborator's callback. "refunded" is only ever set by a refund.
"""

from __future__ import annotations

from ..errors import ValidationError, InvalidStatusTransition


STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_PROCESSING = "processing"
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

VALID_STATUSES = {
    STATUS_PENDING,
    STATUS_CONFIRMED,
    STATUS_PROCESSING,
    STATUS_SHIPPED,
    STATUS_DELIVERED,
    STATUS_CANCELLED,
    STATUS_REFUNDED,
}

ALLOWED_TRANSITIONS = {
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_PROCESSING, STATUS_CANCELLED},
    STATUS_PROCESSING: {STATUS_SHIPPED},
    STATUS_SHIPPED: {STATUS_DELIVERED},
    STATUS_DELIVERED: {STATUS_REFUNDED},
    STATUS_CANCELLED: set(),
    STATUS_REFUNDED: set(),
}

CANCELLABLE_STATUSES = {STATUS_PENDING, STATUS_CONFIRMED}
TERMINAL_STATUSES = {STATUS_CANCELLED, STATUS_REFUNDED}
# Orders in these statuses still hold their products "open"
OPEN_STATUSES = {STATUS_PENDING, STATUS_CONFIRMED, STATUS_PROCESSING}

# Timestamp column stamped when an order enters a status
STATUS_TIMESTAMPS = {
    STATUS_CONFIRMED: "confirmed_at",
    STATUS_SHIPPED: "shipped_at",
    STATUS_DELIVERED: "delivered_at",
    STATUS_CANCELLED: "cancelled_at",
    STATUS_REFUNDED: "refunded_at",
}


PAYMENT_UNPAID = "unpaid"
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_REFUNDED = "refunded"

VALID_PAYMENT_STATUSES = {
    PAYMENT_UNPAID,
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
}

PAYMENT_TRANSITIONS = {
    PAYMENT_UNPAID: {PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED},
    PAYMENT_PENDING: {PAYMENT_PAID, PAYMENT_FAILED},
    PAYMENT_FAILED: {PAYMENT_PENDING, PAYMENT_PAID},
    PAYMENT_PAID: set(),
    PAYMENT_REFUNDED: set(),
}


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check an order status change against the transition table.

    Same-status moves return False: callers must not treat them as no-ops.
    """
    validate_status(from_status)
    validate_status(to_status)
    return to_status in ALLOWED_TRANSITIONS[from_status]


def require_transition(from_status: str, to_status: str) -> None:
    if not can_transition(from_status, to_status):
        raise InvalidStatusTransition(
            f"Cannot change order status from {from_status} to {to_status}",
            details={"from_status": from_status, "to_status": to_status},
        )


def validate_payment_status(status: str) -> None:
    if status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(
            f"Invalid payment status '{status}'. "
            f"Must be one of: {', '.join(sorted(VALID_PAYMENT_STATUSES))}"
        )


def can_transition_payment(from_status: str, to_status: str) -> bool:
    validate_payment_status(from_status)
    validate_payment_status(to_status)
    return to_status in PAYMENT_TRANSITIONS[from_status]
