# Overview: Typed domain errors shared by services and routes.

"""
Storefront error taxonomy.

Every failure the order core can report has its own class so callers can
tell "insufficient stock" from "coupon expired" without parsing messages.
Each error carries:
- message: human-readable summary
- details: structured context (ids, quantities) for the caller to render
- code: stable machine-readable identifier
- status_code: HTTP status used by the request handlers
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for all domain errors raised by storefront services."""

    code = "storefront_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


# --- input problems (400) ---------------------------------------------------

class ValidationError(StorefrontError, ValueError):
    """400-level input problem."""

    code = "validation_error"


class InvalidQuantity(ValidationError):
    code = "invalid_quantity"


# --- missing entities (404) -------------------------------------------------

class NotFoundError(StorefrontError):
    code = "not_found"
    status_code = 404


class ProductNotFound(NotFoundError):
    code = "product_not_found"


class OrderNotFound(NotFoundError):
    code = "order_not_found"


# --- business rule conflicts (409) ------------------------------------------

class ConflictError(StorefrontError):
    """409-level business rule conflict (e.g., duplicate SKU)."""

    code = "conflict"
    status_code = 409


class ProductUnavailable(ConflictError):
    code = "product_unavailable"


class InsufficientStock(ConflictError):
    code = "insufficient_stock"


class ConcurrentModification(ConflictError):
    """Conditional write kept losing to concurrent writers; retries exhausted."""

    code = "concurrent_modification"


class InvalidStatusTransition(ConflictError):
    code = "invalid_status_transition"


class OrderNotCancellable(ConflictError):
    code = "order_not_cancellable"


# --- coupons ----------------------------------------------------------------

class CouponError(StorefrontError):
    code = "coupon_error"
    status_code = 422


class CouponNotFound(CouponError):
    code = "coupon_not_found"


class CouponInactive(CouponError):
    code = "coupon_inactive"


class CouponNotStarted(CouponError):
    code = "coupon_not_started"


class CouponExpired(CouponError):
    code = "coupon_expired"


class CouponExhausted(CouponError):
    code = "coupon_exhausted"


class MinimumNotMet(CouponError):
    code = "minimum_not_met"


# --- aggregate operations ---------------------------------------------------

class OrderCreationFailed(StorefrontError):
    """
    Order creation aborted; nothing was reserved or recorded.

    `cause` holds the typed error that stopped creation (InsufficientStock,
    CouponExhausted, ...) so callers can still render a specific message.
    """

    code = "order_creation_failed"
    status_code = 409

    def __init__(self, message: str, details: dict | None = None, cause: StorefrontError | None = None):
        details = dict(details or {})
        if cause is not None:
            details.setdefault("cause", cause.code)
            for key, value in cause.details.items():
                details.setdefault(key, value)
        super().__init__(message, details)
        self.cause = cause


class BulkUpdateFailed(StorefrontError):
    """A bulk product update was rejected as a whole; details list failures per id."""

    code = "bulk_update_failed"
