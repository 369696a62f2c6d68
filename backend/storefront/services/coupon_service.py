# Overview: Service-layer operations for coupons; eligibility, discount math and usage counting.

"""
Coupon rules

Eligibility is checked in a fixed order so the customer always sees the
most fundamental problem first:
    not found -> inactive -> not started -> expired -> exhausted -> minimum not met

Discounts:
- percentage:   subtotal * value / 100 (half-up), capped at maximum_discount
- fixed_amount: min(value, subtotal); a coupon never makes a total negative

Usage counting:
- record_usage() is called once per order, after stock was reserved, inside
  the order's transaction. It is a conditional UPDATE that also refuses to
  pass usage_limit, so two checkouts racing for the last redemption cannot
  both succeed.
- release_usage() gives a redemption back when an order is cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import select, update

from ..extensions import db
from ..errors import (
    ValidationError,
    ConflictError,
    ConcurrentModification,
    CouponNotFound,
    CouponInactive,
    CouponNotStarted,
    CouponExpired,
    CouponExhausted,
    MinimumNotMet,
)
from ..models import Coupon, Order
from ..time_utils import utcnow, as_utc_naive, parse_iso_datetime
from ..validation import coerce_amount, coerce_int, optional_text
from .concurrency import conditional_update, expire_cached
from .order_status import STATUS_CANCELLED


COUPON_PERCENTAGE = "percentage"
COUPON_FIXED_AMOUNT = "fixed_amount"
COUPON_TYPES = (COUPON_PERCENTAGE, COUPON_FIXED_AMOUNT)


@dataclass(frozen=True)
class CouponQuote:
    coupon_id: int
    code: str
    type: str
    value: int
    discount_amount: int

    def to_dict(self) -> dict:
        return {
            "coupon_id": self.coupon_id,
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "discount_amount": self.discount_amount,
        }


def normalize_code(code) -> str:
    if code is None:
        return ""
    return str(code).strip().upper()


def compute_discount(coupon: Coupon, subtotal: int) -> int:
    if coupon.type == COUPON_PERCENTAGE:
        # half-up rounding to the minor unit
        discount = (subtotal * coupon.value + 50) // 100
        if coupon.maximum_discount is not None:
            discount = min(discount, coupon.maximum_discount)
    else:
        discount = coupon.value
    return max(0, min(discount, subtotal))


def _check_eligibility(coupon: Coupon | None, code: str, subtotal: int, now: datetime) -> Coupon:
    if coupon is None:
        raise CouponNotFound(f"Coupon {code} does not exist", details={"code": code})
    if not coupon.is_active:
        raise CouponInactive(f"Coupon {code} is not active", details={"code": code})

    starts_at = as_utc_naive(coupon.starts_at)
    expires_at = as_utc_naive(coupon.expires_at)
    if starts_at is not None and now < starts_at:
        raise CouponNotStarted(f"Coupon {code} is not valid yet", details={"code": code})
    if expires_at is not None and now > expires_at:
        raise CouponExpired(f"Coupon {code} has expired", details={"code": code})

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponExhausted(
            f"Coupon {code} has no redemptions left",
            details={"code": code, "usage_limit": coupon.usage_limit},
        )
    if subtotal < (coupon.minimum_amount or 0):
        raise MinimumNotMet(
            f"Coupon {code} requires a minimum order of {coupon.minimum_amount}",
            details={"code": code, "minimum_amount": coupon.minimum_amount, "subtotal": subtotal},
        )
    return coupon


def get_coupon_by_code(code) -> Coupon | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    coupon = db.session.query(Coupon).filter_by(code=normalized).first()
    if coupon is not None:
        # used_count may have moved since this session last looked
        db.session.refresh(coupon)
    return coupon


def validate_and_price(code, cart_subtotal: int, now: datetime | None = None) -> CouponQuote:
    """
    Check a coupon against a cart subtotal and compute its discount.

    Pure read: nothing is recorded. Raises one of CouponNotFound,
    CouponInactive, CouponNotStarted, CouponExpired, CouponExhausted or
    MinimumNotMet.
    """
    normalized = normalize_code(code)
    subtotal = coerce_int(cart_subtotal, "cart_subtotal")
    now = as_utc_naive(now) if now is not None else utcnow()

    coupon = _check_eligibility(get_coupon_by_code(normalized), normalized, subtotal, now)
    return CouponQuote(
        coupon_id=coupon.id,
        code=coupon.code,
        type=coupon.type,
        value=coupon.value,
        discount_amount=compute_discount(coupon, subtotal),
    )


def _read_usage(coupon_id: int):
    row = db.session.execute(
        select(Coupon.code, Coupon.used_count, Coupon.usage_limit).where(Coupon.id == coupon_id)
    ).first()
    if row is None:
        raise CouponNotFound(f"Coupon {coupon_id} does not exist", details={"coupon_id": coupon_id})
    return row


def record_usage(coupon_id: int) -> int:
    """
    Count one redemption. Flushes only; the caller owns the transaction.

    Returns the new used_count. Raises CouponExhausted when the limit was
    reached (possibly by a concurrent checkout since validation) and
    ConcurrentModification when every conditional write lost its race.
    """
    attempts = current_app.config.get("COUPON_WRITE_ATTEMPTS", 3)

    for _ in range(attempts):
        row = _read_usage(coupon_id)
        if row.usage_limit is not None and row.used_count >= row.usage_limit:
            raise CouponExhausted(
                f"Coupon {row.code} has no redemptions left",
                details={"code": row.code, "usage_limit": row.usage_limit},
            )
        written = conditional_update(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                Coupon.used_count == row.used_count,
                (Coupon.usage_limit.is_(None)) | (Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=row.used_count + 1, version_id=Coupon.version_id + 1)
        )
        if written:
            expire_cached(Coupon, coupon_id)
            db.session.flush()
            return row.used_count + 1

    raise ConcurrentModification(
        f"Coupon {coupon_id} usage kept changing; gave up after {attempts} attempts",
        details={"coupon_id": coupon_id, "attempts": attempts},
    )


def release_usage(coupon_id: int) -> int:
    """Give one redemption back (never below zero). Flushes only."""
    attempts = current_app.config.get("COUPON_WRITE_ATTEMPTS", 3)

    for _ in range(attempts):
        row = _read_usage(coupon_id)
        if row.used_count <= 0:
            return 0
        written = conditional_update(
            update(Coupon)
            .where(Coupon.id == coupon_id, Coupon.used_count == row.used_count)
            .values(used_count=row.used_count - 1, version_id=Coupon.version_id + 1)
        )
        if written:
            expire_cached(Coupon, coupon_id)
            db.session.flush()
            return row.used_count - 1

    raise ConcurrentModification(
        f"Coupon {coupon_id} usage kept changing; gave up after {attempts} attempts",
        details={"coupon_id": coupon_id, "attempts": attempts},
    )


def _coerce_datetime(value, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return as_utc_naive(value)
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def create_coupon(data: dict) -> Coupon:
    """
    Create a coupon from admin input.

    Normalizes the code, enforces uniqueness and the per-type value rules
    (percentage 1..100; maximum_discount only for percentage).
    """
    code = normalize_code(data.get("code"))
    if not code:
        raise ValidationError("code is required")
    if len(code) > 64:
        raise ValidationError("code exceeds max length 64")

    coupon_type = data.get("type")
    if coupon_type not in COUPON_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(COUPON_TYPES)}")

    value = coerce_amount(data.get("value"), "value")
    if coupon_type == COUPON_PERCENTAGE and value > 100:
        raise ValidationError("percentage value cannot exceed 100")

    maximum_discount = data.get("maximum_discount")
    if maximum_discount is not None:
        if coupon_type != COUPON_PERCENTAGE:
            raise ValidationError("maximum_discount only applies to percentage coupons")
        maximum_discount = coerce_amount(maximum_discount, "maximum_discount")

    usage_limit = data.get("usage_limit")
    if usage_limit is not None:
        usage_limit = coerce_amount(usage_limit, "usage_limit")

    starts_at = _coerce_datetime(data.get("starts_at"), "starts_at")
    expires_at = _coerce_datetime(data.get("expires_at"), "expires_at")
    if starts_at and expires_at and expires_at <= starts_at:
        raise ValidationError("expires_at must be after starts_at")

    if db.session.query(Coupon.id).filter_by(code=code).first():
        raise ConflictError(f"Coupon code {code} already exists", details={"code": code})

    coupon = Coupon(
        code=code,
        name=optional_text(data.get("name"), "name", max_length=255),
        type=coupon_type,
        value=value,
        minimum_amount=coerce_amount(data.get("minimum_amount", 0), "minimum_amount", allow_zero=True),
        maximum_discount=maximum_discount,
        usage_limit=usage_limit,
        used_count=0,
        starts_at=starts_at,
        expires_at=expires_at,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(coupon)
    db.session.commit()
    return coupon


def get_coupon_usage(coupon_id: int, limit: int = 50) -> dict:
    """
    Redemption summary for the admin coupon screen.

    Cancelled orders gave their redemption back, so they are reported
    separately and left out of order_count / total_discount. order_count
    therefore matches coupon.used_count.
    """
    coupon = db.session.query(Coupon).filter_by(id=coupon_id).first()
    if coupon is None:
        raise CouponNotFound(f"Coupon {coupon_id} does not exist", details={"coupon_id": coupon_id})
    db.session.refresh(coupon)

    orders_q = db.session.query(Order).filter_by(coupon_id=coupon_id)
    redeemed_q = orders_q.filter(Order.status != STATUS_CANCELLED)
    orders = orders_q.order_by(Order.id.desc()).limit(limit).all()
    return {
        "coupon": coupon.to_dict(),
        "order_count": redeemed_q.count(),
        "cancelled_order_count": orders_q.filter(Order.status == STATUS_CANCELLED).count(),
        "total_discount": sum(o.discount_amount for o in redeemed_q.all()),
        "recent_orders": [
            {
                "id": o.id,
                "order_number": o.order_number,
                "status": o.status,
                "discount_amount": o.discount_amount,
                "total_amount": o.total_amount,
            }
            for o in orders
        ],
    }
