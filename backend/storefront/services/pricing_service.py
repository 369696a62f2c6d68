# Overview: Server-side cart pricing; subtotal, discount, shipping, tax and total.

"""
Cart pricing

Prices are always read from the live Product rows; the client never sends
amounts. The result is a Breakdown that order creation freezes onto the
order, so later price changes never alter an existing order's totals.

    total = max(0, subtotal - discount + shipping + tax)

Shipping uses the flat SHIPPING_RATES table unless the subtotal reaches
FREE_SHIPPING_THRESHOLD, in which case it is 0 for every method.
Tax is TAX_RATE_BPS basis points of (subtotal - discount), half-up.

This module never writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import ValidationError, InvalidQuantity, ProductUnavailable
from ..models import Product
from ..validation import coerce_int, coerce_quantity
from .coupon_service import CouponQuote, validate_and_price


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price: int

    @property
    def total_price(self) -> int:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
        }


@dataclass(frozen=True)
class Breakdown:
    subtotal: int
    discount_amount: int
    shipping_cost: int
    tax_amount: int
    total: int
    shipping_method: str
    free_shipping: bool
    lines: tuple[PricedLine, ...] = field(default_factory=tuple)
    coupon: CouponQuote | None = None

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "shipping_cost": self.shipping_cost,
            "tax_amount": self.tax_amount,
            "total": self.total,
            "shipping_method": self.shipping_method,
            "free_shipping": self.free_shipping,
            "lines": [line.to_dict() for line in self.lines],
            "coupon": self.coupon.to_dict() if self.coupon else None,
        }


def normalize_cart_items(cart_items) -> list[CartLine]:
    """
    Turn raw cart input into CartLines, merging repeated products.

    Accepts CartLine objects or dicts keyed by productId / product_id.
    Line order follows the first appearance of each product.
    """
    if not isinstance(cart_items, (list, tuple)) or not cart_items:
        raise ValidationError("Cart is empty")

    max_qty = current_app.config.get("MAX_LINE_QUANTITY", 100)
    merged: dict[int, int] = {}

    for idx, raw in enumerate(cart_items):
        if isinstance(raw, CartLine):
            product_id, quantity = raw.product_id, raw.quantity
        elif isinstance(raw, dict):
            product_id = raw.get("productId", raw.get("product_id"))
            quantity = raw.get("quantity")
        else:
            raise ValidationError(f"items[{idx}] must be an object")

        if product_id is None:
            raise ValidationError(f"items[{idx}].product_id is required")
        pid = coerce_int(product_id, f"items[{idx}].product_id")
        qty = coerce_quantity(quantity, f"items[{idx}].quantity", minimum=1, maximum=max_qty)
        merged[pid] = merged.get(pid, 0) + qty

    lines = []
    for pid, qty in merged.items():
        if qty > max_qty:
            raise InvalidQuantity(
                f"Quantity for product {pid} exceeds {max_qty}",
                details={"product_id": pid, "quantity": qty},
            )
        lines.append(CartLine(product_id=pid, quantity=qty))
    return lines


def shipping_cost_for(method: str, subtotal: int) -> int:
    rates = current_app.config["SHIPPING_RATES"]
    if method not in rates:
        raise ValidationError(
            f"Unknown shipping method '{method}'. Must be one of: {', '.join(sorted(rates))}",
            details={"shipping_method": method},
        )
    if subtotal >= current_app.config["FREE_SHIPPING_THRESHOLD"]:
        return 0
    return int(rates[method])


def compute_tax(taxable: int) -> int:
    bps = current_app.config.get("TAX_RATE_BPS", 0)
    if bps <= 0 or taxable <= 0:
        return 0
    return (taxable * bps + 5000) // 10000


def _load_products(product_ids: list[int]) -> dict[int, Product]:
    rows = db.session.query(Product).filter(Product.id.in_(product_ids)).populate_existing().all()
    return {p.id: p for p in rows}


def price_lines(lines: list[CartLine]) -> list[PricedLine]:
    products = _load_products([line.product_id for line in lines])
    priced = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None or not product.is_active:
            raise ProductUnavailable(
                f"Product {line.product_id} is not available",
                details={"product_id": line.product_id},
            )
        priced.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            quantity=line.quantity,
            unit_price=product.price,
        ))
    return priced


def price_cart(cart_items, shipping_method: str | None, coupon_code=None, *, now: datetime | None = None) -> Breakdown:
    """
    Price a cart against live product prices.

    Raises:
        ValidationError: empty cart, unknown shipping method
        InvalidQuantity: quantity not an integer in 1..MAX_LINE_QUANTITY
        ProductUnavailable: unknown or inactive product
        CouponError subclasses: coupon given but not applicable
    """
    method = shipping_method or current_app.config["DEFAULT_SHIPPING_METHOD"]
    lines = price_lines(normalize_cart_items(cart_items))

    subtotal = sum(line.total_price for line in lines)
    shipping_cost = shipping_cost_for(method, subtotal)

    quote = None
    discount = 0
    if coupon_code is not None and str(coupon_code).strip():
        quote = validate_and_price(coupon_code, subtotal, now=now)
        discount = quote.discount_amount

    tax = compute_tax(subtotal - discount)
    total = max(0, subtotal - discount + shipping_cost + tax)

    return Breakdown(
        subtotal=subtotal,
        discount_amount=discount,
        shipping_cost=shipping_cost,
        tax_amount=tax,
        total=total,
        shipping_method=method,
        free_shipping=shipping_cost == 0,
        lines=tuple(lines),
        coupon=quote,
    )
