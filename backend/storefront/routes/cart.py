# backend/storefront/routes/cart.py
"""
Cart pricing route.

POST /api/cart/price
    {"items": [{"productId": 1, "quantity": 2}], "shippingMethod": "standard", "couponCode": "SALE10"}

Amounts are never taken from the client; the breakdown is computed from
live product prices.
"""
from flask import Blueprint, current_app, jsonify

from ..errors import StorefrontError
from ..services.pricing_service import price_cart
from ._helpers import error_response, internal_error, json_body


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.post("/price")
def price_cart_route():
    try:
        payload = json_body()
        breakdown = price_cart(
            payload.get("items"),
            payload.get("shippingMethod", payload.get("shipping_method")),
            payload.get("couponCode", payload.get("coupon_code")),
        )
        return jsonify({"breakdown": breakdown.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to price cart")
        return internal_error()
