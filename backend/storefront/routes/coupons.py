# backend/storefront/routes/coupons.py
from flask import Blueprint, current_app, jsonify

from ..errors import StorefrontError
from ..services import coupon_service
from ._helpers import error_response, internal_error, json_body


coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/validate")
def validate_coupon_route():
    """Body: {"code": "SALE10", "subtotal": 600000}. Read-only; nothing is redeemed."""
    try:
        payload = json_body()
        quote = coupon_service.validate_and_price(
            payload.get("code"),
            payload.get("subtotal", payload.get("cartSubtotal", 0)),
        )
        return jsonify({"valid": True, "coupon": quote.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate coupon")
        return internal_error()


@coupons_bp.get("/<int:coupon_id>/usage")
def coupon_usage_route(coupon_id: int):
    try:
        return jsonify(coupon_service.get_coupon_usage(coupon_id)), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load coupon usage")
        return internal_error()
