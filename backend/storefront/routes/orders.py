# backend/storefront/routes/orders.py
"""
Order routes.

- POST /api/orders                          - Create an order from a cart
- GET  /api/orders/:id                      - Order with items and status history
- POST /api/orders/:id/cancel               - Cancel (pending/confirmed only)
- POST /api/orders/:id/status               - Advance along the status table
- POST /api/orders/bulk-status              - Same status for many orders
- POST /api/orders/:id/reorder              - New order from an earlier one
- POST /api/orders/:id/payment-status       - Payment collaborator callback
- POST /api/orders/:id/tracking             - Attach tracking number
- PUT  /api/orders/:id/shipping-address     - Change address before processing

Typed service errors are rendered as {"error", "code", "details"} with the
error's HTTP status. Anything else is logged and returned as a 500.
"""
from flask import Blueprint, current_app, jsonify

from ..errors import StorefrontError
from ..services import order_service
from ._helpers import current_actor, error_response, internal_error, json_body


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _pick(payload: dict, camel: str, snake: str, default=None):
    if camel in payload:
        return payload[camel]
    return payload.get(snake, default)


@orders_bp.post("")
def create_order_route():
    """
    Create an order.

    Response (201):
        {
            "order": {...},
            "payment": {"orderId": 1, "amount": 650000, "orderNumber": "ORD-..."}
        }
    """
    try:
        payload = json_body()
        order = order_service.create_order(
            payload.get("items"),
            _pick(payload, "shippingAddress", "shipping_address"),
            _pick(payload, "billingAddress", "billing_address"),
            _pick(payload, "shippingMethod", "shipping_method"),
            _pick(payload, "couponCode", "coupon_code"),
            payload.get("notes"),
            customer_id=_pick(payload, "customerId", "customer_id"),
            actor=current_actor(),
        )
        return jsonify({
            "order": order.to_dict(),
            "payment": order_service.payment_request(order),
        }), 201
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return internal_error()


@orders_bp.post("/bulk-status")
def bulk_status_route():
    """
    Body: {"orderIds": [1, 2], "status": "confirmed", "note": "..."}

    Per-order problems do not fail the request; they come back in "failed".
    """
    try:
        payload = json_body()
        result = order_service.bulk_update_order_status(
            _pick(payload, "orderIds", "order_ids"),
            payload.get("status"),
            note=payload.get("note", payload.get("notes")),
            actor=current_actor(),
        )
        return jsonify(result.to_dict()), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk update order status")
        return internal_error()


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        data = order.to_dict()
        data["events"] = [e.to_dict() for e in order_service.list_order_events(order_id)]
        return jsonify({"order": data}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return internal_error()


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        payload = json_body()
        order = order_service.cancel_order(order_id, payload.get("reason"), actor=current_actor())
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return internal_error()


@orders_bp.post("/<int:order_id>/status")
def advance_order_route(order_id: int):
    """Body: {"status": "confirmed", "note": "...", "trackingNumber": "..."}"""
    try:
        payload = json_body()
        target = order_service.validate_target_status(payload.get("status"))
        order = order_service.advance_order(
            order_id,
            target,
            actor=current_actor(),
            note=payload.get("note"),
            tracking_number=_pick(payload, "trackingNumber", "tracking_number"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change order status")
        return internal_error()


@orders_bp.post("/<int:order_id>/reorder")
def reorder_route(order_id: int):
    try:
        result = order_service.reorder(order_id, actor=current_actor())
        body = result.to_dict()
        body["payment"] = order_service.payment_request(result.order)
        return jsonify(body), 201
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reorder")
        return internal_error()


@orders_bp.post("/<int:order_id>/payment-status")
def payment_status_route(order_id: int):
    try:
        payload = json_body()
        status = _pick(payload, "paymentStatus", "payment_status")
        if not isinstance(status, str):
            status = ""
        order = order_service.set_payment_status(order_id, status.strip().lower(), actor=current_actor())
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return internal_error()


@orders_bp.post("/<int:order_id>/tracking")
def tracking_route(order_id: int):
    try:
        payload = json_body()
        order = order_service.add_tracking_number(
            order_id,
            _pick(payload, "trackingNumber", "tracking_number"),
            carrier=payload.get("carrier"),
            actor=current_actor(),
        )
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add tracking number")
        return internal_error()


@orders_bp.put("/<int:order_id>/shipping-address")
def shipping_address_route(order_id: int):
    try:
        payload = json_body()
        address = _pick(payload, "shippingAddress", "shipping_address", payload)
        order = order_service.update_shipping_address(order_id, address, actor=current_actor())
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update shipping address")
        return internal_error()
