# backend/storefront/routes/products.py
"""
Product stock and inventory routes (admin UI).

- POST /api/products/:id/stock            - set/add/subtract with a reason
- GET  /api/products/:id/stock/movements  - stock audit trail
- POST /api/products/bulk-update          - batch edits, all or nothing
- GET  /api/inventory/low-stock           - products at or below threshold
- GET  /api/inventory/alerts              - low/out-of-stock signals
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import StorefrontError, ValidationError
from ..services import stock_ledger
from ..services.bulk_product_service import bulk_update_products
from ._helpers import current_actor, error_response, internal_error, json_body, limit_arg


products_bp = Blueprint("products", __name__)


@products_bp.post("/api/products/<int:product_id>/stock")
def adjust_stock_route(product_id: int):
    """
    Manual restock or correction.

    Body: {"operation": "add", "quantity": 10, "reason": "Supplier delivery", "force": false}
    """
    try:
        payload = json_body()
        force = payload.get("force", False)
        if not isinstance(force, bool):
            raise ValidationError("force must be true or false")
        change = stock_ledger.adjust_stock(
            product_id,
            payload.get("operation"),
            payload.get("quantity"),
            payload.get("reason"),
            actor=current_actor(),
            force=force,
        )
        return jsonify({"change": change.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change stock")
        return internal_error()


@products_bp.get("/api/products/<int:product_id>/stock/movements")
def stock_movements_route(product_id: int):
    try:
        movements = stock_ledger.list_stock_movements(product_id, limit=limit_arg())
        return jsonify({
            "product_id": product_id,
            "stock_quantity": stock_ledger.get_stock_level(product_id),
            "movements": [m.to_dict() for m in movements],
        }), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return internal_error()


@products_bp.post("/api/products/bulk-update")
def bulk_update_route():
    """
    Body: {"productIds": [1, 2], "updates": {"isActive": false, "stockQuantity": 0}, "reason": "..."}

    A rejected batch returns 400 with details.failures listing each product id.
    """
    try:
        payload = json_body()
        result = bulk_update_products(
            payload.get("productIds", payload.get("product_ids")),
            payload.get("updates"),
            actor=current_actor(),
            reason=payload.get("reason"),
        )
        return jsonify(result.to_dict()), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to bulk update products")
        return internal_error()


@products_bp.get("/api/inventory/low-stock")
def low_stock_route():
    try:
        include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
        products = stock_ledger.list_low_stock_products(include_inactive=include_inactive)
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list low stock products")
        return internal_error()


@products_bp.get("/api/inventory/alerts")
def stock_alerts_route():
    try:
        product_id = request.args.get("product_id", type=int)
        alerts = stock_ledger.list_stock_alerts(product_id=product_id, limit=limit_arg())
        return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock alerts")
        return internal_error()
