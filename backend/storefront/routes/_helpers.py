# backend/storefront/routes/_helpers.py
"""
Shared request/response plumbing for the storefront blueprints.

Authentication lives in front of these handlers. The authenticated
principal is handed down in the X-Actor header and only ever used for
audit columns (stock movements, order events).
"""
from __future__ import annotations

from flask import jsonify, request

from ..errors import StorefrontError, ValidationError


def error_response(exc: StorefrontError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error():
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def current_actor() -> str | None:
    actor = request.headers.get("X-Actor", "").strip()
    return actor or None


def limit_arg(default: int = 200, maximum: int = 1000) -> int:
    raw = request.args.get("limit")
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError("limit must be an integer")
    if value < 1:
        raise ValidationError("limit must be >= 1")
    return min(value, maximum)
