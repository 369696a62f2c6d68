# backend/storefront/config.py
from __future__ import annotations
import json
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance by default; any SQLAlchemy URL works
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storefront.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Conditional-write retries for the two contended counters
    STOCK_WRITE_ATTEMPTS = _env_int("STOCK_WRITE_ATTEMPTS", 3)
    COUPON_WRITE_ATTEMPTS = _env_int("COUPON_WRITE_ATTEMPTS", 3)

    # Flat shipping table, amounts in minor currency units
    SHIPPING_RATES = json.loads(
        os.environ.get(
            "SHIPPING_RATES",
            '{"standard": 30000, "express": 50000, "same_day": 80000}',
        )
    )
    FREE_SHIPPING_THRESHOLD = _env_int("FREE_SHIPPING_THRESHOLD", 500000)
    DEFAULT_SHIPPING_METHOD = os.environ.get("DEFAULT_SHIPPING_METHOD", "standard")

    # Basis points applied to (subtotal - discount); 0 keeps tax out of totals
    TAX_RATE_BPS = _env_int("TAX_RATE_BPS", 0)

    MAX_LINE_QUANTITY = _env_int("MAX_LINE_QUANTITY", 100)
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "ORD")
