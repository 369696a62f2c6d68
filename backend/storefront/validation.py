from __future__ import annotations

from typing import Any

from .errors import ValidationError, InvalidQuantity


# Maximum monetary amount accepted from admin input (minor units)
MAX_AMOUNT = 999_999_999_999

ADDRESS_REQUIRED_FIELDS = (
    "first_name",
    "last_name",
    "address_line_1",
    "city",
    "state",
    "postal_code",
    "country",
)
ADDRESS_OPTIONAL_FIELDS = ("company", "address_line_2", "phone")
ADDRESS_MAX_LENGTH = 255


def coerce_int(value: Any, field: str, *, error_cls: type[ValidationError] = ValidationError) -> int:
    """
    Strict integer coercion for quantities and amounts.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals
    and scientific notation rather than silently truncating them.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value

    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise error_cls(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise error_cls(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise error_cls(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise error_cls(f"{field} must be an integer")

    if isinstance(value, float):
        raise error_cls(f"{field} must be an integer, not a decimal")

    raise error_cls(f"{field} must be an integer")


def coerce_quantity(value: Any, field: str = "quantity", *, minimum: int = 0, maximum: int | None = None) -> int:
    """Integer quantity within [minimum, maximum]; failures raise InvalidQuantity."""
    qty = coerce_int(value, field, error_cls=InvalidQuantity)
    if qty < minimum:
        raise InvalidQuantity(
            f"{field} must be >= {minimum}",
            details={"field": field, "value": qty},
        )
    if maximum is not None and qty > maximum:
        raise InvalidQuantity(
            f"{field} must be <= {maximum}",
            details={"field": field, "value": qty},
        )
    return qty


def coerce_amount(value: Any, field: str, *, allow_zero: bool = False) -> int:
    amount = coerce_int(value, field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}")
    return amount


def require_text(value: Any, field: str, *, max_length: int = 500) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 500) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def validate_address(payload: Any, field: str) -> dict:
    """
    Validate and normalize a shipping or billing address payload.

    Returns a cleaned dict holding only the known address keys. Unknown
    keys are rejected so arbitrary client data never lands on the order.
    """
    if not isinstance(payload, dict):
        raise ValidationError(f"{field} must be an object")

    allowed = set(ADDRESS_REQUIRED_FIELDS) | set(ADDRESS_OPTIONAL_FIELDS)
    unknown = sorted(k for k in payload if k not in allowed)
    if unknown:
        raise ValidationError(
            f"{field} has unknown fields: {', '.join(unknown)}",
            details={"field": field, "unknown": unknown},
        )

    missing = [k for k in ADDRESS_REQUIRED_FIELDS if not str(payload.get(k) or "").strip()]
    if missing:
        raise ValidationError(
            f"{field} is missing required fields: {', '.join(missing)}",
            details={"field": field, "missing": missing},
        )

    cleaned: dict = {}
    for key in ADDRESS_REQUIRED_FIELDS:
        cleaned[key] = require_text(payload[key], f"{field}.{key}", max_length=ADDRESS_MAX_LENGTH)
    for key in ADDRESS_OPTIONAL_FIELDS:
        value = optional_text(payload.get(key), f"{field}.{key}", max_length=ADDRESS_MAX_LENGTH)
        if value is not None:
            cleaned[key] = value
    return cleaned
