# Overview: Administrative batch edits across many products.

"""
Bulk product updates

An update batch is a list of typed changes applied to every selected product:
    StatusUpdate    is_active / is_featured
    PriceUpdate     price / compare_price
    StockUpdate     stock_quantity (through the stock ledger) / low_stock_threshold
    CategoryUpdate  category_id
    TagUpdate       tags / brand

POLICY: all-or-nothing.
- Every product is checked before anything is written; all problems are
  reported per product id in a single BulkUpdateFailed.
- A failure while applying (lost stock race, stale version) rolls the whole
  batch back.

Batch rules:
- every id must exist
- the target category must exist and be active
- the resulting compare_price must be greater than the resulting price
- a product with pending/confirmed/processing orders cannot be deactivated
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..errors import ValidationError, BulkUpdateFailed
from ..models import Category, Order, OrderItem, Product
from ..validation import coerce_amount, coerce_int, coerce_quantity, optional_text
from .concurrency import run_with_retry
from .order_status import OPEN_STATUSES
from .stock_ledger import OPERATION_SET, apply_stock_change


MAX_BATCH_SIZE = 500
DEFAULT_REASON = "bulk update"


def _require_bool(value, field_name: str) -> None:
    if value is not None and not isinstance(value, bool):
        raise ValidationError(f"{field_name} must be true or false")


@dataclass(frozen=True)
class StatusUpdate:
    is_active: bool | None = None
    is_featured: bool | None = None

    def __post_init__(self):
        if self.is_active is None and self.is_featured is None:
            raise ValidationError("StatusUpdate needs is_active or is_featured")
        _require_bool(self.is_active, "is_active")
        _require_bool(self.is_featured, "is_featured")


@dataclass(frozen=True)
class PriceUpdate:
    price: int | None = None
    compare_price: int | None = None

    def __post_init__(self):
        if self.price is None and self.compare_price is None:
            raise ValidationError("PriceUpdate needs price or compare_price")
        if self.price is not None:
            object.__setattr__(self, "price", coerce_amount(self.price, "price"))
        if self.compare_price is not None:
            object.__setattr__(self, "compare_price", coerce_amount(self.compare_price, "compare_price"))


@dataclass(frozen=True)
class StockUpdate:
    stock_quantity: int | None = None
    low_stock_threshold: int | None = None

    def __post_init__(self):
        if self.stock_quantity is None and self.low_stock_threshold is None:
            raise ValidationError("StockUpdate needs stock_quantity or low_stock_threshold")
        if self.stock_quantity is not None:
            object.__setattr__(
                self, "stock_quantity", coerce_quantity(self.stock_quantity, "stock_quantity")
            )
        if self.low_stock_threshold is not None:
            object.__setattr__(
                self, "low_stock_threshold",
                coerce_quantity(self.low_stock_threshold, "low_stock_threshold"),
            )


@dataclass(frozen=True)
class CategoryUpdate:
    category_id: int

    def __post_init__(self):
        object.__setattr__(self, "category_id", coerce_int(self.category_id, "category_id"))


@dataclass(frozen=True)
class TagUpdate:
    tags: tuple[str, ...] | None = None
    brand: str | None = None

    def __post_init__(self):
        if self.tags is None and self.brand is None:
            raise ValidationError("TagUpdate needs tags or brand")
        if self.tags is not None:
            if isinstance(self.tags, str) or not isinstance(self.tags, (list, tuple)):
                raise ValidationError("tags must be a list of strings")
            cleaned = []
            for tag in self.tags:
                text = optional_text(tag, "tags", max_length=50)
                if text and text not in cleaned:
                    cleaned.append(text)
            object.__setattr__(self, "tags", tuple(cleaned))
        if self.brand is not None:
            object.__setattr__(self, "brand", optional_text(self.brand, "brand", max_length=100))


UPDATE_TYPES = (StatusUpdate, PriceUpdate, StockUpdate, CategoryUpdate, TagUpdate)

# camelCase keys sent by the admin product grid
_PAYLOAD_KEYS = {
    "isActive", "isFeatured",
    "price", "comparePrice",
    "stockQuantity", "lowStockThreshold",
    "categoryId",
    "tags", "brand",
}


def parse_product_updates(payload) -> list:
    """Build typed updates from the admin UI's camelCase payload."""
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("updates must be a non-empty object")
    unknown = sorted(k for k in payload if k not in _PAYLOAD_KEYS)
    if unknown:
        raise ValidationError(
            f"Unknown update fields: {', '.join(unknown)}",
            details={"unknown": unknown},
        )

    updates = []
    if "isActive" in payload or "isFeatured" in payload:
        updates.append(StatusUpdate(payload.get("isActive"), payload.get("isFeatured")))
    if "price" in payload or "comparePrice" in payload:
        updates.append(PriceUpdate(payload.get("price"), payload.get("comparePrice")))
    if "stockQuantity" in payload or "lowStockThreshold" in payload:
        updates.append(StockUpdate(payload.get("stockQuantity"), payload.get("lowStockThreshold")))
    if "categoryId" in payload:
        updates.append(CategoryUpdate(payload["categoryId"]))
    if "tags" in payload or "brand" in payload:
        updates.append(TagUpdate(payload.get("tags"), payload.get("brand")))
    return updates


@dataclass
class BulkUpdateResult:
    updated_count: int
    products: list[Product] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "updated_count": self.updated_count,
            "products": [p.to_dict() for p in self.products],
        }


def _normalize_ids(product_ids) -> list[int]:
    if not isinstance(product_ids, (list, tuple)) or not product_ids:
        raise ValidationError("product_ids must be a non-empty list")
    if len(product_ids) > MAX_BATCH_SIZE:
        raise ValidationError(f"At most {MAX_BATCH_SIZE} products can be updated at once")
    ids: list[int] = []
    for idx, raw in enumerate(product_ids):
        pid = coerce_int(raw, f"product_ids[{idx}]")
        if pid not in ids:
            ids.append(pid)
    return ids


def _ids_with_open_orders(product_ids: list[int]) -> set[int]:
    rows = (
        db.session.query(OrderItem.product_id)
        .join(Order, Order.id == OrderItem.order_id)
        .filter(OrderItem.product_id.in_(product_ids), Order.status.in_(OPEN_STATUSES))
        .distinct()
        .all()
    )
    return {row.product_id for row in rows}


def _collect_failures(ids: list[int], products: dict[int, Product], updates: list) -> list[dict]:
    failures: list[dict] = []

    def fail(pid, message):
        failures.append({"product_id": pid, "error": message})

    for pid in ids:
        if pid not in products:
            fail(pid, "Product not found")

    for upd in updates:
        if isinstance(upd, CategoryUpdate):
            category = db.session.get(Category, upd.category_id)
            if category is None or not category.is_active:
                for pid in ids:
                    if pid in products:
                        fail(pid, f"Category {upd.category_id} does not exist or is inactive")

        elif isinstance(upd, PriceUpdate):
            for pid, product in products.items():
                price = upd.price if upd.price is not None else product.price
                compare = upd.compare_price if upd.compare_price is not None else product.compare_price
                if compare is not None and compare <= price:
                    fail(pid, f"compare_price {compare} must be greater than price {price}")

        elif isinstance(upd, StatusUpdate) and upd.is_active is False:
            blocked = _ids_with_open_orders([pid for pid in ids if pid in products])
            for pid in sorted(blocked):
                fail(pid, "Product has open orders and cannot be deactivated")

    return failures


def _apply_orm_fields(product: Product, updates: list) -> None:
    for upd in updates:
        if isinstance(upd, StatusUpdate):
            if upd.is_active is not None:
                product.is_active = upd.is_active
            if upd.is_featured is not None:
                product.is_featured = upd.is_featured
        elif isinstance(upd, PriceUpdate):
            if upd.price is not None:
                product.price = upd.price
            if upd.compare_price is not None:
                product.compare_price = upd.compare_price
        elif isinstance(upd, StockUpdate):
            if upd.low_stock_threshold is not None:
                product.low_stock_threshold = upd.low_stock_threshold
        elif isinstance(upd, CategoryUpdate):
            product.category_id = upd.category_id
        elif isinstance(upd, TagUpdate):
            if upd.tags is not None:
                product.tags = list(upd.tags)
            if upd.brand is not None:
                product.brand = upd.brand


def bulk_update_products(product_ids, updates, *, actor: str | None = None, reason: str | None = None) -> BulkUpdateResult:
    """
    Apply the same set of changes to many products, all or nothing.

    Args:
        product_ids: Products to change
        updates: Typed updates, or the admin UI's camelCase payload dict
        actor: Who made the change, recorded on stock movements
        reason: Audit reason for stock changes (defaults to "bulk update")

    Raises:
        ValidationError: malformed ids or updates
        BulkUpdateFailed: one or more products failed the batch rules;
            details["failures"] lists {product_id, error}
        ConcurrentModification: a stock write kept losing its race
    """
    ids = _normalize_ids(product_ids)
    if isinstance(updates, dict):
        updates = parse_product_updates(updates)
    if not updates:
        raise ValidationError("updates cannot be empty")
    for upd in updates:
        if not isinstance(upd, UPDATE_TYPES):
            raise ValidationError(f"Unsupported update type: {type(upd).__name__}")
    reason = optional_text(reason, "reason") or DEFAULT_REASON

    stock_targets = [u.stock_quantity for u in updates if isinstance(u, StockUpdate) and u.stock_quantity is not None]

    def _op():
        rows = db.session.query(Product).filter(Product.id.in_(ids)).populate_existing().all()
        products = {p.id: p for p in rows}

        failures = _collect_failures(ids, products, updates)
        if failures:
            raise BulkUpdateFailed(
                f"Bulk update rejected: {len(failures)} problem(s)",
                details={"failures": failures},
            )

        ordered = [products[pid] for pid in ids]
        for product in ordered:
            _apply_orm_fields(product, updates)
        # ORM edits must reach the DB before the ledger expires these rows
        db.session.flush()

        for target in stock_targets:
            for product in ordered:
                apply_stock_change(
                    product.id, OPERATION_SET, target, reason,
                    actor=actor, commit=False,
                )

        db.session.commit()
        return BulkUpdateResult(updated_count=len(ordered), products=ordered)

    result = run_with_retry(_op)
    current_app.logger.info("Bulk update applied to %s product(s)", result.updated_count)
    return result
