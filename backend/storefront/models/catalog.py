from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCK: stock_quantity is the authoritative on-hand count. It is only ever
    written through the stock ledger (services/stock_ledger.py), which applies
    a conditional UPDATE and appends a StockMovement row for every change.
    Do not assign product.stock_quantity directly outside of product creation.

    version_id backs SQLAlchemy's optimistic locking for ORM edits (price,
    category, flags). The stock ledger bumps it on every stock write so a
    stale ORM copy cannot silently overwrite a concurrent change.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_products_threshold_non_negative"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Minor currency units
    price = db.Column(db.Integer, nullable=False)
    compare_price = db.Column(db.Integer, nullable=True)
    cost_price = db.Column(db.Integer, nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    brand = db.Column(db.String(100), nullable=True)
    tags = db.Column(db.JSON, nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "compare_price": self.compare_price,
            "cost_price": self.cost_price,
            "stock_quantity": self.stock_quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "is_featured": self.is_featured,
            "brand": self.brand,
            "tags": list(self.tags or []),
            "category_id": self.category_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
