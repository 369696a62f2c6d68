from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order.

    TOTALS: subtotal, discount_amount, shipping_amount, tax_amount and
    total_amount are frozen at creation from the server-side price breakdown.
    total_amount == subtotal - discount_amount + shipping_amount + tax_amount.

    STATUS: only order_service changes status/payment_status, through the
    transition table in order_status.py. version_id makes two concurrent
    transitions on the same order conflict instead of both applying.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True)
    customer_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")

    shipping_address = db.Column(db.JSON, nullable=False)
    billing_address = db.Column(db.JSON, nullable=False)
    shipping_method = db.Column(db.String(32), nullable=False)

    subtotal = db.Column(db.Integer, nullable=False)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    shipping_amount = db.Column(db.Integer, nullable=False, default=0)
    tax_amount = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Integer, nullable=False)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True, index=True)
    coupon_code = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    tracking_number = db.Column(db.String(100), nullable=True)
    carrier = db.Column(db.String(100), nullable=True)

    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    events = db.relationship(
        "OrderEvent",
        backref="order",
        cascade="all, delete-orphan",
        order_by="OrderEvent.id",
        lazy=True,
    )
    coupon = db.relationship("Coupon")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "shipping_method": self.shipping_method,
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "shipping_amount": self.shipping_amount,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line. unit_price, product_name and product_sku are snapshots taken
    at order time and are never re-read from the live product.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
        }


class OrderEvent(db.Model):
    """Append-only order status history."""
    __tablename__ = "order_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)
    actor = db.Column(db.String(255), nullable=True)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor": self.actor,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
