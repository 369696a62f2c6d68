from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only audit trail for stock changes.

    One row per successful stock ledger write, in the same DB transaction
    as the write itself. quantity_delta is signed (resulting - previous) so
    the history can be replayed; operation keeps the caller's intent
    (set / add / subtract) for the admin audit view.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    operation = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    resulting_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(500), nullable=False)
    actor = db.Column(db.String(255), nullable=True)
    # e.g. order number for reservations and restorations
    reference = db.Column(db.String(64), nullable=True, index=True)
    forced = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "operation": self.operation,
            "quantity": self.quantity,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "resulting_quantity": self.resulting_quantity,
            "reason": self.reason,
            "actor": self.actor,
            "reference": self.reference,
            "forced": self.forced,
            "created_at": to_utc_z(self.created_at),
        }


class StockAlert(db.Model):
    """Low-stock / out-of-stock signals, read by the alerting dashboard."""
    __tablename__ = "stock_alerts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    alert_type = db.Column(db.String(16), nullable=False, index=True)  # low_stock, out_of_stock
    stock_quantity = db.Column(db.Integer, nullable=False)
    threshold = db.Column(db.Integer, nullable=False)
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "alert_type": self.alert_type,
            "stock_quantity": self.stock_quantity,
            "threshold": self.threshold,
            "stock_movement_id": self.stock_movement_id,
            "created_at": to_utc_z(self.created_at),
        }
