from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Coupon(db.Model):
    """
    Discount coupon.

    code is stored upper-cased and stripped; lookups normalize the same way.
    value is a whole percent for type=percentage and a minor-unit amount for
    type=fixed_amount. maximum_discount only applies to percentage coupons.

    used_count is written only by coupon_service.record_usage/release_usage
    via conditional UPDATEs, never through the ORM.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.CheckConstraint("used_count >= 0", name="ck_coupons_used_count_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=True)

    type = db.Column(db.String(16), nullable=False)  # percentage, fixed_amount
    value = db.Column(db.Integer, nullable=False)
    minimum_amount = db.Column(db.Integer, nullable=False, default=0)
    maximum_discount = db.Column(db.Integer, nullable=True)

    usage_limit = db.Column(db.Integer, nullable=True)  # NULL = unlimited
    used_count = db.Column(db.Integer, nullable=False, default=0)

    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)  # NULL = never

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_uses(self) -> int | None:
        if self.usage_limit is None:
            return None
        return max(self.usage_limit - self.used_count, 0)

    def __repr__(self) -> str:
        return f"<Coupon id={self.id} code={self.code!r} used={self.used_count}/{self.usage_limit}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "value": self.value,
            "minimum_amount": self.minimum_amount,
            "maximum_discount": self.maximum_discount,
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "remaining_uses": self.remaining_uses,
            "starts_at": to_utc_z(self.starts_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
