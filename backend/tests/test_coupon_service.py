# Overview: Pytest coverage for coupon eligibility, discounts and usage counting.

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from storefront.extensions import db
from storefront.errors import (
    ValidationError,
    ConflictError,
    ConcurrentModification,
    CouponNotFound,
    CouponInactive,
    CouponNotStarted,
    CouponExpired,
    CouponExhausted,
    MinimumNotMet,
)
from storefront.models import Coupon
from storefront.services import coupon_service
from storefront.services.coupon_service import validate_and_price, record_usage, release_usage


NOW = datetime(2026, 6, 1, 12, 0, 0)


def _used_count(coupon_id):
    return db.session.query(Coupon.used_count).filter_by(id=coupon_id).scalar()


class TestDiscounts:
    def test_percentage_capped_at_maximum(self, db_session, sale10):
        quote = validate_and_price("SALE10", 600000)
        assert quote.discount_amount == 50000
        assert quote.coupon_id == sale10.id

    def test_percentage_below_cap(self, db_session, sale10):
        assert validate_and_price("SALE10", 300000).discount_amount == 30000

    def test_percentage_rounds_half_up(self, db_session, make_coupon):
        make_coupon(code="P15", value=15)
        # 333 * 15% = 49.95
        assert validate_and_price("P15", 333).discount_amount == 50

    def test_fixed_amount_never_exceeds_subtotal(self, db_session, make_coupon):
        make_coupon(code="FLAT100K", type="fixed_amount", value=100000)
        assert validate_and_price("FLAT100K", 60000).discount_amount == 60000
        assert validate_and_price("FLAT100K", 250000).discount_amount == 100000

    def test_code_is_normalized(self, db_session, sale10):
        assert validate_and_price("  sale10 ", 600000).code == "SALE10"


class TestEligibilityOrder:
    def test_not_found(self, db_session):
        with pytest.raises(CouponNotFound):
            validate_and_price("NOPE", 100000)

    def test_blank_code_not_found(self, db_session):
        with pytest.raises(CouponNotFound):
            validate_and_price("   ", 100000)

    def test_inactive_reported_before_expired(self, db_session, make_coupon):
        make_coupon(code="OLD", is_active=False, expires_at=NOW - timedelta(days=1))
        with pytest.raises(CouponInactive):
            validate_and_price("OLD", 100000, now=NOW)

    def test_not_started(self, db_session, make_coupon):
        make_coupon(code="SOON", starts_at=NOW + timedelta(hours=1))
        with pytest.raises(CouponNotStarted):
            validate_and_price("SOON", 100000, now=NOW)

    def test_no_start_date_means_started(self, db_session, make_coupon):
        make_coupon(code="ANYTIME", starts_at=None)
        assert validate_and_price("ANYTIME", 100000, now=NOW).discount_amount == 10000

    def test_expired(self, db_session, make_coupon):
        make_coupon(code="GONE", expires_at=NOW - timedelta(seconds=1))
        with pytest.raises(CouponExpired):
            validate_and_price("GONE", 100000, now=NOW)

    def test_valid_at_exact_expiry(self, db_session, make_coupon):
        make_coupon(code="EDGE", expires_at=NOW)
        assert validate_and_price("EDGE", 100000, now=NOW).discount_amount == 10000

    def test_exhausted_reported_before_minimum(self, db_session, make_coupon):
        make_coupon(code="ONCE", usage_limit=1, used_count=1, minimum_amount=500000)
        with pytest.raises(CouponExhausted):
            validate_and_price("ONCE", 1000)

    def test_minimum_not_met(self, db_session, sale10):
        with pytest.raises(MinimumNotMet) as exc_info:
            validate_and_price("SALE10", 99999)
        assert exc_info.value.details["minimum_amount"] == 100000

    def test_minimum_met_exactly(self, db_session, sale10):
        assert validate_and_price("SALE10", 100000).discount_amount == 10000

    def test_validation_records_nothing(self, db_session, sale10):
        validate_and_price("SALE10", 600000)
        assert _used_count(sale10.id) == 0


class TestUsageCounting:
    def test_record_usage_increments(self, db_session, sale10):
        assert record_usage(sale10.id) == 1
        db_session.commit()
        assert _used_count(sale10.id) == 1

    def test_limit_one_allows_one_redemption(self, db_session, make_coupon):
        coupon = make_coupon(code="ONCE", usage_limit=1)
        record_usage(coupon.id)
        db_session.commit()

        with pytest.raises(CouponExhausted):
            record_usage(coupon.id)
        db_session.rollback()
        assert _used_count(coupon.id) == 1

    def test_lost_race_for_last_redemption(self, db_session, make_coupon, monkeypatch):
        coupon = make_coupon(code="LAST", usage_limit=1)
        real_read = coupon_service._read_usage
        calls = {"n": 0}

        def stale_read(coupon_id):
            calls["n"] += 1
            row = real_read(coupon_id)
            if calls["n"] == 1:
                # someone else redeems between our read and our write
                db.session.execute(update(Coupon).where(Coupon.id == coupon_id).values(used_count=1))
            return SimpleNamespace(code=row.code, used_count=row.used_count, usage_limit=row.usage_limit)

        monkeypatch.setattr(coupon_service, "_read_usage", stale_read)

        with pytest.raises(CouponExhausted):
            record_usage(coupon.id)
        assert calls["n"] == 2
        assert _used_count(coupon.id) == 1
        db_session.rollback()

    def test_gives_up_after_configured_attempts(self, app, db_session, sale10, monkeypatch):
        real_read = coupon_service._read_usage
        calls = {"n": 0}

        def always_stale(coupon_id):
            calls["n"] += 1
            row = real_read(coupon_id)
            db.session.execute(
                update(Coupon).where(Coupon.id == coupon_id).values(used_count=Coupon.used_count + 1)
            )
            return row

        monkeypatch.setattr(coupon_service, "_read_usage", always_stale)

        with pytest.raises(ConcurrentModification):
            record_usage(sale10.id)
        assert calls["n"] == app.config["COUPON_WRITE_ATTEMPTS"]
        db_session.rollback()

    def test_release_usage(self, db_session, make_coupon):
        coupon = make_coupon(code="BACK", used_count=2)
        assert release_usage(coupon.id) == 1
        db_session.commit()
        assert _used_count(coupon.id) == 1

    def test_release_never_below_zero(self, db_session, sale10):
        assert release_usage(sale10.id) == 0
        db_session.commit()
        assert _used_count(sale10.id) == 0

    def test_record_unknown_coupon(self, db_session):
        with pytest.raises(CouponNotFound):
            record_usage(99999)


class TestCreateCoupon:
    def test_create_normalizes_code(self, db_session):
        coupon = coupon_service.create_coupon({
            "code": " summer5 ",
            "type": "fixed_amount",
            "value": 5000,
            "expires_at": "2026-12-31T23:59:59Z",
        })
        assert coupon.code == "SUMMER5"
        assert coupon.used_count == 0
        assert coupon.expires_at == datetime(2026, 12, 31, 23, 59, 59)

    def test_duplicate_code(self, db_session, sale10):
        with pytest.raises(ConflictError):
            coupon_service.create_coupon({"code": "sale10", "type": "percentage", "value": 5})

    def test_percentage_over_100(self, db_session):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon({"code": "BIG", "type": "percentage", "value": 101})

    def test_maximum_discount_only_for_percentage(self, db_session):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon({
                "code": "FLAT",
                "type": "fixed_amount",
                "value": 1000,
                "maximum_discount": 500,
            })

    def test_unknown_type(self, db_session):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon({"code": "X", "type": "bogo", "value": 1})

    def test_window_must_be_ordered(self, db_session):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon({
                "code": "BACKWARDS",
                "type": "percentage",
                "value": 5,
                "starts_at": "2026-02-01T00:00:00Z",
                "expires_at": "2026-01-01T00:00:00Z",
            })


class TestCouponUsageReport:
    def test_usage_without_orders(self, db_session, sale10):
        report = coupon_service.get_coupon_usage(sale10.id)
        assert report["coupon"]["code"] == "SALE10"
        assert report["order_count"] == 0
        assert report["recent_orders"] == []

    def test_usage_unknown_coupon(self, db_session):
        with pytest.raises(CouponNotFound):
            coupon_service.get_coupon_usage(99999)
