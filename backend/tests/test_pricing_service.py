# Overview: Pytest coverage for cart pricing.

import pytest

from storefront.errors import (
    ValidationError,
    InvalidQuantity,
    ProductUnavailable,
    MinimumNotMet,
)
from storefront.models import StockMovement
from storefront.services.pricing_service import CartLine, price_cart, shipping_cost_for
from storefront.services.stock_ledger import get_stock_level


class TestSubtotalAndLines:
    def test_basic_breakdown(self, db_session, make_product):
        a = make_product(price=100000)
        b = make_product(price=25000)

        breakdown = price_cart(
            [{"productId": a.id, "quantity": 2}, {"product_id": b.id, "quantity": 1}],
            "standard",
        )

        assert breakdown.subtotal == 225000
        assert breakdown.discount_amount == 0
        assert breakdown.shipping_cost == 30000
        assert breakdown.tax_amount == 0
        assert breakdown.total == 255000
        assert [(l.product_id, l.quantity, l.unit_price) for l in breakdown.lines] == [
            (a.id, 2, 100000),
            (b.id, 1, 25000),
        ]

    def test_duplicate_lines_are_merged(self, db_session, make_product):
        a = make_product(price=10000)
        breakdown = price_cart([CartLine(a.id, 1), CartLine(a.id, 2)], "standard")
        assert len(breakdown.lines) == 1
        assert breakdown.lines[0].quantity == 3
        assert breakdown.subtotal == 30000

    def test_uses_live_price(self, db_session, make_product):
        a = make_product(price=10000)
        a.price = 12000
        db_session.commit()
        assert price_cart([{"productId": a.id, "quantity": 1}], "standard").subtotal == 12000

    def test_pricing_writes_nothing(self, db_session, make_product):
        a = make_product(price=10000, stock=4)
        price_cart([{"productId": a.id, "quantity": 3}], "express")
        assert get_stock_level(a.id) == 4
        assert db_session.query(StockMovement).count() == 0

    def test_default_shipping_method(self, db_session, make_product):
        a = make_product(price=10000)
        assert price_cart([{"productId": a.id, "quantity": 1}], None).shipping_method == "standard"


class TestCartValidation:
    def test_empty_cart(self, db_session):
        with pytest.raises(ValidationError):
            price_cart([], "standard")

    @pytest.mark.parametrize("quantity", [0, -1, 101, 1.5, True])
    def test_bad_line_quantity(self, db_session, make_product, quantity):
        a = make_product()
        with pytest.raises(InvalidQuantity):
            price_cart([{"productId": a.id, "quantity": quantity}], "standard")

    def test_merged_quantity_over_limit(self, db_session, make_product):
        a = make_product()
        with pytest.raises(InvalidQuantity):
            price_cart([{"productId": a.id, "quantity": 60}, {"productId": a.id, "quantity": 60}], "standard")

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductUnavailable):
            price_cart([{"productId": 99999, "quantity": 1}], "standard")

    def test_inactive_product(self, db_session, make_product):
        a = make_product(is_active=False)
        with pytest.raises(ProductUnavailable):
            price_cart([{"productId": a.id, "quantity": 1}], "standard")

    def test_unknown_shipping_method(self, db_session, make_product):
        a = make_product()
        with pytest.raises(ValidationError):
            price_cart([{"productId": a.id, "quantity": 1}], "teleport")


class TestShipping:
    @pytest.mark.parametrize("method,cost", [("standard", 30000), ("express", 50000), ("same_day", 80000)])
    def test_rate_table(self, app, method, cost):
        assert shipping_cost_for(method, 100000) == cost

    def test_one_below_threshold_pays(self, db_session, make_product):
        a = make_product(price=499999)
        breakdown = price_cart([{"productId": a.id, "quantity": 1}], "express")
        assert breakdown.shipping_cost == 50000
        assert breakdown.free_shipping is False

    @pytest.mark.parametrize("method", ["standard", "express", "same_day"])
    def test_threshold_ships_free_for_every_method(self, db_session, make_product, method):
        a = make_product(price=500000)
        breakdown = price_cart([{"productId": a.id, "quantity": 1}], method)
        assert breakdown.shipping_cost == 0
        assert breakdown.free_shipping is True


class TestCouponsAndTotals:
    def test_sale10_scenario(self, db_session, make_product, sale10):
        a = make_product(price=200000)
        breakdown = price_cart([{"productId": a.id, "quantity": 3}], "standard", "SALE10")

        assert breakdown.subtotal == 600000
        assert breakdown.discount_amount == 50000
        assert breakdown.shipping_cost == 0
        assert breakdown.total == 550000
        assert breakdown.coupon.code == "SALE10"

    def test_free_shipping_uses_pre_discount_subtotal(self, db_session, make_product, sale10):
        a = make_product(price=500000)
        breakdown = price_cart([{"productId": a.id, "quantity": 1}], "standard", "SALE10")
        assert breakdown.discount_amount == 50000
        assert breakdown.shipping_cost == 0

    def test_coupon_error_propagates(self, db_session, make_product, sale10):
        a = make_product(price=50000)
        with pytest.raises(MinimumNotMet):
            price_cart([{"productId": a.id, "quantity": 1}], "standard", "SALE10")

    def test_blank_coupon_is_ignored(self, db_session, make_product):
        a = make_product(price=50000)
        assert price_cart([{"productId": a.id, "quantity": 1}], "standard", "  ").coupon is None

    def test_total_never_negative(self, db_session, make_product, make_coupon):
        make_coupon(code="HUGE", type="fixed_amount", value=10000000)
        a = make_product(price=100000)
        breakdown = price_cart([{"productId": a.id, "quantity": 1}], "standard", "HUGE")
        assert breakdown.discount_amount == 100000
        assert breakdown.total == 30000

    def test_tax_on_discounted_subtotal(self, app, db_session, make_product, sale10, monkeypatch):
        monkeypatch.setitem(app.config, "TAX_RATE_BPS", 1000)
        a = make_product(price=300000)
        breakdown = price_cart([{"productId": a.id, "quantity": 1}], "standard", "SALE10")

        assert breakdown.discount_amount == 30000
        assert breakdown.tax_amount == 27000
        assert breakdown.total == 300000 - 30000 + 30000 + 27000

    def test_breakdown_serializes(self, db_session, make_product):
        a = make_product(price=10000)
        data = price_cart([{"productId": a.id, "quantity": 2}], "standard").to_dict()
        assert data["lines"][0]["total_price"] == 20000
        assert data["coupon"] is None
