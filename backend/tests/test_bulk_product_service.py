# Overview: Pytest coverage for bulk product updates.

import pytest

from storefront.errors import ValidationError, InvalidQuantity, BulkUpdateFailed
from storefront.extensions import db
from storefront.models import Product, StockMovement
from storefront.services import order_service
from storefront.services.bulk_product_service import (
    StatusUpdate,
    PriceUpdate,
    StockUpdate,
    CategoryUpdate,
    TagUpdate,
    bulk_update_products,
    parse_product_updates,
)
from storefront.services.stock_ledger import get_stock_level


def _fresh(product_id):
    return db.session.query(Product).filter_by(id=product_id).populate_existing().one()


class TestUpdateVariants:
    def test_parse_camel_case_payload(self):
        updates = parse_product_updates({
            "isActive": True,
            "comparePrice": 150000,
            "stockQuantity": 12,
            "categoryId": "3",
            "tags": ["sale", "sale", " new "],
            "brand": "Acme",
        })
        by_type = {type(u): u for u in updates}

        assert by_type[StatusUpdate] == StatusUpdate(is_active=True)
        assert by_type[PriceUpdate].compare_price == 150000
        assert by_type[StockUpdate].stock_quantity == 12
        assert by_type[CategoryUpdate].category_id == 3
        assert by_type[TagUpdate].tags == ("sale", "new")
        assert by_type[TagUpdate].brand == "Acme"

    def test_unknown_payload_key(self):
        with pytest.raises(ValidationError):
            parse_product_updates({"price": 100, "sku": "NEW"})

    def test_empty_payload(self):
        with pytest.raises(ValidationError):
            parse_product_updates({})

    def test_status_needs_a_field(self):
        with pytest.raises(ValidationError):
            StatusUpdate()

    def test_status_rejects_non_bool(self):
        with pytest.raises(ValidationError):
            StatusUpdate(is_active="yes")

    def test_price_must_be_positive(self):
        with pytest.raises(ValidationError):
            PriceUpdate(price=0)

    def test_stock_must_be_non_negative_integer(self):
        with pytest.raises(InvalidQuantity):
            StockUpdate(stock_quantity=-1)
        with pytest.raises(InvalidQuantity):
            StockUpdate(stock_quantity=2.5)

    def test_tags_must_be_a_list(self):
        with pytest.raises(ValidationError):
            TagUpdate(tags="sale")


class TestBulkApply:
    def test_updates_every_product(self, db_session, make_product):
        a = make_product(price=100000)
        b = make_product(price=200000)

        result = bulk_update_products(
            [a.id, b.id],
            [StatusUpdate(is_featured=True), TagUpdate(tags=["summer"], brand="Acme")],
        )

        assert result.updated_count == 2
        for pid in (a.id, b.id):
            product = _fresh(pid)
            assert product.is_featured is True
            assert product.tags == ["summer"]
            assert product.brand == "Acme"

    def test_stock_goes_through_ledger(self, db_session, make_product):
        a = make_product(stock=10, threshold=5)
        b = make_product(stock=2, threshold=5)

        bulk_update_products([a.id, b.id], {"stockQuantity": 0}, actor="admin", reason="Recall")

        assert get_stock_level(a.id) == 0
        assert get_stock_level(b.id) == 0
        movements = db_session.query(StockMovement).order_by(StockMovement.id).all()
        assert [(m.product_id, m.operation, m.reason, m.actor) for m in movements] == [
            (a.id, "set", "Recall", "admin"),
            (b.id, "set", "Recall", "admin"),
        ]

    def test_default_reason(self, db_session, make_product):
        a = make_product(stock=1)
        bulk_update_products([a.id], [StockUpdate(stock_quantity=7)])
        assert db_session.query(StockMovement).one().reason == "bulk update"

    def test_price_and_stock_together(self, db_session, make_product):
        a = make_product(price=100000, stock=3)
        bulk_update_products([a.id], {"price": 90000, "comparePrice": 120000, "stockQuantity": 30})

        product = _fresh(a.id)
        assert product.price == 90000
        assert product.compare_price == 120000
        assert product.stock_quantity == 30

    def test_category_move(self, db_session, make_product, make_category):
        category = make_category()
        a = make_product()
        bulk_update_products([a.id], [CategoryUpdate(category.id)])
        assert _fresh(a.id).category_id == category.id

    def test_duplicate_ids_counted_once(self, db_session, make_product):
        a = make_product()
        assert bulk_update_products([a.id, a.id], {"isFeatured": True}).updated_count == 1


class TestAllOrNothing:
    def test_missing_product_rejects_batch(self, db_session, make_product):
        a = make_product(stock=10)

        with pytest.raises(BulkUpdateFailed) as exc_info:
            bulk_update_products([a.id, 99999], {"stockQuantity": 0, "isFeatured": True})

        assert exc_info.value.details["failures"] == [{"product_id": 99999, "error": "Product not found"}]
        assert get_stock_level(a.id) == 10
        assert _fresh(a.id).is_featured is False
        assert db_session.query(StockMovement).count() == 0

    def test_compare_price_must_exceed_price(self, db_session, make_product):
        ok = make_product(price=100000)
        bad = make_product(price=300000)

        with pytest.raises(BulkUpdateFailed) as exc_info:
            bulk_update_products([ok.id, bad.id], {"comparePrice": 200000})

        failures = exc_info.value.details["failures"]
        assert [f["product_id"] for f in failures] == [bad.id]
        assert _fresh(ok.id).compare_price is None

    def test_inactive_category_rejected(self, db_session, make_product, make_category):
        category = make_category(is_active=False)
        a = make_product()
        with pytest.raises(BulkUpdateFailed):
            bulk_update_products([a.id], {"categoryId": category.id})

    def test_cannot_deactivate_with_open_orders(self, db_session, make_product, place_order):
        busy = make_product(stock=10)
        idle = make_product(stock=10)
        place_order((busy, 1))

        with pytest.raises(BulkUpdateFailed) as exc_info:
            bulk_update_products([busy.id, idle.id], {"isActive": False})

        assert [f["product_id"] for f in exc_info.value.details["failures"]] == [busy.id]
        assert _fresh(idle.id).is_active is True

    def test_can_deactivate_after_cancellation(self, db_session, make_product, place_order):
        a = make_product(stock=10)
        order = place_order((a, 1))
        order_service.cancel_order(order.id)

        bulk_update_products([a.id], {"isActive": False})
        assert _fresh(a.id).is_active is False

    def test_reports_every_failure(self, db_session, make_product):
        a = make_product(price=300000)
        with pytest.raises(BulkUpdateFailed) as exc_info:
            bulk_update_products([a.id, 99998, 99999], {"comparePrice": 100000})
        assert len(exc_info.value.details["failures"]) == 3

    def test_empty_ids(self, db_session):
        with pytest.raises(ValidationError):
            bulk_update_products([], {"isActive": True})
