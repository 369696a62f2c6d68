"""
Pytest fixtures for storefront backend tests.

Provides the test app (in-memory SQLite), a per-test table wipe, and small
factories for categories, products, coupons and orders.
"""

import itertools

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.models import Category, Product, Coupon
from storefront.services import order_service


_seq = itertools.count(1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'TAX_RATE_BPS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_category(db_session):
    def _make(name="Electronics", slug=None, is_active=True):
        category = Category(
            name=name,
            slug=slug or f"cat-{next(_seq)}",
            is_active=is_active,
        )
        db_session.add(category)
        db_session.commit()
        return category
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(price=100000, stock=10, threshold=5, is_active=True, compare_price=None, name=None, **extra):
        n = next(_seq)
        product = Product(
            sku=f"SKU-{n}",
            name=name or f"Product {n}",
            price=price,
            compare_price=compare_price,
            stock_quantity=stock,
            low_stock_threshold=threshold,
            is_active=is_active,
            **extra,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def make_coupon(db_session):
    def _make(code="SALE10", type="percentage", value=10, **extra):
        coupon = Coupon(code=code, type=type, value=value, **extra)
        db_session.add(coupon)
        db_session.commit()
        return coupon
    return _make


@pytest.fixture(scope='function')
def sale10(make_coupon):
    """10% off, minimum 100,000, capped at 50,000."""
    return make_coupon(
        code="SALE10",
        type="percentage",
        value=10,
        minimum_amount=100000,
        maximum_discount=50000,
    )


@pytest.fixture
def address():
    return {
        "first_name": "Linh",
        "last_name": "Tran",
        "address_line_1": "12 Nguyen Hue",
        "city": "Ho Chi Minh City",
        "state": "HCM",
        "postal_code": "700000",
        "country": "VN",
        "phone": "0900000000",
    }


@pytest.fixture(scope='function')
def place_order(db_session, address):
    """Create an order from (product, quantity) pairs."""
    def _place(*lines, coupon_code=None, shipping_method="standard", **kwargs):
        items = [{"productId": product.id, "quantity": qty} for product, qty in lines]
        return order_service.create_order(
            items,
            address,
            address,
            shipping_method,
            coupon_code,
            **kwargs,
        )
    return _place
