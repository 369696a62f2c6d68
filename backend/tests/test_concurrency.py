# Overview: Threaded checks that competing checkouts never oversell.

import threading

import pytest

from storefront import create_app
from storefront.errors import ConcurrentModification, OrderCreationFailed
from storefront.extensions import db
from storefront.models import Coupon, Order, Product, StockMovement
from storefront.services import order_service
from storefront.services.stock_ledger import adjust_stock, get_stock_level


ADDRESS = {
    "first_name": "Linh",
    "last_name": "Tran",
    "address_line_1": "12 Nguyen Hue",
    "city": "Ho Chi Minh City",
    "state": "HCM",
    "postal_code": "700000",
    "country": "VN",
}


@pytest.fixture
def file_app(tmp_path):
    """App bound to a file database so worker threads see each other's commits."""
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.db'}",
        "TAX_RATE_BPS": 0,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_workers(app, count, target):
    """Start `count` workers that all call `target` at the same moment."""
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def worker():
        with app.app_context():
            try:
                barrier.wait(timeout=10)
                value = target()
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def _split(results):
    successes = [r for r in results if isinstance(r, int)]
    failures = [r for r in results if not isinstance(r, int)]
    return successes, failures


def test_competing_orders_do_not_oversell(file_app):
    with file_app.app_context():
        product = Product(sku="HOT-1", name="Hot item", price=100000, stock_quantity=5, low_stock_threshold=1)
        db.session.add(product)
        db.session.commit()
        product_id = product.id

    def checkout():
        order = order_service.create_order(
            [{"productId": product_id, "quantity": 3}], ADDRESS, ADDRESS, "standard",
        )
        return order.id

    successes, failures = _split(_run_workers(file_app, 2, checkout))

    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], OrderCreationFailed)
    assert failures[0].details["cause"] == "insufficient_stock"

    with file_app.app_context():
        assert get_stock_level(product_id) == 2
        assert db.session.query(Order).count() == 1
        assert db.session.query(StockMovement).count() == 1


def test_parallel_restocks_are_all_counted(file_app):
    with file_app.app_context():
        product = Product(sku="RESTOCK-1", name="Restocked", price=10000, stock_quantity=0, low_stock_threshold=0)
        db.session.add(product)
        db.session.commit()
        product_id = product.id

    def restock():
        return adjust_stock(product_id, "add", 2, "Supplier delivery").new_stock

    applied, failures = _split(_run_workers(file_app, 4, restock))

    for exc in failures:
        assert isinstance(exc, ConcurrentModification)
    with file_app.app_context():
        assert get_stock_level(product_id) == 2 * len(applied)
        assert db.session.query(StockMovement).count() == len(applied)


def test_last_coupon_use_goes_to_one_order(file_app):
    with file_app.app_context():
        db.session.add(Coupon(code="ONCE", type="fixed_amount", value=10000, usage_limit=1))
        db.session.add(Product(sku="CPN-1", name="Coupon item", price=100000, stock_quantity=10))
        db.session.commit()
        product_id = db.session.query(Product.id).filter_by(sku="CPN-1").scalar()

    def checkout():
        order = order_service.create_order(
            [{"productId": product_id, "quantity": 1}], ADDRESS, ADDRESS, "standard", "ONCE",
        )
        return order.id

    successes, failures = _split(_run_workers(file_app, 2, checkout))

    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], OrderCreationFailed)
    assert failures[0].details["cause"] == "coupon_exhausted"

    with file_app.app_context():
        coupon = db.session.query(Coupon).filter_by(code="ONCE").one()
        assert coupon.used_count == 1
        assert get_stock_level(product_id) == 9
        assert db.session.query(Order).count() == 1
