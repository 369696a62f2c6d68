from storefront.models import Coupon, Product, StockMovement
from storefront.services.stock_ledger import get_stock_level


class TestStockCommands:
    def test_add_goes_through_ledger(self, app, db_session, make_product):
        product = make_product(stock=3)
        runner = app.test_cli_runner()

        result = runner.invoke(args=["stock", "add", str(product.id), "7", "--reason", "Supplier delivery"])

        assert result.exit_code == 0
        assert "3 -> 10" in result.output
        assert get_stock_level(product.id) == 10
        movement = db_session.query(StockMovement).one()
        assert movement.actor == "cli"

    def test_short_subtract_fails_without_force(self, app, db_session, make_product):
        product = make_product(stock=2)
        runner = app.test_cli_runner()

        result = runner.invoke(args=["stock", "subtract", str(product.id), "5", "--reason", "Damaged"])

        assert result.exit_code != 0
        assert "insufficient_stock" in result.output
        assert get_stock_level(product.id) == 2

    def test_forced_subtract_clamps(self, app, db_session, make_product):
        product = make_product(stock=2)
        runner = app.test_cli_runner()

        result = runner.invoke(args=["stock", "subtract", str(product.id), "5", "--reason", "Damaged", "--force"])

        assert result.exit_code == 0
        assert "(forced)" in result.output
        assert get_stock_level(product.id) == 0

    def test_low_lists_products(self, app, db_session, make_product):
        make_product(stock=1, threshold=5, name="Nearly gone")
        result = app.test_cli_runner().invoke(args=["stock", "low"])
        assert "Nearly gone" in result.output


class TestSeedDemo:
    def test_seed_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["store", "seed-demo"])
        second = runner.invoke(args=["store", "seed-demo"])

        assert second.exit_code == 0
        assert "already exists" in second.output
        assert db_session.query(Product).count() == 4
        assert db_session.query(Coupon).filter_by(code="SALE10").count() == 1
