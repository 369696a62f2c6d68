# Overview: Flask CLI command groups for bootstrap and stock maintenance.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Bootstrap:
# - python -m flask store init-db
#   Create all tables (dev only; use `flask db upgrade` for real databases).
# - python -m flask store seed-demo
#   Idempotent demo catalog: categories, products, SALE10 coupon.
#
# Stock maintenance (goes through the stock ledger, reason is mandatory):
# - python -m flask stock set 12 40 --reason "Cycle count"
# - python -m flask stock add 12 10 --reason "Supplier delivery"
# - python -m flask stock subtract 12 3 --reason "Damaged" [--force]
# - python -m flask stock low [--all]
#   List products at or below their low-stock threshold.

import click
from flask.cli import with_appcontext

from .errors import StorefrontError
from .extensions import db
from .models import Category, Coupon, Product
from .services import stock_ledger
from .services.coupon_service import create_coupon


@click.group('store')
def store_group():
    """Database bootstrap commands."""


@store_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the current SQLALCHEMY_DATABASE_URI."""
    db.create_all()
    click.echo("PASS Tables created")


DEMO_CATEGORIES = [
    ("Electronics", "electronics"),
    ("Home", "home"),
]

DEMO_PRODUCTS = [
    # sku, name, price, compare_price, stock, category slug
    ("SKU-HEADPHONE", "Wireless Headphones", 450000, 550000, 25, "electronics"),
    ("SKU-CHARGER", "USB-C Charger", 150000, None, 60, "electronics"),
    ("SKU-KETTLE", "Electric Kettle", 320000, 390000, 8, "home"),
    ("SKU-MUG", "Ceramic Mug", 60000, None, 120, "home"),
]


@store_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Seed a small demo catalog. Safe to run more than once."""
    categories = {}
    for name, slug in DEMO_CATEGORIES:
        category = db.session.query(Category).filter_by(slug=slug).first()
        if not category:
            category = Category(name=name, slug=slug, is_active=True)
            db.session.add(category)
            db.session.flush()
            click.echo(f"PASS Created category {name}")
        categories[slug] = category

    for sku, name, price, compare_price, stock, slug in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            click.echo(f"WARN  Product {sku} already exists, skipping...")
            continue
        db.session.add(Product(
            sku=sku,
            name=name,
            price=price,
            compare_price=compare_price,
            stock_quantity=stock,
            category_id=categories[slug].id,
        ))
        click.echo(f"PASS Created product {sku} ({stock} in stock)")
    db.session.commit()

    if not db.session.query(Coupon).filter_by(code="SALE10").first():
        create_coupon({
            "code": "SALE10",
            "name": "10% off, up to 50,000",
            "type": "percentage",
            "value": 10,
            "minimum_amount": 100000,
            "maximum_discount": 50000,
        })
        click.echo("PASS Created coupon SALE10")


@click.group('stock')
def stock_group():
    """Manual stock adjustments through the stock ledger."""


def _run_stock_change(product_id, operation, quantity, reason, force=False):
    try:
        change = stock_ledger.adjust_stock(
            product_id, operation, quantity, reason, actor="cli", force=force,
        )
    except StorefrontError as e:
        raise click.ClickException(f"{e.code}: {e.message}")

    click.echo(
        f"PASS Product {change.product_id}: {change.previous_stock} -> {change.new_stock}"
        + (" (forced)" if change.forced else "")
    )
    for alert in change.alerts:
        click.echo(f"WARN  {alert} alert raised")


@stock_group.command('set')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--reason', required=True, help='Audit reason')
@with_appcontext
def stock_set(product_id, quantity, reason):
    """Set absolute stock for a product."""
    _run_stock_change(product_id, stock_ledger.OPERATION_SET, quantity, reason)


@stock_group.command('add')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--reason', required=True, help='Audit reason')
@with_appcontext
def stock_add(product_id, quantity, reason):
    """Add stock (restock)."""
    _run_stock_change(product_id, stock_ledger.OPERATION_ADD, quantity, reason)


@stock_group.command('subtract')
@click.argument('product_id', type=int)
@click.argument('quantity', type=int)
@click.option('--reason', required=True, help='Audit reason')
@click.option('--force', is_flag=True, help='Clamp to 0 instead of failing when short')
@with_appcontext
def stock_subtract(product_id, quantity, reason, force):
    """Remove stock (damage, shrink, correction)."""
    _run_stock_change(product_id, stock_ledger.OPERATION_SUBTRACT, quantity, reason, force=force)


@stock_group.command('low')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def stock_low(include_inactive):
    """List products at or below their low-stock threshold."""
    products = stock_ledger.list_low_stock_products(include_inactive=include_inactive)
    if not products:
        click.echo("No products at or below threshold.")
        return

    click.echo(f"{'ID':<6} {'SKU':<20} {'Stock':>6} {'Threshold':>10}  Name")
    for p in products:
        click.echo(f"{p.id:<6} {p.sku:<20} {p.stock_quantity:>6} {p.low_stock_threshold:>10}  {p.name}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(store_group)
    app.cli.add_command(stock_group)
