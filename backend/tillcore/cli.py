# Overview: Flask CLI command groups for bootstrap, catalog setup and loyalty/sales maintenance.

# backend/tillcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to tillcore (PowerShell: $env:FLASK_APP="tillcore").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stores:
# - python -m flask stores create --name "Main Store" --code MAIN --prefix SHOP --owner-phone 0240000000
#   Create a store with a default loyalty program.
# - python -m flask stores list
#
# Catalog:
# - python -m flask products add --store-id 1 --sku SKU-1 --name "Bread" --price 12.50 --stock 40
#
# Loyalty:
# - python -m flask loyalty reconcile [--store-id 1] [--fix]
#   Compare cached customer points with the ledger; --fix resets the cache.
#
# Sales:
# - python -m flask sales orphans [--store-id 1]
#   List sales that have no line items.

import click
from decimal import Decimal, InvalidOperation
from flask.cli import with_appcontext
from sqlalchemy.exc import IntegrityError

from .extensions import db
from .models import Product, Store
from .money import money_str
from .services import reconciliation_service, store_service
from .services.store_service import StoreError
from .validation import ConflictError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask stores create' to add a store.")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', default=None, help='Unique store code')
@click.option('--prefix', 'receipt_prefix', default=None, help='Receipt prefix (default TRX)')
@click.option('--owner-phone', default=None, help='Owner phone for sale alerts')
@with_appcontext
def create_store_cmd(name, code, receipt_prefix, owner_phone):
    """Create a store with a default loyalty program."""
    try:
        store = store_service.create_store(name, code, owner_phone=owner_phone, receipt_prefix=receipt_prefix)
    except (StoreError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Code: {store.code or '-'})")


@stores_group.command('list')
@with_appcontext
def list_stores_cmd():
    """List all stores."""
    stores = db.session.query(Store).order_by(Store.id.asc()).all()
    if not stores:
        click.echo("No stores found.")
        return
    for store in stores:
        click.echo(
            f"{store.id:>4}  {store.name:<30} code={store.code or '-':<10} "
            f"last_trx={store.last_transaction_number}"
        )


@click.group('products')
def products_group():
    """Catalog commands."""


@products_group.command('add')
@click.option('--store-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price', required=True, help='Selling price, e.g. 12.50')
@click.option('--cost', 'cost_price', default=None, help='Cost price, e.g. 9.00')
@click.option('--stock', type=int, default=0)
@click.option('--category', default=None)
@with_appcontext
def add_product_cmd(store_id, sku, name, price, cost_price, stock, category):
    """Add a product to a store's catalog."""
    if not db.session.get(Store, store_id):
        raise click.ClickException(f"Store {store_id} not found")
    try:
        price = Decimal(price)
        cost_price = Decimal(cost_price) if cost_price is not None else None
    except InvalidOperation:
        raise click.ClickException("price and cost must be numbers")
    if price < 0 or (cost_price is not None and cost_price < 0):
        raise click.ClickException("price and cost must be >= 0")

    product = Product(
        store_id=store_id,
        sku=sku,
        name=name,
        category=category,
        price=price,
        cost_price=cost_price,
        stock=stock,
        is_active=True,
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise click.ClickException(f"SKU {sku!r} already exists in store {store_id}")
    click.echo(f"PASS Added product {product.sku} (ID: {product.id}) price={money_str(product.price)} stock={product.stock}")


@click.group('loyalty')
def loyalty_group():
    """Loyalty ledger maintenance."""


@loyalty_group.command('reconcile')
@click.option('--store-id', type=int, default=None, help='Limit to one store')
@click.option('--fix', is_flag=True, help='Reset cached points to the ledger total')
@with_appcontext
def reconcile_cmd(store_id, fix):
    """Report (and optionally repair) drift between cached points and the ledger."""
    drift = reconciliation_service.reconcile_customer_balances(store_id, fix=fix)
    if not drift:
        click.echo("PASS No balance drift found.")
        return

    for item in drift:
        click.echo(
            f"{'FIXED' if fix else 'DRIFT'} customer={item.customer_id} phone={item.phone} "
            f"cached={item.cached_points} ledger={item.ledger_points} delta={item.delta:+d}"
        )
    click.echo(f"\n{len(drift)} customer(s) {'repaired' if fix else 'drifted; rerun with --fix to repair'}.")


@click.group('sales')
def sales_group():
    """Sales maintenance."""


@sales_group.command('orphans')
@click.option('--store-id', type=int, default=None, help='Limit to one store')
@with_appcontext
def orphans_cmd(store_id):
    """List sales that have no line items."""
    orphans = reconciliation_service.find_orphan_sales(store_id)
    if not orphans:
        click.echo("PASS No orphan sales.")
        return
    for sale in orphans:
        click.echo(f"ORPHAN sale={sale.id} store={sale.store_id} trx={sale.transaction_id} total={money_str(sale.total_amount)}")
    click.echo(f"\n{len(orphans)} orphan sale(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(products_group)
    app.cli.add_command(loyalty_group)
    app.cli.add_command(sales_group)
