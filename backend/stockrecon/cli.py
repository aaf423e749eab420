# Overview: Flask CLI command groups for schema bootstrap and stock inspection.

# backend/stockrecon/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "stockrecon:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock inspection/repair:
# - python -m flask stock resolve 12
#   Print the resolved stock of one product and where it came from.
# - python -m flask stock audit
#   Report duplicate live IMEIs and tracked products whose cached stock drifted.
# - python -m flask stock refresh
#   Rewrite the cached stock of every IMEI-tracked product.

import click
from flask.cli import with_appcontext

from .decorators import run
from .errors import NotFoundError
from .extensions import db
from .services.stock_service import (
    find_duplicate_imeis,
    find_stock_drift,
    get_product_or_404,
    refresh_cached_stock,
    resolve_stock,
    stock_source_for,
)
from .store import get_store


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Schema is up to date.")


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

    click.echo("PASS Database reset complete.")


@click.group('stock')
def stock_group():
    """Stock resolution and consistency checks."""


@stock_group.command('resolve')
@click.argument('product_id', type=int)
@with_appcontext
def resolve_cmd(product_id):
    """Print the sellable quantity of PRODUCT_ID."""
    store = get_store()

    async def _resolve():
        product = await get_product_or_404(product_id, store=store)
        return product, await resolve_stock(product, store=store)

    try:
        product, stock = run(_resolve())
    except NotFoundError as e:
        raise click.ClickException(str(e))

    source = type(stock_source_for(product)).__name__
    click.echo(f"{product.name} (id={product.id}): {stock} [{source}]")


@stock_group.command('audit')
@with_appcontext
def audit_cmd():
    """Check IMEI uniqueness and cached-stock drift. Exits 1 on any finding."""
    store = get_store()
    duplicates = run(find_duplicate_imeis(store=store))
    drift = run(find_stock_drift(store=store))

    for imei, ids in sorted(duplicates.items()):
        click.echo(f"FAIL duplicate IMEI {imei}: items {', '.join(str(i) for i in ids)}")
    for row in drift:
        click.echo(f"WARN product {row['product_id']}: cached {row['cached']} != derived {row['derived']}")

    if duplicates or drift:
        raise SystemExit(1)
    click.echo("PASS No duplicate IMEIs, no stock drift.")


@stock_group.command('refresh')
@with_appcontext
def refresh_cmd():
    """Rewrite the cached stock of every IMEI-tracked product."""
    store = get_store()

    async def _refresh():
        updated = 0
        for product in await store.list("products"):
            if product.product_model_id:
                await refresh_cached_stock(product.id, store=store)
                updated += 1
        return updated

    click.echo(f"PASS Refreshed {run(_refresh())} tracked product(s).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
