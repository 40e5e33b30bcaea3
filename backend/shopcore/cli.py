# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory inspection:
# - python -m flask inventory verify-ledger [--product-id 7]
#   Replay stock movements and report products whose counter disagrees with the log.
# - python -m flask inventory low-stock
#   List active products at or below their low-stock threshold.
#
# Order inspection:
# - python -m flask orders alerts [--limit 20]
#   List reconciliation alerts (payments confirmed after the order was cancelled).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import order_service, stock_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo("PASS Database tables created.")


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


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection commands."""


@inventory_group.command('verify-ledger')
@click.option('--product-id', type=int, help='Check a single product')
@with_appcontext
def verify_ledger_cli(product_id):
    """
    Replay stock movements against Product.stock_quantity.

    Exits with status 1 when any product disagrees with its movement log.

    Example:
        flask inventory verify-ledger
        flask inventory verify-ledger --product-id 7
    """
    problems = stock_service.verify_ledger(product_id)
    if not problems:
        click.echo("PASS Stock ledger is consistent.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<6} {'SKU':<20} {'Stock':>8} {'Replayed':>10} {'Last move':>10}")
    click.echo("="*90)
    for p in problems:
        click.echo(
            f"{p['product_id']:<6} {p['sku']:<20} {p['stock_quantity']:>8} "
            f"{p['replayed_quantity']:>10} {p['last_movement_quantity']:>10}"
        )
    click.echo("="*90 + "\n")
    raise click.ClickException(f"{len(problems)} product(s) disagree with the stock ledger")


@inventory_group.command('low-stock')
@click.option('--exclude-out-of-stock', is_flag=True, help='Only products that still have stock')
@with_appcontext
def low_stock_cli(exclude_out_of_stock):
    """List products at or below their low-stock threshold."""
    items = stock_service.list_low_stock(include_out_of_stock=not exclude_out_of_stock)
    if not items:
        click.echo("No low-stock products.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'SKU':<20} {'Name':<30} {'Stock':>8} {'Threshold':>10}")
    click.echo("="*80)
    for item in items:
        click.echo(
            f"{item['product_id']:<6} {item['sku']:<20} {item['name'][:30]:<30} "
            f"{item['stock_quantity']:>8} {item['low_stock_threshold']:>10}"
        )
    click.echo("="*80 + "\n")


@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('alerts')
@click.option('--limit', type=int, default=20, help='Maximum alerts to show')
@with_appcontext
def alerts_cli(limit):
    """List reconciliation alerts, newest first."""
    alerts = order_service.list_reconciliation_alerts(limit=limit)
    if not alerts:
        click.echo("No reconciliation alerts.")
        return

    for alert in alerts:
        payload = alert.payload or {}
        click.echo(
            f"[{alert.occurred_at}] order {payload.get('order_number')} "
            f"ref={payload.get('gateway_reference')} amount={payload.get('amount_cents')} "
            f"status={payload.get('status')}/{payload.get('payment_status')}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
