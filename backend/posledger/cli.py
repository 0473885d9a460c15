# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrations).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock:
# - python -m flask stock seed-product --seller-id 1 --sku PAINT-10L --name "Peinture 10L" --price-cents 4590 --quantity 12
#   Create a catalog item for a seller.
# - python -m flask stock list --seller-id 1 [--status low]
#   List tracked stock levels, most urgent first.
#
# Invoices:
# - python -m flask invoices flag-overdue [--seller-id 1]
#   Move sent invoices past their due date to overdue.
#
# Accounting:
# - python -m flask accounting export --seller-id 1 --format fec --from 2026-01-01 --to 2026-03-31 [--output FEC.txt]
#   Write the accounting export of completed sales to a file or stdout.

import click
from flask.cli import with_appcontext

from .errors import LedgerError
from .extensions import db
from .services import accounting_service, inventory_service, invoice_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
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


@click.group('stock')
def stock_group():
    """Catalog and stock level commands."""


@stock_group.command('seed-product')
@click.option('--seller-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price-cents', type=int, required=True)
@click.option('--quantity', type=int, default=0, show_default=True)
@click.option('--untracked', is_flag=True, help='Do not track inventory for this item')
@with_appcontext
def seed_product(seller_id, sku, name, price_cents, quantity, untracked):
    try:
        product = inventory_service.create_product(
            seller_id,
            sku=sku,
            name=name,
            price_cents=price_cents,
            quantity=quantity,
            track_inventory=not untracked,
        )
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created product {product.sku} (ID: {product.id}, qty: {product.quantity})")


@stock_group.command('list')
@click.option('--seller-id', type=int, required=True)
@click.option('--status', 'stock_status', type=click.Choice(['out', 'low', 'ok']), default=None)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_stock_cli(seller_id, stock_status, limit):
    result = inventory_service.list_stock(seller_id, page=1, limit=limit, stock_status=stock_status)
    if not result["items"]:
        click.echo("No tracked items.")
        return

    click.echo(f"{'ID':<6} {'SKU':<20} {'QTY':>6}  {'STATUS':<6} NAME")
    for item in result["items"]:
        click.echo(
            f"{item['id']:<6} {item['sku']:<20} {item['quantity']:>6}  {item['stock_status']:<6} {item['name']}"
        )


@click.group('invoices')
def invoices_group():
    """Invoice maintenance commands."""


@invoices_group.command('flag-overdue')
@click.option('--seller-id', type=int, default=None, help='Limit to one seller (default: all)')
@with_appcontext
def flag_overdue_cli(seller_id):
    flagged = invoice_service.flag_overdue(seller_id=seller_id)
    click.echo(f"Flagged {flagged} invoice(s) overdue.")


@click.group('accounting')
def accounting_group():
    """Accounting export commands."""


@accounting_group.command('export')
@click.option('--seller-id', type=int, required=True)
@click.option('--format', 'fmt', type=click.Choice(['csv', 'fec']), default='csv', show_default=True)
@click.option('--from', 'date_from', default=None, help='ISO date, inclusive')
@click.option('--to', 'date_to', default=None, help='ISO date, inclusive')
@click.option('--output', type=click.Path(dir_okay=False, writable=True), default=None)
@with_appcontext
def export_cli(seller_id, fmt, date_from, date_to, output):
    try:
        export = accounting_service.export_sales(seller_id, fmt, date_from=date_from, date_to=date_to)
    except LedgerError as e:
        raise click.ClickException(e.message)

    if output:
        with open(output, "w", encoding="utf-8", newline="") as fh:
            fh.write(export.content)
        click.echo(f"PASS Wrote {export.sale_count} sale(s) to {output}")
    else:
        click.echo(export.content, nl=False)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(accounting_group)
