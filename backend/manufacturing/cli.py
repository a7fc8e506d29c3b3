# Overview: Flask CLI command groups for bootstrap, inspection, and production order transitions.

# backend/manufacturing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Manufacturing data:
# - python -m flask manufacturing seed-demo
#   Idempotent: units, products, stock and a bread BOM to try orders against.
# - python -m flask manufacturing check-cycles
#   Report BOMs whose output is reachable from their own components. Exit code 1 if any.
# - python -m flask manufacturing cost 1
#   Show estimated run cost and unit cost of a BOM at current COGS.
#
# Production orders:
# - python -m flask orders list --status planned --limit 20
#   List recent production orders.
# - python -m flask orders create --bom-id 1 --quantity 2 --author-id 1
#   Create a planned production order.
# - python -m flask orders start 1 --author-id 1
# - python -m flask orders complete 1 --author-id 1
# - python -m flask orders cancel 1 --author-id 1
# - python -m flask orders hold 1 --author-id 1
# - python -m flask orders release 1 --author-id 1
#   Run one state machine transition (each in its own transaction).

import sys
from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import BillOfMaterials, OrderStatus, Product, ProductionOrder, Unit
from .services import bom_service, production_service
from .services.bom_service import BomError
from .services.concurrency import atomic
from .services.production_service import InsufficientStockError, ProductionError
from .services.stock_ledger_service import ACTION_ADDED, SqlStockLedger, get_balance, set_cogs
from .validation import ValidationError, decimal_str


SYSTEM_AUTHOR_ID = 0


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

    click.echo("PASS Database reset complete. Run 'python -m flask manufacturing seed-demo' to load demo data.")


@click.group('manufacturing')
def manufacturing_group():
    """BOM data and integrity commands."""


def _ensure_unit(identifier: str, name: str) -> Unit:
    unit = db.session.query(Unit).filter_by(identifier=identifier).first()
    if unit is None:
        unit = Unit(identifier=identifier, name=name)
        db.session.add(unit)
        db.session.flush()
        click.echo(f"PASS Created unit: {name} ({identifier})")
    return unit


def _ensure_product(sku: str, name: str) -> Product:
    product = db.session.query(Product).filter_by(sku=sku).first()
    if product is None:
        product = Product(sku=sku, name=name, is_active=True)
        db.session.add(product)
        db.session.flush()
        click.echo(f"PASS Created product: {name} (SKU: {sku})")
    return product


def _ensure_stock(product: Product, unit: Unit, quantity: str, cogs: str) -> None:
    balance = get_balance(product.id, unit.id)
    if balance is not None and Decimal(balance.quantity) > 0:
        click.echo(f"WARN  {product.name} already has stock, skipping...")
        return
    SqlStockLedger().adjust_stock(
        ACTION_ADDED,
        product_id=product.id,
        unit_id=unit.id,
        quantity=Decimal(quantity),
        unit_price=Decimal(cogs),
        author_id=SYSTEM_AUTHOR_ID,
        description="Demo opening stock",
    )
    set_cogs(product.id, unit.id, Decimal(cogs))
    click.echo(f"PASS Stocked {quantity} {unit.identifier} of {product.name} at {cogs}/{unit.identifier}")


@manufacturing_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Load a small bakery: 20 kg flour, 5 kg yeast, and a BOM that turns
    2 kg flour + 0.5 kg yeast into 10 loaves of bread.

    Safe to run repeatedly.
    """
    click.echo("START Seeding manufacturing demo data...")

    with atomic():
        kg = _ensure_unit("kg", "Kilogram")
        pc = _ensure_unit("pc", "Piece")

        flour = _ensure_product("FLOUR", "Flour")
        yeast = _ensure_product("YEAST", "Yeast")
        bread = _ensure_product("BREAD", "Bread")

        _ensure_stock(flour, kg, "20", "1.50")
        _ensure_stock(yeast, kg, "5", "4.00")

        bom = (
            db.session.query(BillOfMaterials)
            .filter_by(output_product_id=bread.id, deleted_at=None)
            .first()
        )
        if bom is None:
            bom = bom_service.create_bom(
                name="Bread (10 loaves)",
                output_product_id=bread.id,
                output_unit_id=pc.id,
                output_quantity="10",
                author_id=SYSTEM_AUTHOR_ID,
            )
            bom_service.add_bom_item(
                bom.id, component_product_id=flour.id, component_unit_id=kg.id,
                quantity="2", author_id=SYSTEM_AUTHOR_ID,
            )
            bom_service.add_bom_item(
                bom.id, component_product_id=yeast.id, component_unit_id=kg.id,
                quantity="0.5", author_id=SYSTEM_AUTHOR_ID,
            )
            click.echo(f"PASS Created BOM: {bom.name} (ID: {bom.id})")
        else:
            click.echo(f"WARN  BOM for {bread.name} already exists (ID: {bom.id}), skipping...")

    click.echo("DONE Demo data ready.")


@manufacturing_group.command('check-cycles')
@with_appcontext
def check_cycles():
    """Audit the BOM graph for circular dependencies."""
    cycles = bom_service.find_cycles()
    if not cycles:
        click.echo("PASS No circular BOM dependencies found.")
        return

    for cycle in cycles:
        click.echo(
            f"FAIL BOM {cycle['bom_id']} ({cycle['bom_name']}): component product "
            f"{cycle['component_product_id']} requires output product {cycle['output_product_id']}"
        )
    click.echo(f"\n{len(cycles)} circular dependency(ies) found.")
    sys.exit(1)


@manufacturing_group.command('cost')
@click.argument('bom_id', type=int)
@with_appcontext
def bom_cost(bom_id):
    """Show estimated cost of a BOM at current component COGS."""
    try:
        bom = bom_service.get_bom(bom_id)
    except BomError as e:
        raise click.ClickException(str(e))

    click.echo(f"BOM {bom.id}: {bom.name} (output {decimal_str(bom.output_quantity)})")
    click.echo("-" * 60)
    for req in bom_service.explode_bom(bom):
        click.echo(f"  {req.product_name:<30} {decimal_str(req.quantity_per_run):>10} {req.unit_name}")
    click.echo("-" * 60)
    click.echo(f"Estimated run cost: {decimal_str(bom_service.calculate_estimated_cost(bom))}")
    click.echo(f"Unit cost:          {decimal_str(bom_service.calculate_unit_cost(bom))}")


@click.group('orders')
def orders_group():
    """Production order inspection and transitions."""


@orders_group.command('list')
@click.option('--status', type=click.Choice([s.value for s in OrderStatus]), default=None)
@click.option('--limit', default=20, show_default=True)
@with_appcontext
def list_orders(status, limit):
    """List recent production orders."""
    query = db.session.query(ProductionOrder).filter(ProductionOrder.deleted_at.is_(None))
    if status:
        query = query.filter(ProductionOrder.status == OrderStatus(status))
    orders = query.order_by(ProductionOrder.id.desc()).limit(limit).all()

    if not orders:
        click.echo("No production orders found.")
        return

    click.echo(f"\n{'ID':<6} {'Code':<24} {'Status':<12} {'Qty':>10} {'BOM':>6}")
    click.echo("-" * 62)
    for order in orders:
        click.echo(
            f"{order.id:<6} {order.code:<24} {order.status.value:<12} "
            f"{decimal_str(order.quantity):>10} {order.bom_id or '-':>6}"
        )


@orders_group.command('create')
@click.option('--bom-id', type=int, required=True)
@click.option('--quantity', required=True, help='Number of BOM runs')
@click.option('--code', default=None, help='Order code (generated when omitted)')
@click.option('--author-id', type=int, required=True)
@with_appcontext
def create_order(bom_id, quantity, code, author_id):
    """Create a planned production order."""
    try:
        with atomic():
            order = production_service.create_order(
                bom_id=bom_id, quantity=quantity, code=code, author_id=author_id,
            )
    except (ValidationError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created production order {order.code} (ID: {order.id})")


def _transition_command(action: str, func):
    @orders_group.command(action, help=f"{action.capitalize()} a production order.")
    @click.argument('order_id', type=int)
    @click.option('--author-id', type=int, required=True, help='User performing the transition')
    @with_appcontext
    def command(order_id, author_id):
        try:
            order = func(order_id, author_id=author_id)
        except InsufficientStockError as e:
            click.echo(f"FAIL {e}")
            sys.exit(1)
        except ProductionError as e:
            raise click.ClickException(str(e))
        click.echo(f"PASS Order {order.code} is now {order.status.value}")

    return command


start_order_command = _transition_command(production_service.ACTION_START, production_service.start_order)
complete_order_command = _transition_command(production_service.ACTION_COMPLETE, production_service.complete_order)
cancel_order_command = _transition_command(production_service.ACTION_CANCEL, production_service.cancel_order)
hold_order_command = _transition_command(production_service.ACTION_HOLD, production_service.hold_order)
release_order_command = _transition_command(production_service.ACTION_RELEASE, production_service.release_order)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(manufacturing_group)
    app.cli.add_command(orders_group)
