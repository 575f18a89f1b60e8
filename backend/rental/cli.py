# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/rental/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# BOM inspection:
# - python -m flask bom validate 12
#   Report structure errors and warnings for an item's components.
# - python -m flask bom tree 12 [--max-depth 5]
#   Print the component tree with required quantities.
#
# Stock ledger:
# - python -m flask stock reconcile [--item-id 3]
#   Compare declared on-hand with the ledger sum (report only, never corrects).
#
# Order lifecycle:
# - python -m flask orders transition 7 RESERVED --actor ops
#   Move one order to a new status.
# - python -m flask orders bulk-transition CANCELLED 7 8 9 --actor ops
#   Apply the same transition to several orders independently.

import click
from flask.cli import with_appcontext

from .errors import RentalError
from .extensions import db
from .services import bom_service, ledger_service, order_status_service
from .services.concurrency import run_with_retry


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    click.echo("BUILD  Creating tables...")
    db.create_all()
    click.echo("PASS Database ready.")


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


# =============================================================================
# BOM
# =============================================================================

@click.group('bom')
def bom_group():
    """Bill of materials inspection."""


@bom_group.command('validate')
@click.argument('item_id', type=int)
@with_appcontext
def validate_bom_cli(item_id):
    """Validate an item's BOM structure."""
    try:
        result = bom_service.validate_bom_structure(item_id)
    except RentalError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    item = result["item"]
    click.echo(f"BOM for {item['name']} (ID: {item['id']}, {item['kind']})")
    for component in result["components"]:
        click.echo(f"   - {component['child_name']} x{component['quantity']}")
    for warning in result["warnings"]:
        click.echo(f"WARN  {warning}")
    for error in result["errors"]:
        click.echo(f"FAIL {error}")

    if result["is_valid"]:
        click.echo("PASS BOM is valid")


@bom_group.command('tree')
@click.argument('item_id', type=int)
@click.option('--max-depth', type=int, default=None, help='Maximum depth to traverse')
@with_appcontext
def bom_tree_cli(item_id, max_depth):
    """Print an item's component tree."""
    try:
        tree = bom_service.get_bom_tree(item_id, max_depth=max_depth)
    except RentalError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    def _echo(node):
        qty = f" x{node['required_quantity']}" if "required_quantity" in node else ""
        click.echo(f"{'   ' * node['depth']}{node['name']} [{node['kind']}]{qty}")
        for child in node["children"]:
            _echo(child)

    _echo(tree)


# =============================================================================
# STOCK
# =============================================================================

@click.group('stock')
def stock_group():
    """Stock ledger reconciliation."""


@stock_group.command('reconcile')
@click.option('--item-id', type=int, help='Reconcile one item only')
@with_appcontext
def reconcile_cli(item_id):
    """
    Compare quantity_on_hand with the ledger sum per atomic item.

    Example:
        flask stock reconcile
        flask stock reconcile --item-id 3
    """
    try:
        rows = [ledger_service.current_stock(item_id)] if item_id else ledger_service.reconcile_all()
    except RentalError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    if not rows:
        click.echo("No atomic items found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<6} {'Name':<30} {'On hand':>8} {'Ledger':>8} {'Diff':>8}  Status")
    click.echo("="*80)
    drift = 0
    for row in rows:
        status = "OK" if row["is_consistent"] else "DRIFT"
        if not row["is_consistent"]:
            drift += 1
        click.echo(
            f"{row['item_id']:<6} {row['item_name'][:30]:<30} {row['quantity_on_hand']:>8} "
            f"{row['movement_total']:>8} {row['difference']:>8}  {status}"
        )
    click.echo("="*80)
    click.echo(f"\n Total: {len(rows)} items, {drift} with drift\n")


# =============================================================================
# ORDERS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order lifecycle operations."""


@orders_group.command('transition')
@click.argument('order_id', type=int)
@click.argument('status')
@click.option('--actor', required=True, help='Who performs the transition')
@click.option('--notes', default=None, help='Notes stored on ledger rows')
@with_appcontext
def transition_cli(order_id, status, actor, notes):
    """
    Move an order to a new status.

    Example:
        flask orders transition 7 RESERVED --actor ops
    """
    try:
        result = run_with_retry(lambda: order_status_service.transition(order_id, status, actor, notes))
    except RentalError as e:
        click.echo(f"FAIL Error: {e.message}")
        for conflict in e.detail.get("conflicts", []):
            click.echo(
                f"   - item {conflict['item_id']}: requested {conflict['requested']}, "
                f"available {conflict['available']}"
            )
        return

    click.echo(
        f"PASS Order {order_id}: {result.previous_status} -> {result.new_status} "
        f"({len(result.movements)} movement(s))"
    )


@orders_group.command('bulk-transition')
@click.argument('status')
@click.argument('order_ids', type=int, nargs=-1, required=True)
@click.option('--actor', required=True, help='Who performs the transition')
@click.option('--notes', default=None, help='Notes stored on ledger rows')
@with_appcontext
def bulk_transition_cli(status, order_ids, actor, notes):
    """
    Apply the same transition to several orders.

    Example:
        flask orders bulk-transition CANCELLED 7 8 9 --actor ops
    """
    try:
        result = order_status_service.bulk_transition(list(order_ids), status, actor, notes)
    except RentalError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    for ok in result["successful"]:
        click.echo(f"PASS Order {ok['order_id']}: {ok['previous_status']} -> {ok['new_status']}")
    for failed in result["failed"]:
        click.echo(f"FAIL Order {failed['order_id']}: {failed['error']['error']}")
    click.echo(f"\n {result['success_count']} succeeded, {result['failure_count']} failed\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(bom_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(orders_group)
