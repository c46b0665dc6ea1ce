# Overview: Flask CLI command groups for bootstrap, shifts, accounts and order inspection.

# backend/app/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-accounts
#   Create (or normalise) the vault base accounts. Idempotent.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Shifts:
# - python -m flask shifts open --user-id 1 --opening-cash 200
# - python -m flask shifts close --user-id 1 --closing-cash 512.50
# - python -m flask shifts current
# - python -m flask shifts list --limit 20
#
# Accounts / ledger:
# - python -m flask accounts list
# - python -m flask accounts ledger --start 2026-01-01T00:00:00Z
#
# Orders:
# - python -m flask orders totals 42
# - python -m flask orders open

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import accounting_service, order_service, shift_service
from .services.concurrency import run_atomic
from .services.errors import PosError
from .services.system_accounts_service import ensure_vault_base_accounts
from .time_utils import parse_iso_datetime


def _fail(exc: PosError) -> None:
    click.echo(f"FAIL {exc.code}: {exc.message}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-accounts')
@with_appcontext
def init_accounts():
    """Create the vault base accounts (cash, card, cheque, debt, expenses)."""
    accounts = run_atomic(lambda: {k: a.id for k, a in ensure_vault_base_accounts().items()})
    for key, account_id in accounts.items():
        click.echo(f"PASS Vault {key:<10} account ID {account_id}")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init-accounts' next.")


# =============================================================================
# SHIFT COMMANDS
# =============================================================================

@click.group('shifts')
def shifts_group():
    """Open, close and inspect shifts."""


@shifts_group.command('open')
@click.option('--user-id', type=int, required=True, help='Actor user ID')
@click.option('--opening-cash', default='0', show_default=True, help='Cash in the drawer at open')
@click.option('--note', help='Optional note')
@with_appcontext
def open_shift_cli(user_id, opening_cash, note):
    """Open a shift and provision its session accounts."""
    try:
        summary = shift_service.open_shift(user_id, opening_cash, note)
    except PosError as e:
        _fail(e)
        return
    click.echo(f"PASS Opened shift {summary['shift']['id']} with {summary['expected_cash']:.2f} cash")


@shifts_group.command('close')
@click.option('--user-id', type=int, required=True, help='Actor user ID')
@click.option('--closing-cash', required=True, help='Counted drawer cash')
@click.option('--shift-id', type=int, help='Defaults to the open shift')
@click.option('--note', help='Optional note')
@with_appcontext
def close_shift_cli(user_id, closing_cash, shift_id, note):
    """
    Close a shift: post the cash difference and merge into the vault.

    Example:
        flask shifts close --user-id 1 --closing-cash 512.50
    """
    if shift_id is None:
        shift = shift_service.get_open_shift()
        if shift is None:
            click.echo("FAIL No open shift.")
            return
        shift_id = shift.id

    try:
        summary = shift_service.close_shift(user_id, shift_id, closing_cash, note)
    except PosError as e:
        _fail(e)
        return

    click.echo(f"PASS Closed shift {shift_id}")
    click.echo(f"   Expected cash: {summary['expected_cash']:.2f}")
    click.echo(f"   Difference:    {summary['difference']:+.2f}")
    for merge in summary.get("merges", []):
        click.echo(f"   Merged {merge['method']:<10} {merge['amount']:>12.2f} -> account {merge['to_account_id']}")


@shifts_group.command('current')
@with_appcontext
def current_shift_cli():
    """Show the open shift with payment totals and expected cash."""
    summary = shift_service.get_current_shift_summary()
    if summary is None:
        click.echo("No open shift.")
        return

    shift = summary["shift"]
    click.echo(f"Shift {shift['id']} opened {shift['opened_at']} by user {shift['opened_by_user_id']}")
    click.echo(f"   Opening cash:  {shift['opening_cash']:.2f}")
    click.echo(f"   Expected cash: {summary['expected_cash']:.2f}")
    for method, total in sorted(summary["totals"].items()):
        click.echo(f"   {method:<14} {total:>12.2f}")


@shifts_group.command('list')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(limit):
    """List recent shifts, newest first."""
    shifts = shift_service.list_shifts(limit)
    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Opened':<22} {'Closed':<22} {'Opening':>10} {'Closing':>10}")
    click.echo("="*90)
    for s in shifts:
        closing = f"{s['closing_cash']:.2f}" if s['closing_cash'] is not None else "-"
        click.echo(f"{s['id']:<5} {str(s['opened_at'])[:19]:<22} {str(s['closed_at'] or '-')[:19]:<22} "
                   f"{s['opening_cash']:>10.2f} {closing:>10}")
    click.echo("="*90 + "\n")


# =============================================================================
# ACCOUNT COMMANDS
# =============================================================================

@click.group('accounts')
def accounts_group():
    """Account balances and ledger inspection."""


@accounts_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive accounts too')
@with_appcontext
def list_accounts_cli(show_all):
    """List accounts with derived balances."""
    accounts = accounting_service.list_accounts()
    if not show_all:
        accounts = [a for a in accounts if a["is_active"]]
    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Name':<40} {'Scope':<15} {'Type':<10} {'Cur':<5} {'Balance':>14}")
    click.echo("="*100)
    for a in accounts:
        click.echo(f"{a['id']:<5} {a['name'][:40]:<40} {a['account_scope']:<15} {a['type']:<10} "
                   f"{a['currency']:<5} {a['balance']:>14.2f}")
    click.echo("="*100 + "\n")


@accounts_group.command('ledger')
@click.option('--start', help='ISO-8601 start (inclusive)')
@click.option('--end', help='ISO-8601 end (inclusive)')
@click.option('--limit', type=int, default=50, help='Max postings to show')
@with_appcontext
def ledger_cli(start, end, limit):
    """
    Show postings newest-first.

    Example:
        flask accounts ledger --start 2026-01-01T00:00:00Z --limit 100
    """
    entries = accounting_service.list_ledger(parse_iso_datetime(start), parse_iso_datetime(end))[:limit]
    if not entries:
        click.echo("No postings found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<6} {'When':<22} {'Account':<32} {'Dir':<4} {'Amount':>12} {'Source':<22} {'Order'}")
    click.echo("="*110)
    for e in entries:
        click.echo(f"{e['id']:<6} {str(e['created_at'])[:19]:<22} {e['account_name'][:32]:<32} "
                   f"{e['direction']:<4} {e['amount']:>12.2f} {e['source_type']:<22} {e['order_no'] or '-'}")
    click.echo("="*110 + "\n")


# =============================================================================
# ORDER COMMANDS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order inspection commands."""


@orders_group.command('totals')
@click.argument('order_id', type=int)
@with_appcontext
def order_totals_cli(order_id):
    """Print the pricing waterfall for one order."""
    try:
        totals = order_service.compute_totals_for_order(order_id).to_dict()
    except PosError as e:
        _fail(e)
        return

    for key in ("subtotal", "item_discount_total", "customer_discount", "order_discount",
                "service_fee", "total", "paid", "balance"):
        click.echo(f"{key:<20} {totals[key]:>12.2f}")
    for method, amount in sorted(totals["paid_by_method"].items()):
        click.echo(f"  paid {method:<14} {amount:>12.2f}")


@orders_group.command('open')
@click.option('--limit', type=int, default=50, help='Max orders to show')
@with_appcontext
def open_orders_cli(limit):
    """List open orders with their balances."""
    orders = order_service.list_open_orders(limit)
    if not orders:
        click.echo("No open orders.")
        return

    for o in orders:
        totals = order_service.compute_totals_for_order(o["id"])
        where = o.get("table_name") or ("takeaway" if o.get("is_takeaway") else "-")
        click.echo(f"#{o['order_no']:<4} id={o['id']:<6} {where:<16} "
                   f"total={float(totals.total):>10.2f} balance={float(totals.balance):>10.2f}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(orders_group)
