# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/depot/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init --business "Central Depot" --code "CDP"
#   Idempotent bootstrap: creates the business, its default warehouse and a cash account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Account inspection:
# - python -m flask accounts verify [--business-id 1]
#   Compare stored balances to the sum of ledger entries.
#
# Load inspection:
# - python -m flask loads list [--open] [--business-id 1]
#   List load sheets with their order counts.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Account
from .services import account_service, business_service, load_service
from .statuses import ACCOUNT_CASH


DEFAULT_CASH_ACCOUNT = "Cash in Hand"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--business', 'business_name', default='Default Depot', help='Business name')
@click.option('--code', 'business_code', default='DEFAULT', help='Business code')
@with_appcontext
def init_system(business_name, business_code):
    """
    Initialize a depot business: business unit, default warehouse and cash account.

    Safe to run repeatedly; existing rows are reused.
    """
    click.echo("START Initializing depot...")

    business = business_service.get_business_by_code(business_code)
    if not business:
        business = business_service.create_business(name=business_name, code=business_code)
        click.echo(f"PASS Created business: {business.name} (ID: {business.id}, Code: {business.code})")
    else:
        click.echo(f"PASS Using existing business: {business.name} (ID: {business.id})")

    warehouse = business_service.get_default_warehouse(business.id)
    click.echo(f"PASS Default warehouse: {warehouse.name} (ID: {warehouse.id})")

    account = db.session.query(Account).filter_by(business_id=business.id, name=DEFAULT_CASH_ACCOUNT).first()
    if not account:
        account = account_service.create_account(
            business_id=business.id,
            name=DEFAULT_CASH_ACCOUNT,
            account_type=ACCOUNT_CASH,
        )
        click.echo(f"PASS Created cash account: {account.name} (ID: {account.id})")
    else:
        click.echo(f"PASS Using existing cash account: {account.name} (ID: {account.id})")

    click.echo("DONE Depot initialized.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('accounts')
def accounts_group():
    """Account ledger inspection commands."""


@accounts_group.command('verify')
@click.option('--business-id', type=int, default=None, help='Limit to one business')
@with_appcontext
def verify_accounts(business_id):
    """
    Compare every stored account balance to its reconstructed ledger sum.

    Exits non-zero when any account disagrees.
    """
    mismatches = account_service.verify_balances(business_id=business_id)
    if not mismatches:
        click.echo("PASS All account balances match their ledgers.")
        return

    for row in mismatches:
        click.echo(
            f"FAIL Account {row['account_id']} ({row['name']}): "
            f"stored={row['balance_cents']} ledger={row['ledger_cents']}"
        )
    current_app.logger.error("Account ledger mismatch on %d account(s)", len(mismatches))
    raise click.exceptions.Exit(1)


@click.group('loads')
def loads_group():
    """Load sheet inspection commands."""


@loads_group.command('list')
@click.option('--open', 'open_only', is_flag=True, help='Only open loads')
@click.option('--business-id', type=int, default=None, help='Limit to one business')
@with_appcontext
def list_loads_cli(open_only, business_id):
    """List load sheets in creation order."""
    loads = load_service.list_loads(business_id=business_id, open_only=open_only)
    if not loads:
        click.echo("No loads found.")
        return

    click.echo(f"\n{'ID':<6} {'Number':<18} {'Date':<12} {'Vehicle':<12} {'Orders':<7} {'State'}")
    click.echo("-" * 66)
    for load in loads:
        state = "OPEN" if load.is_open else "CLOSED"
        click.echo(
            f"{load.id:<6} {load.load_number:<18} {load.load_date.isoformat():<12} "
            f"{(load.vehicle_ref or '-'):<12} {len(load.lines):<7} {state}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(accounts_group)
    app.cli.add_command(loads_group)
