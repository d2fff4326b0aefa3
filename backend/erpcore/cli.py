# Overview: Flask CLI command groups for bootstrap and ledger maintenance.

# backend/erpcore/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to erpcore (PowerShell: $env:FLASK_APP="erpcore").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Document numbering:
# - python -m flask sequences backfill [--dry-run]
#   One-time migration step: raise every document counter to the highest
#   number already stored in purchase orders, receptions and supplier returns.
#
# Inventory:
# - python -m flask inventory verify
#   Compare every stock lot with the sum of its movements; exits 1 on mismatch.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import document_service
from .services import stock_ledger
from .services.concurrency import unit_of_work


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


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


@click.group('sequences')
def sequences_group():
    """Document number counters."""


@sequences_group.command('backfill')
@click.option('--dry-run', is_flag=True, help='Only print what would change')
@with_appcontext
def backfill_sequences(dry_run):
    """Align counters with the document numbers already stored."""
    if dry_run:
        highest = document_service.scan_existing_numbers(db.session)
        if not highest:
            click.echo("No numbered documents found.")
        for scope, value in sorted(highest.items()):
            click.echo(f"{scope}: highest stored number {value}")
        db.session.rollback()
        return

    with unit_of_work() as session:
        results = document_service.backfill_all_sequences(session)

    if not results:
        click.echo("No numbered documents found.")
    for scope, value in results.items():
        click.echo(f"PASS {scope} -> {value}")


@click.group('inventory')
def inventory_group():
    """Stock ledger inspection."""


@inventory_group.command('verify')
@with_appcontext
def verify_inventory():
    """Check that every lot equals the signed sum of its movements."""
    discrepancies = stock_ledger.verify_ledger(db.session)
    if not discrepancies:
        click.echo("PASS Stock lots match the movement ledger.")
        return

    for row in discrepancies:
        click.echo(
            f"FAIL product={row['product_id']} location={row['location']} "
            f"lot={row['lot_quantity']} ledger={row['ledger_quantity']}"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(sequences_group)
    app.cli.add_command(inventory_group)
