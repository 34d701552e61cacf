# Overview: Flask CLI command group for bootstrap, cache refresh, reconciliation and stock checks.

# backend/pincorp/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="pincorp"; bash: export FLASK_APP=pincorp).
# - Use: python -m flask pin <command> [options]
#
# - python -m flask pin init-db
#   Create all tables (idempotent). Use `flask db upgrade` when running migrations.
# - python -m flask pin reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask pin refresh
#   Reload every cached collection from the database and print row counts.
# - python -m flask pin reconcile-batches [--batch-id ID] [--stale-minutes 10] [--dry-run]
#   Reverse write batches that failed (or stalled) halfway.
# - python -m flask pin reconcile-commitments [--dry-run]
#   Rewrite materials.committed_quantity from open production orders.
# - python -m flask pin check-stock
#   Print low-stock and overdue-debt alerts using the configured thresholds.

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .container import get_services
from .extensions import db
from .time_utils import to_utc_z


@click.group('pin')
def pin_group():
    """PinCorp maintenance commands."""


@pin_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created")


@pin_group.command('reset-db')
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
    db.create_all()
    get_services().refresh_all()
    click.echo("PASS Database reset")


@pin_group.command('refresh')
@with_appcontext
def refresh():
    """Reload cached collections from the database."""
    counts = get_services().refresh_all()
    for name, count in counts.items():
        click.echo(f"{name:<20} {count}")


@pin_group.command('reconcile-batches')
@click.option('--batch-id', default=None, help='Only this batch')
@click.option('--stale-minutes', default=10, type=int, help='Open batches older than this count as stalled')
@click.option('--dry-run', is_flag=True, help='List pending batches without reverting them')
@with_appcontext
def reconcile_batches(batch_id, stale_minutes, dry_run):
    """Reverse write batches that stopped halfway."""
    services = get_services()
    services.repos.write_batches.refresh()
    stale_after = timedelta(minutes=stale_minutes)

    if dry_run:
        pending = services.journal.pending(stale_after=stale_after)
        if not pending:
            click.echo("PASS No pending batches")
            return
        for batch in pending:
            done = sum(1 for step in batch.get("steps") or [] if step.get("done"))
            click.echo(
                f"{batch['id']}  {batch['kind']:<20} ref={batch.get('reference_id')}  "
                f"status={batch['status']}  steps={done}/{len(batch.get('steps') or [])}  "
                f"created={to_utc_z(batch.get('created_at'))}"
            )
        return

    reports = services.journal.reconcile(batch_id, stale_after=stale_after)
    if not reports:
        click.echo("PASS Nothing to reconcile")
        return
    for report in reports:
        click.echo(
            f"REVERTED {report['batch_id']} ({report['kind']}, ref={report['reference_id']}): "
            f"{report['reverted_steps']} steps undone"
        )
        for step in report["unverified_steps"]:
            click.echo(
                f"  WARN unverified {step['op']} on {step['table']} {step.get('row_id')} "
                f"({step.get('column')} {step.get('delta')}); check manually"
            )


@pin_group.command('reconcile-commitments')
@click.option('--dry-run', is_flag=True, help='Only report drift')
@with_appcontext
def reconcile_commitments(dry_run):
    """Rewrite committed_quantity on materials from open production orders."""
    services = get_services()
    services.repos.materials.refresh()
    services.repos.production_orders.refresh()
    rows = services.commitments.drift() if dry_run else services.commitments.reconcile()
    if not rows:
        click.echo("PASS committed_quantity matches open orders")
        return
    label = "DRIFT" if dry_run else "FIXED"
    for row in rows:
        click.echo(
            f"{label} {row['name']} ({row['material_id']}): "
            f"{row['stored_committed_quantity']} -> {row['committed_quantity']}"
        )


@pin_group.command('check-stock')
@with_appcontext
def check_stock():
    """Print low-stock and overdue-debt alerts."""
    services = get_services()
    services.refresh_all()
    alerts = services.notifications.check_all()
    if not alerts:
        click.echo("PASS No alerts")
        return
    for alert in alerts:
        click.echo(f"[{alert['severity'].upper():<8}] {alert['title']}: {alert['message']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(pin_group)
