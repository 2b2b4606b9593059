# Overview: Flask CLI command groups for bootstrap, period close and warehouse maintenance.

# backend/osso/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the SystemControl singleton.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system set-time --manual "2026-03-01T09:00:00Z" --zone Asia/Tashkent
#   Pin "now" for period resolution; use --auto to return to host time.
#
# Financial periods:
# - python -m flask periods list
# - python -m flask periods lock 7 --reason "March close" [--skip-checklist]
# - python -m flask periods unlock 7 --reason "Late supplier invoice"
#
# Warehouse:
# - python -m flask inventory refresh-counter
#   Recompute the cached warehouse discrepancy counter.

import click
from flask.cli import with_appcontext

from .extensions import db
from .permissions import Role
from .services import system_time_service
from .services.concurrency import run_in_transaction
from .services.inventory_session_service import refresh_discrepancy_counter
from .services.period_service import PeriodService
from .services.permission_service import Actor
from .validation import DomainError, coerce_datetime


def _operator(user_id: int) -> Actor:
    # Shell access is trusted as super-admin
    return Actor(user_id=user_id, role=Role.SUPER_ADMIN)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize an OSSO database: tables and the SystemControl singleton.

    Safe to run repeatedly.
    """
    click.echo("START Initializing OSSO...")
    db.create_all()
    control = run_in_transaction(system_time_service.ensure_system_control)
    click.echo(f"PASS Schema ready; SystemControl id={control.id} zone={control.server_time_zone}")
    period = PeriodService().current_period()
    click.echo(f"PASS Current financial period: {period.label} ({period.status})")


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
    click.echo("BUILD Creating tables...")
    db.create_all()
    run_in_transaction(system_time_service.ensure_system_control)
    click.echo("PASS Database reset complete")


@system_group.command('set-time')
@click.option('--auto', 'auto', is_flag=True, help='Use host time')
@click.option('--manual', 'manual', default=None, help='Pinned ISO-8601 timestamp')
@click.option('--zone', default='UTC', help='Server time zone for period boundaries')
@click.option('--user-id', default=0, type=int, help='Operator user id for the audit log')
@with_appcontext
def set_time(auto, manual, zone, user_id):
    """Switch between host time and an operator-pinned time."""
    if not auto and not manual:
        raise click.UsageError("Pass --auto or --manual")
    try:
        control = system_time_service.set_server_time(
            _operator(user_id),
            auto=auto,
            manual_time=coerce_datetime(manual, "manual") if manual else None,
            time_zone=zone,
        )
    except DomainError as e:
        raise click.ClickException(e.message)
    mode = "auto" if control.server_time_auto else f"manual {control.manual_system_time.isoformat()}"
    click.echo(f"PASS Server time: {mode} ({control.server_time_zone})")


@click.group('periods')
def periods_group():
    """Financial period inspection and month close."""


@periods_group.command('list')
@with_appcontext
def list_periods():
    """List financial periods, newest first."""
    periods = PeriodService().list_periods()
    if not periods:
        click.echo("No financial periods yet.")
        return
    for period in periods:
        locked = f" locked_at={period.locked_at.isoformat()}" if period.locked_at else ""
        click.echo(f"{period.id:>4}  {period.label}  {period.status}{locked}")


@periods_group.command('lock')
@click.argument('period_id', type=int)
@click.option('--reason', default=None, help='Lock reason')
@click.option('--skip-checklist', is_flag=True, help='Lock even if month-close checklist items fail')
@click.option('--user-id', default=0, type=int, help='Operator user id for the audit log')
@with_appcontext
def lock_period(period_id, reason, skip_checklist, user_id):
    """Lock (close) a financial period."""
    service = PeriodService()
    try:
        period = service.lock_period(
            _operator(user_id),
            period_id,
            reason=reason,
            enforce_checklist=False if skip_checklist else None,
        )
    except DomainError as e:
        for blocker in e.details.get("blockers", []):
            click.echo(f"FAIL {blocker}")
        raise click.ClickException(e.message)
    click.echo(f"PASS Locked {period.label}")


@periods_group.command('unlock')
@click.argument('period_id', type=int)
@click.option('--reason', required=True, help='Mandatory unlock reason')
@click.option('--user-id', default=0, type=int, help='Operator user id for the audit log')
@with_appcontext
def unlock_period(period_id, reason, user_id):
    """Reopen a locked financial period."""
    try:
        period = PeriodService().unlock_period(_operator(user_id), period_id, reason=reason)
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Unlocked {period.label}")


@click.group('inventory')
def inventory_group():
    """Warehouse inventory maintenance."""


@inventory_group.command('refresh-counter')
@with_appcontext
def refresh_counter():
    """Recompute the cached warehouse discrepancy counter."""
    count = run_in_transaction(lambda: refresh_discrepancy_counter())
    click.echo(f"PASS Sessions in DISCREPANCY: {count}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(periods_group)
    app.cli.add_command(inventory_group)
