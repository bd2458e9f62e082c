# Overview: Flask CLI command groups for bootstrap, scheduled jobs, and inspection.

# backend/buildops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Insert a demo project with contractors, contracts and line items.
#
# Scheduled jobs (run from cron / a scheduler):
# - python -m flask daily-logs dispatch [--now 2026-03-02T22:30:00Z]
#   Send due daily-log SMS requests and print the summary.
# - python -m flask budget refresh-caches [--project-id 1]
#   Overwrite Project.spent and contract paid_to_date from the roll-up.
#
# Inspection:
# - python -m flask queue show [--project-id 1]
#   Print the decision queue buckets.
# - python -m flask budget show [--status active]
#   Print the portfolio budget roll-up.

import click
from decimal import Decimal
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .integrations import get_sms_gateway
from .models import Contractor, LineItem, Project, ProjectContractor
from .services.budget_service import BudgetRollupService
from .services.concurrency import atomic
from .services.daily_log_service import DailyLogService
from .services.decision_queue_service import DecisionQueueService
from .time_utils import parse_iso_datetime


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_CONTRACTORS = [
    # (name, trade, phone, contract amount, [(description, scheduled value), ...])
    ("Ridgeline Framing", "Framing", "+15555550101", Decimal("180000"), [
        ("Wall framing", Decimal("90000")),
        ("Roof framing", Decimal("60000")),
        ("Sheathing", Decimal("30000")),
    ]),
    ("Bright Spark Electric", "Electrical", "+15555550102", Decimal("95000"), [
        ("Rough-in", Decimal("55000")),
        ("Fixtures and trim", Decimal("40000")),
    ]),
    ("Clearwater Plumbing", "Plumbing", "+15555550103", Decimal("72000"), [
        ("Underground", Decimal("22000")),
        ("Rough-in", Decimal("30000")),
        ("Finish", Decimal("20000")),
    ]),
]


@system_group.command('seed-demo')
@click.option('--name', default='Maple Street Residence', help='Project name')
@with_appcontext
def seed_demo(name):
    """Insert a demo project with three contractors."""
    if db.session.query(Project).filter_by(name=name).first():
        click.echo(f"SKIP Project '{name}' already exists.")
        return

    with atomic(db.session):
        project = Project(
            name=name,
            client_name="Demo Client",
            current_phase="Framing",
            budget=sum((c[3] for c in DEMO_CONTRACTORS), Decimal("0")),
            status="active",
        )
        db.session.add(project)
        db.session.flush()

        for contractor_name, trade, phone, amount, items in DEMO_CONTRACTORS:
            contractor = Contractor(name=contractor_name, trade=trade, phone=phone, status="active")
            db.session.add(contractor)
            db.session.flush()
            db.session.add(ProjectContractor(
                project_id=project.id,
                contractor_id=contractor.id,
                contract_amount=amount,
                original_contract_amount=amount,
            ))
            for idx, (description, value) in enumerate(items, start=1):
                db.session.add(LineItem(
                    project_id=project.id,
                    contractor_id=contractor.id,
                    item_no=str(idx),
                    description_of_work=description,
                    scheduled_value=value,
                ))

    click.echo(f"PASS Seeded project '{name}' (id={project.id}) with {len(DEMO_CONTRACTORS)} contractors.")


@click.group('daily-logs')
def daily_logs_group():
    """Daily-log SMS request jobs."""


@daily_logs_group.command('dispatch')
@click.option('--now', 'now_raw', default=None, help='ISO-8601 timestamp to treat as now (default: current time)')
@with_appcontext
def dispatch_daily_logs(now_raw):
    """Send due daily-log requests."""
    try:
        now = parse_iso_datetime(now_raw)
    except ValueError:
        raise click.BadParameter("must be an ISO-8601 timestamp", param_hint="--now")

    cfg = current_app.config
    service = DailyLogService(
        db.session,
        sms_gateway=get_sms_gateway(),
        timezone_name=cfg["DAILY_LOG_TIMEZONE"],
        default_max_retries=cfg["DAILY_LOG_MAX_RETRIES"],
    )
    summary = service.dispatch_due(now=now)
    click.echo(
        f"Daily logs: {summary.sent} sent, {summary.retrying} retrying, "
        f"{summary.failed} failed, {summary.skipped} skipped"
    )


@click.group('budget')
def budget_group():
    """Budget roll-up commands."""


@budget_group.command('refresh-caches')
@click.option('--project-id', type=int, default=None, help='Only refresh this project')
@with_appcontext
def refresh_caches(project_id):
    """Overwrite stored spent / paid_to_date figures from the roll-up."""
    with atomic(db.session):
        count = BudgetRollupService(db.session).refresh_cached_totals(
            project_ids=[project_id] if project_id else None
        )
    click.echo(f"PASS Refreshed {count} project(s).")


@budget_group.command('show')
@click.option('--status', default=None, help='Project status filter (e.g. active)')
@with_appcontext
def show_budget(status):
    portfolio = BudgetRollupService(db.session).portfolio(status=status)
    click.echo(f"{'ID':>4}  {'Project':<32} {'Budget':>14} {'Spent':>14} {'Remaining':>14} {'Util%':>6}")
    for p in portfolio.projects:
        flag = " OVER" if p.over_budget else ""
        click.echo(
            f"{p.project_id:>4}  {p.project_name[:32]:<32} {p.budget:>14,.2f} {p.spent:>14,.2f} "
            f"{p.remaining:>14,.2f} {p.utilization:>6}{flag}"
        )
    click.echo(
        f"{'':>4}  {'TOTAL':<32} {portfolio.budget:>14,.2f} {portfolio.spent:>14,.2f} "
        f"{portfolio.remaining:>14,.2f} {portfolio.utilization:>6}"
    )


@click.group('queue')
def queue_group():
    """Decision queue inspection."""


@queue_group.command('show')
@click.option('--project-id', type=int, default=None)
@with_appcontext
def show_queue(project_id):
    cfg = current_app.config
    service = DecisionQueueService(
        db.session,
        urgent_age_days=cfg["QUEUE_URGENT_AGE_DAYS"],
        high_value_threshold=Decimal(str(cfg["QUEUE_HIGH_VALUE_CHANGE_ORDER"])),
    )
    queue = service.build(project_id=project_id)
    for label, items in (("URGENT", queue.urgent), ("NEEDS REVIEW", queue.needs_review), ("READY TO PAY", queue.ready_to_pay)):
        click.echo(f"{label} ({len(items)})")
        for item in items:
            click.echo(
                f"  {item.reference_number:<10} {item.type:<20} {item.project_name or '-':<28} "
                f"{item.contractor_name or '-':<24} {item.amount:>12,.2f} {item.days_old:>3}d"
            )
    click.echo(f"Total: {queue.totals['total']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(daily_logs_group)
    app.cli.add_command(budget_group)
    app.cli.add_command(queue_group)
