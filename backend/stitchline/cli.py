# Overview: Flask CLI command groups for bootstrap, imports, stock repair and reports.

# backend/stitchline/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the package (PowerShell: $env:FLASK_APP="stitchline").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin admin]
#   Idempotent: creates tables and a first admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list [--all]
# - python -m flask users create qc1 --role qc_team --email qc1@example.com
#
# SKUs:
# - python -m flask skus template skus.csv
#   Write the bulk-upload template (header + example row).
# - python -m flask skus import-csv skus.csv --actor 1
#   Bulk-create SKUs row by row; failures are listed, the rest are kept.
#
# Imports:
# - python -m flask imports preview sales-import sales.csv
# - python -m flask imports confirm sales-import sales.csv --actor 1
#   Types: sku-import, fabric-import, sales-import, return-import.
#
# Stock:
# - python -m flask stock recompute [--sku ABC-001]
#   Rebuild the warehouse stock cache from the warehouse and sales ledgers.
#
# Reports:
# - python -m flask reports wip
# - python -m flask reports inventory [--csv inventory.csv]

import csv

import click
from flask.cli import with_appcontext

from .extensions import db
from .permissions import ROLES
from .services import import_service, reporting_service, sku_service, stock_service, user_service
from .services.import_schemas import SkuSchema
from .services.permission_service import PermissionDeniedError, make_actor
from .validation import ConflictError, NotFoundError, ValidationError


def _write_csv(path, rows):
    if not rows:
        click.echo("WARN Nothing to write.")
        return
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
    click.echo(f"PASS Wrote {len(rows)} row(s) to {path}")


def _read_csv(path):
    with open(path, newline="", encoding="utf-8-sig") as fh:
        return import_service.read_csv_rows(fh)


def _print_row_errors(errors):
    for err in errors:
        click.echo(f"  row {err['row']}: {'; '.join(err['errors'])}")


def _actor_or_fail(user_id):
    try:
        return make_actor(user_id=user_id)
    except (NotFoundError, PermissionDeniedError) as exc:
        raise click.ClickException(str(exc))


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin', 'admin_username', default='admin', help='Username of the first admin')
@with_appcontext
def init_system(admin_username):
    """Create tables (if missing) and a first admin user."""
    click.echo("START Initializing StitchLine...")
    db.create_all()
    click.echo("PASS Tables ready")

    existing = [u for u in user_service.list_users(include_inactive=True) if u.role == "admin"]
    if existing:
        click.echo(f"PASS Admin already present: {existing[0].username} (ID: {existing[0].id})")
        return

    user = user_service.bootstrap_user(username=admin_username, role="admin")
    click.echo(f"PASS Created admin user: {user.username} (ID: {user.id})")


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


@click.group('users')
def users_group():
    """Staff users and roles."""


@users_group.command('create')
@click.argument('username')
@click.option('--role', type=click.Choice(list(ROLES)), required=True, help='Role')
@click.option('--email', default=None, help='Email address')
@click.option('--name', 'display_name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, role, email, display_name):
    """Create a user (no acting admin; intended for operators)."""
    try:
        user = user_service.bootstrap_user(username=username, role=role, email=email, display_name=display_name)
    except (ValidationError, ConflictError) as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated users')
@with_appcontext
def list_users(include_inactive):
    """List users with their roles."""
    users = user_service.list_users(include_inactive=include_inactive)
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 72)
    click.echo(f"{'ID':<5} {'Username':<20} {'Role':<16} {'Active':<8} {'Email'}")
    click.echo("=" * 72)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.role:<16} {active_str:<8} {user.email or ''}")
    click.echo("=" * 72 + "\n")


@click.group('skus')
def skus_group():
    """SKU registry commands."""


@skus_group.command('template')
@click.argument('path', type=click.Path(dir_okay=False, writable=True))
@with_appcontext
def sku_template(path):
    """Write the SKU bulk-upload template."""
    _write_csv(path, import_service.sku_template_rows())


@skus_group.command('import-csv')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--actor', 'actor_id', type=int, required=True, help='Acting user ID')
@with_appcontext
def import_skus_csv(path, actor_id):
    """Bulk-create SKUs from a CSV laid out like the template."""
    actor = _actor_or_fail(actor_id)
    schema = SkuSchema()
    rows = []
    for raw in _read_csv(path):
        normalized = schema.normalize_row(raw)
        rows.append({k: v for k, v in normalized.items() if not k.startswith("_") and v is not None})

    try:
        result = sku_service.bulk_create_skus(actor=actor, rows=rows)
    except PermissionDeniedError as exc:
        raise click.ClickException(str(exc))

    click.echo(
        f"PASS {result['success_count']} of {result['total_rows']} SKUs created, "
        f"{result['error_count']} failed"
    )
    _print_row_errors(result["errors"])


@click.group('imports')
def imports_group():
    """Tabular imports (CSV)."""


@imports_group.command('preview')
@click.argument('import_type', type=click.Choice(sorted(import_service.SCHEMAS)))
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def preview_import_cli(import_type, path):
    """Validate a file without writing anything."""
    result = import_service.preview_import(import_type, _read_csv(path))
    click.echo(f"PASS {result['valid_count']} of {result['total_rows']} rows valid")
    _print_row_errors(result["errors"])


@imports_group.command('confirm')
@click.argument('import_type', type=click.Choice(sorted(import_service.SCHEMAS)))
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--actor', 'actor_id', type=int, required=True, help='Acting user ID')
@with_appcontext
def confirm_import_cli(import_type, path, actor_id):
    """Import a file row by row; bad rows are reported and skipped."""
    actor = _actor_or_fail(actor_id)
    try:
        result = import_service.confirm_import(
            import_type, _read_csv(path), actor=actor, file_name=path
        )
    except (import_service.TabularImportError, PermissionDeniedError) as exc:
        raise click.ClickException(str(exc))
    click.echo(
        f"PASS Import #{result['import_log_id']}: {result['success_count']} of "
        f"{result['total_rows']} rows imported, {result['error_count']} failed"
    )
    _print_row_errors(result["errors"])


@click.group('stock')
def stock_group():
    """Derived stock maintenance."""


@stock_group.command('recompute')
@click.option('--sku', 'sku_code', default=None, help='Only this SKU code')
@with_appcontext
def recompute_stock(sku_code):
    """Rebuild the warehouse stock cache from the ledgers."""
    if sku_code:
        sku = sku_service.get_sku_by_code(sku_code)
        if not sku:
            raise click.ClickException(f"SKU '{sku_code}' not found")
        stock = stock_service.recompute_warehouse_stock(sku.id)
        db.session.commit()
        click.echo(f"PASS {sku.sku}: {stock.available_quantity} available")
        return

    count = stock_service.recompute_all_warehouse_stock()
    click.echo(f"PASS Recomputed warehouse stock for {count} SKU(s)")


@click.group('reports')
def reports_group():
    """Read-only pipeline reports."""


@reports_group.command('wip')
@with_appcontext
def wip_report():
    """Work in progress per SKU with its current stage."""
    rows = reporting_service.get_wip_tracker()
    if not rows:
        click.echo("No pipeline activity yet.")
        return

    click.echo(
        f"{'SKU':<16} {'Stage':<11} {'Fabric(m)':>10} {'Cut':>6} {'Stitch':>7} "
        f"{'Finish':>7} {'Stock':>6} {'Sold':>6}"
    )
    for row in rows:
        fabric_m = row["in_process"]["fabric_available_cm"] / 100
        click.echo(
            f"{row['sku']:<16} {row['current_stage']:<11} {fabric_m:>10.2f} {row['pieces_cut']:>6} "
            f"{row['pieces_stitched']:>7} {row['pieces_finished']:>7} {row['warehouse_stock']:>6} "
            f"{row['pieces_sold']:>6}"
        )


@reports_group.command('inventory')
@click.option('--csv', 'csv_path', default=None, type=click.Path(dir_okay=False, writable=True),
              help='Write the summary to a CSV file instead of the terminal')
@with_appcontext
def inventory_report(csv_path):
    """Inventory summary with stock status."""
    if csv_path:
        _write_csv(csv_path, import_service.export_inventory_rows())
        return

    for row in reporting_service.get_inventory_summary():
        click.echo(
            f"{row['sku']:<16} {row['available_stock']:>6} {row['status']:<13} {row['product_name']}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(skus_group)
    app.cli.add_command(imports_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(reports_group)
