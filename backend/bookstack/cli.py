# Overview: Flask CLI command groups for bootstrap, catalog upkeep, and maintenance.

# backend/bookstack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, seeds membership plans and the default admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Membership plans:
# - python -m flask plans seed
#   Insert or update the basic/standard/premium plans.
# - python -m flask plans list
#
# Users:
# - python -m flask users create --name "Jane" --email jane@bookstack.local --password "Password123" --role user --plan basic
# - python -m flask users list
# - python -m flask users set-plan jane@bookstack.local premium
# - python -m flask users erase jane@bookstack.local --yes
#   Account erasure: deletes readlist history and notifications, anonymizes the account.
#
# Catalog:
# - python -m flask catalog add-title --title "Dune" --author "Frank Herbert" --price-cents 49900 --copies 5
# - python -m flask catalog restock 12 3
#
# Entitlements:
# - python -m flask entitlements sweep
#   Expire lapsed readlist entitlements now (the scheduler does this when EXPIRY_SWEEP_ENABLED).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Title, User
from .models.accounts import ROLE_ADMIN, VALID_ROLES
from .models.catalog import AVAILABILITY_AVAILABLE, AVAILABILITY_OUT_OF_STOCK
from .services import auth_service, expiry_service, membership_service, stock_service
from .validation import DomainError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@bookstack.local', help='Default admin email')
@click.option('--admin-password', default='Password123', help='Default admin password')
@with_appcontext
def init_system(admin_email, admin_password):
    """
    Initialize BookStack: tables, membership plans, default admin.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing BookStack...")

    db.create_all()
    click.echo("PASS Schema ready")

    result = membership_service.seed_default_plans()
    click.echo(f"PASS Membership plans: {result['created']} created, {result['updated']} updated")

    if db.session.query(User).filter_by(email=admin_email).first():
        click.echo(f"WARN  Admin '{admin_email}' already exists, skipping...")
    else:
        try:
            auth_service.create_user("Administrator", admin_email, admin_password, role=ROLE_ADMIN)
            click.echo(f"PASS Created admin: {admin_email}")
        except DomainError as e:
            click.echo(f"FAIL Failed to create admin: {e}")

    click.echo("\nDONE BookStack initialized.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """DANGER: Drop all tables and recreate schema. This will DELETE ALL DATA!"""
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD  Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('plans')
def plans_group():
    """Membership plan reference data."""


@plans_group.command('seed')
@with_appcontext
def seed_plans():
    result = membership_service.seed_default_plans()
    click.echo(f"PASS {result['created']} created, {result['updated']} updated")


@plans_group.command('list')
@with_appcontext
def list_plans():
    plans = membership_service.list_plans()
    if not plans:
        click.echo("No membership plans. Run 'python -m flask plans seed'.")
        return
    click.echo(f"{'Name':<10} {'Tier':<5} {'Limit':>5} {'Days':>5} {'Restricted':<10} {'Free delivery'}")
    click.echo("-" * 56)
    for plan in plans:
        click.echo(
            f"{plan.name:<10} {plan.tier:<5} {plan.monthly_grant_limit:>5} {plan.access_duration_days:>5} "
            f"{'yes' if plan.can_access_restricted else 'no':<10} {'yes' if plan.delivery_fee_waived else 'no'}"
        )


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), default='user', show_default=True)
@click.option('--plan', 'plan_name', help='Membership plan name (basic, standard, premium)')
@with_appcontext
def create_user_cli(name, email, password, role, plan_name):
    try:
        user = auth_service.create_user(name, email, password, role=role, plan_name=plan_name)
    except DomainError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        plan = user.membership_plan.name if user.membership_plan else "-"
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>5}  {user.email:<32} {user.role:<12} {plan:<10} {status}")


@users_group.command('set-plan')
@click.argument('email')
@click.argument('plan_name')
@with_appcontext
def set_plan(email, plan_name):
    user = db.session.query(User).filter_by(email=email.lower()).first()
    if user is None:
        click.echo(f"FAIL User '{email}' not found")
        raise SystemExit(1)
    try:
        membership_service.change_plan(user.id, plan_name)
    except DomainError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS {email} moved to plan '{plan_name}'")


@users_group.command('erase')
@click.argument('email')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def erase_user(email, yes):
    """Account erasure (irreversible)."""
    user = db.session.query(User).filter_by(email=email.lower()).first()
    if user is None:
        click.echo(f"FAIL User '{email}' not found")
        raise SystemExit(1)
    if not yes:
        click.confirm(f"WARN Erase account {email}? This cannot be undone.", abort=True)

    result = auth_service.erase_user(user.id)
    click.echo(
        f"PASS Erased user {result['user_id']}: {result['entitlements_deleted']} entitlement(s), "
        f"{result['notifications_deleted']} notification(s), {result['sessions_revoked']} session(s)"
    )


@click.group('catalog')
def catalog_group():
    """Catalog upkeep commands."""


@catalog_group.command('add-title')
@click.option('--title', 'title_text', required=True)
@click.option('--author', required=True)
@click.option('--isbn')
@click.option('--price-cents', type=int, default=0, show_default=True)
@click.option('--copies', type=click.IntRange(min=0), default=0, show_default=True)
@click.option('--restricted', is_flag=True, help='Restricted collection (premium plans only)')
@click.option('--content-key', help='Blob store key of the readable PDF')
@with_appcontext
def add_title(title_text, author, isbn, price_cents, copies, restricted, content_key):
    title = Title(
        title=title_text,
        author=author,
        isbn=isbn,
        price_cents=price_cents,
        is_restricted=restricted,
        content_key=content_key,
        copies_available=copies,
        availability_status=AVAILABILITY_AVAILABLE if copies > 0 else AVAILABILITY_OUT_OF_STOCK,
    )
    db.session.add(title)
    db.session.commit()
    click.echo(f"PASS Created title {title.id}: {title.title} ({title.copies_available} copies)")


@catalog_group.command('restock')
@click.argument('title_id', type=int)
@click.argument('quantity', type=int)
@with_appcontext
def restock(title_id, quantity):
    try:
        if not stock_service.release_stock(title_id, quantity):
            click.echo(f"FAIL Title {title_id} not found")
            raise SystemExit(1)
        db.session.commit()
        stock = stock_service.get_stock(title_id)
    except DomainError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Title {title_id}: {stock['copies_available']} copies ({stock['availability_status']})")


@click.group('entitlements')
def entitlements_group():
    """Readlist entitlement maintenance."""


@entitlements_group.command('sweep')
@with_appcontext
def sweep_entitlements():
    result = expiry_service.sweep_expired_entitlements()
    click.echo(f"PASS Expired {result['expired_count']} entitlement(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(plans_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(entitlements_group)
