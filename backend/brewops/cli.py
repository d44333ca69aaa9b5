# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/brewops/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --full-name "Ada Admin" --email admin@brewops.local --password "Password123!" --role admin
#   Create a user (prompts if options are omitted).
# - python -m flask users set-role admin@brewops.local user
#
# Shops:
# - python -m flask shops list [--include-archived]
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired and revoked sessions older than the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import ServiceError
from .models import Shop, User
from .models.auth import USER_ROLES
from .services import auth_service, session_service


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

    click.echo("PASS Database reset complete. Run 'python -m flask users create' to add an admin.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(USER_ROLES), default='user', show_default=True, help='Role')
@with_appcontext
def create_user_cli(full_name, email, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = auth_service.create_user(full_name, email, password, role=role)
    except ServiceError as exc:
        db.session.rollback()
        click.echo(f"FAIL {exc.message}")
        for err in getattr(exc, "errors", []):
            click.echo(f"  - {err['field']}: {err['message']}")
        raise SystemExit(1)

    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with role and active status."""
    users = auth_service.list_users()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Full name':<25} {'Email':<35} {'Active':<8} {'Role'}")
    click.echo("="*90)

    for user in users:
        active = "yes" if user.is_active else "no"
        click.echo(f"{user.id:<5} {user.full_name:<25} {user.email:<35} {active:<8} {user.role}")

    click.echo("="*90 + "\n")


@users_group.command('set-role')
@click.argument('email')
@click.argument('role', type=click.Choice(USER_ROLES))
@with_appcontext
def set_role_cli(email, role):
    """Change a user's role by email."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        click.echo(f"FAIL User '{email}' not found")
        raise SystemExit(1)

    auth_service.set_user_role(user.id, role)
    click.echo(f"PASS {user.email} is now {role}")


@click.group('shops')
def shops_group():
    """Coffee shop inspection commands."""


@shops_group.command('list')
@click.option('--include-archived', is_flag=True, help='Include archived shops')
@with_appcontext
def list_shops(include_archived):
    query = db.session.query(Shop)
    if not include_archived:
        query = query.filter(Shop.archived.is_(False))
    shops = query.order_by(Shop.id).all()

    if not shops:
        click.echo("No shops found.")
        return

    for shop in shops:
        flag = " [archived]" if shop.archived else ""
        click.echo(
            f"{shop.id:<5} {shop.name:<30} {shop.city:<20} {shop.status:<12} "
            f"owner={shop.owner_id} staff={len(shop.staff)}{flag}"
        )


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """
    Cleanup expired and revoked sessions.

    Default retention: 30 days.
    """
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} sessions older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(maintenance_group)
