# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/floradesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the default admin and staff users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List shop users and administrators.
# - python -m flask users create --username anna --email anna@floradesk.local --password "Password123!"
#   Create a confirmed shop user (prompts if options are omitted).
# - python -m flask users create-admin --email owner@floradesk.local --password "Password123!"
#   Create an administrator (admin token realm).
#
# Catalog:
# - python -m flask flowers fix-slugs
#   Fill slugs of flowers saved without one.
# - python -m flask flowers seed
#   Create the sample catalog (skips flowers that already exist).
#
# Shifts:
# - python -m flask shifts close-stale
#   Close active shifts of previous days (normally done on the first request of the day).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import AdminUser, User
from .services.auth_service import create_admin_user, create_user
from .services import flower_service, shift_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize Floradesk: schema, default administrator and shop user.

    Creates:
    - All tables (no-op for existing ones)
    - Admin: admin@floradesk.local (admin realm)
    - Shop user: seller@floradesk.local (users realm)
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Floradesk...")
    db.create_all()
    click.echo("PASS Schema ready")

    default_password = "Password123!"

    if db.session.query(AdminUser).filter_by(email="admin@floradesk.local").first():
        click.echo("WARN  Admin 'admin@floradesk.local' already exists, skipping...")
    else:
        create_admin_user("admin@floradesk.local", default_password, firstname="Admin")
        click.echo("PASS Created admin: admin@floradesk.local")

    if db.session.query(User).filter_by(email="seller@floradesk.local").first():
        click.echo("WARN  User 'seller@floradesk.local' already exists, skipping...")
    else:
        create_user("seller", "seller@floradesk.local", default_password)
        click.echo("PASS Created user: seller@floradesk.local")

    click.echo("\n" + "=" * 60)
    click.echo("DONE Floradesk Initialized Successfully!")
    click.echo("=" * 60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   admin  -> admin@floradesk.local  / Password123!")
    click.echo("   seller -> seller@floradesk.local / Password123!")


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
    """User management commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List shop users and administrators."""
    users = db.session.query(User).order_by(User.id).all()
    admins = db.session.query(AdminUser).order_by(AdminUser.id).all()

    if not users and not admins:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'Realm':<7} {'ID':<5} {'Username':<20} {'Email':<32} {'Status'}")
    click.echo("=" * 90)
    for user in users:
        status = "blocked" if user.blocked else ("confirmed" if user.confirmed else "unconfirmed")
        click.echo(f"{'users':<7} {user.id:<5} {user.username:<20} {user.email:<32} {status}")
    for admin in admins:
        status = "active" if admin.is_active else "inactive"
        click.echo(f"{'admin':<7} {admin.id:<5} {(admin.username or '-'):<20} {admin.email:<32} {status}")
    click.echo("=" * 90)


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', default='authenticated', show_default=True)
@with_appcontext
def create_user_cmd(username, email, password, role):
    """Create a confirmed shop user."""
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User with email '{email}' already exists")
        return
    user = create_user(username, email, password, role=role)
    click.echo(f"PASS Created user: {user.username} ({user.email}) ID: {user.id}")


@users_group.command('create-admin')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--firstname', default=None)
@click.option('--lastname', default=None)
@with_appcontext
def create_admin_cmd(email, password, firstname, lastname):
    """Create an administrator."""
    if db.session.query(AdminUser).filter_by(email=email).first():
        click.echo(f"FAIL Admin with email '{email}' already exists")
        return
    admin = create_admin_user(email, password, firstname=firstname, lastname=lastname)
    click.echo(f"PASS Created admin: {admin.email} ID: {admin.id}")


@click.group('flowers')
def flowers_group():
    """Catalog maintenance commands."""


@flowers_group.command('fix-slugs')
@with_appcontext
def fix_slugs():
    """Generate slugs for flowers saved without one."""
    fixed = flower_service.fix_missing_slugs()
    click.echo(f"PASS Fixed {fixed} flower slug(s)")


@flowers_group.command('seed')
@with_appcontext
def seed_catalog():
    """Create the sample catalog."""
    created = flower_service.seed_sample_catalog()
    click.echo(f"PASS Created {created} sample flower(s)")


@click.group('shifts')
def shifts_group():
    """Shift maintenance commands."""


@shifts_group.command('close-stale')
@with_appcontext
def close_stale_shifts():
    """Close active shifts whose date is before today."""
    closed = shift_service.auto_close_previous_shifts()
    click.echo(f"PASS Closed {closed} stale shift(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(flowers_group)
    app.cli.add_command(shifts_group)
