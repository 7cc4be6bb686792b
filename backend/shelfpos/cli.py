# Overview: Flask CLI command groups for bootstrap and account management.

# backend/shelfpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# - python -m flask system init [--admin-email admin@shelfpos.local]
#   Create all tables and a default admin account (idempotent).
# - python -m flask users create --username alice --email alice@shop.local --password "Password123!" [--role admin]
#   Create an account (prompts if options are omitted).
# - python -m flask users list
#   List accounts with role and active status.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, VALID_ROLES
from .services.auth_service import create_user, PasswordValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', help='Default admin username')
@click.option('--admin-email', default='admin@shelfpos.local', help='Default admin email')
@click.option('--admin-password', default='Password123!', help='Default admin password')
@with_appcontext
def init_system(admin_username, admin_email, admin_password):
    """
    Create tables and a default admin account.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing shelfpos...")
    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"PASS Using existing admin: {existing.username} (ID: {existing.id})")
        return

    try:
        user = create_user(admin_username, admin_email, admin_password, role=ROLE_ADMIN)
    except (ValueError, PasswordValidationError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created admin: {user.username} (ID: {user.id})")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(list(VALID_ROLES)), default='user', show_default=True)
@with_appcontext
def create_user_command(username, email, password, role):
    """Create an account."""
    try:
        user = create_user(username, email, password, role=role)
    except (ValueError, PasswordValidationError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users_command():
    """List accounts."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for u in users:
        status = "active" if u.is_active else "inactive"
        click.echo(f"{u.id:>4}  {u.username:<20} {u.email:<32} {u.role:<6} {status}")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
