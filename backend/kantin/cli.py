# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/kantin/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-nik admin]
#   Idempotent bootstrap: tables, default categories, admin account, default QRIS.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role seller]
#   List accounts with role, status and (for sellers) available balance.
# - python -m flask users create-seller --nik 1001 --full-name "Bu Sri"
#   Create a seller (default seller password unless --password is given).
# - python -m flask users set-password --nik 1001
#   Reset a password and revoke that user's sessions.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .formatting import format_rupiah
from .models import User
from .models.auth import ROLE_SELLER, VALID_ROLES
from .services import auth_service, balance_service, catalog_service, payment_config_service, session_service
from .services.auth_service import AccountError, PasswordValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-nik', default='admin', show_default=True, help='NIK of the admin account')
@click.option('--admin-name', default='Administrator', show_default=True, help='Admin display name')
@click.option('--admin-password', prompt=True, hide_input=True, confirmation_prompt=True,
              help='Admin password (prompted if omitted)')
@with_appcontext
def init_system(admin_nik, admin_name, admin_password):
    """
    Initialize the canteen system. Safe to rerun.

    Creates:
    - All tables (when no migrations have been applied)
    - Default categories: Makanan, Snack, Minuman
    - The admin account (skipped when the NIK exists)
    - The default QRIS config (skipped when one is active)
    """
    click.echo("START Initializing kantin system...")

    db.create_all()
    click.echo("PASS Tables ready")

    created = catalog_service.ensure_default_categories()
    click.echo(f"PASS Categories seeded ({created} created)")

    try:
        admin, was_created = auth_service.ensure_admin(admin_nik, admin_password, full_name=admin_name)
    except (AccountError, PasswordValidationError) as e:
        raise click.ClickException(str(e))
    if was_created:
        click.echo(f"PASS Created admin: {admin.full_name} (NIK: {admin.nik})")
    else:
        click.echo(f"PASS Admin already exists: {admin.full_name} (NIK: {admin.nik})")

    config = payment_config_service.ensure_default_config()
    click.echo(f"PASS QRIS merchant: {config.merchant_name}")

    click.echo("\nDONE System initialized.")


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
    """User inspection and bootstrap commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(VALID_ROLES), help='Only show this role')
@with_appcontext
def list_users(role):
    query = db.session.query(User)
    if role:
        query = query.filter_by(role=role)
    users = query.order_by(User.role.asc(), User.full_name.asc()).all()

    if not users:
        click.echo("No users found. Run 'python -m flask system init' first.")
        return

    for user in users:
        status = "active" if user.is_active else "inactive"
        line = f"{user.id:>4}  {user.nik:<16} {user.full_name:<28} {user.role:<7} {status}"
        if user.role == ROLE_SELLER:
            balance = balance_service.get_seller_balance(user.id)
            line += f"  saldo {format_rupiah(balance.available_balance)}"
        click.echo(line)


@users_group.command('create-seller')
@click.option('--nik', required=True, help='Employee number used to log in')
@click.option('--full-name', required=True, help='Display name')
@click.option('--email', help='Email address')
@click.option('--department', help='Department')
@click.option('--phone', help='Phone number')
@click.option('--password', help='Initial password (defaults to DEFAULT_SELLER_PASSWORD)')
@with_appcontext
def create_seller(nik, full_name, email, department, phone, password):
    try:
        user = auth_service.create_user(
            full_name=full_name,
            nik=nik,
            password=password or current_app.config["DEFAULT_SELLER_PASSWORD"],
            role=ROLE_SELLER,
            email=email,
            department=department,
            phone=phone,
        )
    except (AccountError, PasswordValidationError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created seller: {user.full_name} (ID: {user.id}, NIK: {user.nik})")


@users_group.command('set-password')
@click.option('--nik', required=True, help='NIK of the account')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True,
              help='New password (prompted if omitted)')
@with_appcontext
def set_password(nik, password):
    """Reset a password. All of the user's sessions are revoked."""
    user = auth_service.get_user_by_nik(nik)
    if not user:
        raise click.ClickException(f"No user with NIK {nik}")

    try:
        auth_service.set_password(user.id, password)
    except PasswordValidationError as e:
        raise click.ClickException(str(e))

    revoked = session_service.revoke_user_sessions(user.id)
    click.echo(f"PASS Password updated for {user.full_name} ({revoked} session(s) revoked)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
