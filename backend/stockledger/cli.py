# Overview: Flask CLI command groups for bootstrap, user/token management and ledger checks.

# backend/stockledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent: creates tables and the purchase cost expense category.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and API tokens:
# - python -m flask users create --name "Admin" --email admin@example.com --password "Password123"
#   Create a user and print a fresh API token (shown once).
# - python -m flask users issue-token --email admin@example.com [--name ci]
#   Issue another API token for an existing user.
# - python -m flask users revoke-token <token>
#   Revoke an API token.
#
# Ledger:
# - python -m flask ledger verify [--product-id 7]
#   Compare every product's stock with the sum of its movements; exits 1 on mismatch.

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import auth_service
from .services.auth_service import PasswordValidationError
from .services.expense_service import ensure_purchase_cost_category
from .services.stock_ledger_service import verify_ledger
from .validation import ConflictError, NotFoundError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create missing tables and the purchase cost expense category."""
    click.echo("START Initializing stockledger...")
    db.create_all()
    category = ensure_purchase_cost_category()
    db.session.commit()
    click.echo(f"PASS Purchase cost category: {category.name} (ID: {category.id})")
    click.echo("DONE Next: python -m flask users create")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    ensure_purchase_cost_category()
    db.session.commit()
    click.echo("PASS Database reset complete")


@click.group('users')
def users_group():
    """User and API token commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Login email (unique)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--token-name', default='default', help='Label for the issued API token')
@with_appcontext
def create_user_cli(name, email, password, token_name):
    """Create a user and print an API token for it."""
    try:
        user = auth_service.create_user(name=name, email=email, password=password)
    except (PasswordValidationError, ConflictError) as e:
        raise click.ClickException(str(e))

    _, token = auth_service.issue_api_token(user, name=token_name)
    click.echo(f"PASS Created user: {user.name} ({user.email}) ID: {user.id}")
    click.echo(f"TOKEN {token}")
    click.echo("WARN Store this token now; it cannot be shown again.")


@users_group.command('issue-token')
@click.option('--email', required=True, help='User email')
@click.option('--name', 'token_name', default='default', help='Label for the token')
@with_appcontext
def issue_token_cli(email, token_name):
    """Issue a new API token for an existing user."""
    try:
        user = auth_service.get_user_by_email(email)
    except NotFoundError as e:
        raise click.ClickException(str(e))

    _, token = auth_service.issue_api_token(user, name=token_name)
    click.echo(f"TOKEN {token}")


@users_group.command('revoke-token')
@click.argument('token')
@with_appcontext
def revoke_token_cli(token):
    """Revoke an API token."""
    if auth_service.revoke_api_token(token):
        click.echo("PASS Token revoked")
    else:
        raise click.ClickException("Token not found or already revoked")


@click.group('ledger')
def ledger_group():
    """Stock ledger checks."""


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def verify_ledger_cli(product_id):
    """Report products whose stock differs from the sum of their movements."""
    mismatches = verify_ledger(product_id)
    if not mismatches:
        click.echo("PASS Stock matches the movement ledger for every product")
        return

    click.echo(f"{'ID':<6} {'Product':<30} {'Stock':>8} {'Ledger':>8} {'Diff':>8}")
    for row in mismatches:
        click.echo(
            f"{row['product_id']:<6} {row['product_name'][:30]:<30} "
            f"{row['stock']:>8} {row['ledger_balance']:>8} {row['difference']:>8}"
        )
    click.echo(f"FAIL {len(mismatches)} product(s) out of balance")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
