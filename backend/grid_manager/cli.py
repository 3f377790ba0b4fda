# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/grid_manager/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--org "Org Name"] [--slug default]
#   Idempotent bootstrap: default organization, main branch and one admin user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management:
# - python -m flask orgs create --name "Acme Corp" --slug acme
# - python -m flask orgs list
# - python -m flask orgs add-branch --org-id 1 --name "Downtown"
#
# Users:
# - python -m flask users create --org-id 1 --email admin@acme.test --name "Admin" --role ADMIN
# - python -m flask users list [--org-id 1]
# - python -m flask users deactivate --user-id 5
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired/revoked sessions older than the retention window.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Organization, User
from .models.auth import ALL_ROLES, ROLE_ADMIN, USER_INACTIVE
from .services import session_service, tenant_service
from .services.auth_service import PasswordValidationError, UserCreationError, create_user


DEFAULT_ADMIN_EMAIL = "admin@gridmanager.local"
DEFAULT_ADMIN_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--org', 'org_name', default='Default Organization', help='Organization name')
@click.option('--slug', default='default', help='Organization slug')
@with_appcontext
def init_system(org_name, slug):
    """
    Create the default organization, a main branch and an ADMIN user.

    Safe to run repeatedly. The admin password defaults to "Password123!";
    change it immediately outside development.
    """
    click.echo("START Initializing Grid Manager...")

    db.create_all()

    org = db.session.query(Organization).filter_by(slug=slug).first()
    if not org:
        org = tenant_service.create_organization(org_name, slug)
        click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Slug: {org.slug})")
    else:
        click.echo(f"PASS Using existing organization: {org.name} (ID: {org.id})")

    branch = db.session.query(Branch).filter_by(org_id=org.id).first()
    if not branch:
        branch = tenant_service.create_branch(org.id, "Main Branch")
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    admin = db.session.query(User).filter_by(org_id=org.id, email=DEFAULT_ADMIN_EMAIL).first()
    if not admin:
        admin = create_user(
            org_id=org.id,
            email=DEFAULT_ADMIN_EMAIL,
            name="Administrator",
            password=DEFAULT_ADMIN_PASSWORD,
            role=ROLE_ADMIN,
        )
        click.echo(f"PASS Created admin user: {admin.email} (password: {DEFAULT_ADMIN_PASSWORD})")
    else:
        click.echo(f"PASS Admin user exists: {admin.email}")

    click.echo("DONE System initialized.")


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


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--slug', required=True, help='Unique slug used at login')
@with_appcontext
def create_org_cli(name, slug):
    try:
        org = tenant_service.create_organization(name, slug)
    except tenant_service.OrganizationError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Slug: {org.slug})")


@orgs_group.command('list')
@with_appcontext
def list_orgs_cli():
    orgs = db.session.query(Organization).order_by(Organization.id).all()
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Slug':<20} {'Name':<35} {'Active':<7} {'Branches'}")
    click.echo("=" * 80)
    for org in orgs:
        branches = ", ".join(b.name for b in tenant_service.get_org_branches(org.id)) or "-"
        click.echo(f"{org.id:<5} {org.slug:<20} {org.name:<35} {str(org.is_active):<7} {branches}")
    click.echo("=" * 80 + "\n")


@orgs_group.command('add-branch')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Branch name (unique within org)')
@click.option('--address', default=None, help='Street address')
@with_appcontext
def add_branch_cli(org_id, name, address):
    try:
        branch = tenant_service.create_branch(org_id, name, address)
    except (tenant_service.OrganizationError, tenant_service.TenantAccessError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}) in org {org_id}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ALL_ROLES), prompt=True, help='Role')
@click.option('--branch-id', type=int, default=None, help='Pin the user to a branch')
@with_appcontext
def create_user_cli(org_id, email, name, password, role, branch_id):
    """
    Create a user in an organization.

    Password must have 8+ chars with uppercase, lowercase, digit and a
    special character.
    """
    try:
        user = create_user(
            org_id=org_id,
            email=email,
            name=name,
            password=password,
            role=role,
            branch_id=branch_id,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        return
    except UserCreationError as e:
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created user: {user.email} with role {user.role} (ID: {user.id})")


@users_group.command('list')
@click.option('--org-id', type=int, help='Filter by organization ID')
@with_appcontext
def list_users(org_id):
    query = db.session.query(User)
    if org_id:
        query = query.filter_by(org_id=org_id)

    users = query.order_by(User.org_id, User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Org':<5} {'Branch':<7} {'Email':<35} {'Role':<9} {'Status'}")
    click.echo("=" * 90)
    for user in users:
        branch = user.branch_id if user.branch_id is not None else "-"
        click.echo(f"{user.id:<5} {user.org_id:<5} {branch:<7} {user.email:<35} {user.role:<9} {user.status}")
    click.echo("=" * 90 + "\n")


@users_group.command('deactivate')
@click.option('--user-id', type=int, required=True, help='User ID')
@with_appcontext
def deactivate_user_cli(user_id):
    """Mark a user INACTIVE and revoke all of their sessions."""
    user = db.session.get(User, user_id)
    if not user:
        click.echo(f"FAIL User {user_id} not found")
        return

    user.status = USER_INACTIVE
    db.session.commit()
    revoked = session_service.revoke_all_user_sessions(user.id, reason="User deactivated")
    click.echo(f"PASS Deactivated {user.email}; revoked {revoked} sessions")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
