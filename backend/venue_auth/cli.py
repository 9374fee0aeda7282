# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/venue_auth/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables (development; production uses flask db upgrade).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Venues:
# - python -m flask venues create --name "Court House" --email owner@example.com --password "Password123!"
# - python -m flask venues list
# - python -m flask venues set-active 1 --inactive
#
# Sub-users:
# - python -m flask subusers create-first-admin 1 --username owner --password "Password123!"
# - python -m flask subusers list 1 [--all]
# - python -m flask subusers logout-all 7
#
# Sessions / audit:
# - python -m flask sessions cleanup --retention-days 30
# - python -m flask audit verify 1
#
# Permissions:
# - python -m flask perms list [--category SUB_USERS]
# - python -m flask perms check 7 VIEW_BOOKINGS
# - python -m flask perms flush-cache

import click
from flask.cli import with_appcontext

from .errors import VenueAuthError
from .extensions import db
from .permissions import (
    PERMISSION_DEFINITIONS,
    get_all_permission_codes,
    validate_permission_code,
)
from .services import audit_service, session_service, sub_user_service, venue_service
from .services.registry import get_services


def _fail(exc: VenueAuthError) -> None:
    click.echo(f"FAIL {exc.message}")


# =============================================================================
# SYSTEM COMMANDS
# =============================================================================

@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate every table."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


# =============================================================================
# VENUE COMMANDS
# =============================================================================

@click.group('venues')
def venues_group():
    """Venue registration and inspection."""


@venues_group.command('create')
@click.option('--name', required=True, help='Venue display name')
@click.option('--email', required=True, help='Owner login email')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Owner password')
@with_appcontext
def create_venue_cli(name, email, password):
    """Register a venue and its owner account."""
    try:
        result = venue_service.create_venue(name, email, password)
    except VenueAuthError as e:
        _fail(e)
        return
    venue = result["venue"]
    click.echo(f"PASS Created venue: {venue['name']} (ID: {venue['id']}), owner {result['owner']['email']}")


@venues_group.command('list')
@with_appcontext
def list_venues_cli():
    """List all venues."""
    venues = venue_service.list_venues()
    if not venues:
        click.echo("No venues found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<35} {'Active':<8} {'Needs setup'}")
    click.echo("="*70)
    for venue in venues:
        active_str = "Yes" if venue["is_active"] else "No"
        setup_str = "Yes" if venue["requires_sub_user_setup"] else "No"
        click.echo(f"{venue['id']:<5} {venue['name']:<35} {active_str:<8} {setup_str}")
    click.echo("="*70 + "\n")


@venues_group.command('set-active')
@click.argument('venue_id', type=int)
@click.option('--active/--inactive', default=True, help='Activate or deactivate')
@with_appcontext
def set_venue_active_cli(venue_id, active):
    """Activate or deactivate a venue."""
    try:
        venue = venue_service.set_venue_active(venue_id, active)
    except VenueAuthError as e:
        _fail(e)
        return
    state = "active" if venue["is_active"] else "inactive"
    click.echo(f"PASS Venue {venue['id']} is now {state}")


# =============================================================================
# SUB-USER COMMANDS
# =============================================================================

@click.group('subusers')
def subusers_group():
    """Sub-user bootstrap and inspection."""


@subusers_group.command('create-first-admin')
@click.argument('venue_id', type=int)
@click.option('--username', required=True, help='Founder admin username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Founder admin password')
@with_appcontext
def create_first_admin_cli(venue_id, username, password):
    """Create the founder admin of a venue."""
    try:
        result = sub_user_service.create_first_admin(venue_id, username, password)
    except VenueAuthError as e:
        _fail(e)
        return
    click.echo(f"PASS Created founder admin {result.sub_user['username']} (ID: {result.sub_user['id']})")


@subusers_group.command('list')
@click.argument('venue_id', type=int)
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive and deleted sub-users')
@with_appcontext
def list_sub_users_cli(venue_id, include_inactive):
    """List the sub-users of a venue."""
    sub_users = sub_user_service.list_sub_users(venue_id, include_inactive=include_inactive)
    if not sub_users:
        click.echo("No sub-users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<25} {'Role':<10} {'Active':<8} {'Founder':<8} {'Permissions'}")
    click.echo("="*90)
    for sub_user in sub_users:
        active_str = "Yes" if sub_user["is_active"] else "No"
        founder_str = "Yes" if sub_user["is_founder_admin"] else "No"
        click.echo(
            f"{sub_user['id']:<5} {sub_user['username']:<25} {sub_user['role']:<10} "
            f"{active_str:<8} {founder_str:<8} {len(sub_user['permission_codes'])}"
        )
    click.echo("="*90 + "\n")


@subusers_group.command('logout-all')
@click.argument('sub_user_id', type=int)
@with_appcontext
def logout_all_cli(sub_user_id):
    """Force-revoke every session of a sub-user."""
    try:
        result = session_service.logout_all(sub_user_id)
    except VenueAuthError as e:
        _fail(e)
        return
    click.echo(f"PASS Ended {result.sessions_ended} sessions, revoked {result.tokens_revoked} tokens")
    for message in result.degradations:
        click.echo(f"WARN {message}")


# =============================================================================
# SESSION & AUDIT MAINTENANCE
# =============================================================================

@click.group('sessions')
def sessions_group():
    """Session maintenance."""


@sessions_group.command('cleanup')
@click.option('--retention-days', type=int, default=30, show_default=True, help='Keep ended sessions this long')
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Close sessions with an expired refresh token and purge old ended ones."""
    deleted = session_service.cleanup_sessions(retention_days=retention_days)
    click.echo(f"PASS Deleted {deleted} ended sessions older than {retention_days} days")


@click.group('audit')
def audit_group():
    """Audit log inspection."""


@audit_group.command('verify')
@click.argument('venue_id', type=int)
@with_appcontext
def verify_audit_cli(venue_id):
    """Recompute a venue's audit hash chain."""
    result = audit_service.verify_chain(venue_id)
    if result["valid"]:
        click.echo(f"PASS Audit chain intact ({result['entries_checked']} entries)")
    else:
        click.echo(f"FAIL Audit chain broken at entry {result['broken_at']}")


# =============================================================================
# PERMISSION COMMANDS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission inspection and cache maintenance."""


@perms_group.command('list')
@click.option('--category', help='Filter by category')
@with_appcontext
def list_permissions_cli(category):
    """List permission codes with their category and forbidden roles."""
    rows = [row for row in PERMISSION_DEFINITIONS if not category or row[3] == category.upper()]
    if not rows:
        click.echo(f"FAIL No permissions in category '{category}'")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'Code':<28} {'Bit':<10} {'Category':<12} {'Forbidden for'}")
    click.echo("="*90)
    for flag, _name, _description, row_category, forbidden_roles in rows:
        forbidden = ", ".join(role.value for role in forbidden_roles) or "-"
        click.echo(f"{flag.name:<28} {int(flag):<10} {row_category:<12} {forbidden}")
    click.echo("="*90 + "\n")


@perms_group.command('check')
@click.argument('sub_user_id', type=int)
@click.argument('permission_code')
@with_appcontext
def check_permission_cli(sub_user_id, permission_code):
    """Check whether a sub-user currently holds a permission."""
    permission_code = permission_code.upper()
    if not validate_permission_code(permission_code):
        click.echo(f"FAIL Unknown permission '{permission_code}'. Known: {', '.join(get_all_permission_codes())}")
        return
    allowed = sub_user_service.check_permission(sub_user_id, permission_code, "cli check")
    click.echo(f"{'ALLOW' if allowed else 'DENY'} sub-user {sub_user_id} {permission_code}")


@perms_group.command('flush-cache')
@with_appcontext
def flush_cache_cli():
    """Drop every cached authorization decision."""
    removed = get_services().authorizer.clear_all()
    if removed is None:
        click.echo("FAIL Cache backend unavailable")
        return
    click.echo(f"PASS Removed {removed} cached authorization entries")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(venues_group)
    app.cli.add_command(subusers_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(audit_group)
    app.cli.add_command(perms_group)
