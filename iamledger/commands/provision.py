import click
from flask import current_app
from flask.cli import with_appcontext

from iamledger import db
from iamledger.models import UserStatus
from iamledger.services import AccessEvaluator, AuditLog, IdentityStore, ProvisioningWorkflow
from iamledger.errors import IAMError


@click.group()
def iam():
    """Provision users and roles and inspect access."""
    pass


def _workflow():
    return ProvisioningWorkflow.from_config(db.session, current_app.config)


def _report(result, success_message):
    if result.ok:
        if result.noop:
            click.echo(f"No change: {success_message}")
        else:
            click.echo(f"{success_message} (audit #{result.record.id})")
        return
    click.echo(f"Error [{result.reason.value}]: {result.message}", err=True)
    raise click.exceptions.Exit(1)


@iam.command('create-user')
@click.argument('username')
@click.argument('email')
@click.option('--actor', required=True, help='Who is performing the change')
@with_appcontext
def create_user(username, email, actor):
    """Create an ACTIVE user."""
    _report(_workflow().create_user(actor, username, email), f"Created user {username}")


@iam.command('assign-role')
@click.argument('username')
@click.argument('role')
@click.option('--actor', required=True, help='Who is performing the change')
@with_appcontext
def assign_role(username, role, actor):
    """Assign ROLE to USERNAME."""
    _report(_workflow().assign(actor, username, role), f"Assigned {role} to {username}")


@iam.command('revoke-role')
@click.argument('username')
@click.argument('role')
@click.option('--actor', required=True, help='Who is performing the change')
@with_appcontext
def revoke_role(username, role, actor):
    """Revoke ROLE from USERNAME."""
    _report(_workflow().revoke(actor, username, role), f"Revoked {role} from {username}")


@iam.command('set-status')
@click.argument('username')
@click.argument('status', type=click.Choice(UserStatus.ALL, case_sensitive=False))
@click.option('--actor', required=True, help='Who is performing the change')
@with_appcontext
def set_status(username, status, actor):
    """Change a user's status (ACTIVE, LOCKED or DISABLED)."""
    status = status.upper()
    _report(_workflow().set_user_status(actor, username, status), f"{username} is now {status}")


@iam.command('permissions')
@click.argument('username')
@with_appcontext
def permissions(username):
    """Print the roles and effective permissions of USERNAME."""
    evaluator = AccessEvaluator.from_config(db.session, current_app.config)
    try:
        report = evaluator.access_report(username)
    except IAMError as e:
        click.echo(f"Error [{e.kind.value}]: {e.message}", err=True)
        raise click.exceptions.Exit(1)

    click.echo(f"{report['user']} ({report['status']}, login {report['login']})")
    click.echo(f"Roles: {', '.join(report['roles']) or '-'}")
    for name in report['permissions']:
        click.echo(f"  {name}")


@iam.command('roles')
@with_appcontext
def roles():
    """List every role with the permissions it grants."""
    store = IdentityStore(db.session)
    for role in store.list_roles():
        granted = ', '.join(p.name for p in store.role_permissions(role)) or '-'
        click.echo(f"{role.name}: {granted}")


@iam.command('audit-log')
@click.option('--actor', default=None, help='Only records by this actor')
@click.option('--action', default=None, help='Only records with this action, e.g. ASSIGN_ROLE')
@click.option('--target', default=None, help='Only records whose target contains this text')
@click.option('--limit', default=20, show_default=True, help='Maximum number of records')
@click.option('--oldest-first', is_flag=True, default=False, help='Print in insertion order')
@with_appcontext
def audit_log(actor, action, target, limit, oldest_first):
    """Print audit records, newest first."""
    records = AuditLog(db.session).query(
        actor=actor,
        action=action,
        target_contains=target,
        order='asc' if oldest_first else 'desc',
        limit=limit,
    )
    for record in records:
        click.echo(f"#{record.id} {record.timestamp:%Y-%m-%d %H:%M:%S} {record.actor} {record.action} {record.target}")
