import click
from flask import current_app
from flask.cli import with_appcontext

from iamledger import db
from iamledger.auth.permissions import PERMISSION_METADATA, ROLE_PERMISSIONS
from iamledger.models import Permission, Role, RolePermission
from iamledger.services import ProvisioningWorkflow


@click.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    from iamledger import models  # noqa: F401
    db.create_all()
    click.echo("Database tables created.")


@click.command('seed-catalogue')
@click.option('--actor', default=None, help='Actor recorded in the audit trail (defaults to IAM_SYSTEM_ACTOR)')
@with_appcontext
def seed_catalogue(actor):
    """
    Creates the default permissions and roles and grants between them.
    Entries that already exist are left alone, so the command can be rerun.
    """
    actor = actor or current_app.config['IAM_SYSTEM_ACTOR']
    workflow = ProvisioningWorkflow.from_config(db.session, current_app.config)
    created = 0
    failures = 0

    for name, (category, description) in sorted(PERMISSION_METADATA.items()):
        if Permission.query.filter_by(name=name).first():
            continue
        result = workflow.create_permission(actor, name, description=description, category=category)
        created, failures = _tally(result, created, failures)

    for role_name, perms in sorted(ROLE_PERMISSIONS.items()):
        role = Role.query.filter_by(name=role_name).first()
        if role is None:
            result = workflow.create_role(actor, role_name)
            created, failures = _tally(result, created, failures)
            if not result.ok:
                continue
            role = result.entity

        for perm_name in sorted(perms):
            permission = Permission.query.filter_by(name=perm_name).first()
            if permission and db.session.get(RolePermission, (role.id, permission.id)):
                continue
            result = workflow.grant_permission(actor, role_name, perm_name)
            created, failures = _tally(result, created, failures)

    click.echo(f"Seeded {created} catalogue entries ({failures} failed).")
    if failures:
        raise click.exceptions.Exit(1)


def _tally(result, created, failures):
    if result.ok:
        return created + (0 if result.noop else 1), failures
    current_app.logger.error(f"Seeding failed: {result.reason.value}: {result.message}")
    return created, failures + 1
