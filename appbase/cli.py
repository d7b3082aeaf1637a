"""AppBase setup commands, registered on ``app.cli``."""

import click
from flask.cli import with_appcontext

from appbase.errors import AppBaseError
from appbase.models.principal import VALID_ROLES, VALID_SCOPES
from appbase.services.principal_service import PrincipalService
from appbase.storage import storage


@click.command('init-db')
@with_appcontext
def init_db_cli():
    """Create every table of the declared record families."""
    storage.initialize_schema()
    click.echo(f"Initialized {len(storage.families())} record families")


@click.command('create-principal')
@click.option('--role', type=click.Choice(VALID_ROLES), required=True)
@click.option('--username', required=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--scope', 'scopes', multiple=True, type=click.Choice(VALID_SCOPES),
              help='Contributor scope, repeatable')
@with_appcontext
def create_principal_cli(role, username, password, scopes):
    """Create an Admin or Contributor account."""
    try:
        principal = PrincipalService.create_principal(role, username, password, scopes=list(scopes))
    except AppBaseError as e:
        raise click.ClickException(e.message)
    click.echo(f"Created {principal.role} {principal.username} ({principal.id})")


@click.command('list-principals')
@click.option('--role', type=click.Choice(VALID_ROLES), default=None)
@with_appcontext
def list_principals_cli(role):
    """List accounts, optionally for one role."""
    principals = PrincipalService.list_principals(role=role)
    if not principals:
        click.echo('No principals')
        return
    for principal in principals:
        state = 'active' if principal.is_active else 'disabled'
        scopes = ','.join(principal.scopes or []) or '-'
        click.echo(f"{principal.id}  {principal.role:<11} {principal.username:<24} {state:<8} {scopes}")


@click.command('set-password')
@click.option('--role', type=click.Choice(VALID_ROLES), required=True)
@click.option('--username', required=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def set_password_cli(role, username, password):
    """Reset an account's password and end all of its sessions."""
    principal = PrincipalService.find_principal(role, username)
    if principal is None:
        raise click.ClickException(f"No {role} named {username}")
    try:
        result = PrincipalService.update_principal(None, principal.id, password=password)
    except AppBaseError as e:
        raise click.ClickException(e.message)
    click.echo(f"Password updated, {result['revoked_sessions']} session(s) revoked")


def register_cli(app):
    app.cli.add_command(init_db_cli)
    app.cli.add_command(create_principal_cli)
    app.cli.add_command(list_principals_cli)
    app.cli.add_command(set_password_cli)
