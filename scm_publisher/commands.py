"""Flask CLI commands."""
import click
from flask.cli import with_appcontext

from scm_publisher.extensions import db
from scm_publisher.models import User


@click.command("create-user")
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=click.Choice(["admin", "operator", "viewer"]), default="viewer", show_default=True)
@click.option("--display-name", default="")
@click.option("--email", default="")
@with_appcontext
def create_user_command(username, password, role, display_name, email):
    """Create a local user."""
    username = username.strip().lower()
    if User.query.filter_by(username=username).first():
        raise click.ClickException(f"User '{username}' already exists")
    if len(password) < 6:
        raise click.ClickException("Password must be at least 6 characters")

    user = User(username=username, display_name=display_name or username, email=email, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f"Created {role} '{username}'.")


@click.command("reconcile-webhooks")
@with_appcontext
def reconcile_webhooks_command():
    """Retry queued webhook deregistrations now and expire stuck events."""
    from scm_publisher.tasks.maintenance_tasks import expire_stale_events, reconcile_webhook_cleanups

    result = reconcile_webhook_cleanups.run()
    click.echo(
        f"Webhook cleanups: {result['done']} done, {result['failed']} failed, "
        f"{result['abandoned']} abandoned."
    )
    expired = expire_stale_events.run()
    click.echo(f"Stale events expired: {expired['expired']}.")
