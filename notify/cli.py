"""Flask CLI commands for Notify administration."""

import click
from flask import current_app


@click.command("init-db")
def init_db():
    """
    Create the entities table and its indexes.

    Safe to run more than once. Only meaningful for the postgres backend.

    Example:
        flask --app run init-db
    """
    from notify import get_services

    store = get_services().store
    if not hasattr(store, "create_schema"):
        click.echo(f"Store backend '{current_app.config['STORE_BACKEND']}' has no schema to create")
        return
    store.create_schema()
    click.echo("✓ Entity schema ready")


@click.command("sweep-meetings")
def sweep_meetings_command():
    """Mark past scheduled meetings as completed (one pass, for cron)."""
    from notify import get_services
    from notify.services.scheduler import sweep_meetings

    result = sweep_meetings(get_services().store, tz=current_app.config["MEETING_TIMEZONE"])
    click.echo(f"✓ Examined {result.examined} scheduled meetings, completed {result.completed}")
    if result.skipped:
        click.echo(f"  Skipped {result.skipped} with malformed date/time")


def register_commands(app):
    app.cli.add_command(init_db)
    app.cli.add_command(sweep_meetings_command)
