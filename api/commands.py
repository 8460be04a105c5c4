"""Flask CLI commands (run with `flask --app api prune-tokens`)."""
import click
from flask import current_app


def register_commands(app):
    @app.cli.command("prune-tokens")
    def prune_tokens():
        """Delete blacklist entries and refresh tokens past their expiry."""
        result = current_app.extensions["auth"].prune_expired()
        click.echo(
            f"Removed {result['blacklisted_tokens']} blacklisted and "
            f"{result['refresh_tokens']} refresh tokens"
        )

    @app.cli.command("init-db")
    def init_db():
        """Create any missing tables."""
        current_app.extensions["storage"].reload()
        click.echo("Database initialised")
