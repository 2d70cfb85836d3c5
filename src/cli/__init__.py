"""CLI commands: one module per mode (serve, check-webhook)."""

from typer import Typer

from src.cli import check_webhook, serve_mode

app = Typer(help="Relay Microsoft Graph mail and Teams notifications to browsers")


def register_commands() -> None:
    """Register all CLI commands on the global app."""
    app.command()(serve_mode.serve)
    app.command(name="check-webhook")(check_webhook.check_webhook)


register_commands()
