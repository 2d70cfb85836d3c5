"""Serve mode: run the FastAPI relay (auth, subscriptions, webhook, SSE)."""

import sys

import typer
import uvicorn

from src.config import PORT, Settings
from src.webhook.server import create_app

from .shared import console, logger


def serve(
    port: int = typer.Option(PORT, "--port", "-p", help="Port for the relay server"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Bind host"),
) -> None:
    """Start the relay server. Missing settings only fail the requests that need them."""
    log = logger.bind(command="serve", port=port)
    log.info("serve.start")

    settings = Settings.from_env()
    missing = settings.missing()
    if missing:
        console.print(f"[yellow]Missing environment variables: {', '.join(missing)}[/yellow]")
        console.print("[dim]Sign-in and subscription endpoints will answer 500 until they are set.[/dim]")
        log.warning("serve.missing_env", missing=missing)
    if settings.webhook_url:
        console.print(f"[dim]Graph will call {settings.notification_url}; make sure it reaches port {port}.[/dim]")

    app = create_app(settings=settings)

    console.print(f"[green]Starting relay on http://{host}:{port}[/green]")
    console.print("[dim]Endpoints: /auth/*, /subscriptions, POST /webhook, GET /events, GET /health[/dim]")
    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="info",
            timeout_graceful_shutdown=15,
        )
    except KeyboardInterrupt:
        console.print("\n[dim]Shutting down...[/dim]")
        sys.exit(0)
