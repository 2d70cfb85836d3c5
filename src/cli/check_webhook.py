"""Smoke-test a deployed webhook endpoint: validation handshake and a sample notification."""

import httpx
import typer

from src.config import SUBSCRIPTION_SECRET, WEBHOOK_URL

from .shared import console, logger

VALIDATION_TOKEN = "TestValidationToken12345"


def _endpoint(url: str) -> str:
    url = url.rstrip("/")
    return url if url.endswith("/webhook") else f"{url}/webhook"


def check_webhook(
    url: str = typer.Argument(WEBHOOK_URL or "http://localhost:3000", help="Relay base URL or /webhook URL"),
    timeout: float = typer.Option(10.0, "--timeout", help="Per-request timeout in seconds"),
) -> None:
    """Send the two requests Graph sends and check the relay's answers (200 echo, then 202)."""
    endpoint = _endpoint(url)
    log = logger.bind(command="check-webhook", endpoint=endpoint)
    console.print(f"[dim]Webhook endpoint: {endpoint}[/dim]")
    failures = 0

    with httpx.Client(timeout=timeout) as client:
        try:
            r = client.post(endpoint, params={"validationToken": VALIDATION_TOKEN})
        except httpx.HTTPError as e:
            console.print(f"[red]Validation request failed: {e}[/red]")
            log.error("check_webhook.validation_error", error=str(e))
            raise typer.Exit(1) from e
        if r.status_code == 200 and r.text == VALIDATION_TOKEN:
            console.print("[green]PASS[/green] validation handshake echoed the token with 200")
        else:
            failures += 1
            console.print(f"[red]FAIL[/red] validation handshake: status {r.status_code}, body {r.text[:80]!r}")

        notification = {
            "value": [
                {
                    "subscriptionId": "test-subscription-id",
                    "clientState": SUBSCRIPTION_SECRET or "test-secret",
                    "changeType": "created",
                    "resource": "/users/test-user/messages",
                    "resourceData": {"@odata.id": "test-resource-id", "@odata.etag": "test-etag"},
                }
            ]
        }
        try:
            r = client.post(endpoint, json=notification)
        except httpx.HTTPError as e:
            console.print(f"[red]Notification request failed: {e}[/red]")
            log.error("check_webhook.notification_error", error=str(e))
            raise typer.Exit(1) from e
        if r.status_code == 202:
            console.print("[green]PASS[/green] notification acknowledged with 202")
        else:
            failures += 1
            console.print(f"[red]FAIL[/red] notification: expected 202, got {r.status_code}")

    log.info("check_webhook.done", failures=failures)
    if failures:
        raise typer.Exit(1)
