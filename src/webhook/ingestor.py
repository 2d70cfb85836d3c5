"""Webhook ingestion: turn Graph notification batches into push events.

Per notification: dedup check -> clientState check -> lifecycle handling ->
classification -> enrichment (or degraded fallback) -> broadcast. Runs after the
HTTP request has already been acknowledged with 202.
"""

import hmac
import json
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from src.auth.identity import TokenResult
from src.config import Settings
from src.errors import AuthError, ConfigError, ProviderError, ValidationError
from src.graph.client import GraphClient
from src.graph.models import ChatMessage, GraphMessage
from src.graph.resource_path import ResourceKind, ResourcePath, parse_resource_path
from src.utils.logger import bind_context, clear_context, get_logger
from src.webhook.dedup_store import DedupStore
from src.webhook.models import (
    ChangeNotification,
    ChangeNotificationBatch,
    PushEvent,
    PushEventType,
    utc_iso,
)
from src.webhook.push import PushChannelRegistry

logger = get_logger("change_relay.webhook.ingestor")

AppTokenProvider = Callable[[], Awaitable[TokenResult]]

EMAIL_SELECT = "id,subject,from,toRecipients,receivedDateTime,bodyPreview,body,importance,hasAttachments"
PREFER_TEXT_BODY = 'outlook.body-content-type="text"'
PREFER_HTML_BODY = 'outlook.body-content-type="html"'
REAUTHORIZATION_REQUIRED = "reauthorizationRequired"

# Expected enrichment failures, logged without a traceback. Any other exception
# also degrades to a placeholder event but is logged with one.
_ENRICHMENT_ERRORS = (ProviderError, AuthError, ConfigError, ValidationError)


def parse_batch(body: bytes | str | None) -> list[dict[str, Any]]:
    """Decode a webhook body into raw notification dicts. Raises ValidationError."""
    if not body:
        raise ValidationError("empty request body")
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"body is not JSON: {e}") from e
    if not isinstance(data, dict) or "value" not in data:
        raise ValidationError("body has no 'value' array")
    try:
        return ChangeNotificationBatch.model_validate(data).value
    except PydanticValidationError as e:
        raise ValidationError(f"'value' is not a list of notifications: {e.error_count()} errors") from e


def _address(recipient: Any) -> str | None:
    if recipient is None or recipient.emailAddress is None:
        return None
    return recipient.emailAddress.display()


class WebhookIngestor:
    """Processes notification batches and emits PushEvents to the registry."""

    def __init__(
        self,
        graph: GraphClient,
        dedup: DedupStore,
        registry: PushChannelRegistry,
        settings: Settings,
        acquire_app_token: AppTokenProvider,
    ):
        self._graph = graph
        self._dedup = dedup
        self._registry = registry
        self._settings = settings
        self._acquire_app_token = acquire_app_token

    async def process_body(self, body: bytes | str | None) -> list[PushEvent]:
        """Entry point for background processing of one acknowledged request."""
        try:
            items = parse_batch(body)
        except ValidationError as e:
            logger.warning("webhook.notifications.parse_error", error=str(e))
            return []
        if not items:
            logger.warning("webhook.notifications.empty_batch")
            return []
        return await self.process_batch(items)

    async def process_batch(self, items: list[dict[str, Any]]) -> list[PushEvent]:
        """Process notifications in arrival order; one failure never stops the rest."""
        logger.info("webhook.notifications.batch", count=len(items))
        emitted: list[PushEvent] = []
        for index, item in enumerate(items):
            try:
                notification = ChangeNotification.model_validate(item)
            except PydanticValidationError as e:
                logger.warning("webhook.notifications.invalid_item", index=index, errors=e.error_count())
                continue
            bind_context(subscription_id=notification.subscription_id)
            try:
                event = await self.process_notification(notification)
                if event is not None:
                    emitted.append(event)
            except Exception as e:
                logger.exception("webhook.notifications.process_error", index=index, error=str(e))
            finally:
                clear_context()
        return emitted

    async def process_notification(self, notification: ChangeNotification) -> PushEvent | None:
        if not await self._dedup.check_and_mark(notification.dedup_key()):
            logger.info(
                "webhook.notifications.duplicate",
                resource=notification.resource,
                change_type=notification.change_type,
            )
            return None

        if not self.check_client_state(notification):
            return None

        if notification.lifecycle_event:
            self._handle_lifecycle(notification)
            return None

        parsed = parse_resource_path(notification.resource)
        logger.info("webhook.notifications.classified", kind=parsed.kind.value, resource=parsed.raw)
        if parsed.kind is ResourceKind.TEAMS:
            event = await self._teams_event(notification, parsed)
        elif parsed.kind is ResourceKind.EMAIL:
            event = await self._email_event(notification, parsed)
        else:
            event = self._unknown_event(notification)
        await self._registry.broadcast(event)
        return event

    def check_client_state(self, notification: ChangeNotification) -> bool:
        """Compare clientState with the shared secret. False means: drop the notification.

        Mismatches are always logged; they only cause a drop in strict mode.
        """
        expected = (self._settings.subscription_secret or "").strip()
        if not expected:
            return True
        received = notification.client_state
        if received is None:
            logger.warning("webhook.security.client_state_missing")
        elif hmac.compare_digest(received.encode(), expected.encode()):
            return True
        else:
            logger.warning("webhook.security.client_state_mismatch")
        if self._settings.strict_client_state:
            logger.warning("webhook.security.notification_rejected")
            return False
        return True

    def _handle_lifecycle(self, notification: ChangeNotification) -> None:
        logger.info(
            "webhook.lifecycle_event",
            lifecycle_event=notification.lifecycle_event,
            expires=notification.subscription_expiration_date_time,
        )
        if notification.lifecycle_event == REAUTHORIZATION_REQUIRED:
            # TODO: call POST /subscriptions/{id}/reauthorize once a token source outside
            # browser sessions exists for delegated subscriptions.
            logger.warning("webhook.lifecycle.reauthorization_required")

    async def _app_token(self) -> str:
        return (await self._acquire_app_token()).access_token

    def _base_event(self, event_type: PushEventType, notification: ChangeNotification) -> dict[str, Any]:
        return {
            "type": event_type,
            "change_type": notification.change_type or "unknown",
            "subscription_id": notification.subscription_id or "unknown",
            "resource_path": notification.resource or "unknown",
        }

    @staticmethod
    def email_path(notification: ChangeNotification, parsed: ResourcePath) -> str:
        data = notification.resource_data
        if data is not None and data.id:
            return f"/users/{parsed.user_id}/messages/{data.id}"
        if data is not None and data.odata_id:
            return data.odata_id
        if parsed.message_id:
            return f"/users/{parsed.user_id}/messages/{parsed.message_id}"
        raise ValidationError("notification names no message id (resourceData or resource path)")

    @staticmethod
    def teams_path(notification: ChangeNotification, parsed: ResourcePath) -> str:
        data = notification.resource_data
        if data is not None and data.odata_id:
            return data.odata_id
        if not parsed.raw:
            raise ValidationError("notification has no resource path for the chat message")
        # Append resourceData.id only when the path stops at the messages collection
        if parsed.message_id is None and data is not None and data.id:
            return f"{parsed.raw.rstrip('/')}/{data.id}"
        return parsed.raw

    @staticmethod
    def _log_enrich_failure(event_name: str, error: Exception) -> None:
        if isinstance(error, _ENRICHMENT_ERRORS):
            logger.warning(event_name, error=str(error), error_type=type(error).__name__)
        else:
            logger.exception(event_name, error=str(error), error_type=type(error).__name__)

    async def _email_event(self, notification: ChangeNotification, parsed: ResourcePath) -> PushEvent:
        base = self._base_event(PushEventType.EMAIL, notification)
        try:
            data = await self._fetch_email(notification, parsed)
        except Exception as e:
            self._log_enrich_failure("webhook.enrich.email_failed", e)
            now = utc_iso()
            data = {
                "subject": "Email notification (details unavailable)",
                "from": "Unknown sender",
                "to": "Unknown recipient",
                "receivedDateTime": now,
                "bodyPreview": "Could not fetch the message details; see the server log.",
                "error": str(e) or type(e).__name__,
            }
        return PushEvent(**base, data=data)

    async def _fetch_email(self, notification: ChangeNotification, parsed: ResourcePath) -> dict[str, Any]:
        path = self.email_path(notification, parsed)
        token = await self._app_token()
        raw = await self._graph.get(
            path,
            token,
            params={"$select": EMAIL_SELECT},
            headers={"Prefer": PREFER_TEXT_BODY},
        )
        message = GraphMessage.model_validate(raw or {})
        body_content = "(no content)"
        body_type = "text"
        if message.body is not None and message.body.content:
            body_content = message.body.content
            body_type = message.body.contentType or "text"
        else:
            logger.debug("webhook.enrich.email_body_retry", path=path)
            try:
                retry = await self._graph.get(
                    path,
                    token,
                    params={"$select": "body"},
                    headers={"Prefer": PREFER_HTML_BODY},
                )
                body = GraphMessage.model_validate(retry or {}).body
                if body is not None and body.content:
                    body_content = body.content
                    body_type = body.contentType or "html"
            except ProviderError as e:
                logger.warning("webhook.enrich.email_body_retry_failed", error=e.message)

        to = [a for a in (_address(r) for r in message.toRecipients) if a]
        logger.info("webhook.enrich.email", message_id=message.id)
        return {
            "messageId": message.id,
            "subject": message.subject or "(no subject)",
            "from": _address(message.from_) or "Unknown sender",
            "to": ", ".join(to) if to else "Unknown recipient",
            "receivedDateTime": message.receivedDateTime,
            "bodyPreview": message.bodyPreview or "(no preview)",
            "bodyContent": body_content,
            "bodyType": body_type,
            "importance": message.importance or "normal",
            "hasAttachments": bool(message.hasAttachments),
        }

    async def _teams_event(self, notification: ChangeNotification, parsed: ResourcePath) -> PushEvent:
        base = self._base_event(PushEventType.TEAMS, notification)
        try:
            data = await self._fetch_chat_message(notification, parsed)
        except Exception as e:
            self._log_enrich_failure("webhook.enrich.teams_failed", e)
            data = {
                "from": "Unknown user",
                "content": "Could not fetch the Teams message details; see the server log.",
                "createdDateTime": utc_iso(),
                "error": str(e) or type(e).__name__,
            }
        return PushEvent(**base, data=data)

    async def _fetch_chat_message(self, notification: ChangeNotification, parsed: ResourcePath) -> dict[str, Any]:
        path = self.teams_path(notification, parsed)
        token = await self._app_token()
        raw = await self._graph.get(path, token)
        message = ChatMessage.model_validate(raw or {})
        sender = None
        if message.from_ is not None:
            identity = message.from_.user or message.from_.application
            sender = identity.displayName if identity is not None else None
        logger.info("webhook.enrich.teams", message_id=message.id)
        return {
            "messageId": message.id,
            "content": message.body.content if message.body is not None else "(no content)",
            "contentType": message.body.contentType if message.body is not None else "text",
            "from": sender or "Unknown user",
            "chatId": message.chatId or "",
            "createdDateTime": message.createdDateTime or utc_iso(),
            "lastModifiedDateTime": message.lastModifiedDateTime,
        }

    def _unknown_event(self, notification: ChangeNotification) -> PushEvent:
        now = utc_iso()
        logger.info("webhook.notifications.unknown_type", resource=notification.resource)
        return PushEvent(
            **self._base_event(PushEventType.UNKNOWN, notification),
            received_at=now,
            data={
                "resource": notification.resource or "unknown",
                "changeType": notification.change_type or "unknown",
                "receivedAt": now,
                "processedAt": now,
                "message": "Received a notification of unknown type",
                "originalNotification": notification.raw(),
            },
        )
