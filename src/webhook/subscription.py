"""Microsoft Graph subscription manager: list, create-or-replace, renew, delete."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from src.config import Settings
from src.errors import ProviderError
from src.graph.client import GraphClient
from src.graph.models import Subscription
from src.graph.resource_path import ResourceKind, classify_resource
from src.utils.logger import get_logger

logger = get_logger("change_relay.webhook.subscription")

CHANGE_TYPE = "created,updated"
# Graph caps clientState at 128 characters
CLIENT_STATE_MAX_LENGTH = 128


class SubscriptionKind(str, Enum):
    MAIL = "mail"
    TEAMS = "teams"

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind.EMAIL if self is SubscriptionKind.MAIL else ResourceKind.TEAMS


@dataclass
class SubscriptionResult:
    subscription: Subscription
    status: str

    def to_response(self) -> dict[str, Any]:
        sub = self.subscription
        return {
            "success": True,
            "subscription": sub.to_api(),
            "status": self.status,
            "details": {
                "id": sub.id,
                "expirationDateTime": sub.expiration_date_time,
                "resource": sub.resource,
                "status": self.status,
            },
        }


def _format_expiration(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class SubscriptionManager:
    """Creates and removes Graph subscriptions on behalf of a signed-in user.

    At most one subscription per kind is kept: creating one first deletes every existing
    subscription whose resource classifies as the same kind. This is not transactional;
    if the deletes succeed and the create fails, the kind is left with no subscription.
    """

    def __init__(self, graph: GraphClient, settings: Settings):
        self._graph = graph
        self._settings = settings

    def resource_for(self, kind: SubscriptionKind) -> str:
        if kind is SubscriptionKind.MAIL:
            return self._settings.mail_subscription_resource
        return self._settings.teams_subscription_resource

    def build_descriptor(self, kind: SubscriptionKind, now: datetime | None = None) -> Subscription:
        notification_url = self._settings.notification_url
        client_state = self._settings.require("subscription_secret")
        now = now or datetime.now(timezone.utc)
        expiration = now + timedelta(minutes=self._settings.subscription_ttl_minutes)
        return Subscription(
            change_type=CHANGE_TYPE,
            notification_url=notification_url,
            lifecycle_notification_url=notification_url,
            resource=self.resource_for(kind),
            expiration_date_time=_format_expiration(expiration),
            client_state=client_state[:CLIENT_STATE_MAX_LENGTH],
        )

    async def list(self, token: str) -> list[Subscription]:
        result = await self._graph.get("/subscriptions", token)
        items = (result or {}).get("value") or []
        return [Subscription.model_validate(item) for item in items]

    async def get(self, token: str, subscription_id: str) -> Subscription:
        result = await self._graph.get(f"/subscriptions/{subscription_id}", token)
        return Subscription.model_validate(result or {})

    async def create_or_replace(self, token: str, kind: SubscriptionKind) -> SubscriptionResult:
        # Build first so missing config fails before anything is deleted
        descriptor = self.build_descriptor(kind)
        log = logger.bind(kind=kind.value)

        existing = await self.list(token)
        log.info("webhook.subscription.existing", count=len(existing))
        for sub in existing:
            if sub.id and classify_resource(sub.resource) is kind.resource_kind:
                log.info("webhook.subscription.replacing", subscription_id=sub.id, resource=sub.resource)
                await self.delete(token, sub.id)

        log.info(
            "webhook.subscription.creating",
            resource=descriptor.resource,
            expires=descriptor.expiration_date_time,
        )
        try:
            created_raw = await self._graph.post("/subscriptions", token, json=descriptor.to_api())
        except ProviderError as e:
            log.error(
                "webhook.subscription.create_error",
                status=e.status_code,
                code=e.code,
                error=e.message,
            )
            raise
        created = Subscription.model_validate(created_raw or {})
        if not created.id:
            raise ProviderError("Graph did not return a subscription id", code="invalidResponse")

        confirmed = await self.get(token, created.id)
        status = str(getattr(confirmed, "status", None) or "active")
        log.info(
            "webhook.subscription.created",
            subscription_id=created.id,
            expires=created.expiration_date_time,
            status=status,
        )
        return SubscriptionResult(subscription=created, status=status)

    async def renew(self, token: str, subscription_id: str) -> Subscription:
        """Extend a subscription's expiration to now + TTL."""
        expiration = datetime.now(timezone.utc) + timedelta(minutes=self._settings.subscription_ttl_minutes)
        body = {"expirationDateTime": _format_expiration(expiration)}
        result = await self._graph.patch(f"/subscriptions/{subscription_id}", token, json=body)
        sub = Subscription.model_validate(result or {"id": subscription_id, **body})
        logger.info(
            "webhook.subscription.renewed",
            subscription_id=subscription_id,
            expires=sub.expiration_date_time,
        )
        return sub

    async def delete(self, token: str, subscription_id: str) -> None:
        """Delete a subscription. An already-missing subscription counts as deleted."""
        try:
            await self._graph.delete(f"/subscriptions/{subscription_id}", token)
        except ProviderError as e:
            if e.is_not_found:
                logger.info("webhook.subscription.already_deleted", subscription_id=subscription_id)
                return
            logger.error(
                "webhook.subscription.delete_error",
                subscription_id=subscription_id,
                status=e.status_code,
                error=e.message,
            )
            raise
        logger.info("webhook.subscription.deleted", subscription_id=subscription_id)
