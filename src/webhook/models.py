"""Pydantic models for Graph change notification payloads and outgoing push events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ResourceData(BaseModel):
    """Resource data included in a change notification (e.g. message id)."""

    odata_type: str | None = Field(None, alias="@odata.type")
    odata_id: str | None = Field(None, alias="@odata.id")
    odata_etag: str | None = Field(None, alias="@odata.etag")
    id: str | None = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class ChangeNotification(BaseModel):
    """Single change notification from Microsoft Graph (changeNotification resource type)."""

    change_type: str | None = Field(None, alias="changeType")
    client_state: str | None = Field(None, alias="clientState")
    id: str | None = None
    lifecycle_event: str | None = Field(None, alias="lifecycleEvent")
    resource: str | None = None
    resource_data: ResourceData | None = Field(None, alias="resourceData")
    subscription_expiration_date_time: str | None = Field(
        None, alias="subscriptionExpirationDateTime"
    )
    subscription_id: str | None = Field(None, alias="subscriptionId")
    tenant_id: str | None = Field(None, alias="tenantId")

    model_config = {"populate_by_name": True, "extra": "allow"}

    def dedup_key(self) -> tuple[str, str, str]:
        return (self.subscription_id or "", self.resource or "", self.change_type or "")

    def raw(self) -> dict[str, Any]:
        """The notification as Graph sent it (camelCase keys)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ChangeNotificationBatch(BaseModel):
    """Request body of a Graph webhook POST: array of change notifications in 'value'."""

    value: list[dict[str, Any]] = Field(default_factory=list)


class PushEventType(str, Enum):
    EMAIL = "email"
    TEAMS = "teams"
    UNKNOWN = "unknown"


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PushEvent(BaseModel):
    """Event broadcast to browsers on the push channel. Never persisted."""

    type: PushEventType
    change_type: str = Field("unknown", alias="changeType")
    subscription_id: str = Field("unknown", alias="subscriptionId")
    resource_path: str = Field("unknown", alias="resourcePath")
    received_at: str = Field(default_factory=utc_iso, alias="receivedAt")
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True, "use_enum_values": True}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
