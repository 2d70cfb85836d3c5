"""Webhook relay: Graph change notifications in, push events out."""

from src.webhook.models import (
    ResourceData,
    ChangeNotification,
    ChangeNotificationBatch,
    PushEvent,
    PushEventType,
)

__all__ = [
    "ResourceData",
    "ChangeNotification",
    "ChangeNotificationBatch",
    "PushEvent",
    "PushEventType",
]
