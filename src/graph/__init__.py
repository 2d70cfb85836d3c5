"""Microsoft Graph access: REST client, resource models and resource-path parsing."""

from src.graph.client import GraphClient
from src.graph.models import (
    ChatMessage,
    EmailAddress,
    GraphMessage,
    ItemBody,
    Recipient,
    Subscription,
    UserProfile,
)
from src.graph.resource_path import (
    ResourceKind,
    ResourcePath,
    classify_resource,
    parse_resource_path,
)

__all__ = [
    "GraphClient",
    "ChatMessage",
    "EmailAddress",
    "GraphMessage",
    "ItemBody",
    "Recipient",
    "Subscription",
    "UserProfile",
    "ResourceKind",
    "ResourcePath",
    "classify_resource",
    "parse_resource_path",
]
