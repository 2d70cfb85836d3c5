"""Single parser for Graph resource paths used by notifications and subscriptions.

Graph writes the same resource in several shapes: ``Users/{id}/Messages/{id}``,
``/me/mailFolders('Inbox')/messages``, ``chats('19:...')/messages('...')``. Every
caller goes through :func:`parse_resource_path` instead of matching ad hoc.
"""

import re
from dataclasses import dataclass
from enum import Enum


class ResourceKind(str, Enum):
    EMAIL = "email"
    TEAMS = "teams"
    UNKNOWN = "unknown"


# Segment value is either "/{value}" or "('{value}')"
_USER_PATTERN = re.compile(r"(?i)users(?:/|\(')([^/']+)")
_CHAT_PATTERN = re.compile(r"(?i)chats(?:/|\(')([^/'?#]+)")
_MESSAGE_PATTERN = re.compile(r"(?i)messages(?:/|\(')([^/'?#()]+)'?\)?/?$")


@dataclass(frozen=True)
class ResourcePath:
    """Tagged view of a resource path: kind plus whatever identifiers it names."""

    kind: ResourceKind
    raw: str
    user_id: str = "me"
    message_id: str | None = None
    chat_id: str | None = None


def classify_resource(resource: str | None) -> ResourceKind:
    """Chat paths are tested first: a chat message path also contains "/messages"."""
    path = (resource or "").lower()
    if "/chats" in path or "chats(" in path:
        return ResourceKind.TEAMS
    if "/messages" in path:
        return ResourceKind.EMAIL
    return ResourceKind.UNKNOWN


def parse_resource_path(resource: str | None) -> ResourcePath:
    raw = (resource or "").strip()
    user = _USER_PATTERN.search(raw)
    chat = _CHAT_PATTERN.search(raw)
    message = _MESSAGE_PATTERN.search(raw)
    chat_id = chat.group(1) if chat else None
    if chat_id is not None and chat_id.lower() == "getallmessages":
        chat_id = None
    return ResourcePath(
        kind=classify_resource(raw),
        raw=raw,
        user_id=user.group(1) if user else "me",
        message_id=message.group(1) if message else None,
        chat_id=chat_id,
    )
