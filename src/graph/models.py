"""Pydantic models for the Microsoft Graph resources the relay reads (subset we need)."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class EmailAddress(BaseModel):
    """Graph emailAddress."""

    address: str = ""
    name: Optional[str] = None

    def display(self) -> str:
        if not self.name:
            return self.address
        if not self.address:
            return self.name
        return f"{self.name} <{self.address}>"


class Recipient(BaseModel):
    """Graph recipient (from, toRecipients, etc.)."""

    emailAddress: Optional[EmailAddress] = None


class ItemBody(BaseModel):
    """Graph itemBody (message body)."""

    contentType: str = "text"  # "text" | "html"
    content: str = ""


class GraphMessage(BaseModel):
    """Microsoft Graph mail message resource (subset)."""

    id: str = ""
    subject: Optional[str] = None
    receivedDateTime: Optional[str] = None  # ISO 8601
    body: Optional[ItemBody] = None
    bodyPreview: Optional[str] = None
    from_: Optional[Recipient] = Field(None, alias="from")
    toRecipients: list[Recipient] = []
    importance: Optional[str] = None
    hasAttachments: Optional[bool] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class ChatIdentity(BaseModel):
    displayName: Optional[str] = None
    id: Optional[str] = None


class ChatMessageFrom(BaseModel):
    user: Optional[ChatIdentity] = None
    application: Optional[ChatIdentity] = None


class ChatMessage(BaseModel):
    """Microsoft Graph chatMessage resource (subset)."""

    id: str = ""
    chatId: Optional[str] = None
    body: Optional[ItemBody] = None
    from_: Optional[ChatMessageFrom] = Field(None, alias="from")
    createdDateTime: Optional[str] = None
    lastModifiedDateTime: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class UserProfile(BaseModel):
    """Signed-in user's profile as shown in the UI (from GET /me)."""

    display_name: Optional[str] = Field(None, alias="displayName")
    mail: Optional[str] = None
    principal_name: Optional[str] = Field(None, alias="userPrincipalName")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class Subscription(BaseModel):
    """Graph subscription. The provider owns it; unknown fields are kept as-is."""

    id: Optional[str] = None
    resource: str = ""
    change_type: Optional[str] = Field(None, alias="changeType")
    expiration_date_time: Optional[str] = Field(None, alias="expirationDateTime")
    client_state: Optional[str] = Field(None, alias="clientState")
    notification_url: Optional[str] = Field(None, alias="notificationUrl")
    lifecycle_notification_url: Optional[str] = Field(None, alias="lifecycleNotificationUrl")

    model_config = {"populate_by_name": True, "extra": "allow"}

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
