"""Configuration and settings."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from src.errors import ConfigError

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
OUTPUT_DIR = PROJECT_ROOT / "output"

# Logging
LOG_DIR = OUTPUT_DIR / "logs"
LOG_FILE = LOG_DIR / "app.jsonl"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
VERBOSE_LOGGING = os.getenv("VERBOSE_LOGGING", "false").lower() == "true"

# Ensure log directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Identity provider (Entra ID app registration)
CLIENT_ID = os.getenv("CLIENT_ID", "")
CLIENT_SECRET = os.getenv("CLIENT_SECRET", "")
TENANT_ID = os.getenv("TENANT_ID", "")
REDIRECT_URI = os.getenv("REDIRECT_URI", "")

# HTTP server
PORT = int(os.getenv("PORT", "3000"))
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
DEBUG_ROUTES_ENABLED = os.getenv("DEBUG_ROUTES_ENABLED", "false").lower() == "true"

# Graph API
GRAPH_BASE_URL = os.getenv("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0").rstrip("/")
GRAPH_TIMEOUT_SECONDS = float(os.getenv("GRAPH_TIMEOUT_SECONDS", "10"))

# Webhook (Graph change notifications)
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "").rstrip("/")
SUBSCRIPTION_SECRET = os.getenv("SUBSCRIPTION_SECRET", "")
WEBHOOK_STRICT_CLIENT_STATE = os.getenv("WEBHOOK_STRICT_CLIENT_STATE", "false").lower() == "true"

# Subscriptions (chat messages without resource data allow at most 60 minutes)
SUBSCRIPTION_TTL_MINUTES = int(os.getenv("SUBSCRIPTION_TTL_MINUTES", "60"))
MAIL_SUBSCRIPTION_RESOURCE = os.getenv(
    "MAIL_SUBSCRIPTION_RESOURCE",
    "/me/mailFolders('Inbox')/messages",
)
TEAMS_SUBSCRIPTION_RESOURCE = os.getenv(
    "TEAMS_SUBSCRIPTION_RESOURCE",
    "/me/chats/getAllMessages",
)

# Sessions
SESSION_COOKIE_NAME = "sessionId"
SESSION_REFRESH_THRESHOLD_SECONDS = 10 * 60
SESSION_REFRESH_EXTENSION_SECONDS = 60 * 60
SESSION_SWEEP_INTERVAL_SECONDS = 5 * 60

# Webhook deduplication
DEDUP_WINDOW_SECONDS = 30
DEDUP_RETENTION_SECONDS = 5 * 60
DEDUP_MAX_ENTRIES = 100
DEDUP_PRUNE_INTERVAL_SECONDS = 60

# Push channel
PUSH_QUEUE_MAX = 100
PUSH_KEEPALIVE_SECONDS = 15.0

# Delegated scopes requested at sign-in (MSAL adds openid/profile/offline_access itself)
DELEGATED_SCOPES = [
    "User.Read",
    "Mail.ReadWrite",
    "Chat.Read",
    "Chat.ReadWrite",
    "ChatMessage.Read",
]
APP_SCOPES = ["https://graph.microsoft.com/.default"]


class Settings(BaseModel):
    """Snapshot of the environment-driven settings consumed by the app."""

    client_id: str = ""
    client_secret: str = ""
    tenant_id: str = ""
    redirect_uri: str = ""
    webhook_url: str = ""
    subscription_secret: str = ""
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    graph_timeout_seconds: float = 10.0
    subscription_ttl_minutes: int = 60
    mail_subscription_resource: str = "/me/mailFolders('Inbox')/messages"
    teams_subscription_resource: str = "/me/chats/getAllMessages"
    strict_client_state: bool = False
    cookie_secure: bool = False
    debug_routes_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            tenant_id=TENANT_ID,
            redirect_uri=REDIRECT_URI,
            webhook_url=WEBHOOK_URL,
            subscription_secret=SUBSCRIPTION_SECRET,
            graph_base_url=GRAPH_BASE_URL,
            graph_timeout_seconds=GRAPH_TIMEOUT_SECONDS,
            subscription_ttl_minutes=SUBSCRIPTION_TTL_MINUTES,
            mail_subscription_resource=MAIL_SUBSCRIPTION_RESOURCE,
            teams_subscription_resource=TEAMS_SUBSCRIPTION_RESOURCE,
            strict_client_state=WEBHOOK_STRICT_CLIENT_STATE,
            cookie_secure=COOKIE_SECURE,
            debug_routes_enabled=DEBUG_ROUTES_ENABLED,
        )

    def require(self, name: str) -> str:
        """Return a required string setting or raise ConfigError if it is empty."""
        value = (getattr(self, name, "") or "").strip()
        if not value:
            raise ConfigError(name.upper())
        return value

    @property
    def notification_url(self) -> str:
        """Webhook endpoint registered with Graph; WEBHOOK_URL may already end in /webhook."""
        base = self.require("webhook_url").rstrip("/")
        return base if base.endswith("/webhook") else f"{base}/webhook"

    def missing(self) -> list[str]:
        """Names of required settings that are empty."""
        required = (
            "client_id",
            "client_secret",
            "tenant_id",
            "redirect_uri",
            "webhook_url",
            "subscription_secret",
        )
        return [name.upper() for name in required if not (getattr(self, name) or "").strip()]
