"""FastAPI dependencies resolving components from app.state."""

from fastapi import Request

from src.auth.identity import IdentityClient
from src.auth.sessions import Session, SessionStore
from src.config import SESSION_COOKIE_NAME, Settings
from src.webhook.subscription import SubscriptionManager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_identity(request: Request) -> IdentityClient:
    return request.app.state.identity


def get_subscriptions(request: Request) -> SubscriptionManager:
    return request.app.state.subscriptions


def require_session(request: Request) -> Session:
    """Session from the cookie; raises AuthError (401) when missing or expired."""
    sessions: SessionStore = request.app.state.sessions
    return sessions.require(request.cookies.get(SESSION_COOKIE_NAME))
