"""Sign-in (MSAL authorization code flow) and browser session state."""

from src.auth.identity import IdentityClient, TokenResult
from src.auth.sessions import Session, SessionStore

__all__ = [
    "IdentityClient",
    "TokenResult",
    "Session",
    "SessionStore",
]
