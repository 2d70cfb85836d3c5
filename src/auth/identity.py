"""MSAL confidential client: sign-in URL, authorization-code exchange and app-only tokens."""

import asyncio
import threading
from dataclasses import dataclass
from typing import Any

import msal

from src.config import APP_SCOPES, DELEGATED_SCOPES, Settings
from src.errors import AuthError
from src.utils.logger import get_logger

logger = get_logger("change_relay.auth.identity")


@dataclass
class TokenResult:
    access_token: str
    expires_in: int = 3600


def _token_from_result(result: dict[str, Any] | None, default_error: str) -> TokenResult:
    if not result or "access_token" not in result:
        result = result or {}
        raise AuthError(result.get("error_description") or result.get("error") or default_error)
    return TokenResult(
        access_token=result["access_token"],
        expires_in=int(result.get("expires_in") or 3600),
    )


class IdentityClient:
    """Wraps msal.ConfidentialClientApplication behind awaitable, result-returning calls.

    MSAL is synchronous and performs authority discovery over the network when the
    application object is built, so the object is created lazily and all MSAL calls
    run in a worker thread.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._app: msal.ConfidentialClientApplication | None = None
        self._app_lock = threading.Lock()

    def _get_app(self) -> msal.ConfidentialClientApplication:
        with self._app_lock:
            if self._app is None:
                tenant_id = self._settings.require("tenant_id")
                self._app = msal.ConfidentialClientApplication(
                    client_id=self._settings.require("client_id"),
                    client_credential=self._settings.require("client_secret"),
                    authority=f"https://login.microsoftonline.com/{tenant_id}",
                )
                logger.info("identity.init", tenant_id=tenant_id[:8])
            return self._app

    async def build_auth_url(self) -> str:
        redirect_uri = self._settings.require("redirect_uri")

        def _build() -> str:
            return self._get_app().get_authorization_request_url(
                DELEGATED_SCOPES,
                redirect_uri=redirect_uri,
                prompt="select_account",
                response_mode="query",
            )

        return await asyncio.to_thread(_build)

    async def exchange_code(self, code: str) -> TokenResult:
        """Redeem an authorization code for a delegated token. Raises AuthError on failure."""
        redirect_uri = self._settings.require("redirect_uri")

        def _exchange() -> dict[str, Any]:
            return self._get_app().acquire_token_by_authorization_code(
                code,
                scopes=DELEGATED_SCOPES,
                redirect_uri=redirect_uri,
            )

        result = await asyncio.to_thread(_exchange)
        token = _token_from_result(result, "Authorization code exchange failed")
        logger.info("identity.code_exchanged", expires_in=token.expires_in)
        return token

    async def acquire_app_token(self) -> TokenResult:
        """Client-credentials token for app-only Graph reads. MSAL serves it from cache when valid."""

        def _acquire() -> dict[str, Any]:
            return self._get_app().acquire_token_for_client(scopes=APP_SCOPES)

        result = await asyncio.to_thread(_acquire)
        return _token_from_result(result, "Client credential token request failed")
