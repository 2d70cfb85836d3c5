"""Auth API: sign-in URL, authorization callback, session status, logout."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from src.auth.identity import IdentityClient
from src.auth.sessions import SessionStore
from src.config import SESSION_COOKIE_NAME, Settings
from src.errors import AuthError, ConfigError, ProviderError
from src.utils.logger import get_logger
from src.webhook.deps import get_identity, get_sessions, get_settings

logger = get_logger("change_relay.webhook.auth_routes")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/login")
async def login(identity: IdentityClient = Depends(get_identity)) -> dict[str, str]:
    """Return the identity-provider URL the browser should navigate to."""
    auth_url = await identity.build_auth_url()
    logger.info("auth.login_url_built")
    return {"authUrl": auth_url}


@router.get("/callback", response_model=None)
async def callback(
    request: Request,
    code: str | None = None,
    identity: IdentityClient = Depends(get_identity),
    sessions: SessionStore = Depends(get_sessions),
    settings: Settings = Depends(get_settings),
):
    """Redeem the authorization code, open a session and redirect to the UI root."""
    if not code:
        logger.warning("auth.callback.missing_code", error=request.query_params.get("error"))
        return PlainTextResponse("No authorization code received", status_code=400)
    try:
        token = await identity.exchange_code(code)
        profile = await request.app.state.graph.get_profile(token.access_token)
    except (AuthError, ProviderError, ConfigError) as e:
        logger.error("auth.callback.failed", error=str(e), error_type=type(e).__name__)
        return PlainTextResponse("Authentication failed", status_code=500)

    session_id = secrets.token_urlsafe(32)
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=token.expires_in)
    sessions.create(session_id, token.access_token, expires_at, profile)

    response = RedirectResponse(url="/", status_code=302)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        session_id,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/status")
async def status(
    request: Request,
    sessions: SessionStore = Depends(get_sessions),
) -> JSONResponse:
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    session = sessions.get(session_id)
    body: dict[str, Any] = {"isLoggedIn": False}
    if session is not None:
        if await sessions.refresh_if_near_expiry(session):
            body = {
                "isLoggedIn": True,
                "userInfo": session.user_profile.model_dump(by_alias=True),
            }
        else:
            logger.info("auth.status.refresh_failed_session_removed")
            sessions.delete(session_id)
    response = JSONResponse(body)
    if not body["isLoggedIn"]:
        response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.post("/logout")
async def logout(
    request: Request,
    sessions: SessionStore = Depends(get_sessions),
) -> JSONResponse:
    sessions.delete(request.cookies.get(SESSION_COOKIE_NAME))
    response = JSONResponse({"success": True})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response
