"""Async Microsoft Graph REST client (httpx) used for subscriptions, profiles and enrichment."""

import asyncio
from typing import Any

import httpx

from src.errors import ProviderError
from src.graph.models import UserProfile
from src.utils.logger import get_logger

logger = get_logger("change_relay.graph.client")

TRANSIENT_RETRY_ATTEMPTS = 3
# POST/PATCH are not replayed: a dropped response may hide a create that already happened
RETRYABLE_METHODS = frozenset({"GET", "DELETE"})


def _is_transient_network_error(e: Exception) -> bool:
    """True if the exception is a transient I/O/network error worth retrying.

    Timeouts are not retried: an unresponsive Graph call already used its budget.
    """
    if isinstance(e, httpx.TimeoutException):
        return False
    if isinstance(e, (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionResetError)):
        return True
    return False


def _error_from_response(response: httpx.Response) -> ProviderError:
    """Build a ProviderError from a Graph error body: {"error": {"code", "message"}}."""
    code = None
    message = response.reason_phrase or f"HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        code = body["error"].get("code") or None
        message = body["error"].get("message") or message
    return ProviderError(message, status_code=response.status_code, code=code)


class GraphClient:
    """Thin wrapper over an httpx.AsyncClient bound to the Graph base URL.

    Every call carries its own bearer token (delegated session token or app token),
    so one client instance serves all sessions. Failures surface as ProviderError.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 10.0,
    ):
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def url_for(self, path: str) -> str:
        """Resolve a Graph path. Accepts absolute URLs and @odata.id values without a leading slash."""
        if path.startswith("https://") or path.startswith("http://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        """Send one Graph request; return parsed JSON (None for empty bodies)."""
        request_headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        if headers:
            request_headers.update(headers)
        url = self.url_for(path)
        attempts = TRANSIENT_RETRY_ATTEMPTS if method.upper() in RETRYABLE_METHODS else 1
        for attempt in range(attempts):
            try:
                response = await self._http.request(
                    method,
                    url,
                    params=params,
                    headers=request_headers,
                    json=json,
                    timeout=self._timeout,
                )
                break
            except httpx.TimeoutException as e:
                logger.warning("graph.request.timeout", method=method, path=path, timeout=self._timeout)
                raise ProviderError(
                    f"Graph request timed out after {self._timeout}s",
                    code="timeout",
                ) from e
            except httpx.HTTPError as e:
                if attempt < attempts - 1 and _is_transient_network_error(e):
                    delay = 0.5 * (attempt + 1)
                    logger.debug(
                        "graph.request.retry",
                        method=method,
                        path=path,
                        attempt=attempt + 1,
                        error_type=type(e).__name__,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(
                    "graph.request.network_error",
                    method=method,
                    path=path,
                    error=str(e) or repr(e),
                    error_type=type(e).__name__,
                )
                raise ProviderError(str(e) or type(e).__name__, code="network_error") from e

        if response.is_error:
            error = _error_from_response(response)
            logger.debug(
                "graph.request.error",
                method=method,
                path=path,
                status=response.status_code,
                code=error.code,
            )
            raise error
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Graph returned a non-JSON body", status_code=response.status_code) from e

    async def get(self, path: str, token: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, token, **kwargs)

    async def post(self, path: str, token: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, token, **kwargs)

    async def patch(self, path: str, token: str, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, token, **kwargs)

    async def delete(self, path: str, token: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, token, **kwargs)

    async def get_profile(self, token: str) -> UserProfile:
        """GET /me, reduced to the fields kept on a session."""
        data = await self.get("/me", token)
        return UserProfile.model_validate(data or {})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
