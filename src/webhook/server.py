"""FastAPI relay server: auth, subscriptions, Graph webhook and the SSE push channel."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import BackgroundTasks, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from src.auth.identity import IdentityClient
from src.auth.sessions import SessionStore
from src.config import Settings
from src.errors import AuthError, ConfigError, ProviderError
from src.graph.client import GraphClient
from src.utils.logger import get_logger
from src.webhook.auth_routes import router as auth_router
from src.webhook.dedup_store import DedupStore
from src.webhook.ingestor import WebhookIngestor
from src.webhook.models import PushEvent, PushEventType
from src.webhook.push import PushChannelRegistry, QueueConnection, event_stream
from src.webhook.subscription import SubscriptionManager
from src.webhook.subscription_routes import router as subscription_router

logger = get_logger("change_relay.webhook.server")

ACCEPTED_BODY = '{"status":"accepted"}'


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=401)

    @app.exception_handler(ProviderError)
    async def _provider_error(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error(
            "api.provider_error",
            path=request.url.path,
            status=exc.status_code,
            code=exc.code,
            error=exc.message,
        )
        return JSONResponse(
            {"error": "Microsoft Graph request failed", "details": {"code": exc.code, "message": exc.message}},
            status_code=500,
        )

    @app.exception_handler(ConfigError)
    async def _config_error(request: Request, exc: ConfigError) -> JSONResponse:
        logger.error("api.config_error", path=request.url.path, setting=exc.setting)
        return JSONResponse(
            {"error": "Server configuration error", "details": {"setting": exc.setting, "message": str(exc)}},
            status_code=500,
        )


async def _shutdown_tasks(app: FastAPI) -> None:
    """Stop periodic tasks, drop push connections, close the Graph HTTP client."""
    for component in (app.state.sessions, app.state.dedup_store):
        try:
            await component.stop()
        except Exception as e:
            logger.debug("lifespan.stop_error", component=type(component).__name__, error=str(e))
    app.state.push_registry.close_all()
    try:
        await app.state.graph.aclose()
    except Exception as e:
        logger.debug("lifespan.graph_client_close_error", error=str(e))


@asynccontextmanager
async def _lifespan(app: FastAPI):
    missing = app.state.settings.missing()
    if missing:
        logger.warning("lifespan.missing_config", missing=missing)
    app.state.sessions.start()
    app.state.dedup_store.start()
    logger.info("lifespan.started")
    yield
    await _shutdown_tasks(app)
    logger.info("lifespan.stopped")


def create_app(
    settings: Settings | None = None,
    identity: Any = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """
    Create the FastAPI app and its components (held on app.state, one set per app).
    identity: anything with build_auth_url/exchange_code/acquire_app_token; defaults to MSAL.
    http_client: transport for Graph calls; tests pass one built on httpx.MockTransport.
    """
    settings = settings or Settings.from_env()
    app = FastAPI(title="Graph Change Relay", version="0.1.0", lifespan=_lifespan)

    graph = GraphClient(
        http_client=http_client,
        base_url=settings.graph_base_url,
        timeout=settings.graph_timeout_seconds,
    )
    identity = identity or IdentityClient(settings)
    registry = PushChannelRegistry()
    dedup = DedupStore()

    app.state.settings = settings
    app.state.graph = graph
    app.state.identity = identity
    app.state.sessions = SessionStore(fetch_profile=graph.get_profile)
    app.state.subscriptions = SubscriptionManager(graph, settings)
    app.state.dedup_store = dedup
    app.state.push_registry = registry
    app.state.ingestor = WebhookIngestor(
        graph=graph,
        dedup=dedup,
        registry=registry,
        settings=settings,
        acquire_app_token=identity.acquire_app_token,
    )

    _install_error_handlers(app)
    app.include_router(auth_router)
    app.include_router(subscription_router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "connections": len(registry)}

    @app.post("/webhook", response_model=None)
    async def webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
        # Subscription validation: Graph sends validationToken as query param
        validation_token = request.query_params.get("validationToken")
        if validation_token:
            logger.info("webhook.validation_handshake")
            return PlainTextResponse(
                content=validation_token,
                status_code=200,
                media_type="text/plain",
            )

        # Graph expects a fast response; processing runs after the 202 is sent
        body = await request.body()
        background_tasks.add_task(app.state.ingestor.process_body, body)
        return Response(status_code=202, content=ACCEPTED_BODY, media_type="application/json")

    @app.get("/events")
    async def events() -> StreamingResponse:
        connection = QueueConnection()
        return StreamingResponse(
            event_stream(registry, connection),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
        )

    if settings.debug_routes_enabled:

        @app.post("/debug/push-test")
        async def push_test(background_tasks: BackgroundTasks) -> dict[str, int]:
            """Broadcast one sample email event and, shortly after, one sample Teams event."""
            delivered = await registry.broadcast(
                PushEvent(
                    type=PushEventType.EMAIL,
                    change_type="created",
                    subscription_id="test-subscription-id",
                    resource_path="/users/me/messages",
                    data={
                        "messageId": "test-message-id",
                        "subject": "Test email",
                        "from": "Test Sender <test.sender@example.com>",
                        "to": "Current User <current.user@example.com>",
                        "bodyPreview": "Push channel test message",
                        "bodyContent": "<p>If you can read this, the push channel works.</p>",
                        "bodyType": "html",
                        "importance": "normal",
                        "hasAttachments": False,
                    },
                )
            )

            async def _teams_sample() -> None:
                await asyncio.sleep(2)
                await registry.broadcast(
                    PushEvent(
                        type=PushEventType.TEAMS,
                        change_type="created",
                        subscription_id="test-teams-subscription-id",
                        resource_path="/users/me/chats/all",
                        data={"from": "Teams Test User", "content": "Push channel test chat message"},
                    )
                )

            background_tasks.add_task(_teams_sample)
            return {"delivered": delivered}

    return app
