"""Push channel: registry of open browser connections and Server-Sent-Events framing."""

import asyncio
import json
from typing import AsyncIterator, Protocol

from src.config import PUSH_KEEPALIVE_SECONDS, PUSH_QUEUE_MAX
from src.utils.logger import get_logger
from src.webhook.models import PushEvent

logger = get_logger("change_relay.webhook.push")

CONNECTED_PAYLOAD = json.dumps({"type": "connected"})
# Queued by close() so a blocked receive() returns at once
_WAKE = ""


class ConnectionClosedError(Exception):
    """Write attempted on a connection that can no longer accept data."""


class PushConnection(Protocol):
    async def send(self, payload: str) -> None:
        """Deliver one serialized event. Raises on failure."""
        ...


class QueueConnection:
    """Connection backed by a bounded asyncio.Queue drained by the SSE response.

    A full queue means the client stopped reading; that counts as a failed write.
    """

    def __init__(self, maxsize: int = PUSH_QUEUE_MAX):
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: str) -> None:
        if self._closed:
            raise ConnectionClosedError("connection closed")
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull as e:
            raise ConnectionClosedError("client is not draining its queue") from e

    async def receive(self, timeout: float | None = None) -> str | None:
        """Next payload, or None when ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        """Mark closed and wake a reader blocked in receive()."""
        if self._closed:
            return
        self._closed = True
        # A full queue already has items for the reader to wake on
        if not self._queue.full():
            self._queue.put_nowait(_WAKE)


class PushChannelRegistry:
    """Tracks open push connections and fans events out to them.

    Delivery is best-effort and at-most-once per connected client: there is no backlog,
    and a connection whose write fails is dropped without retry.
    """

    def __init__(self) -> None:
        self._connections: set[PushConnection] = set()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection: object) -> bool:
        return connection in self._connections

    async def subscribe(self, connection: PushConnection) -> None:
        self._connections.add(connection)
        logger.info("push.subscribed", connections=len(self._connections))
        try:
            await connection.send(CONNECTED_PAYLOAD)
        except Exception as e:
            logger.warning("push.connected_send_failed", error=str(e) or type(e).__name__)
            self.unsubscribe(connection)

    def unsubscribe(self, connection: PushConnection) -> None:
        if connection in self._connections:
            self._connections.discard(connection)
            logger.info("push.unsubscribed", connections=len(self._connections))

    async def broadcast(self, event: PushEvent) -> int:
        """Write ``event`` to every registered connection; return how many writes succeeded."""
        if not self._connections:
            logger.warning("push.broadcast.no_clients", event_type=event.type)
            return 0
        payload = event.to_json()
        delivered = 0
        for connection in list(self._connections):
            try:
                await connection.send(payload)
                delivered += 1
            except Exception as e:
                logger.warning("push.broadcast.write_failed", error=str(e) or type(e).__name__)
                self.unsubscribe(connection)
        logger.info(
            "push.broadcast",
            event_type=event.type,
            delivered=delivered,
            connections=len(self._connections),
        )
        return delivered

    def close_all(self) -> None:
        for connection in list(self._connections):
            close = getattr(connection, "close", None)
            if callable(close):
                close()
        self._connections.clear()


def sse_frame(payload: str) -> str:
    return f"data: {payload}\n\n"


async def event_stream(
    registry: PushChannelRegistry,
    connection: QueueConnection,
    keepalive_seconds: float = PUSH_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames for one client until it disconnects or is dropped by the registry."""
    await registry.subscribe(connection)
    try:
        while connection in registry and not connection.closed:
            payload = await connection.receive(timeout=keepalive_seconds)
            if connection.closed:
                break
            if payload is None:
                yield ": keep-alive\n\n"
                continue
            yield sse_frame(payload)
    finally:
        connection.close()
        registry.unsubscribe(connection)
