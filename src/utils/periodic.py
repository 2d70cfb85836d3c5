"""Fixed-interval background tasks with explicit start/stop."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable

from src.utils.logger import get_logger

logger = get_logger("change_relay.utils.periodic")


class PeriodicTask:
    """Run ``func`` every ``interval_seconds`` on the running event loop until stopped.

    ``func`` may be sync or async and must be bounded in time: it shares the loop with
    request handling. Exceptions are logged and the loop keeps ticking.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Any | Awaitable[Any]],
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self._func = func
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info("periodic.started", task=self.name, interval=self.interval_seconds)

    async def stop(self, timeout: float = 5.0) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("periodic.stop_timeout", task=self.name, timeout=timeout)
        logger.info("periodic.stopped", task=self.name)

    async def run_once(self) -> Any:
        result = self._func()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("periodic.tick_error", task=self.name, error=str(e))
