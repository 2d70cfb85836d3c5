"""In-memory deduplication of redelivered webhook notifications.

Graph may deliver the same change more than once. A notification key
``(subscriptionId, resource, changeType)`` seen within the dedup window is
skipped. The table is bounded: once it grows past ``max_entries``, entries
older than the retention window are dropped.
"""

import asyncio
import time
from typing import Callable

from src.config import (
    DEDUP_MAX_ENTRIES,
    DEDUP_PRUNE_INTERVAL_SECONDS,
    DEDUP_RETENTION_SECONDS,
    DEDUP_WINDOW_SECONDS,
)
from src.utils.logger import get_logger
from src.utils.periodic import PeriodicTask

logger = get_logger("change_relay.webhook.dedup_store")

DedupKey = tuple[str, str, str]


class DedupStore:
    """Notification key -> last processed time (monotonic seconds)."""

    def __init__(
        self,
        window_seconds: float = DEDUP_WINDOW_SECONDS,
        retention_seconds: float = DEDUP_RETENTION_SECONDS,
        max_entries: int = DEDUP_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        prune_interval_seconds: float = DEDUP_PRUNE_INTERVAL_SECONDS,
    ):
        self._window = window_seconds
        self._retention = retention_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_processed: dict[DedupKey, float] = {}
        self._pruner = PeriodicTask("dedup_prune", prune_interval_seconds, self.prune)

    def __len__(self) -> int:
        return len(self._last_processed)

    async def check_and_mark(self, key: DedupKey) -> bool:
        """Return True if ``key`` should be processed now, and record it as processed.

        Returns False (and leaves the recorded time untouched) for a repeat inside the window.
        """
        async with self._lock:
            now = self._clock()
            last = self._last_processed.get(key)
            if last is not None and now - last < self._window:
                logger.debug(
                    "dedup_store.duplicate",
                    subscription_id=key[0],
                    resource=key[1],
                    change_type=key[2],
                    since_last=round(now - last, 3),
                )
                return False
            self._last_processed[key] = now
            if len(self._last_processed) > self._max_entries:
                self._prune_locked(now)
            return True

    def _prune_locked(self, now: float) -> int:
        cutoff = now - self._retention
        stale = [k for k, ts in self._last_processed.items() if ts < cutoff]
        for k in stale:
            del self._last_processed[k]
        if stale:
            logger.debug("dedup_store.pruned", removed=len(stale), remaining=len(self._last_processed))
        return len(stale)

    async def prune(self) -> int:
        """Drop every entry older than the retention window."""
        async with self._lock:
            return self._prune_locked(self._clock())

    def start(self) -> None:
        self._pruner.start()

    async def stop(self) -> None:
        await self._pruner.stop()
