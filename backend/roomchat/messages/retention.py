"""Background purge of expired chat messages.

The sweeper is owned by the application lifespan: ``start()`` spawns the
recurring task and ``stop()`` cancels it. Each tick deletes every message
older than the retention window, across all rooms. A failed sweep is logged
and retried on the next tick.

Both the clock and the sleep function are injectable so tests can drive the
loop with a virtual clock instead of wall-clock timers.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from .schemas import MESSAGE_TTL_HOURS, utcnow
from .store import MessageStore

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60


class RetentionSweeper:
    """Recurring task deleting messages older than *ttl*."""

    def __init__(
        self,
        store: MessageStore,
        ttl: timedelta = timedelta(hours=MESSAGE_TTL_HOURS),
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._interval = interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background sweep task (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "[Retention] Sweep task started (ttl=%s, interval=%ss)",
            self._ttl,
            self._interval,
        )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[Retention] Sweep task stopped")

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    def cutoff(self) -> datetime:
        return self._clock() - self._ttl

    async def sweep_once(self) -> int:
        """Purge expired messages once.

        Returns:
            Number of deleted messages.
        """
        cutoff = self.cutoff()
        deleted = await self._store.purge_older_than(cutoff)
        logger.info(
            "[Retention] Deleted %d messages older than %s", deleted, cutoff.isoformat()
        )
        return deleted

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("[Retention] Sweep failed; retrying on next tick")
