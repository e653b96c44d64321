"""Periodic background sync.

Runs ``SyncOrchestrator.run_sync(is_automatic=True)`` once when started and
then every ``interval_minutes`` (15 by default, the shortest interval the
phone OS scheduler granted the vendor app).  Failed runs are simply retried
on the next tick; there is no backoff.

After every tick the ``on_complete`` callback receives the result, whether
the run succeeded or not, so the host can release whatever it holds for the
background task.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from src.sanitas.base import SyncResult
from src.sanitas.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger("sanitas.sync.scheduler")

DEFAULT_INTERVAL_MINUTES = 15

CompletionCallback = Callable[[SyncResult], Any]


class SyncScheduler:
    """Trigger automatic sync runs on a fixed cadence.

    Usage::

        scheduler = SyncScheduler(orchestrator, interval_minutes=15)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator:     The single sync entry point.
            interval_minutes: Delay between the end of one tick and the next.
            on_complete:      Sync or async callback(SyncResult), invoked after every tick.
        """
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self._orchestrator = orchestrator
        self._interval = timedelta(minutes=interval_minutes)
        self._on_complete = on_complete
        self._task: asyncio.Task | None = None
        self.last_tick_at: datetime | None = None
        self.next_tick_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> timedelta:
        return self._interval

    def start(self) -> None:
        """Start the background loop.  No-op if already running."""
        if self.is_running:
            logger.debug("SyncScheduler: already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="sanitas-sync")
        logger.info("SyncScheduler: started (every %s)", self._interval)

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish.  Idempotent."""
        task, self._task = self._task, None
        self.next_tick_at = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("SyncScheduler: stopped")

    async def run_once(self) -> SyncResult:
        """Run one automatic sync and signal completion."""
        result: SyncResult | None = None
        try:
            result = await self._orchestrator.run_sync(is_automatic=True)
            return result
        finally:
            self.last_tick_at = datetime.now(timezone.utc)
            if result is not None:
                await self._signal_complete(result)

    async def _loop(self) -> None:
        while True:
            result = await self.run_once()
            if result.success and result.record_count:
                logger.info("SyncScheduler: %d new records", result.record_count)
            elif result.success:
                logger.info("SyncScheduler: sync finished, nothing new")
            else:
                logger.info("SyncScheduler: sync failed (%s); retrying next tick", result.message)
            self.next_tick_at = datetime.now(timezone.utc) + self._interval
            await asyncio.sleep(self._interval.total_seconds())

    async def _signal_complete(self, result: SyncResult) -> None:
        if self._on_complete is None:
            return
        try:
            outcome = self._on_complete(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning("SyncScheduler: completion callback failed: %s", exc)
