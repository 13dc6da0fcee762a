"""Periodic memory maintenance."""

import asyncio
from typing import TYPE_CHECKING, Optional

import structlog

if TYPE_CHECKING:
    from recallflow.memory.manager import MemoryManager

logger = structlog.get_logger()


class CleanupScheduler:
    """Runs ``manager.cleanup()`` every ``interval_seconds`` until stopped.

    The manager never schedules cleanup by itself; start one of these next
    to it in a long-running service.

    Example:
        ```python
        scheduler = CleanupScheduler(manager, interval_seconds=3600)
        await scheduler.start()
        ...
        await scheduler.stop()
        ```
    """

    def __init__(self, manager: "MemoryManager", interval_seconds: float = 3600.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loop; a no-op if already running."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Cleanup scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop and wait for it to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cleanup scheduler stopped", runs=self.runs)

    async def run_once(self) -> None:
        await self.manager.cleanup()
        self.runs += 1

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Scheduled cleanup failed", error=str(e))
