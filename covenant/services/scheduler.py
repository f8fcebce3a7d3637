"""Periodic background task with a clean start/stop lifecycle.

Runs an async job immediately and then on a fixed interval. Stopping is
graceful: the job is told to stop (it checks between units of work), the
in-flight tick is awaited, and only then does the loop exit.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

# A job receives a should_stop callable it checks between units of work
Job = Callable[[Callable[[], bool]], Awaitable[object]]


class PeriodicTask:
    """Fixed-interval async job runner.

    Example:
        task = PeriodicTask(engine.overdue_sweep, interval_seconds=3600, name="overdue-sweep")
        task.start()
        ...
        await task.stop()
    """

    def __init__(self, job: Job, interval_seconds: float, name: str = "periodic-task"):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.job = job
        self.interval_seconds = interval_seconds
        self.name = name
        self.ticks = 0
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop on the running event loop."""
        if self.is_running:
            raise RuntimeError(f"{self.name} is already running")
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("%s started (interval %.0fs)", self.name, self.interval_seconds)

    async def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop and wait for the in-flight tick to finish.

        Args:
            timeout: Seconds to wait before cancelling the task outright
        """
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s did not stop within %ss; cancelling", self.name, timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
        logger.info("%s stopped after %d ticks", self.name, self.ticks)

    async def run_once(self) -> object:
        """Run a single tick of the job."""
        result = await self.job(self._stop_event.is_set)
        self.ticks += 1
        return result

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.error("%s tick failed", self.name, exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue


__all__ = ["PeriodicTask"]
