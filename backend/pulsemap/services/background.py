"""
Interval timers for background heat map work.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs an async job on a fixed interval in the current event loop.

    Each tick starts the job in its own task, so stop() only cancels the
    timer; a job that is already running finishes on its own.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[object]],
        run_immediately: bool = True,
    ):
        self.name = name
        self.interval = interval
        self.job = job
        self.run_immediately = run_immediately
        self._timer: Optional[asyncio.Task] = None
        self._jobs: set = set()

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def _run_job(self) -> None:
        try:
            await self.job()
        except Exception:
            logger.exception(f"{self.name} failed")

    def _spawn_job(self) -> None:
        task = asyncio.create_task(self._run_job())
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)

    async def _tick(self) -> None:
        if self.run_immediately:
            self._spawn_job()
        while True:
            await asyncio.sleep(self.interval)
            self._spawn_job()

    def start(self) -> bool:
        """Start the timer; returns False if it is already running."""
        if self.is_running:
            logger.info(f"{self.name} already running")
            return False
        logger.info(f"Starting {self.name} (every {self.interval}s)")
        self._timer = asyncio.create_task(self._tick())
        return True

    async def stop(self) -> None:
        """Cancel the timer. In-flight jobs are left to complete."""
        if self._timer is None:
            return
        self._timer.cancel()
        try:
            await self._timer
        except asyncio.CancelledError:
            pass
        self._timer = None
        logger.info(f"{self.name} stopped")

    async def wait_for_jobs(self) -> None:
        """Await every job that is currently in flight."""
        if self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)
