"""
Periodic Task Scheduling for Sentinel
"""

import logging
import asyncio
from typing import Awaitable, Callable, Optional, Dict, Any
from datetime import datetime, timezone

logger = logging.getLogger('sentinel.core.scheduler')


class PeriodicTask:
    """
    Cancellable fixed-interval loop around an async callback.

    Stopping sets a flag that is checked at the top of each iteration and
    wakes the loop out of its sleep, so a callback that is already running
    always finishes before the loop exits.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Awaitable[Any]],
                 run_immediately: bool = True):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._iterations = 0
        self._failures = 0
        self._last_run: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.warning(f"Periodic task {self.name} already running")
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"sentinel-{self.name}")
        logger.info(f"Started periodic task {self.name} (interval: {self.interval}s)")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Signal the loop to stop and wait for it to exit.

        If ``timeout`` elapses first the task is cancelled outright.
        """
        if not self._task:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Periodic task {self.name} did not stop within {timeout}s, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

        logger.info(f"Stopped periodic task {self.name}")

    async def _run(self) -> None:
        if not self._run_immediately and await self._sleep():
            return

        while not self._stop_event.is_set():
            try:
                await self._callback()
                self._iterations += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._failures += 1
                logger.error(f"Error in periodic task {self.name}: {e}")
            self._last_run = datetime.now(timezone.utc)

            if await self._sleep():
                break

    async def _sleep(self) -> bool:
        """Sleep one interval; returns True if stop was requested meanwhile"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False

    def get_stats(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'interval': self.interval,
            'running': self.is_running,
            'iterations': self._iterations,
            'failures': self._failures,
            'last_run': self._last_run.isoformat() if self._last_run else None,
        }
