"""
Periodic Job
============
A ticker with a cancellation token for the background session jobs.

Each job is one asyncio task running a sequential loop::

    wait(interval) ──► cycle() ──► wait(interval) ──► cycle() ...

so a cycle can never overlap the previous one: the next wait starts only
after the current cycle returned.  ``run_once()`` (manual trigger, tests,
the CLI) shares a lock with the loop and is skipped while a cycle is
already in flight.

The loop is crash-proof: anything a cycle raises is logged and the loop
keeps ticking.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicJob:
    """Single-flight fixed-delay scheduler for one coroutine."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        cycle: Callable[[], Awaitable[Any]],
        *,
        run_immediately: bool = False,
        stop_timeout_seconds: float = 30.0,
    ):
        """
        Args:
            name:                 Job name used in logs.
            interval_seconds:     Delay between the end of one cycle and the next.
            cycle:                Coroutine function run every tick.
            run_immediately:      Run one cycle on start instead of waiting first.
            stop_timeout_seconds: How long ``stop()`` lets a running cycle finish.
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self._cycle = cycle
        self.run_immediately = run_immediately
        self.stop_timeout_seconds = stop_timeout_seconds

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._cycle_lock = asyncio.Lock()
        self.runs = 0
        self.skipped_runs = 0
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> None:
        """Start ticking on the running event loop (no-op if already started)."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")
        logger.info(
            f"[{self.name.upper()}] Scheduled every {self.interval_seconds / 60:.1f} min"
        )

    async def stop(self) -> None:
        """Signal the loop to end; a running cycle gets a grace period."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await asyncio.wait_for(
                asyncio.shield(self._task), timeout=self.stop_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name.upper()}] Cycle still running at stop, cancelling")
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info(f"[{self.name.upper()}] Stopped")

    async def run_once(self) -> Any:
        """Run one cycle now unless one is already in flight.

        Returns:
            The cycle's result, or None if skipped or it raised.
        """
        if self._cycle_lock.locked():
            self.skipped_runs += 1
            logger.info(f"[{self.name.upper()}] Cycle already running, skipping")
            return None

        async with self._cycle_lock:
            self.runs += 1
            try:
                result = await self._cycle()
                self.last_error = None
                return result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.last_error = f"{type(e).__name__}: {e}"
                logger.error(
                    f"[{self.name.upper()}] Cycle crashed: {self.last_error}",
                    exc_info=True,
                )
                return None

    trigger = run_once

    async def _loop(self) -> None:
        stop_event = self._stop_event
        if self.run_immediately:
            await self.run_once()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_once()
