"""
Maintenance Scheduler
=====================
Periodic strong validation and pruning of the session store.

Per cycle:
    1. Sweep expired pending logins
    2. Evict every entry idle past the session timeout
    3. For the rest, call the "who am I" probe with the stored cookies:
         - success → refresh ``user_info`` and ``last_validated``
         - failure, or no cookies at all → evict (no backoff: a session
           that fails strong validation is dead)

An exception while handling one entry evicts that entry and the cycle
continues.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from .auth.pending import PendingLoginRegistry
from .auth.probe import UpstreamProbe
from .auth.session_store import SessionEntry, SessionStore
from .monitor import CycleStats, SchedulerMonitor
from .periodic import PeriodicJob
from .utils import TokenBucket, gather_bounded

logger = logging.getLogger(__name__)

JOB_NAME = "maintenance"


class MaintenanceScheduler:
    """Evicts idle and dead sessions."""

    def __init__(
        self,
        store: SessionStore,
        probe: UpstreamProbe,
        *,
        interval_seconds: float = 15 * 60,
        concurrency: int = 10,
        pending: Optional[PendingLoginRegistry] = None,
        bucket: Optional[TokenBucket] = None,
        bucket_timeout_seconds: Optional[float] = None,
        monitor: Optional[SchedulerMonitor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.probe = probe
        self.interval_seconds = interval_seconds
        self.concurrency = concurrency
        self.pending = pending
        self.bucket = bucket
        self.bucket_timeout_seconds = bucket_timeout_seconds
        self.monitor = monitor
        self._clock = clock
        self.job = PeriodicJob(JOB_NAME, interval_seconds, self.run_cycle)

    def start(self) -> None:
        self.job.start()

    async def stop(self) -> None:
        await self.job.stop()

    async def run_cycle(self) -> CycleStats:
        """One maintenance pass. Never raises."""
        stats = CycleStats(job=JOB_NAME, started_at=self._clock())
        try:
            if self.pending is not None:
                self.pending.sweep()

            due = self._evict_idle(stats)
            stats.attempted = len(due)
            results = await gather_bounded(due, self._validate_one, self.concurrency)

            for entry, result in zip(due, results):
                if isinstance(result, BaseException):
                    stats.failed += 1
                    stats.errors.append(f"{entry.user_id}: {type(result).__name__}: {result}")
                    logger.error(
                        f"[MAINT] Error validating {entry.user_id}: "
                        f"{type(result).__name__}: {result}"
                    )
                    if self.store.remove(entry.user_id, generation=entry.generation):
                        stats.evicted += 1
                elif result:
                    stats.succeeded += 1
                else:
                    stats.failed += 1
                    if result is False:
                        stats.evicted += 1
        except Exception as e:
            stats.aborted = True
            stats.errors.append(f"cycle: {type(e).__name__}: {e}")
            logger.error(f"[MAINT] Cycle aborted: {e}", exc_info=True)
        finally:
            stats.finish(self._clock())
            if self.monitor is not None:
                self.monitor.record(stats)
            logger.info(f"[MAINT] Cycle done: {stats.log_line()}")
        return stats

    def _evict_idle(self, stats: CycleStats) -> List[SessionEntry]:
        now = self._clock()
        snapshot = self.store.snapshot()
        stats.total_sessions = len(snapshot)
        due: List[SessionEntry] = []
        for entry in snapshot:
            if self.store.is_expired(entry, now):
                if self.store.remove(entry.user_id, generation=entry.generation):
                    stats.evicted += 1
                    logger.info(
                        f"[MAINT] Evicted {entry.user_id}: idle "
                        f"{(now - entry.last_accessed) / 60:.0f} min"
                    )
                continue
            due.append(entry)
        return due

    async def _validate_one(self, entry: SessionEntry) -> Optional[bool]:
        """True if still valid, False if evicted, None if it failed but the
        user logged in again meanwhile (the new session is left alone)."""
        if not entry.cookie_jar:
            return self._evict(entry, "no cookies")

        if self.bucket is not None and self.bucket.enabled:
            await self.bucket.acquire(timeout=self.bucket_timeout_seconds)

        outcome = await self.probe.who_am_i(entry.cookie_jar)
        if outcome.valid:
            self.store.mark_validated(entry.user_id, entry.generation, outcome.user_info)
            return True

        return self._evict(entry, f"strong validation failed ({outcome.error})")

    def _evict(self, entry: SessionEntry, reason: str) -> Optional[bool]:
        if not self.store.remove(entry.user_id, generation=entry.generation):
            logger.info(f"[MAINT] {entry.user_id} replaced during validation, keeping new session")
            return None
        logger.warning(f"[MAINT] Evicted {entry.user_id}: {reason}")
        return False
