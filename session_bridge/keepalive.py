"""
Keep-Alive Scheduler
====================
Periodically touches every stored session with a light authenticated
request so the upstream never sees it idle.

Per cycle, for each entry in ``SessionStore.snapshot()``:

    1. no cookies / invalid         → skip (no state change)
    2. untouched > inactivity cutoff → evict
    3. now < next_keep_alive_at     → skip (backing off)
    4. otherwise                    → probe, through a bounded worker pool
                                      (and the global token bucket, if set)

Probe success resets the entry's failure counter; failure (non-2xx, network
error, bounced to the IdP) bumps it and pushes the next attempt out:

    delay = min(base * 2 ** (failures - 1), max)      # 5, 10, 20, 40, 60 min

Anything raised while handling one entry is counted as a failure for that
entry and the cycle carries on.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from .auth.probe import UpstreamProbe
from .auth.session_store import SessionEntry, SessionStore
from .monitor import CycleStats, SchedulerMonitor
from .periodic import PeriodicJob
from .utils import BackoffPolicy, TokenBucket, gather_bounded

logger = logging.getLogger(__name__)

JOB_NAME = "keepalive"


class KeepAliveScheduler:
    """Refreshes sessions before the upstream times them out."""

    def __init__(
        self,
        store: SessionStore,
        probe: UpstreamProbe,
        *,
        interval_seconds: float = 10 * 60,
        inactivity_cutoff_seconds: float = 5 * 24 * 3600,
        concurrency: int = 10,
        bucket: Optional[TokenBucket] = None,
        bucket_timeout_seconds: Optional[float] = None,
        backoff: Optional[BackoffPolicy] = None,
        monitor: Optional[SchedulerMonitor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.probe = probe
        self.interval_seconds = interval_seconds
        self.inactivity_cutoff_seconds = inactivity_cutoff_seconds
        self.concurrency = concurrency
        self.bucket = bucket
        self.bucket_timeout_seconds = bucket_timeout_seconds
        self.backoff = backoff or BackoffPolicy()
        self.monitor = monitor
        self._clock = clock
        self.job = PeriodicJob(JOB_NAME, interval_seconds, self.run_cycle)

    def start(self) -> None:
        self.job.start()

    async def stop(self) -> None:
        await self.job.stop()

    # ── Cycle ─────────────────────────────────────────────────────

    async def run_cycle(self) -> CycleStats:
        """One pass over the store. Never raises."""
        stats = CycleStats(job=JOB_NAME, started_at=self._clock())
        try:
            due = self._select_due(stats)
            stats.attempted = len(due)
            if due:
                logger.info(
                    f"[KEEPALIVE] Refreshing {len(due)} of {stats.total_sessions} sessions "
                    f"(concurrency={self.concurrency}"
                    f"{f', rps={self.bucket.rate_per_second}' if self._bucket_on else ''})"
                )
            results = await gather_bounded(due, self._refresh_one, self.concurrency)

            for entry, result in zip(due, results):
                if isinstance(result, BaseException):
                    stats.failed += 1
                    stats.errors.append(f"{entry.user_id}: {type(result).__name__}: {result}")
                    logger.error(
                        f"[KEEPALIVE] Error refreshing {entry.user_id}: "
                        f"{type(result).__name__}: {result}"
                    )
                    self._record_failure(entry, f"{type(result).__name__}")
                elif result:
                    stats.succeeded += 1
                else:
                    stats.failed += 1
        except Exception as e:
            stats.aborted = True
            stats.errors.append(f"cycle: {type(e).__name__}: {e}")
            logger.error(f"[KEEPALIVE] Cycle aborted: {e}", exc_info=True)
        finally:
            stats.finish(self._clock())
            if self.monitor is not None:
                self.monitor.record(stats)
            logger.info(f"[KEEPALIVE] Cycle done: {stats.log_line()}")
        return stats

    def _select_due(self, stats: CycleStats) -> List[SessionEntry]:
        now = self._clock()
        snapshot = self.store.snapshot()
        stats.total_sessions = len(snapshot)
        due: List[SessionEntry] = []

        for entry in snapshot:
            if not entry.cookie_jar or not entry.is_valid:
                stats.skipped += 1
                continue
            if now - entry.last_accessed > self.inactivity_cutoff_seconds:
                if self.store.remove(entry.user_id, generation=entry.generation):
                    stats.evicted += 1
                    logger.info(
                        f"[KEEPALIVE] Evicted {entry.user_id}: inactive for "
                        f"{(now - entry.last_accessed) / 86400:.1f} days"
                    )
                continue
            if now < entry.next_keep_alive_at:
                stats.skipped += 1
                continue
            due.append(entry)
        return due

    # ── Per-entry ─────────────────────────────────────────────────

    @property
    def _bucket_on(self) -> bool:
        return self.bucket is not None and self.bucket.enabled

    async def _refresh_one(self, entry: SessionEntry) -> bool:
        if self._bucket_on:
            await self.bucket.acquire(timeout=self.bucket_timeout_seconds)

        outcome = await self.probe.keep_alive(entry.cookie_jar)
        if outcome.valid:
            self.store.record_keep_alive_success(entry.user_id, entry.generation)
            logger.debug(f"[KEEPALIVE] {entry.user_id} refreshed (HTTP {outcome.status})")
            return True

        self._record_failure(entry, outcome.error)
        return False

    def _record_failure(self, entry: SessionEntry, reason: str) -> None:
        updated = self.store.record_keep_alive_failure(
            entry.user_id, entry.generation, self.backoff
        )
        if updated is None:
            return
        delay_min = self.backoff.delay_minutes(updated.failure_count)
        logger.warning(
            f"[KEEPALIVE] {entry.user_id} failed ({reason}); "
            f"failure #{updated.failure_count}, next attempt in {delay_min:.0f} min"
        )
