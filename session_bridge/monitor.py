"""
Scheduler Monitor
=================
Per-cycle counters for the keep-alive and maintenance jobs.

Tracks, per cycle:
- Sessions attempted / succeeded / failed / skipped / evicted
- Cycle duration
- Whether the cycle ended at its error boundary

The monitor keeps a short rolling history per job so the health endpoint can
show what the background jobs have been doing without scraping logs.

Thread-safe: all methods use a plain lock (cycles record from the event loop,
the API may read from a worker thread).
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

_HISTORY_PER_JOB = 20


@dataclass
class CycleStats:
    """Outcome counters for one scheduler cycle."""
    job: str = ""
    started_at: float = 0.0
    finished_at: float = 0.0
    total_sessions: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    evicted: int = 0
    errors: List[str] = field(default_factory=list)
    aborted: bool = False     # top-level boundary caught an exception

    @property
    def elapsed_sec(self) -> float:
        if not self.finished_at:
            return 0.0
        return self.finished_at - self.started_at

    def finish(self, now: Optional[float] = None) -> "CycleStats":
        self.finished_at = time.time() if now is None else now
        return self

    def as_dict(self) -> dict:
        data = asdict(self)
        data["elapsed_sec"] = round(self.elapsed_sec, 3)
        return data

    def log_line(self) -> str:
        return (
            f"total={self.total_sessions} attempted={self.attempted} "
            f"ok={self.succeeded} failed={self.failed} skipped={self.skipped} "
            f"evicted={self.evicted} in {self.elapsed_sec:.1f}s"
        )


class SchedulerMonitor:
    """
    Rolling history of cycle stats, keyed by job name.

    Usage::

        monitor = SchedulerMonitor()
        stats = CycleStats(job="keepalive", started_at=time.time())
        ...
        monitor.record(stats.finish())
        monitor.last("keepalive")
    """

    def __init__(self, history: int = _HISTORY_PER_JOB):
        self._lock = Lock()
        self._history = history
        self._cycles: Dict[str, Deque[CycleStats]] = {}
        self._runs: Dict[str, int] = {}

    def record(self, stats: CycleStats) -> None:
        with self._lock:
            bucket = self._cycles.setdefault(stats.job, deque(maxlen=self._history))
            bucket.append(stats)
            self._runs[stats.job] = self._runs.get(stats.job, 0) + 1

    def last(self, job: str) -> Optional[CycleStats]:
        with self._lock:
            bucket = self._cycles.get(job)
            return bucket[-1] if bucket else None

    def history(self, job: str) -> List[CycleStats]:
        with self._lock:
            return list(self._cycles.get(job, ()))

    def runs(self, job: str) -> int:
        with self._lock:
            return self._runs.get(job, 0)

    def snapshot(self) -> Dict[str, Optional[dict]]:
        """Last cycle of every job as plain dicts (for the health endpoint)."""
        with self._lock:
            return {
                job: (bucket[-1].as_dict() if bucket else None)
                for job, bucket in self._cycles.items()
            }
