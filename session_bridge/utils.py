"""
Utility Functions
Rate limiting, backoff policy, bounded concurrency and small helpers.
"""

import asyncio
import logging
import math
import random
import re
import time
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from .errors import RateLimitExceededError

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Token bucket rate limiter for outbound probe traffic.

    Refill is computed lazily on every acquire attempt from elapsed clock
    time; there is no background timer.  Thread-safe implementation.
    """

    def __init__(
        self,
        rate_per_second: float,
        capacity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        poll_interval: float = 0.05
    ):
        """
        Initialize the bucket.

        Args:
            rate_per_second: Tokens added per second. ``<= 0`` disables the bucket.
            capacity: Maximum tokens held. Defaults to ``ceil(rate_per_second)``.
            clock: Monotonic time source (injectable for tests).
            sleep: Coroutine used between polls while the bucket is empty.
            poll_interval: Seconds between polls while waiting for a token.
        """
        self.rate_per_second = rate_per_second
        if capacity is None:
            capacity = max(1, math.ceil(rate_per_second)) if rate_per_second > 0 else 0
        self.capacity = capacity
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

        self._tokens = capacity
        self._last_refill_at = clock()
        self._lock = Lock()

    @property
    def enabled(self) -> bool:
        return self.rate_per_second > 0

    @property
    def tokens(self) -> int:
        """Current token count (after a lazy refill)."""
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        """Add whole tokens for the elapsed time.

        ``_last_refill_at`` only moves when at least one token is added, so
        frequent polls cannot eat the fractional remainder.
        """
        now = self._clock()
        elapsed = now - self._last_refill_at
        if elapsed <= 0:
            return
        to_add = math.floor(elapsed * self.rate_per_second)
        if to_add > 0:
            self._tokens = min(self._tokens + to_add, self.capacity)
            self._last_refill_at = now

    def try_acquire(self) -> bool:
        """Take one token if available. Never blocks."""
        if not self.enabled:
            return True
        with self._lock:
            self._refill()
            if self._tokens > 0:
                self._tokens -= 1
                return True
            return False

    async def acquire(self, timeout: Optional[float] = None) -> None:
        """
        Wait until a token is available, then consume it.

        Args:
            timeout: Optional ceiling in seconds. The bucket itself is bounded
                only by its rate; callers that must not wait forever pass one.

        Raises:
            RateLimitExceededError: If *timeout* elapses first.
        """
        if not self.enabled:
            return

        started = self._clock()
        while not self.try_acquire():
            if timeout is not None and self._clock() - started >= timeout:
                logger.warning(
                    f"[BUCKET] No token within {timeout:.1f}s "
                    f"(rate={self.rate_per_second}/s, capacity={self.capacity})"
                )
                raise RateLimitExceededError(
                    f"No token available within {timeout:.1f}s"
                )
            await self._sleep(self.poll_interval)


class BackoffPolicy:
    """
    Exponential backoff for failing keep-alive targets.

    ``delay(n) = min(base * 2 ** (n - 1), max)`` for the n-th consecutive
    failure, so with the defaults: 5, 10, 20, 40, 60, 60 ... minutes.
    """

    def __init__(
        self,
        base_minutes: float = 5.0,
        max_minutes: float = 60.0,
        max_failures: int = 10,
        exponential_base: float = 2.0,
        jitter: bool = False
    ):
        """
        Args:
            base_minutes: Delay after the first failure.
            max_minutes: Upper bound for any delay.
            max_failures: Ceiling for the consecutive-failure counter.
            exponential_base: Growth factor per failure.
            jitter: Add ±25% random jitter (off by default so delays are exact).
        """
        self.base_minutes = base_minutes
        self.max_minutes = max_minutes
        self.max_failures = max_failures
        self.exponential_base = exponential_base
        self.jitter = jitter

    def next_failure_count(self, failure_count: int) -> int:
        return min(failure_count + 1, self.max_failures)

    def delay_minutes(self, failure_count: int) -> float:
        """
        Delay for the given consecutive-failure count (1-indexed).

        Args:
            failure_count: Number of consecutive failures so far (>= 1)

        Returns:
            Delay in minutes
        """
        if failure_count <= 0:
            return 0.0
        delay = self.base_minutes * (self.exponential_base ** (failure_count - 1))
        delay = min(delay, self.max_minutes)

        if self.jitter:
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(0.0, delay)

    def delay_seconds(self, failure_count: int) -> float:
        return self.delay_minutes(failure_count) * 60


async def gather_bounded(
    items: Iterable[Any],
    worker: Callable[[Any], Awaitable[Any]],
    concurrency: int
) -> List[Any]:
    """
    Run ``worker(item)`` for every item with at most *concurrency* in flight.

    Exceptions are returned in place of results, never raised, so one bad
    item cannot cancel its siblings.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(item):
        async with semaphore:
            return await worker(item)

    return await asyncio.gather(
        *(_run(item) for item in items), return_exceptions=True
    )


def format_ts(ts: Optional[float]) -> Optional[str]:
    """Epoch seconds → ISO-8601 UTC string (``None`` and 0 stay ``None``)."""
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def sanitize_input(value: str) -> str:
    """Strip markup and script fragments from user-supplied strings."""
    if not isinstance(value, str):
        return value
    cleaned = re.sub(r"[<>]", "", value)
    cleaned = re.sub(r"javascript:", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"on\w+=", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()
