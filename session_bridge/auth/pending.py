"""
Pending Logins
==============
Short-lived records that correlate an in-flight login with the user who
started it, until the login is promoted into a ``SessionEntry``.

Lifecycle::

    create() ──► pending ──► validating ──► established (record deleted)
                    │              └──────► failed      (record deleted)
                    └── TTL elapsed ──────► expired     (record deleted)

Expiry is enforced twice: lazily on every lookup, and by a per-record
``loop.call_later`` timer when a running event loop is available.  The
maintenance cycle also calls ``sweep()``.  A record held by a running
browser login (``hold()``) does not expire; the browser's own max wait
bounds it instead.  Expired ids are remembered for
one more TTL so a late status poll can tell "expired" (408) from
"never existed" (404).
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Optional

from ..errors import (
    PendingLoginExpiredError,
    PendingLoginNotFoundError,
    ValidationFailedError,
)
from ..utils import format_ts
from .cookies import CookieInput, CookieJar
from .probe import UpstreamProbe
from .session_store import SessionEntry, SessionStore

logger = logging.getLogger(__name__)

_DEFAULT_TTL_SECONDS = 5 * 60


class PendingStatus(str, Enum):
    PENDING = "pending"
    VALIDATING = "validating"
    ESTABLISHED = "established"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class PendingLogin:
    session_id: str
    user_id: str
    username: str
    start_time: float
    status: PendingStatus = PendingStatus.PENDING
    error: str = ""
    held: bool = False
    _timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False, compare=False)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "username": self.username,
            "startTime": format_ts(self.start_time),
            "status": self.status.value,
            "error": self.error or None,
        }


class PendingLoginRegistry:
    """
    In-flight logins keyed by an opaque ``session_id``.

    Usage::

        registry = PendingLoginRegistry(probe, store, ttl_seconds=300)
        sid = registry.create("user_alice", "alice")
        entry = await registry.complete(sid, cookies)
    """

    def __init__(
        self,
        probe: UpstreamProbe,
        store: SessionStore,
        *,
        ttl_seconds: float = _DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.probe = probe
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._records: Dict[str, PendingLogin] = {}
        self._expired: Dict[str, float] = {}
        self._lock = Lock()

    # ── Public API ────────────────────────────────────────────────

    def create(self, user_id: str, username: str = "") -> str:
        """Allocate a pending record and return its session id."""
        session_id = uuid.uuid4().hex
        record = PendingLogin(
            session_id=session_id,
            user_id=user_id,
            username=username,
            start_time=self._clock(),
        )
        record._timer = self._schedule_expiry(session_id)
        with self._lock:
            self._records[session_id] = record
        logger.info(f"[PENDING] Created {session_id[:8]} for {user_id}")
        return session_id

    def lookup(self, session_id: str) -> Optional[PendingLogin]:
        """Return a copy of the record, or None if unknown or past its TTL."""
        now = self._clock()
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None
            if self._is_stale(record, now):
                self._expire_locked(session_id, now)
                expired = True
            else:
                expired = False
                result = replace(record, _timer=None)
        if expired:
            logger.info(f"[PENDING] {session_id[:8]} expired on lookup")
            return None
        return result

    def require(self, session_id: str) -> PendingLogin:
        """``lookup`` that raises.

        Raises:
            PendingLoginExpiredError:  The TTL elapsed (408).
            PendingLoginNotFoundError: Never existed, or already finished (404).
        """
        record = self.lookup(session_id)
        if record is not None:
            return record
        with self._lock:
            was_expired = session_id in self._expired
        if was_expired:
            raise PendingLoginExpiredError(f"Login session {session_id} expired")
        raise PendingLoginNotFoundError(f"Login session {session_id} not found")

    def mark(self, session_id: str, status: PendingStatus, error: str = "") -> bool:
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return False
            record.status = status
            if error:
                record.error = error
        return True

    def hold(self, session_id: str) -> bool:
        """Suspend TTL expiry while a browser login owns the record."""
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return False
            record.held = True
            timer, record._timer = record._timer, None
        if timer is not None:
            timer.cancel()
        return True

    def release(self, session_id: str) -> bool:
        """Resume TTL expiry, counted from the record's start time."""
        with self._lock:
            record = self._records.get(session_id)
            if record is None or not record.held:
                return False
            record.held = False
            remaining = self.ttl_seconds - (self._clock() - record.start_time)
        timer = self._schedule_expiry(session_id, max(remaining, 0))
        with self._lock:
            if record is self._records.get(session_id):
                record._timer = timer
            elif timer is not None:
                timer.cancel()
        return True

    async def complete(
        self,
        session_id: str,
        candidate_cookies: CookieInput,
        *,
        login_method: str = "external",
    ) -> SessionEntry:
        """Validate *candidate_cookies* and promote the record into a session.

        The probe walks its endpoint list in priority order and stops at the
        first success; that response's profile payload becomes ``user_info``.

        Raises:
            PendingLoginNotFoundError / PendingLoginExpiredError: Bad session id,
                or the record was cancelled, expired or completed by another
                call while the cookies were being validated.
            ValidationFailedError: No endpoint accepted the cookies.  The record
                is deleted; the caller must start a new login.
        """
        record = self.require(session_id)
        jar = CookieJar.coerce(
            candidate_cookies, domain=self.probe.handler.upstream_host
        )
        if not jar:
            self.discard(session_id)
            raise ValidationFailedError("No cookies supplied", user_id=record.user_id)

        self.mark(session_id, PendingStatus.VALIDATING)
        logger.info(
            f"[PENDING] Validating {len(jar)} cookies for {record.user_id} "
            f"({', '.join(jar.names())})"
        )
        try:
            outcome = await self.probe.validate(jar)
        except Exception:
            self.discard(session_id)
            raise

        self._claim(session_id, record.user_id)
        if not outcome.valid:
            logger.warning(
                f"[PENDING] Validation failed for {record.user_id}: "
                f"{outcome.error} {outcome.attempts}"
            )
            raise ValidationFailedError(
                "Session validation failed: no probe endpoint accepted the cookies",
                user_id=record.user_id,
            )

        entry = self.store.add(
            record.user_id,
            jar,
            outcome.user_info,
            username=record.username,
            login_method=login_method,
        )
        logger.info(
            f"[PENDING] Session established for {record.user_id} "
            f"via {outcome.endpoint}"
        )
        return entry

    def discard(self, session_id: str) -> bool:
        with self._lock:
            record = self._records.pop(session_id, None)
        if record is None:
            return False
        if record._timer is not None:
            record._timer.cancel()
        return True

    def sweep(self) -> int:
        """Expire every record past its TTL. Returns the number expired."""
        now = self._clock()
        with self._lock:
            stale = [
                sid for sid, rec in self._records.items()
                if self._is_stale(rec, now)
            ]
            for sid in stale:
                self._expire_locked(sid, now)
            for sid, expired_at in list(self._expired.items()):
                if now - expired_at > self.ttl_seconds:
                    del self._expired[sid]
        if stale:
            logger.info(f"[PENDING] Swept {len(stale)} expired login(s)")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ── Internal ──────────────────────────────────────────────────

    def _is_stale(self, record: PendingLogin, now: float) -> bool:
        return not record.held and now - record.start_time > self.ttl_seconds

    def _claim(self, session_id: str, user_id: str) -> None:
        """Take the record out of the registry; only the claimant may promote it.

        Raises:
            PendingLoginExpiredError / PendingLoginNotFoundError: The record
                expired, was cancelled or was claimed by a concurrent call
                while its cookies were being validated.
        """
        with self._lock:
            record = self._records.pop(session_id, None)
            was_expired = session_id in self._expired
        if record is None:
            logger.info(f"[PENDING] {session_id[:8]} gone during validation, not promoting")
            if was_expired:
                raise PendingLoginExpiredError(
                    f"Login session {session_id} expired", user_id=user_id
                )
            raise PendingLoginNotFoundError(
                f"Login session {session_id} not found", user_id=user_id
            )
        if record._timer is not None:
            record._timer.cancel()

    def _expire_locked(self, session_id: str, now: float) -> None:
        record = self._records.pop(session_id, None)
        if record is None:
            return
        record.status = PendingStatus.EXPIRED
        if record._timer is not None:
            record._timer.cancel()
        self._expired[session_id] = now

    def _on_timer(self, session_id: str) -> None:
        with self._lock:
            record = self._records.get(session_id)
            known = record is not None and not record.held
            if known:
                self._expire_locked(session_id, self._clock())
        if known:
            logger.info(f"[PENDING] {session_id[:8]} expired (timer)")

    def _schedule_expiry(
        self, session_id: str, delay: Optional[float] = None
    ) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        if delay is None:
            delay = self.ttl_seconds
        return loop.call_later(delay, self._on_timer, session_id)
