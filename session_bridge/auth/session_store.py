"""
Session Store
=============
The long-lived map of per-user authenticated upstream sessions.

Responsibilities:
    1. Hold at most one live ``SessionEntry`` per user id
    2. Refresh ``last_accessed`` on every successful read
    3. Evict idle entries lazily on read (``get`` / ``has_valid_session``)
    4. Hand the schedulers a stable snapshot to iterate, and accept their
       results back through narrow update methods

The schedulers never mutate entries directly: they work on copies from
``snapshot()`` and commit through ``record_keep_alive_*`` / ``mark_validated``
/ ``remove``.  Each commit carries the entry's ``generation`` so a result
computed for an old login can never touch a session the user re-established
while the probe was in flight.

Thread-safe: one lock guards the map; it is never held across I/O.

Usage::

    store = SessionStore(session_timeout_seconds=3600)
    store.add("user_alice", jar, {"id": 42, "name": "Alice"})
    entry = store.get("user_alice")      # None if idle too long
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from ..errors import SessionExpiredError, SessionNotFoundError
from ..utils import BackoffPolicy, format_ts
from .cookies import CookieInput, CookieJar

logger = logging.getLogger(__name__)

_DEFAULT_SESSION_TIMEOUT_SECONDS = 60 * 60


@dataclass
class SessionEntry:
    """One user's borrowed upstream session (timestamps are epoch seconds)."""
    user_id: str
    cookie_jar: CookieJar = field(default_factory=CookieJar)
    user_info: Optional[Dict[str, Any]] = None
    username: str = ""
    login_method: str = ""

    created_at: float = 0.0
    last_accessed: float = 0.0
    last_validated: float = 0.0
    last_keep_alive: float = 0.0

    is_valid: bool = True
    failure_count: int = 0
    next_keep_alive_at: float = 0.0     # epoch 0 = eligible now
    generation: int = 0

    def idle_seconds(self, now: float) -> float:
        return now - self.last_accessed

    def copy(self) -> "SessionEntry":
        return replace(
            self,
            cookie_jar=self.cookie_jar.copy(),
            user_info=dict(self.user_info) if self.user_info else self.user_info,
        )

    def summary(self) -> Dict[str, Any]:
        """Debug view without cookie values."""
        return {
            "userId": self.user_id,
            "username": self.username,
            "loginMethod": self.login_method,
            "createdAt": format_ts(self.created_at),
            "lastAccessed": format_ts(self.last_accessed),
            "lastValidated": format_ts(self.last_validated),
            "lastKeepAlive": format_ts(self.last_keep_alive),
            "hasUserInfo": bool(self.user_info),
            "cookieCount": len(self.cookie_jar),
            "cookieNames": self.cookie_jar.names(),
            "failureCount": self.failure_count,
            "nextKeepAliveAt": format_ts(self.next_keep_alive_at),
        }


class SessionStore:
    """Per-user session map with lazy idle eviction."""

    def __init__(
        self,
        session_timeout_seconds: float = _DEFAULT_SESSION_TIMEOUT_SECONDS,
        *,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            session_timeout_seconds: Idle time after which an entry is dead.
            clock:                   Wall-clock source (injectable for tests).
        """
        self.session_timeout_seconds = session_timeout_seconds
        self._clock = clock
        self._sessions: Dict[str, SessionEntry] = {}
        self._generations = itertools.count(1)
        self._lock = Lock()

    # ── Public API ────────────────────────────────────────────────

    def add(
        self,
        user_id: str,
        cookie_jar: CookieInput,
        user_info: Optional[Dict[str, Any]] = None,
        *,
        username: str = "",
        login_method: str = "",
    ) -> SessionEntry:
        """Insert or replace the user's session, immediately keep-alive eligible."""
        now = self._clock()
        entry = SessionEntry(
            user_id=user_id,
            cookie_jar=CookieJar.coerce(cookie_jar),
            user_info=user_info,
            username=username,
            login_method=login_method,
            created_at=now,
            last_accessed=now,
            is_valid=True,
            failure_count=0,
            next_keep_alive_at=0.0,
            generation=next(self._generations),
        )
        with self._lock:
            replaced = self._sessions.get(user_id)
            if replaced is not None:
                replaced.is_valid = False
            self._sessions[user_id] = entry
            count = len(self._sessions)

        logger.info(
            f"[SESSION] {'Replaced' if replaced else 'Added'} session for {user_id} "
            f"({len(entry.cookie_jar)} cookies, {count} active)"
        )
        return entry.copy()

    def get(self, user_id: str) -> Optional[SessionEntry]:
        """Return a copy of the live entry, refreshing ``last_accessed``.

        Returns None if absent, invalid, or idle past the timeout (the
        idle entry is evicted as a side effect).
        """
        return self._lookup(user_id, touch=True)

    def has_valid_session(self, user_id: str) -> bool:
        """Like ``get`` (including lazy eviction) but does not count as access."""
        return self._lookup(user_id, touch=False) is not None

    def require(self, user_id: str) -> SessionEntry:
        """``get`` that raises instead of returning None.

        Raises:
            SessionExpiredError:  The entry existed but was idle too long.
            SessionNotFoundError: No live entry for the user.
        """
        with self._lock:
            existed = user_id in self._sessions
        entry = self.get(user_id)
        if entry is not None:
            return entry
        if existed:
            raise SessionExpiredError(f"Session for {user_id} expired", user_id=user_id)
        raise SessionNotFoundError(f"No session for {user_id}", user_id=user_id)

    def remove(self, user_id: str, *, generation: Optional[int] = None) -> bool:
        """Delete the user's entry.

        Args:
            generation: If given, only delete when the live entry is still
                that generation (a newer login is left alone).

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            entry = self._sessions.get(user_id)
            if entry is None:
                return False
            if generation is not None and entry.generation != generation:
                return False
            entry.is_valid = False
            del self._sessions[user_id]
            count = len(self._sessions)
        logger.info(f"[SESSION] Session removed for {user_id} ({count} active)")
        return True

    def snapshot(self) -> List[SessionEntry]:
        """Stable copies of every entry, safe to iterate while others mutate."""
        with self._lock:
            return [entry.copy() for entry in self._sessions.values()]

    def is_expired(self, entry: SessionEntry, now: Optional[float] = None) -> bool:
        if now is None:
            now = self._clock()
        return entry.idle_seconds(now) > self.session_timeout_seconds

    # ── Scheduler commits ─────────────────────────────────────────

    def record_keep_alive_success(self, user_id: str, generation: int) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._live(user_id, generation)
            if entry is None:
                return False
            entry.failure_count = 0
            entry.next_keep_alive_at = 0.0
            entry.last_keep_alive = now
        return True

    def record_keep_alive_failure(
        self, user_id: str, generation: int, backoff: BackoffPolicy
    ) -> Optional[SessionEntry]:
        """Bump the failure counter and push ``next_keep_alive_at`` out.

        Returns:
            A copy of the updated entry, or None if it is gone / replaced.
        """
        now = self._clock()
        with self._lock:
            entry = self._live(user_id, generation)
            if entry is None:
                return None
            entry.failure_count = backoff.next_failure_count(entry.failure_count)
            entry.next_keep_alive_at = now + backoff.delay_seconds(entry.failure_count)
            return entry.copy()

    def mark_validated(
        self, user_id: str, generation: int, user_info: Optional[Dict[str, Any]] = None
    ) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._live(user_id, generation)
            if entry is None:
                return False
            if user_info:
                entry.user_info = user_info
            entry.last_validated = now
        return True

    # ── Housekeeping ──────────────────────────────────────────────

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [entry.summary() for entry in self.snapshot()]

    def clear(self) -> None:
        with self._lock:
            count = len(self._sessions)
            for entry in self._sessions.values():
                entry.is_valid = False
            self._sessions.clear()
        logger.info(f"[SESSION] Cleared {count} sessions")

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            return user_id in self._sessions

    # ── Internal ──────────────────────────────────────────────────

    def _live(self, user_id: str, generation: int) -> Optional[SessionEntry]:
        """Caller holds the lock."""
        entry = self._sessions.get(user_id)
        if entry is None or entry.generation != generation or not entry.is_valid:
            return None
        return entry

    def _lookup(self, user_id: str, *, touch: bool) -> Optional[SessionEntry]:
        now = self._clock()
        with self._lock:
            entry = self._sessions.get(user_id)
            if entry is None or not entry.is_valid:
                return None
            idle = entry.idle_seconds(now)
            if idle > self.session_timeout_seconds:
                entry.is_valid = False
                del self._sessions[user_id]
                expired = True
            else:
                expired = False
                if touch:
                    entry.last_accessed = now
                result = entry.copy()

        if expired:
            logger.warning(
                f"[SESSION] Session for {user_id} timed out after "
                f"{int(idle // 60)} min idle (limit "
                f"{int(self.session_timeout_seconds // 60)} min), evicted"
            )
            return None
        return result
