"""
Login Flow
==========
Ties the browser bridge and the pending-login registry together.

Two ways to finish a login, both ending in ``PendingLoginRegistry.complete``:

    1. Server-side browser: ``begin(username)`` launches Chromium and a
       background task waits for the federated login, then validates the
       harvested cookies.  The client polls ``status(session_id)``.
    2. Client-supplied cookies: the client logged in elsewhere (e.g. an
       in-app web view) and posts its cookies to ``complete_with_cookies``.

Terminal outcomes of background logins are kept for one pending-login TTL
so a status poll that arrives after the record was promoted or failed still
gets an answer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Tuple

from ..errors import (
    InvalidRequestError,
    RateLimitExceededError,
    SessionBridgeError,
    ValidationFailedError,
)
from ..utils import format_ts, sanitize_input
from .browser_login import AuthBridge, LoginHandle
from .cookies import CookieInput
from .pending import PendingLoginRegistry, PendingStatus
from .session_store import SessionEntry

logger = logging.getLogger(__name__)

_USERNAME_MIN = 3
_USERNAME_MAX = 50


def clean_username(raw: Any) -> str:
    """Sanitize and length-check a username.

    Raises:
        InvalidRequestError: Missing, or not 3-50 characters after cleaning.
    """
    if not isinstance(raw, str):
        raise InvalidRequestError("Username is required")
    username = sanitize_input(raw)
    if not (_USERNAME_MIN <= len(username) <= _USERNAME_MAX):
        raise InvalidRequestError(
            f"Username must be between {_USERNAME_MIN} and {_USERNAME_MAX} characters"
        )
    return username


def user_id_for(username: str) -> str:
    return f"user_{username}"


class LoginService:
    """Starts, tracks and finishes logins on behalf of API callers."""

    def __init__(
        self,
        auth_bridge: AuthBridge,
        registry: PendingLoginRegistry,
        *,
        max_wait_seconds: float = 300.0,
        max_concurrent_logins: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            auth_bridge:           Browser driver.
            registry:              Pending-login records + cookie validation.
            max_wait_seconds:      Hard ceiling for one browser login.
            max_concurrent_logins: Browsers allowed at once (0 = unbounded).
        """
        self.auth_bridge = auth_bridge
        self.registry = registry
        self.max_wait_seconds = max_wait_seconds
        self.max_concurrent_logins = max_concurrent_logins
        self._clock = clock
        self._tasks: Dict[str, asyncio.Task] = {}
        self._handles: Dict[str, LoginHandle] = {}
        self._outcomes: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    @property
    def active_logins(self) -> int:
        return len(self._tasks)

    # ── Public API ────────────────────────────────────────────────

    async def begin(self, raw_username: Any) -> Dict[str, Any]:
        """Launch a server-side browser login in the background.

        Raises:
            InvalidRequestError:    Bad username.
            RateLimitExceededError: ``max_concurrent_logins`` browsers already open.
            BrowserLaunchError:     Chromium could not start.
        """
        username = clean_username(raw_username)
        user_id = user_id_for(username)

        if self.max_concurrent_logins and self.active_logins >= self.max_concurrent_logins:
            logger.warning(
                f"[LOGIN] Refusing login for {user_id}: "
                f"{self.active_logins} browser logins already running"
            )
            raise RateLimitExceededError(
                "Too many logins in progress, try again shortly", user_id=user_id
            )

        session_id = self.registry.create(user_id, username)
        # The browser wait (bounded by max_wait_seconds) owns the record now.
        self.registry.hold(session_id)
        try:
            handle = await self.auth_bridge.start_login(user_id)
        except SessionBridgeError:
            self.registry.discard(session_id)
            raise

        self._handles[session_id] = handle
        task = asyncio.create_task(self._run(session_id, handle))
        self._tasks[session_id] = task
        task.add_done_callback(lambda _t, sid=session_id: self._tasks.pop(sid, None))

        return {
            "sessionId": session_id,
            "userId": user_id,
            "loginUrl": self.auth_bridge.handler.login_entry_url,
            "status": PendingStatus.PENDING.value,
        }

    def open_external(self, raw_username: Any) -> Dict[str, Any]:
        """Create a pending record for a login the client performs itself."""
        username = clean_username(raw_username)
        user_id = user_id_for(username)
        session_id = self.registry.create(user_id, username)
        return {
            "sessionId": session_id,
            "userId": user_id,
            "loginUrl": self.auth_bridge.handler.login_entry_url,
            "status": PendingStatus.PENDING.value,
        }

    async def complete_with_cookies(
        self, session_id: str, cookies: CookieInput
    ) -> SessionEntry:
        """Validate client-supplied cookies for *session_id*.

        A browser still polling for the same session is torn down first.
        """
        await self._stop_task(session_id)
        try:
            entry = await self.registry.complete(
                session_id, cookies, login_method="external"
            )
        except ValidationFailedError as e:
            self._record(session_id, e.user_id or "", PendingStatus.FAILED, f"{e.code}: {e}")
            raise
        self._record(session_id, entry.user_id, PendingStatus.ESTABLISHED)
        return entry

    def status(self, session_id: str) -> Dict[str, Any]:
        """Current state of a login.

        Raises:
            PendingLoginNotFoundError / PendingLoginExpiredError
        """
        self._prune_outcomes()
        record = self.registry.lookup(session_id)
        if record is not None:
            data = record.as_dict()
            data["browserRunning"] = session_id in self._tasks
            return data
        outcome = self._outcomes.get(session_id)
        if outcome is not None:
            return dict(outcome[1])
        return self.registry.require(session_id).as_dict()

    async def cancel(self, session_id: str) -> bool:
        """Tear down the browser (if any) and drop the pending record.

        Raises:
            PendingLoginNotFoundError / PendingLoginExpiredError: Nothing to cancel.
        """
        had_task = await self._stop_task(session_id)
        dropped = self.registry.discard(session_id)
        if not (had_task or dropped):
            self.registry.require(session_id)
        logger.info(f"[LOGIN] Login {session_id[:8]} cancelled")
        return True

    async def wait(self, session_id: str) -> None:
        """Block until the background browser login for *session_id* ends."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        for session_id in list(self._tasks):
            await self._stop_task(session_id)

    # ── Internal ──────────────────────────────────────────────────

    async def _run(self, session_id: str, handle: LoginHandle) -> None:
        user_id = handle.user_id
        try:
            jar = await self.auth_bridge.await_completion(handle, self.max_wait_seconds)
            await self.registry.complete(session_id, jar, login_method="browser")
            self._record(session_id, user_id, PendingStatus.ESTABLISHED)
        except SessionBridgeError as e:
            logger.warning(f"[LOGIN] Login failed for {user_id}: {e.code}: {e}")
            self.registry.discard(session_id)
            self._record(session_id, user_id, PendingStatus.FAILED, f"{e.code}: {e}")
        except Exception as e:
            logger.error(f"[LOGIN] Unexpected error in login for {user_id}: {e}", exc_info=True)
            self.registry.discard(session_id)
            self._record(session_id, user_id, PendingStatus.FAILED, str(e))
        finally:
            self._handles.pop(session_id, None)

    async def _stop_task(self, session_id: str) -> bool:
        task = self._tasks.pop(session_id, None)
        handle = self._handles.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if handle is not None:
            await self.auth_bridge.close(handle)
        if task is not None:
            self.registry.release(session_id)
        return task is not None

    def _record(
        self, session_id: str, user_id: str, status: PendingStatus, error: str = ""
    ) -> None:
        now = self._clock()
        self._prune_outcomes()
        self._outcomes[session_id] = (now, {
            "sessionId": session_id,
            "userId": user_id,
            "status": status.value,
            "error": error or None,
            "finishedAt": format_ts(now),
        })

    def _prune_outcomes(self) -> None:
        cutoff = self._clock() - self.registry.ttl_seconds
        for sid, outcome in list(self._outcomes.items()):
            if outcome[0] < cutoff:
                del self._outcomes[sid]

