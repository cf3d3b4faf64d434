"""
Browser Login Bridge
====================
Drives an isolated Chromium through a federated (SAML / Shibboleth) login
and turns "the user finished logging in" into a validated cookie jar.

Workflow:
    1. ``start_login(user_id)`` launches a fresh browser + context and opens
       the upstream's login entry URL (the upstream bounces it to the IdP)
    2. The user authenticates out-of-band (password, MFA, CAPTCHA)
    3. ``await_completion(handle, max_wait)`` polls ``page.url``:

           polling ──► succeeded   (handler.is_login_complete(url))
                   ──► timed_out   (max_wait elapsed)
                   ──► closed      (page / browser went away)

    4. On success: grace wait (cookies are often set after the redirect
       lands), read the cookies scoped to the upstream, keep the important
       ones (or all of them if none match)
    5. The browser is closed in every outcome; nothing partial is returned

Usage::

    bridge = AuthBridge(handler, headless=True)
    handle = await bridge.start_login("user_alice")
    jar = await bridge.await_completion(handle, max_wait_seconds=300)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import async_playwright

from ..errors import (
    BrowserClosedError,
    BrowserLaunchError,
    CookieExtractionError,
    LoginTimeoutError,
)
from .base_auth import BaseAuthHandler
from .cookies import CookieJar

logger = logging.getLogger(__name__)

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

_BROWSER_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--no-first-run',
]


class LoginState(str, Enum):
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


@dataclass
class LoginHandle:
    """One in-flight browser login (owns its playwright objects)."""
    user_id: str
    started_at: float
    pw: Any = None
    browser: Any = None
    context: Any = None
    page: Any = None
    state: LoginState = LoginState.POLLING
    closed: bool = False

    @property
    def current_url(self) -> str:
        try:
            return self.page.url if self.page is not None else ""
        except Exception:
            return ""


async def _start_playwright():
    return await async_playwright().start()


class AuthBridge:
    """Headless-browser login driver for one upstream."""

    def __init__(
        self,
        handler: BaseAuthHandler,
        *,
        headless: bool = True,
        user_agent: str = _DEFAULT_USER_AGENT,
        poll_interval_seconds: float = 3.0,
        grace_seconds: float = 5.0,
        viewport_width: int = 1366,
        viewport_height: int = 900,
        launcher: Callable[[], Awaitable[Any]] = _start_playwright,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            handler:               Upstream knowledge (entry URL, success predicate).
            headless:              False opens a visible window (CLI ``login``).
            poll_interval_seconds: How often ``page.url`` is checked.
            grace_seconds:         Wait after success before reading cookies.
            launcher:              Coroutine returning a started Playwright.
            clock / sleep:         Injectable for tests.
        """
        self.handler = handler
        self.headless = headless
        self.user_agent = user_agent
        self.poll_interval_seconds = poll_interval_seconds
        self.grace_seconds = grace_seconds
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self._launcher = launcher
        self._clock = clock
        self._sleep = sleep

    # ── Public API ────────────────────────────────────────────────

    async def start_login(self, user_id: str) -> LoginHandle:
        """Launch a fresh browser and open the upstream login page.

        Raises:
            BrowserLaunchError: If Playwright or Chromium cannot start.
        """
        handle = LoginHandle(user_id=user_id, started_at=self._clock())
        try:
            handle.pw = await self._launcher()
            handle.browser = await handle.pw.chromium.launch(
                headless=self.headless,
                args=_BROWSER_ARGS,
            )
            handle.context = await handle.browser.new_context(
                viewport={"width": self.viewport_width, "height": self.viewport_height},
                locale="en-US",
                user_agent=self.user_agent,
            )
            handle.page = await handle.context.new_page()
        except Exception as e:
            await self.close(handle)
            logger.error(f"[LOGIN] Browser launch failed for {user_id}: {e}")
            raise BrowserLaunchError(f"Browser launch failed: {e}", user_id=user_id) from e

        entry_url = self.handler.login_entry_url
        logger.info(f"[LOGIN] Browser started for {user_id} → {entry_url}")
        try:
            await handle.page.goto(entry_url, wait_until="load", timeout=60_000)
        except Exception as e:
            # The IdP redirect chain often trips "load"; polling takes over.
            logger.warning(f"[LOGIN] Initial navigation issue for {user_id}: {e}")
        return handle

    async def await_completion(
        self, handle: LoginHandle, max_wait_seconds: float
    ) -> CookieJar:
        """Poll until the login completes, then harvest the cookies.

        The browser is closed before this returns or raises.

        Raises:
            LoginTimeoutError:     ``max_wait_seconds`` elapsed.
            BrowserClosedError:    Page or browser closed mid-poll.
            CookieExtractionError: Success detected but no cookies readable.
        """
        try:
            handle.state = await self._poll(handle, max_wait_seconds)

            if handle.state == LoginState.TIMED_OUT:
                raise LoginTimeoutError(
                    f"Login not completed within {max_wait_seconds:.0f}s",
                    user_id=handle.user_id,
                )
            if handle.state == LoginState.CLOSED:
                raise BrowserClosedError(
                    "Browser was closed before login completed",
                    user_id=handle.user_id,
                )

            logger.info(
                f"[LOGIN] Login detected for {handle.user_id} at "
                f"{handle.current_url[:100]}; waiting {self.grace_seconds:.0f}s "
                f"for cookies to settle"
            )
            await self._sleep(self.grace_seconds)
            if self._is_closed(handle):
                raise BrowserClosedError(
                    "Browser was closed while cookies were settling",
                    user_id=handle.user_id,
                )
            return await self._extract_cookies(handle)
        finally:
            await self.close(handle)

    async def login(self, user_id: str, max_wait_seconds: float) -> CookieJar:
        """``start_login`` + ``await_completion`` in one call."""
        handle = await self.start_login(user_id)
        return await self.await_completion(handle, max_wait_seconds)

    async def close(self, handle: LoginHandle) -> None:
        """Tear down context, browser and Playwright. Safe to call twice."""
        if handle.closed:
            return
        handle.closed = True
        if handle.context is not None:
            try:
                await handle.context.close()
            except Exception:
                pass
        if handle.browser is not None:
            try:
                await handle.browser.close()
            except Exception:
                pass
        if handle.pw is not None:
            try:
                await handle.pw.stop()
            except Exception:
                pass
        logger.debug(f"[LOGIN] Browser closed for {handle.user_id}")

    # ── Internal ──────────────────────────────────────────────────

    def _is_closed(self, handle: LoginHandle) -> bool:
        if handle.closed or handle.page is None:
            return True
        try:
            if handle.page.is_closed():
                return True
            if handle.browser is not None and not handle.browser.is_connected():
                return True
        except Exception:
            return True
        return False

    async def _poll(self, handle: LoginHandle, max_wait_seconds: float) -> LoginState:
        deadline = self._clock() + max_wait_seconds
        last_url = ""
        while True:
            if self._is_closed(handle):
                return LoginState.CLOSED

            url = handle.current_url
            if url != last_url:
                logger.debug(f"[LOGIN] {handle.user_id} now at {url[:100]}")
                last_url = url
            if self.handler.is_login_complete(url):
                return LoginState.SUCCEEDED

            remaining = deadline - self._clock()
            if remaining <= 0:
                return LoginState.TIMED_OUT
            await self._sleep(min(self.poll_interval_seconds, remaining))

    async def _extract_cookies(self, handle: LoginHandle) -> CookieJar:
        try:
            raw = await handle.context.cookies(self.handler.base_url)
        except Exception as e:
            raise CookieExtractionError(
                f"Could not read cookies: {e}", user_id=handle.user_id
            ) from e

        jar = CookieJar.from_dicts(raw or [])
        if not jar:
            raise CookieExtractionError(
                "No cookies found for the upstream domain", user_id=handle.user_id
            )
        jar = jar.filter_important(self.handler.important_cookie_markers)
        logger.info(
            f"[LOGIN] Extracted {len(jar)} cookies for {handle.user_id}: "
            f"{', '.join(jar.names())}"
        )
        return jar
