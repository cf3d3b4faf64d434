"""
Tests for auth/browser_login.py against a fake Playwright.

The harness's ``sleep`` advances a fake clock and plays back a script of
page URLs, one step per sleep, so a whole federated login runs instantly.
"""

import pytest

from session_bridge.auth.browser_login import AuthBridge, LoginState
from session_bridge.errors import (
    BrowserClosedError,
    BrowserLaunchError,
    CookieExtractionError,
    LoginTimeoutError,
)

from conftest import UPSTREAM

IDP = "https://idp.university.edu/idp/profile/SAML2/Redirect/SSO"
CLOSE = object()

UPSTREAM_COOKIES = [
    {"name": "canvas_session", "value": "sess", "domain": "upstream.example", "httpOnly": True},
    {"name": "_csrf_token", "value": "csrf", "domain": "upstream.example"},
    {"name": "_ga", "value": "GA1", "domain": ".upstream.example"},
]


class FakePage:
    def __init__(self):
        self.url = "about:blank"
        self.closed = False
        self.goto_error = None
        self.visited = []

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        if self.goto_error:
            raise self.goto_error
        self.url = url

    def is_closed(self):
        return self.closed


class FakeContext:
    def __init__(self, page, cookies):
        self.page = page
        self.cookie_list = cookies
        self.cookie_error = None
        self.cookie_urls = []
        self.closed = False

    async def new_page(self):
        return self.page

    async def cookies(self, url):
        self.cookie_urls.append(url)
        if self.cookie_error:
            raise self.cookie_error
        return list(self.cookie_list)

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, context):
        self.context = context
        self.context_kwargs = None
        self.closed = False

    async def new_context(self, **kwargs):
        self.context_kwargs = kwargs
        return self.context

    def is_connected(self):
        return not self.closed

    async def close(self):
        self.closed = True


class FakeChromium:
    def __init__(self, browser):
        self.browser = browser
        self.launch_error = None
        self.launch_kwargs = None

    async def launch(self, **kwargs):
        self.launch_kwargs = kwargs
        if self.launch_error:
            raise self.launch_error
        return self.browser


class FakePlaywright:
    def __init__(self, chromium):
        self.chromium = chromium
        self.stopped = False

    async def stop(self):
        self.stopped = True


class Harness:
    """Fake Playwright tree plus a clock/sleep pair that drives the page."""

    def __init__(self, script=(), cookies=UPSTREAM_COOKIES):
        self.now = 0.0
        self.script = list(script)
        self.sleeps = []
        self.page = FakePage()
        self.context = FakeContext(self.page, cookies)
        self.browser = FakeBrowser(self.context)
        self.chromium = FakeChromium(self.browser)
        self.pw = FakePlaywright(self.chromium)

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        if self.script:
            step = self.script.pop(0)
            if step is CLOSE:
                self.page.closed = True
            else:
                self.page.url = step

    async def launcher(self):
        return self.pw

    def bridge(self, handler, **kwargs):
        kwargs.setdefault("poll_interval_seconds", 3)
        kwargs.setdefault("grace_seconds", 5)
        return AuthBridge(
            handler,
            launcher=self.launcher,
            clock=self.clock,
            sleep=self.sleep,
            **kwargs,
        )

    @property
    def torn_down(self):
        return self.context.closed and self.browser.closed and self.pw.stopped


class TestStartLogin:
    """Launch and first navigation."""

    @pytest.mark.asyncio
    async def test_opens_login_entry(self, handler):
        h = Harness()
        handle = await h.bridge(handler, headless=False).start_login("user_a")
        assert h.page.visited == [f"{UPSTREAM}/login"]
        assert handle.state is LoginState.POLLING
        assert h.chromium.launch_kwargs["headless"] is False
        assert h.browser.context_kwargs["viewport"] == {"width": 1366, "height": 900}

    @pytest.mark.asyncio
    async def test_launch_failure_cleans_up(self, handler):
        h = Harness()
        h.chromium.launch_error = RuntimeError("chromium missing")
        with pytest.raises(BrowserLaunchError) as excinfo:
            await h.bridge(handler).start_login("user_a")
        assert excinfo.value.http_status == 500
        assert h.pw.stopped

    @pytest.mark.asyncio
    async def test_navigation_error_is_not_fatal(self, handler):
        """A noisy redirect chain during goto leaves polling in charge."""
        h = Harness()
        h.page.goto_error = TimeoutError("load timeout")
        handle = await h.bridge(handler).start_login("user_a")
        assert not handle.closed


class TestAwaitCompletion:
    """Polling state machine."""

    @pytest.mark.asyncio
    async def test_federated_login_succeeds(self, handler):
        """/login → IdP → IdP → back on the upstream: cookies harvested."""
        h = Harness(script=[IDP, IDP, f"{UPSTREAM}/?login_success=1"])
        bridge = h.bridge(handler)
        handle = await bridge.start_login("user_a")

        jar = await bridge.await_completion(handle, max_wait_seconds=300)

        assert handle.state is LoginState.SUCCEEDED
        assert h.sleeps == [3, 3, 3, 5]
        assert jar.names() == ["canvas_session", "_csrf_token"]
        assert h.context.cookie_urls == [UPSTREAM]
        assert h.torn_down

    @pytest.mark.asyncio
    async def test_timeout(self, handler):
        h = Harness()
        bridge = h.bridge(handler)
        handle = await bridge.start_login("user_a")

        with pytest.raises(LoginTimeoutError) as excinfo:
            await bridge.await_completion(handle, max_wait_seconds=10)

        assert excinfo.value.http_status == 500
        assert handle.state is LoginState.TIMED_OUT
        assert h.sleeps == [3, 3, 3, 1]
        assert h.torn_down

    @pytest.mark.asyncio
    async def test_user_closes_window(self, handler):
        h = Harness(script=[IDP, CLOSE])
        bridge = h.bridge(handler)
        handle = await bridge.start_login("user_a")

        with pytest.raises(BrowserClosedError):
            await bridge.await_completion(handle, max_wait_seconds=300)
        assert handle.state is LoginState.CLOSED
        assert h.torn_down

    @pytest.mark.asyncio
    async def test_closed_during_grace(self, handler):
        h = Harness(script=[f"{UPSTREAM}/dashboard", CLOSE])
        bridge = h.bridge(handler)
        handle = await bridge.start_login("user_a")

        with pytest.raises(BrowserClosedError):
            await bridge.await_completion(handle, max_wait_seconds=300)
        assert h.context.cookie_urls == []

    @pytest.mark.asyncio
    async def test_no_cookies(self, handler):
        h = Harness(script=[f"{UPSTREAM}/dashboard"], cookies=[])
        bridge = h.bridge(handler)
        handle = await bridge.start_login("user_a")

        with pytest.raises(CookieExtractionError):
            await bridge.await_completion(handle, max_wait_seconds=300)
        assert h.torn_down

    @pytest.mark.asyncio
    async def test_cookie_read_failure(self, handler):
        h = Harness(script=[f"{UPSTREAM}/dashboard"])
        h.context.cookie_error = RuntimeError("target closed")
        bridge = h.bridge(handler)
        handle = await bridge.start_login("user_a")

        with pytest.raises(CookieExtractionError):
            await bridge.await_completion(handle, max_wait_seconds=300)

    @pytest.mark.asyncio
    async def test_unrecognised_cookies_all_kept(self, handler):
        h = Harness(
            script=[f"{UPSTREAM}/dashboard"],
            cookies=[{"name": "_ga", "value": "1"}, {"name": "_gid", "value": "2"}],
        )
        jar = await h.bridge(handler).login("user_a", max_wait_seconds=300)
        assert jar.names() == ["_ga", "_gid"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, handler):
        h = Harness()
        bridge = h.bridge(handler)
        handle = await bridge.start_login("user_a")
        await bridge.close(handle)
        h.pw.stopped = False
        await bridge.close(handle)
        assert h.pw.stopped is False
