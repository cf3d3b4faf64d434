"""
Shared fakes for the session bridge tests.

Network and browser never run in tests: the probe, Playwright objects and
clocks are replaced by the small stand-ins below.
"""

import asyncio

import pytest

from session_bridge.auth.browser_login import LoginHandle, LoginState
from session_bridge.auth.canvas_auth import CanvasAuthHandler
from session_bridge.auth.cookies import CookieJar
from session_bridge.auth.probe import ProbeOutcome

UPSTREAM = "https://upstream.example"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProbe:
    """
    Scripted stand-in for ``UpstreamProbe``.

    Each probe kind calls an overridable function taking the cookie jar;
    by default every probe succeeds.
    """

    def __init__(self, handler=None):
        self.handler = handler or CanvasAuthHandler(UPSTREAM)
        self.validate_fn = lambda jar: ProbeOutcome(
            valid=True, endpoint="/api/v1/users/self", status=200,
            user_info={"id": 1, "name": "Test User"},
        )
        self.keep_alive_fn = lambda jar: ProbeOutcome(valid=True, status=200)
        self.who_am_i_fn = lambda jar: ProbeOutcome(
            valid=True, status=200, user_info={"id": 1, "name": "Test User"},
        )
        self.calls = []
        self.closed = False

    async def _call(self, kind, fn, jar):
        self.calls.append((kind, jar.to_header()))
        result = fn(jar)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def validate(self, jar, endpoints=None):
        return await self._call("validate", self.validate_fn, jar)

    async def keep_alive(self, jar):
        return await self._call("keep_alive", self.keep_alive_fn, jar)

    async def who_am_i(self, jar):
        return await self._call("who_am_i", self.who_am_i_fn, jar)

    async def close(self):
        self.closed = True

    def calls_of(self, kind):
        return [header for k, header in self.calls if k == kind]


class FakeAuthBridge:
    """
    Stand-in for ``AuthBridge`` that never launches a browser.

    ``result`` is what ``await_completion`` returns (a cookie jar) or raises
    (an exception).  With ``hold`` set, ``await_completion`` blocks until
    ``release()`` is called or the task is cancelled.  With a ``clock``,
    launching and logging in advance it by ``launch_seconds`` and
    ``login_seconds``.
    """

    def __init__(self, handler=None):
        self.handler = handler or CanvasAuthHandler(UPSTREAM)
        self.result = CookieJar.from_header("canvas_session=browser")
        self.launch_error = None
        self.hold = False
        self.clock = None
        self.launch_seconds = 0.0
        self.login_seconds = 0.0
        self.started = []
        self.closed = []
        self._released = asyncio.Event()

    def release(self):
        self._released.set()

    async def start_login(self, user_id):
        if self.launch_error is not None:
            raise self.launch_error
        self.started.append(user_id)
        self._spend(self.launch_seconds)
        return LoginHandle(user_id=user_id, started_at=0.0)

    async def await_completion(self, handle, max_wait_seconds):
        try:
            if self.hold:
                await self._released.wait()
            self._spend(self.login_seconds)
            if isinstance(self.result, BaseException):
                handle.state = LoginState.TIMED_OUT
                raise self.result
            handle.state = LoginState.SUCCEEDED
            return self.result
        finally:
            await self.close(handle)

    def _spend(self, seconds):
        if self.clock is not None:
            self.clock.advance(seconds)

    async def close(self, handle):
        if not handle.closed:
            handle.closed = True
            self.closed.append(handle.user_id)


def session_cookie(user: str) -> CookieJar:
    return CookieJar.from_header(f"canvas_session={user}")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def handler():
    return CanvasAuthHandler(UPSTREAM)


@pytest.fixture
def fake_probe(handler):
    return FakeProbe(handler)


@pytest.fixture
def fake_auth_bridge(handler):
    return FakeAuthBridge(handler)
