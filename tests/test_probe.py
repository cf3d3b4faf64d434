"""
Tests for auth/probe.py with the HTTP layer replaced by canned responses.
"""

import asyncio

import aiohttp
import pytest

from session_bridge.auth.cookies import CookieJar
from session_bridge.auth.probe import ProbeResponse, UpstreamProbe, _parse_json

from conftest import UPSTREAM, session_cookie


class CannedProbe(UpstreamProbe):
    """``request()`` answers from a dict: endpoint → response or exception."""

    def __init__(self, handler, canned, **kwargs):
        super().__init__(handler, **kwargs)
        self.canned = canned
        self.requested = []

    async def request(self, endpoint, jar, *, accept="application/json"):
        self.requested.append((endpoint, accept))
        result = self.canned[endpoint]
        if isinstance(result, BaseException):
            raise result
        return result


def response(endpoint, status=200, *, url=None, payload=None, text=""):
    return ProbeResponse(
        endpoint=endpoint,
        status=status,
        url=url if url is not None else f"{UPSTREAM}{endpoint}",
        payload=payload,
        text=text,
    )


class TestValidate:
    """Priority-ordered completion probe."""

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self, handler):
        probe = CannedProbe(handler, {
            "/api/v1/users/self": response("/api/v1/users/self", 401),
            "/api/v1/courses": response("/api/v1/courses", 200, payload=[{"id": 1}]),
            "/dashboard": response("/dashboard", 200),
        })
        outcome = await probe.validate(session_cookie("a"))
        assert outcome.valid
        assert outcome.endpoint == "/api/v1/courses"
        assert outcome.user_info is None
        assert outcome.attempts == [("/api/v1/users/self", 401), ("/api/v1/courses", 200)]
        assert [e for e, _ in probe.requested] == ["/api/v1/users/self", "/api/v1/courses"]

    @pytest.mark.asyncio
    async def test_transport_errors_move_on(self, handler):
        probe = CannedProbe(handler, {
            "/api/v1/users/self": asyncio.TimeoutError(),
            "/api/v1/courses": aiohttp.ClientConnectionError("refused"),
            "/dashboard": response("/dashboard", 200),
        })
        outcome = await probe.validate(session_cookie("a"))
        assert outcome.valid
        assert outcome.endpoint == "/dashboard"
        assert outcome.attempts[0] == ("/api/v1/users/self", "TimeoutError")

    @pytest.mark.asyncio
    async def test_redirect_to_login_is_not_success(self, handler):
        """200 after being bounced to /login does not count."""
        probe = CannedProbe(handler, {
            "/dashboard": response("/dashboard", 200, url=f"{UPSTREAM}/login"),
        })
        outcome = await probe.validate(session_cookie("a"), endpoints=["/dashboard"])
        assert not outcome.valid
        assert outcome.error == "all validation endpoints failed"

    @pytest.mark.asyncio
    async def test_all_fail(self, handler):
        probe = CannedProbe(handler, {
            e: response(e, 401) for e in handler.validation_endpoints
        })
        outcome = await probe.validate(session_cookie("a"))
        assert not outcome.valid
        assert len(outcome.attempts) == 3

    @pytest.mark.asyncio
    async def test_empty_jar_makes_no_request(self, handler):
        probe = CannedProbe(handler, {})
        outcome = await probe.validate(CookieJar())
        assert not outcome.valid
        assert outcome.error == "no cookies"
        assert probe.requested == []

    @pytest.mark.asyncio
    async def test_endpoint_override(self, handler):
        probe = CannedProbe(
            handler,
            {"/custom": response("/custom", 200, payload={"id": 3})},
            validation_endpoints=["/custom"],
        )
        outcome = await probe.validate(session_cookie("a"))
        assert outcome.user_info == {"id": 3}


class TestKeepAlive:
    """Light HTML probe."""

    @pytest.mark.asyncio
    async def test_dashboard_html_ok(self, handler):
        probe = CannedProbe(handler, {
            "/dashboard": response("/dashboard", 200, text="<div id='dashboard'></div>"),
        })
        outcome = await probe.keep_alive(session_cookie("a"))
        assert outcome.valid
        assert probe.requested == [("/dashboard", "text/html")]

    @pytest.mark.asyncio
    async def test_login_form_counts_as_failure(self, handler):
        html = '<form action="/login"><input type="password"></form>'
        probe = CannedProbe(handler, {"/dashboard": response("/dashboard", 200, text=html)})
        outcome = await probe.keep_alive(session_cookie("a"))
        assert not outcome.valid
        assert outcome.error == "login form in response"

    @pytest.mark.asyncio
    async def test_redirect_to_idp_counts_as_failure(self, handler):
        probe = CannedProbe(handler, {
            "/dashboard": response("/dashboard", 200, url="https://idp.example/sso"),
        })
        outcome = await probe.keep_alive(session_cookie("a"))
        assert not outcome.valid
        assert outcome.error.startswith("redirected to login")

    @pytest.mark.asyncio
    async def test_http_error(self, handler):
        probe = CannedProbe(handler, {"/dashboard": response("/dashboard", 503)})
        outcome = await probe.keep_alive(session_cookie("a"))
        assert not outcome.valid
        assert outcome.status == 503
        assert outcome.error == "HTTP 503"

    @pytest.mark.asyncio
    async def test_network_error_never_raises(self, handler):
        probe = CannedProbe(handler, {"/dashboard": aiohttp.ClientError("boom")})
        outcome = await probe.keep_alive(session_cookie("a"))
        assert not outcome.valid
        assert "ClientError" in outcome.error


class TestWhoAmI:
    """Strong profile probe."""

    @pytest.mark.asyncio
    async def test_profile_parsed(self, handler):
        probe = CannedProbe(handler, {
            "/api/v1/users/self": response(
                "/api/v1/users/self", 200, payload={"id": 9, "name": "Bo", "junk": 1},
            ),
        })
        outcome = await probe.who_am_i(session_cookie("a"))
        assert outcome.valid
        assert outcome.user_info == {"id": 9, "name": "Bo"}

    @pytest.mark.asyncio
    async def test_unauthorized(self, handler):
        probe = CannedProbe(handler, {
            "/api/v1/users/self": response("/api/v1/users/self", 401),
        })
        outcome = await probe.who_am_i(session_cookie("a"))
        assert not outcome.valid
        assert outcome.error == "HTTP 401"


class TestTransportHelpers:
    """Headers and JSON parsing."""

    def test_headers_carry_cookie_header(self, handler):
        probe = UpstreamProbe(handler, user_agent="UA/1")
        headers = probe._headers(session_cookie("abc"), "application/json")
        assert headers["Cookie"] == "canvas_session=abc"
        assert headers["User-Agent"] == "UA/1"
        assert headers["X-Requested-With"] == "XMLHttpRequest"

    def test_html_accept_has_no_xhr_header(self, handler):
        headers = UpstreamProbe(handler)._headers(session_cookie("a"), "text/html")
        assert "X-Requested-With" not in headers

    def test_parse_json_strips_guard(self):
        assert _parse_json('while(1);{"id": 1}') == {"id": 1}
        assert _parse_json('  [1, 2]') == [1, 2]

    def test_parse_json_garbage(self):
        assert _parse_json("<html>") is None

    @pytest.mark.asyncio
    async def test_close_without_session(self, handler):
        probe = UpstreamProbe(handler)
        await probe.close()
        await probe.close()
