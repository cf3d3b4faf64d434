"""
Upstream Probes
===============
Authenticated HTTP requests against the upstream, replaying a cookie jar.

Three kinds of probe, all built on ``UpstreamProbe.request()``:

    - ``validate(jar)``   - login completion: walk the handler's endpoint
                            list in priority order, FIRST 2xx wins
    - ``keep_alive(jar)`` - light HTML page whose only job is to reset the
                            upstream idle timer
    - ``who_am_i(jar)``   - strong validation: profile endpoint that proves
                            the session still identifies the user

Probes never raise for HTTP or network failures; they return a
``ProbeOutcome`` the caller turns into backoff, eviction or an error.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

import aiohttp

from .base_auth import BaseAuthHandler
from .cookies import CookieJar

logger = logging.getLogger(__name__)

# Canvas prefixes session-authenticated JSON with this anti-hijacking guard.
_JSON_GUARD = "while(1);"
_MAX_BODY_CHARS = 200_000


@dataclass
class ProbeResponse:
    """What one probe request returned."""
    endpoint: str
    status: int
    url: str = ""
    content_type: str = ""
    payload: Any = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class ProbeOutcome:
    """Verdict of a probe run (possibly spanning several endpoints)."""
    valid: bool
    endpoint: Optional[str] = None
    status: Optional[int] = None
    user_info: Optional[dict] = None
    error: str = ""
    attempts: List[Tuple[str, Union[int, str]]] = field(default_factory=list)


class UpstreamProbe:
    """
    Cookie-replaying HTTP client for one upstream.

    Usage::

        probe = UpstreamProbe(handler, timeout_seconds=15)
        outcome = await probe.validate(jar)
        ...
        await probe.close()
    """

    def __init__(
        self,
        handler: BaseAuthHandler,
        *,
        timeout_seconds: float = 15.0,
        user_agent: str = "",
        validation_endpoints: Optional[Sequence[str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Args:
            handler:              Upstream handler (URLs, endpoint lists).
            timeout_seconds:      Per-request total timeout.
            user_agent:           Desktop UA sent with every probe.
            validation_endpoints: Override the handler's completion probes.
            session:              Shared aiohttp session (created lazily if None).
        """
        self.handler = handler
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent or (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
        )
        self.validation_endpoints = list(
            validation_endpoints or handler.validation_endpoints
        )
        self._session = session
        self._owns_session = session is None

    # ── Transport ─────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            # Cookies travel in an explicit header; the client jar must
            # not leak one user's cookies into another user's probe.
            self._session = aiohttp.ClientSession(
                cookie_jar=aiohttp.DummyCookieJar()
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, jar: CookieJar, accept: str) -> dict:
        headers = {
            "Cookie": jar.to_header(),
            "Accept": accept,
            "User-Agent": self.user_agent,
        }
        if "json" in accept:
            headers["X-Requested-With"] = "XMLHttpRequest"
        return headers

    async def request(
        self,
        endpoint: str,
        jar: CookieJar,
        *,
        accept: str = "application/json",
    ) -> ProbeResponse:
        """GET *endpoint* with the jar's cookies.

        Raises:
            aiohttp.ClientError, asyncio.TimeoutError: transport failures.
        """
        session = await self._get_session()
        url = self.handler.url_for(endpoint)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        async with session.get(
            url, headers=self._headers(jar, accept), timeout=timeout,
            allow_redirects=True,
        ) as resp:
            text = await resp.text(errors="replace")
            content_type = resp.content_type or ""
            payload = None
            if "json" in content_type:
                payload = _parse_json(text)
            return ProbeResponse(
                endpoint=endpoint,
                status=resp.status,
                url=str(resp.url),
                content_type=content_type,
                payload=payload,
                text=text[:_MAX_BODY_CHARS],
            )

    # ── Probe kinds ───────────────────────────────────────────────

    async def validate(
        self, jar: CookieJar, endpoints: Optional[Sequence[str]] = None
    ) -> ProbeOutcome:
        """Try each endpoint in priority order; stop at the first 2xx."""
        endpoints = list(endpoints or self.validation_endpoints)
        outcome = ProbeOutcome(valid=False)
        if not jar:
            outcome.error = "no cookies"
            return outcome

        for endpoint in endpoints:
            try:
                resp = await self.request(endpoint, jar)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"[PROBE] {endpoint} failed: {type(e).__name__}: {e}")
                outcome.attempts.append((endpoint, type(e).__name__))
                continue

            outcome.attempts.append((endpoint, resp.status))
            logger.info(f"[PROBE] Validation {endpoint} → HTTP {resp.status}")
            if resp.ok and not self.handler.is_transit_url(resp.url or self.handler.url_for(endpoint)):
                outcome.valid = True
                outcome.endpoint = endpoint
                outcome.status = resp.status
                outcome.user_info = self.handler.parse_user_info(resp.payload)
                return outcome

        outcome.error = "all validation endpoints failed"
        return outcome

    async def keep_alive(self, jar: CookieJar) -> ProbeOutcome:
        """Fetch the light keep-alive page.

        A 2xx only counts if we were not bounced to a login page on the way.
        """
        endpoint = self.handler.keep_alive_endpoint
        outcome = ProbeOutcome(valid=False, endpoint=endpoint)
        if not jar:
            outcome.error = "no cookies"
            return outcome

        try:
            resp = await self.request(endpoint, jar, accept="text/html")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            outcome.error = f"{type(e).__name__}: {e}"
            outcome.attempts.append((endpoint, type(e).__name__))
            return outcome

        outcome.status = resp.status
        outcome.attempts.append((endpoint, resp.status))
        if not resp.ok:
            outcome.error = f"HTTP {resp.status}"
        elif resp.url and self.handler.is_transit_url(resp.url):
            outcome.error = f"redirected to login ({resp.url[:80]})"
        elif self.handler.page_requires_login(resp.text):
            outcome.error = "login form in response"
        else:
            outcome.valid = True
        return outcome

    async def who_am_i(self, jar: CookieJar) -> ProbeOutcome:
        """Strong validation against the profile endpoint."""
        endpoint = self.handler.who_am_i_endpoint
        outcome = ProbeOutcome(valid=False, endpoint=endpoint)
        if not jar:
            outcome.error = "no cookies"
            return outcome

        try:
            resp = await self.request(endpoint, jar)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            outcome.error = f"{type(e).__name__}: {e}"
            outcome.attempts.append((endpoint, type(e).__name__))
            return outcome

        outcome.status = resp.status
        outcome.attempts.append((endpoint, resp.status))
        if not resp.ok:
            outcome.error = f"HTTP {resp.status}"
        elif resp.url and self.handler.is_transit_url(resp.url):
            outcome.error = f"redirected to login ({resp.url[:80]})"
        else:
            outcome.valid = True
            outcome.user_info = self.handler.parse_user_info(resp.payload)
        return outcome


def _parse_json(text: str) -> Any:
    body = text.lstrip()
    if body.startswith(_JSON_GUARD):
        body = body[len(_JSON_GUARD):]
    try:
        return json.loads(body)
    except ValueError:
        return None
