"""
Base Upstream Handler (Abstract)
================================
Defines the contract for everything the bridge needs to know about ONE
upstream web application.

To add a new upstream (e.g. Moodle):
    1. Create ``moodle_auth.py`` inheriting from ``BaseAuthHandler``
    2. Implement the abstract members
    3. Register in ``auth_factory.py`` via ``AuthFactory.register()``
    4. No changes to the store, schedulers or login bridge are needed.

Design principles:
    - The login bridge never hard-codes URLs or cookie names
    - "Has the federated login finished?" is answered by ONE predicate,
      ``is_login_complete(url)``; it is the only place to adapt per site
    - Probe endpoint lists are ordered by priority (first success wins)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .cookies import IMPORTANT_COOKIE_MARKERS

logger = logging.getLogger(__name__)


# Selectors whose presence in an HTML response means "this is a login page".
_LOGIN_FORM_SELECTORS: List[str] = [
    'input[type="password"]',
    'form[action*="login"]',
    'form[action*="saml"]',
    'form[action*="SAML"]',
    '#login_form',
    '#loginForm',
    '#login-form',
    '.login-form',
]


class BaseAuthHandler(ABC):
    """Abstract base for all upstream handlers.

    Subclasses MUST implement:
        - ``portal_name``        - human readable name (e.g. "Canvas")
        - ``detect(url)``        - True if this handler owns the URL
        - ``transit_markers``    - URL path fragments of the auth hop pages
        - ``validation_endpoints`` - login-completion probes, by priority
        - ``who_am_i_endpoint``  - strong, user-identifying probe
    """

    def __init__(self, base_url: str = ""):
        """
        Args:
            base_url: Origin of the upstream app (``https://lms.example.edu``).
        """
        self.base_url = (base_url or self.default_base_url).rstrip("/")

    # ── Identity ──────────────────────────────────────────────────

    @property
    @abstractmethod
    def portal_name(self) -> str:
        """Human-readable portal name (e.g. 'Canvas')."""
        ...

    @property
    def default_base_url(self) -> str:
        return ""

    @abstractmethod
    def detect(self, url: str) -> bool:
        """Return True if this handler should manage *url*.

        Must be fast (no network calls, pattern matching only).
        """
        ...

    # ── Login entry / success detection ───────────────────────────

    @property
    def login_path(self) -> str:
        return "/login"

    @property
    def login_entry_url(self) -> str:
        """Where the browser starts; the upstream bounces it to the IdP."""
        return urljoin(self.base_url + "/", self.login_path.lstrip("/"))

    @property
    @abstractmethod
    def transit_markers(self) -> List[str]:
        """Path fragments of login / SAML / IdP hop pages on the upstream host."""
        ...

    @property
    def success_markers(self) -> List[str]:
        """URL fragments that mean success even if a transit marker matches."""
        return []

    @property
    def upstream_host(self) -> str:
        return (urlparse(self.base_url).hostname or "").lower()

    def is_transit_url(self, url: str) -> bool:
        """True if *url* is part of the authentication hop chain."""
        parsed = urlparse(url or "")
        host = (parsed.hostname or "").lower()
        if host != self.upstream_host:
            return True
        target = (parsed.path or "/").lower()
        if parsed.query:
            target = f"{target}?{parsed.query.lower()}"
        return any(m.lower() in target for m in self.transit_markers)

    def is_login_complete(self, url: str) -> bool:
        """Success heuristic for the browser polling loop.

        The upstream offers no signal when a federated login finishes, so we
        watch the URL: back on the upstream host AND not on a transit page.
        """
        lowered = (url or "").lower()
        if not lowered.startswith(("http://", "https://")):
            return False
        host = (urlparse(lowered).hostname or "")
        if host == self.upstream_host and any(
            m.lower() in lowered for m in self.success_markers
        ):
            return True
        return not self.is_transit_url(url)

    # ── Cookies ───────────────────────────────────────────────────

    @property
    def important_cookie_markers(self) -> List[str]:
        return list(IMPORTANT_COOKIE_MARKERS)

    # ── Probe endpoints ───────────────────────────────────────────

    @property
    @abstractmethod
    def validation_endpoints(self) -> List[str]:
        """Login-completion probes, highest priority first."""
        ...

    @property
    @abstractmethod
    def who_am_i_endpoint(self) -> str:
        """Authenticated endpoint that returns the user's profile."""
        ...

    @property
    def keep_alive_endpoint(self) -> str:
        """Light page fetched only to keep the upstream session warm."""
        return "/"

    def url_for(self, endpoint: str) -> str:
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def parse_user_info(self, payload: Any) -> Optional[Dict[str, Any]]:
        """Extract a profile snapshot from a probe's JSON payload.

        Override to whitelist fields; the default keeps any JSON object.
        """
        if isinstance(payload, dict) and payload:
            return payload
        return None

    # ── Expired-session detection ─────────────────────────────────

    def page_requires_login(self, html: str) -> bool:
        """True if an HTML body is a login form rather than app content.

        Upstream login pages answer 200, so a status check alone cannot tell
        a live session from one that was bounced to the IdP.
        """
        if not html:
            return False
        try:
            soup = BeautifulSoup(html, "lxml")
        except Exception as e:
            logger.debug(f"[{self.portal_name}] HTML parse failed: {e}")
            return False
        for selector in _LOGIN_FORM_SELECTORS:
            try:
                if soup.select_one(selector) is not None:
                    return True
            except Exception:
                continue
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(base_url={self.base_url!r})"
