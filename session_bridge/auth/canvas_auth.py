"""
Canvas LMS Handler
==================
Concrete ``BaseAuthHandler`` for a Canvas LMS behind a SAML / Shibboleth IdP.

Login flow as seen by the polling browser:
    1. ``{base}/login`` → Canvas redirects to ``/login/saml``
    2. Browser lands on the IdP (Shibboleth, Okta, Azure AD ...)
    3. User authenticates out-of-band (password, MFA)
    4. IdP POSTs the assertion back to ``/login/saml`` on Canvas
    5. Canvas redirects to ``/`` or ``/?login_success=1`` → done

Probes:
    - validation: ``/api/v1/users/self`` → ``/api/v1/courses`` → ``/dashboard``
    - keep-alive: ``/dashboard`` (HTML; touching it resets the idle timer)
    - strong:     ``/api/v1/users/self`` (JSON profile)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .base_auth import BaseAuthHandler

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canvas URL patterns for auto-detection
# ---------------------------------------------------------------------------

_CANVAS_DOMAIN_PATTERNS: List[str] = [
    "instructure.com",
    "canvas.",
    "lms.",
]

_CANVAS_PATH_PATTERNS: List[str] = [
    "/api/v1/",
    "/courses",
    "/dashboard",
]

# Path fragments of the authentication hop pages on the Canvas host.
_CANVAS_TRANSIT_MARKERS: List[str] = [
    "/login",
    "/auth",
    "/saml",
    "/idp",
    "/portal",
    "/shibboleth.sso",
    "/simplesaml",
    "/logout",
]

_CANVAS_SUCCESS_MARKERS: List[str] = [
    "login_success=1",
]

_CANVAS_VALIDATION_ENDPOINTS: List[str] = [
    "/api/v1/users/self",
    "/api/v1/courses",
    "/dashboard",
]

_CANVAS_PROFILE_FIELDS: List[str] = [
    "id",
    "name",
    "sortable_name",
    "short_name",
    "login_id",
    "email",
    "avatar_url",
    "locale",
    "effective_locale",
    "last_login",
    "time_zone",
    "bio",
]


class CanvasAuthHandler(BaseAuthHandler):
    """Canvas LMS (SAML-federated) upstream."""

    def __init__(self, base_url: str = "", keep_alive_endpoint: str = ""):
        super().__init__(base_url)
        self._keep_alive_endpoint = keep_alive_endpoint or "/dashboard"

    @property
    def portal_name(self) -> str:
        return "Canvas"

    @property
    def default_base_url(self) -> str:
        return "https://canvas.example.edu"

    # ── Detection ─────────────────────────────────────────────────

    def detect(self, url: str) -> bool:
        """Return True if the URL looks like a Canvas instance."""
        parsed = urlparse(url.lower())
        domain = parsed.netloc
        path = parsed.path

        for pattern in _CANVAS_DOMAIN_PATTERNS:
            if pattern in domain:
                return True
        for pattern in _CANVAS_PATH_PATTERNS:
            if path.startswith(pattern):
                return True
        return False

    # ── Success detection ─────────────────────────────────────────

    @property
    def transit_markers(self) -> List[str]:
        return list(_CANVAS_TRANSIT_MARKERS)

    @property
    def success_markers(self) -> List[str]:
        return list(_CANVAS_SUCCESS_MARKERS)

    # ── Probes ────────────────────────────────────────────────────

    @property
    def validation_endpoints(self) -> List[str]:
        return list(_CANVAS_VALIDATION_ENDPOINTS)

    @property
    def who_am_i_endpoint(self) -> str:
        return "/api/v1/users/self"

    @property
    def keep_alive_endpoint(self) -> str:
        return self._keep_alive_endpoint

    def parse_user_info(self, payload: Any) -> Optional[Dict[str, Any]]:
        """Keep the profile fields Canvas exposes on ``users/self``.

        ``/api/v1/courses`` returns a list and ``/dashboard`` is HTML, so
        only the profile endpoint produces user info.
        """
        if not isinstance(payload, dict) or "id" not in payload:
            return None
        return {k: payload[k] for k in _CANVAS_PROFILE_FIELDS if k in payload}
