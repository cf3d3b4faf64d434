"""
Authentication Module
=====================
Everything needed to obtain and hold an upstream session.

Architecture:
    - ``BaseAuthHandler``      - per-site knowledge (entry URL, success predicate, probes)
    - ``AuthFactory``          - handler registry, lookup by name or URL
    - ``AuthBridge``           - headless browser login → cookie jar
    - ``UpstreamProbe``        - cookie-replaying HTTP probes
    - ``PendingLoginRegistry`` - in-flight logins with TTL expiry
    - ``SessionStore``         - per-user sessions with lazy idle eviction
    - ``LoginService``         - ties the browser, registry and store together

Built-in handlers:
    - ``CanvasAuthHandler``    - Canvas LMS behind SAML / Shibboleth

Extending:
    To add a new upstream, create a handler that inherits from
    ``BaseAuthHandler``, implement the abstract members, and register it in
    ``auth_factory.py``.  No changes to the store or schedulers are needed.
"""

from .cookies import Cookie, CookieJar, IMPORTANT_COOKIE_MARKERS
from .base_auth import BaseAuthHandler
from .canvas_auth import CanvasAuthHandler
from .auth_factory import AuthFactory
from .probe import UpstreamProbe, ProbeOutcome, ProbeResponse
from .session_store import SessionEntry, SessionStore
from .pending import PendingLogin, PendingLoginRegistry, PendingStatus
from .browser_login import AuthBridge, LoginHandle, LoginState
from .login_flow import LoginService

__all__ = [
    "Cookie",
    "CookieJar",
    "IMPORTANT_COOKIE_MARKERS",
    "BaseAuthHandler",
    "CanvasAuthHandler",
    "AuthFactory",
    "UpstreamProbe",
    "ProbeOutcome",
    "ProbeResponse",
    "SessionEntry",
    "SessionStore",
    "PendingLogin",
    "PendingLoginRegistry",
    "PendingStatus",
    "AuthBridge",
    "LoginHandle",
    "LoginState",
    "LoginService",
]
