"""
Error Taxonomy
==============
Every failure the session bridge can surface to a caller.

Each error carries the HTTP status a caller should see, so the API layer
maps exceptions to responses in one place (``status_for``):

    ============================  ======
    Session not found / expired    401
    Candidate cookies rejected     401
    Pending login not found        404
    Pending login expired          408
    Malformed request              400
    Route disabled by config       403
    Rate limited                   429
    Browser / scheduler failure    500
    ============================  ======

Propagation:
    - Login errors are terminal for one attempt; the caller restarts.
    - Keep-alive network errors never leave the scheduler (backoff instead).
    - Strong-validation failures evict the session; nothing is raised.
"""

from __future__ import annotations

from typing import Optional


class SessionBridgeError(Exception):
    """Base class for all session bridge errors."""

    http_status: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "", *, user_id: Optional[str] = None):
        super().__init__(message or self.code)
        self.user_id = user_id


# ---------------------------------------------------------------------------
# Browser login (AuthBridge)
# ---------------------------------------------------------------------------

class BrowserLaunchError(SessionBridgeError):
    """The headless browser process could not be started."""
    code = "browser_launch_failed"


class LoginTimeoutError(SessionBridgeError):
    """The user did not finish the federated login within ``max_wait``."""
    code = "login_timeout"


class BrowserClosedError(SessionBridgeError):
    """The page or browser was closed while we were polling it."""
    code = "browser_closed"


class CookieExtractionError(SessionBridgeError):
    """Login looked successful but no usable cookies could be read."""
    code = "cookie_extraction_failed"


# ---------------------------------------------------------------------------
# Login completion
# ---------------------------------------------------------------------------

class ValidationFailedError(SessionBridgeError):
    """No probe endpoint accepted the candidate cookies."""
    http_status = 401
    code = "validation_failed"


class PendingLoginNotFoundError(SessionBridgeError):
    """No pending login exists for the given session id."""
    http_status = 404
    code = "pending_login_not_found"


class PendingLoginExpiredError(SessionBridgeError):
    """The pending login outlived its TTL and was discarded."""
    http_status = 408
    code = "pending_login_expired"


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class SessionNotFoundError(SessionBridgeError):
    """No live session for the user."""
    http_status = 401
    code = "session_not_found"


class SessionExpiredError(SessionBridgeError):
    """The session was idle past the timeout and has been evicted."""
    http_status = 401
    code = "session_expired"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class InvalidRequestError(SessionBridgeError):
    """A caller-supplied value (username, cookies) is malformed."""
    http_status = 400
    code = "invalid_request"


class ForbiddenError(SessionBridgeError):
    """The route exists but is switched off by configuration."""
    http_status = 403
    code = "forbidden"


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class RateLimitExceededError(SessionBridgeError):
    """A token bucket or login cap refused the request."""
    http_status = 429
    code = "rate_limited"


def status_for(exc: BaseException) -> int:
    """Return the HTTP status a caller should receive for *exc*."""
    if isinstance(exc, SessionBridgeError):
        return exc.http_status
    return 500
