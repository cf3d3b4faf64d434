"""
Session Bridge Package
Borrows a user's federated (SAML / Shibboleth) login on an upstream web app
and keeps the resulting cookie session alive in the background.

CLI Usage:
    python -m session_bridge <command> [options]

    Commands:
        serve       Run the HTTP API with the keep-alive and maintenance jobs
        login       Interactive (visible browser) login for one user
        config      Print the effective configuration
"""

from .run_config import BridgeConfig
from .errors import (
    SessionBridgeError,
    BrowserLaunchError,
    LoginTimeoutError,
    BrowserClosedError,
    CookieExtractionError,
    ValidationFailedError,
    PendingLoginNotFoundError,
    PendingLoginExpiredError,
    SessionNotFoundError,
    SessionExpiredError,
    RateLimitExceededError,
    InvalidRequestError,
    ForbiddenError,
)
from .utils import TokenBucket, BackoffPolicy
from .auth import (
    AuthBridge,
    AuthFactory,
    BaseAuthHandler,
    CanvasAuthHandler,
    Cookie,
    CookieJar,
    LoginService,
    PendingLoginRegistry,
    SessionEntry,
    SessionStore,
    UpstreamProbe,
)
from .keepalive import KeepAliveScheduler
from .maintenance import MaintenanceScheduler
from .bridge import SessionBridge

__all__ = [
    'BridgeConfig',
    'SessionBridge',
    # Components
    'AuthBridge',
    'AuthFactory',
    'BaseAuthHandler',
    'CanvasAuthHandler',
    'Cookie',
    'CookieJar',
    'LoginService',
    'PendingLoginRegistry',
    'SessionEntry',
    'SessionStore',
    'UpstreamProbe',
    'TokenBucket',
    'BackoffPolicy',
    'KeepAliveScheduler',
    'MaintenanceScheduler',
    # Errors
    'SessionBridgeError',
    'BrowserLaunchError',
    'LoginTimeoutError',
    'BrowserClosedError',
    'CookieExtractionError',
    'ValidationFailedError',
    'PendingLoginNotFoundError',
    'PendingLoginExpiredError',
    'SessionNotFoundError',
    'SessionExpiredError',
    'RateLimitExceededError',
    'InvalidRequestError',
    'ForbiddenError',
]

__version__ = '1.0.0'
