"""
Unified Bridge Configuration
============================
Single source of truth for ALL session bridge defaults and runtime limits.

Every component (store, schedulers, login bridge, API, CLI) reads from this
object.  Environment variables and CLI flags populate it; nothing else in the
package hard-codes an interval, timeout or limit.

Populate via:
    - ``BridgeConfig()``                  → all defaults
    - ``BridgeConfig(session_timeout_minutes=30)`` → override one value
    - ``BridgeConfig.from_env()``         → from environment / ``.env``
    - ``BridgeConfig.from_cli_args(ns)``  → env first, then argparse overrides
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "upstream_base_url": "https://canvas.example.edu",
    "portal": "canvas",
    # Schedulers
    "keep_alive_interval_minutes": 10,
    "maintenance_interval_minutes": 15,
    "session_timeout_minutes": 60,
    "inactivity_cutoff_days": 5,
    "keep_alive_concurrency": 10,
    "keep_alive_global_rps": 0,       # 0 = bucket disabled
    "backoff_base_minutes": 5,
    "backoff_max_minutes": 60,
    "keep_alive_endpoint": "/dashboard",
    "probe_timeout_seconds": 15,
    # Browser login
    "login_poll_interval_seconds": 3,
    "login_max_wait_minutes": 5,
    "login_grace_seconds": 5,
    "pending_login_ttl_minutes": 5,   # matched to login_max_wait_minutes
    "max_concurrent_logins": 0,       # 0 = unbounded
    "headless": True,
    # Service
    "host": "127.0.0.1",
    "port": 3000,
    "expose_session_list": False,
    "log_level": "INFO",
    "user_agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
}

# field name → env var names (first one set wins)
_ENV_VARS: Dict[str, List[str]] = {
    "upstream_base_url": ["UPSTREAM_BASE_URL", "CANVAS_BASE_URL"],
    "portal": ["UPSTREAM_PORTAL"],
    "keep_alive_interval_minutes": ["SESSION_KEEP_ALIVE_MINUTES"],
    "maintenance_interval_minutes": ["SESSION_CHECK_INTERVAL_MINUTES"],
    "session_timeout_minutes": ["SESSION_TIMEOUT_MINUTES"],
    "inactivity_cutoff_days": ["SESSION_INACTIVITY_CUTOFF_DAYS"],
    "keep_alive_concurrency": ["KEEP_ALIVE_GLOBAL_CONCURRENCY"],
    "keep_alive_global_rps": ["KEEP_ALIVE_GLOBAL_RPS"],
    "backoff_base_minutes": ["KEEP_ALIVE_BACKOFF_BASE_MINUTES"],
    "backoff_max_minutes": ["KEEP_ALIVE_BACKOFF_MAX_MINUTES"],
    "keep_alive_endpoint": ["KEEP_ALIVE_HTML_ENDPOINT"],
    "probe_timeout_seconds": ["KEEP_ALIVE_TIMEOUT_SECONDS"],
    "login_poll_interval_seconds": ["LOGIN_POLL_INTERVAL_SECONDS"],
    "login_max_wait_minutes": ["LOGIN_MAX_WAIT_MINUTES"],
    "login_grace_seconds": ["LOGIN_GRACE_SECONDS"],
    "pending_login_ttl_minutes": ["PENDING_LOGIN_TTL_MINUTES"],
    "max_concurrent_logins": ["MAX_CONCURRENT_LOGINS"],
    "headless": ["BROWSER_HEADLESS"],
    "host": ["HOST"],
    "port": ["PORT"],
    "expose_session_list": ["EXPOSE_SESSION_LIST"],
    "log_level": ["LOG_LEVEL"],
}

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


@dataclass
class BridgeConfig:
    """
    Configuration consumed by every session bridge subsystem.

    Durations keep the unit in the field name; the ``*_seconds`` properties
    convert them for the code that sleeps or compares timestamps.
    """

    # ---- Upstream ----
    upstream_base_url: str = _DEFAULTS["upstream_base_url"]
    portal: str = _DEFAULTS["portal"]

    # ---- Keep-alive / maintenance ----
    keep_alive_interval_minutes: float = _DEFAULTS["keep_alive_interval_minutes"]
    maintenance_interval_minutes: float = _DEFAULTS["maintenance_interval_minutes"]
    session_timeout_minutes: float = _DEFAULTS["session_timeout_minutes"]
    inactivity_cutoff_days: float = _DEFAULTS["inactivity_cutoff_days"]
    keep_alive_concurrency: int = _DEFAULTS["keep_alive_concurrency"]
    keep_alive_global_rps: float = _DEFAULTS["keep_alive_global_rps"]
    backoff_base_minutes: float = _DEFAULTS["backoff_base_minutes"]
    backoff_max_minutes: float = _DEFAULTS["backoff_max_minutes"]
    keep_alive_endpoint: str = _DEFAULTS["keep_alive_endpoint"]
    probe_timeout_seconds: float = _DEFAULTS["probe_timeout_seconds"]

    # ---- Browser login ----
    login_poll_interval_seconds: float = _DEFAULTS["login_poll_interval_seconds"]
    login_max_wait_minutes: float = _DEFAULTS["login_max_wait_minutes"]
    login_grace_seconds: float = _DEFAULTS["login_grace_seconds"]
    pending_login_ttl_minutes: float = _DEFAULTS["pending_login_ttl_minutes"]
    max_concurrent_logins: int = _DEFAULTS["max_concurrent_logins"]
    headless: bool = _DEFAULTS["headless"]

    # ---- Service ----
    host: str = _DEFAULTS["host"]
    port: int = _DEFAULTS["port"]
    expose_session_list: bool = _DEFAULTS["expose_session_list"]
    log_level: str = _DEFAULTS["log_level"]
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Probe endpoint overrides (empty = handler defaults) ----
    validation_endpoints: List[str] = field(default_factory=list)

    # -----------------------------------------------------------------------
    # Derived durations
    # -----------------------------------------------------------------------
    @property
    def session_timeout_seconds(self) -> float:
        return self.session_timeout_minutes * 60

    @property
    def inactivity_cutoff_seconds(self) -> float:
        return self.inactivity_cutoff_days * 24 * 3600

    @property
    def keep_alive_interval_seconds(self) -> float:
        return self.keep_alive_interval_minutes * 60

    @property
    def maintenance_interval_seconds(self) -> float:
        return self.maintenance_interval_minutes * 60

    @property
    def login_max_wait_seconds(self) -> float:
        return self.login_max_wait_minutes * 60

    @property
    def pending_login_ttl_seconds(self) -> float:
        return self.pending_login_ttl_minutes * 60

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """Build config from environment variables.

        Unset variables keep the default.  Values that cannot be parsed are
        logged and ignored; a typo in ``.env`` must never stop the service.
        """
        if environ is None:
            environ = os.environ

        overrides = {}
        types = {f.name: f.type for f in fields(cls)}
        for name, env_names in _ENV_VARS.items():
            raw = None
            for env_name in env_names:
                if environ.get(env_name, "").strip():
                    raw = environ[env_name].strip()
                    break
            if raw is None:
                continue
            try:
                overrides[name] = _coerce(raw, _DEFAULTS[name], types.get(name))
            except ValueError:
                logger.warning(
                    f"[CONFIG] Ignoring invalid value for {env_names[0]}: {raw!r} "
                    f"(using default {_DEFAULTS[name]!r})"
                )

        endpoints = environ.get("VALIDATION_ENDPOINTS", "").strip()
        if endpoints:
            overrides["validation_endpoints"] = [
                e.strip() for e in endpoints.split(",") if e.strip()
            ]

        return cls(**overrides)

    @classmethod
    def from_cli_args(cls, args, environ: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """Build config from env, then apply argparse overrides (``__main__.py``)."""
        cfg = cls.from_env(environ)
        for name in ("upstream_base_url", "portal", "host", "port", "log_level"):
            value = getattr(args, name, None)
            if value is not None:
                setattr(cfg, name, value)
        if getattr(args, "headed", False):
            cfg.headless = False
        if getattr(args, "expose_sessions", False):
            cfg.expose_session_list = True
        return cfg

    # -----------------------------------------------------------------------
    # Sanity checks
    # -----------------------------------------------------------------------
    def validate(self) -> List[str]:
        """Return human-readable configuration problems (empty = OK)."""
        problems = []
        if not self.upstream_base_url.startswith(("http://", "https://")):
            problems.append(f"upstream_base_url must be http(s): {self.upstream_base_url!r}")
        if self.keep_alive_concurrency < 1:
            problems.append("keep_alive_concurrency must be >= 1")
        if self.backoff_base_minutes <= 0:
            problems.append("backoff_base_minutes must be > 0")
        if self.backoff_max_minutes < self.backoff_base_minutes:
            problems.append("backoff_max_minutes must be >= backoff_base_minutes")
        if self.pending_login_ttl_minutes < self.login_max_wait_minutes:
            problems.append(
                "pending_login_ttl_minutes is shorter than login_max_wait_minutes; "
                "pending logins would expire while the browser is still waiting"
            )
        if self.login_poll_interval_seconds <= 0:
            problems.append("login_poll_interval_seconds must be > 0")
        if self.keep_alive_interval_minutes <= 0 or self.maintenance_interval_minutes <= 0:
            problems.append("scheduler intervals must be > 0")
        return problems

    def summary(self) -> Dict[str, object]:
        """Loggable view of the config (no secrets live here)."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(raw: str, default, declared_type=None):
    """Convert *raw* to the type of *default*."""
    if isinstance(default, bool):
        lowered = raw.lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(raw)
    if isinstance(default, int) and declared_type not in ("float", float):
        return int(raw)
    if isinstance(default, (int, float)):
        return float(raw)
    return raw
