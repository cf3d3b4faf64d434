"""
Session Bridge
==============
Explicitly constructed container for every session bridge component.

One ``SessionBridge`` per process: it builds the store, registry, probe,
browser bridge and both schedulers from a ``BridgeConfig``, and owns their
lifecycle (``start()`` at process start, ``stop()`` at shutdown).  Nothing
in the package is a module-level singleton.

Usage::

    bridge = SessionBridge(BridgeConfig.from_env())
    await bridge.start()
    ...
    entry = bridge.store.get("user_alice")
    ...
    await bridge.stop()
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from .auth.auth_factory import AuthFactory
from .auth.base_auth import BaseAuthHandler
from .auth.browser_login import AuthBridge
from .auth.login_flow import LoginService
from .auth.pending import PendingLoginRegistry
from .auth.probe import UpstreamProbe
from .auth.session_store import SessionStore
from .keepalive import KeepAliveScheduler
from .maintenance import MaintenanceScheduler
from .monitor import SchedulerMonitor
from .run_config import BridgeConfig
from .utils import BackoffPolicy, TokenBucket, format_ts

logger = logging.getLogger(__name__)


class SessionBridge:
    """Wires the components together from one config."""

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        handler: Optional[BaseAuthHandler] = None,
        probe: Optional[UpstreamProbe] = None,
        auth_bridge: Optional[AuthBridge] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            config:      Defaults to ``BridgeConfig()``.
            handler:     Upstream handler; built from ``config.portal`` if None.
            probe:       Override the HTTP probe (tests inject fakes here).
            auth_bridge: Override the browser driver.
            clock:       Wall clock for store / registry / schedulers.
        """
        self.config = config or BridgeConfig()
        cfg = self.config
        self.started_at = clock()

        self.handler = handler or AuthFactory.create(
            cfg.portal,
            cfg.upstream_base_url,
            keep_alive_endpoint=cfg.keep_alive_endpoint,
        )
        self.monitor = SchedulerMonitor()
        self.store = SessionStore(cfg.session_timeout_seconds, clock=clock)
        self.probe = probe or UpstreamProbe(
            self.handler,
            timeout_seconds=cfg.probe_timeout_seconds,
            user_agent=cfg.user_agent,
            validation_endpoints=cfg.validation_endpoints or None,
        )
        self.bucket = TokenBucket(cfg.keep_alive_global_rps)
        self.backoff = BackoffPolicy(
            base_minutes=cfg.backoff_base_minutes,
            max_minutes=cfg.backoff_max_minutes,
        )

        self.pending = PendingLoginRegistry(
            self.probe,
            self.store,
            ttl_seconds=cfg.pending_login_ttl_seconds,
            clock=clock,
        )
        self.auth_bridge = auth_bridge or AuthBridge(
            self.handler,
            headless=cfg.headless,
            user_agent=cfg.user_agent,
            poll_interval_seconds=cfg.login_poll_interval_seconds,
            grace_seconds=cfg.login_grace_seconds,
        )
        self.logins = LoginService(
            self.auth_bridge,
            self.pending,
            max_wait_seconds=cfg.login_max_wait_seconds,
            max_concurrent_logins=cfg.max_concurrent_logins,
            clock=clock,
        )

        self.keepalive = KeepAliveScheduler(
            self.store,
            self.probe,
            interval_seconds=cfg.keep_alive_interval_seconds,
            inactivity_cutoff_seconds=cfg.inactivity_cutoff_seconds,
            concurrency=cfg.keep_alive_concurrency,
            bucket=self.bucket,
            backoff=self.backoff,
            monitor=self.monitor,
            clock=clock,
        )
        self.maintenance = MaintenanceScheduler(
            self.store,
            self.probe,
            interval_seconds=cfg.maintenance_interval_seconds,
            concurrency=cfg.keep_alive_concurrency,
            pending=self.pending,
            bucket=self.bucket,
            monitor=self.monitor,
            clock=clock,
        )
        self.running = False

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        for problem in self.config.validate():
            logger.warning(f"[CONFIG] {problem}")
        self.keepalive.start()
        self.maintenance.start()
        self.running = True
        logger.info(
            f"[SESSION] Bridge started for {self.handler.portal_name} at "
            f"{self.handler.base_url} (keep-alive every "
            f"{self.config.keep_alive_interval_minutes:g} min, maintenance every "
            f"{self.config.maintenance_interval_minutes:g} min, idle timeout "
            f"{self.config.session_timeout_minutes:g} min)"
        )

    async def stop(self) -> None:
        """Stop schedulers, close browsers, drop every session."""
        await self.keepalive.stop()
        await self.maintenance.stop()
        await self.logins.shutdown()
        self.store.clear()
        await self.probe.close()
        self.running = False
        logger.info("[SESSION] Bridge stopped")

    async def __aenter__(self) -> "SessionBridge":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ── Introspection ─────────────────────────────────────────────

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok",
            "portal": self.handler.portal_name,
            "upstream": self.handler.base_url,
            "running": self.running,
            "startedAt": format_ts(self.started_at),
            "activeSessions": len(self.store),
            "pendingLogins": len(self.pending),
            "activeBrowserLogins": self.logins.active_logins,
            "cycles": self.monitor.snapshot(),
        }
