"""
Upstream Handler Factory
========================
Maps a portal name (from config) or a URL to the right upstream handler.

Adding a new upstream:
    1. Create a handler class inheriting from ``BaseAuthHandler``
    2. Call ``AuthFactory.register(handler_class)``
    3. Select it with ``UPSTREAM_PORTAL=<name>`` or let ``detect()`` find it

Usage::

    from session_bridge.auth.auth_factory import AuthFactory

    handler = AuthFactory.create("canvas", base_url="https://lms.example.edu")
    handler = AuthFactory.detect("https://school.instructure.com/courses")
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type
from urllib.parse import urlparse

from .base_auth import BaseAuthHandler
from .canvas_auth import CanvasAuthHandler

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Handler Registry
# ---------------------------------------------------------------------------

# Global registry: maps portal name → handler class
_HANDLER_REGISTRY: Dict[str, Type[BaseAuthHandler]] = {}


class AuthFactory:
    """Factory for upstream handlers (registry pattern)."""

    @staticmethod
    def register(handler_class: Type[BaseAuthHandler]) -> None:
        """Register a handler class in the global registry.

        Args:
            handler_class: A concrete subclass of ``BaseAuthHandler``.
        """
        # Instantiate once to get the portal_name
        name = handler_class().portal_name.lower()
        _HANDLER_REGISTRY[name] = handler_class
        logger.debug(f"[AUTH-FACTORY] Registered handler: {name}")

    @staticmethod
    def create(portal_name: str, base_url: str = "", **kwargs) -> BaseAuthHandler:
        """Instantiate the handler registered under *portal_name*.

        Raises:
            KeyError: If no handler is registered under that name.
        """
        handler_class = _HANDLER_REGISTRY.get(portal_name.lower())
        if handler_class is None:
            raise KeyError(
                f"Unknown portal {portal_name!r} "
                f"(registered: {', '.join(AuthFactory.list_handlers())})"
            )
        return handler_class(base_url, **kwargs)

    @staticmethod
    def detect(url: str) -> Optional[BaseAuthHandler]:
        """Auto-detect the upstream type from a URL.

        Returns:
            A handler bound to the URL's origin, or None if nothing matches.
        """
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else ""
        for name, handler_class in _HANDLER_REGISTRY.items():
            handler = handler_class(origin)
            if handler.detect(url):
                logger.info(
                    f"[AUTH-FACTORY] Detected portal: {handler.portal_name} "
                    f"(from URL: {url[:60]})"
                )
                return handler

        logger.debug(f"[AUTH-FACTORY] No portal detected for: {url[:60]}")
        return None

    @staticmethod
    def list_handlers() -> List[str]:
        """Return names of all registered handlers."""
        return list(_HANDLER_REGISTRY.keys())


AuthFactory.register(CanvasAuthHandler)
