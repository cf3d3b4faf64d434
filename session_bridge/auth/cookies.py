"""
Cookie Jar
==========
Interchange format for an upstream session's cookies.

Two representations are accepted everywhere a cookie jar crosses a boundary:

    1. A list of dicts ``{name, value, domain, path, secure, httpOnly}``
       (what Playwright's ``context.cookies()`` returns, and what the API
       accepts from clients).
    2. A pre-joined ``Cookie`` header string ``"a=1; b=2"``.

Both convert into ``CookieJar`` without losing the name/value pairs needed
to build a ``Cookie`` header.  The jar is semantically a set keyed by cookie
name: adding a cookie with an existing name replaces it in place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)


# Substrings marking cookies that carry session state.  Matched
# case-insensitively against the cookie name.
IMPORTANT_COOKIE_MARKERS: List[str] = [
    'session',
    'canvas',
    'csrf',
    '_token',
    '_authenticity_token',
    '_session_id',
    'remember_token',
    'logged_in',
    'login',
    'shib',
    'saml',
]


@dataclass
class Cookie:
    """One cookie (only the attributes a Cookie header or replay needs)."""
    name: str
    value: str
    domain: str = ""
    path: str = "/"
    secure: bool = False
    http_only: bool = False

    @classmethod
    def from_dict(cls, data: Dict) -> "Cookie":
        """Build from a Playwright / JSON cookie dict (camel- or snake-case)."""
        name = str(data.get("name", "")).strip()
        if not name:
            raise ValueError("cookie without a name")
        return cls(
            name=name,
            value=str(data.get("value", "")),
            domain=str(data.get("domain", "") or ""),
            path=str(data.get("path", "/") or "/"),
            secure=bool(data.get("secure", False)),
            http_only=bool(data.get("httpOnly", data.get("http_only", False))),
        )

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "secure": self.secure,
            "httpOnly": self.http_only,
        }

    @property
    def pair(self) -> str:
        return f"{self.name}={self.value}"


CookieInput = Union["CookieJar", str, Sequence[Dict], Sequence[Cookie], None]


class CookieJar:
    """Ordered, name-keyed collection of cookies."""

    def __init__(self, cookies: Optional[Iterable[Cookie]] = None):
        self._cookies: Dict[str, Cookie] = {}
        for cookie in cookies or ():
            self.add(cookie)

    # ── Construction ──────────────────────────────────────────────

    @classmethod
    def from_header(cls, header: str, domain: str = "") -> "CookieJar":
        """Parse ``"a=1; b=2"``.  Fragments without ``=`` are dropped."""
        jar = cls()
        for part in (header or "").split(";"):
            part = part.strip()
            if not part or "=" not in part:
                continue
            name, _, value = part.partition("=")
            name = name.strip()
            if name:
                jar.add(Cookie(name=name, value=value.strip(), domain=domain))
        return jar

    @classmethod
    def from_dicts(cls, items: Iterable[Dict]) -> "CookieJar":
        jar = cls()
        for item in items:
            try:
                jar.add(Cookie.from_dict(item))
            except ValueError as exc:
                logger.debug(f"[COOKIES] Skipping malformed cookie: {exc}")
        return jar

    @classmethod
    def coerce(cls, value: CookieInput, domain: str = "") -> "CookieJar":
        """Accept any supported representation and return a ``CookieJar``."""
        if value is None:
            return cls()
        if isinstance(value, CookieJar):
            return value.copy()
        if isinstance(value, str):
            return cls.from_header(value, domain=domain)
        items = list(value)
        if items and all(isinstance(i, Cookie) for i in items):
            return cls(items)
        return cls.from_dicts(i for i in items if isinstance(i, dict))

    # ── Mutation ──────────────────────────────────────────────────

    def add(self, cookie: Cookie) -> None:
        self._cookies[cookie.name] = cookie

    def copy(self) -> "CookieJar":
        return CookieJar(
            Cookie(**vars(c)) for c in self._cookies.values()
        )

    # ── Views ─────────────────────────────────────────────────────

    def to_header(self) -> str:
        """``Cookie`` request header value."""
        return "; ".join(c.pair for c in self._cookies.values())

    def to_dicts(self) -> List[Dict]:
        return [c.to_dict() for c in self._cookies.values()]

    def names(self) -> List[str]:
        return list(self._cookies)

    def get(self, name: str) -> Optional[str]:
        cookie = self._cookies.get(name)
        return cookie.value if cookie else None

    def filter_important(
        self, markers: Optional[Sequence[str]] = None
    ) -> "CookieJar":
        """Keep cookies whose name contains a session marker.

        If nothing matches, the full jar is returned unchanged: forwarding
        a few extra cookies is harmless, failing a login because the
        allow-list missed the site's session cookie is not.
        """
        markers = [m.lower() for m in (markers or IMPORTANT_COOKIE_MARKERS)]
        kept = [
            c for c in self._cookies.values()
            if any(m in c.name.lower() for m in markers)
        ]
        if not kept:
            logger.warning(
                f"[COOKIES] No cookie matched the session markers, keeping "
                f"all {len(self)} cookies"
            )
            return self.copy()
        logger.info(f"[COOKIES] Kept {len(kept)} of {len(self)} cookies")
        return CookieJar(Cookie(**vars(c)) for c in kept)

    def __len__(self) -> int:
        return len(self._cookies)

    def __bool__(self) -> bool:
        return bool(self._cookies)

    def __iter__(self) -> Iterator[Cookie]:
        return iter(list(self._cookies.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._cookies

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CookieJar):
            return NotImplemented
        return self.to_dicts() == other.to_dicts()

    def __repr__(self) -> str:
        # Names only: values are credentials.
        return f"CookieJar({self.names()!r})"
