"""
Tests for auth/cookies.py: interchange formats and the important-cookie filter.
"""

import pytest

from session_bridge.auth.cookies import Cookie, CookieJar


PLAYWRIGHT_COOKIES = [
    {"name": "canvas_session", "value": "abc", "domain": "upstream.example",
     "path": "/", "secure": True, "httpOnly": True, "sameSite": "Lax", "expires": -1},
    {"name": "_csrf_token", "value": "tok", "domain": "upstream.example",
     "path": "/", "secure": True, "httpOnly": False},
    {"name": "_ga", "value": "GA1.2", "domain": ".upstream.example"},
]


class TestCookieParsing:
    """Both interchange formats convert into the same jar."""

    def test_from_dicts_reads_playwright_shape(self):
        """httpOnly/secure/domain/path survive; extra keys are ignored."""
        jar = CookieJar.from_dicts(PLAYWRIGHT_COOKIES)
        assert jar.names() == ["canvas_session", "_csrf_token", "_ga"]
        first = next(iter(jar))
        assert first.http_only is True
        assert first.secure is True
        assert first.domain == "upstream.example"

    def test_from_header(self):
        """'a=1; b=2' parses; fragments without '=' are dropped."""
        jar = CookieJar.from_header("a=1; b=x=y; junk;  c = 3 ")
        assert jar.names() == ["a", "b", "c"]
        assert jar.get("b") == "x=y"
        assert jar.get("c") == "3"

    def test_header_and_dicts_agree(self):
        """Name/value pairs needed for a Cookie header are preserved both ways."""
        from_dicts = CookieJar.from_dicts(PLAYWRIGHT_COOKIES)
        from_header = CookieJar.from_header(from_dicts.to_header())
        assert from_header.to_header() == from_dicts.to_header()
        assert CookieJar.from_dicts(from_header.to_dicts()).to_header() == from_dicts.to_header()

    def test_malformed_cookie_skipped(self):
        """Dicts without a name are dropped, not fatal."""
        jar = CookieJar.from_dicts([{"value": "x"}, {"name": "ok", "value": "1"}])
        assert jar.names() == ["ok"]

    def test_cookie_without_name_raises(self):
        """Cookie.from_dict rejects nameless input."""
        with pytest.raises(ValueError):
            Cookie.from_dict({"name": "  ", "value": "x"})

    def test_to_dict_uses_http_only_camel_case(self):
        """Outbound dicts match the inbound shape."""
        data = Cookie("s", "v", http_only=True).to_dict()
        assert data["httpOnly"] is True
        assert set(data) == {"name", "value", "domain", "path", "secure", "httpOnly"}

    @pytest.mark.parametrize("value, expected", [
        (None, []),
        ("a=1", ["a"]),
        ([{"name": "a", "value": "1"}], ["a"]),
        ([Cookie("a", "1"), Cookie("b", "2")], ["a", "b"]),
    ])
    def test_coerce_accepts_every_representation(self, value, expected):
        """coerce() handles None, header strings, dict lists and Cookie lists."""
        assert CookieJar.coerce(value).names() == expected


class TestCookieJarSemantics:
    """The jar is a set keyed by cookie name."""

    def test_same_name_replaces(self):
        """Adding an existing name replaces its value in place."""
        jar = CookieJar.from_header("a=1; b=2")
        jar.add(Cookie("a", "9"))
        assert jar.to_header() == "a=9; b=2"
        assert len(jar) == 2

    def test_copy_is_independent(self):
        """Mutating a copy leaves the original untouched."""
        jar = CookieJar.from_header("a=1")
        clone = jar.copy()
        clone.add(Cookie("b", "2"))
        assert "b" not in jar
        assert clone == CookieJar.from_header("a=1; b=2")

    def test_empty_jar_is_falsy(self):
        """An empty jar evaluates to False."""
        assert not CookieJar()
        assert CookieJar.from_header("a=1")

    def test_repr_hides_values(self):
        """Cookie values never appear in repr (they are credentials)."""
        assert "secret" not in repr(CookieJar.from_header("sess=secret"))


class TestImportantFilter:
    """Session-marker allow-list with fallback."""

    def test_keeps_only_session_cookies(self):
        """Tracking cookies are dropped when session cookies exist."""
        jar = CookieJar.from_dicts(PLAYWRIGHT_COOKIES).filter_important()
        assert jar.names() == ["canvas_session", "_csrf_token"]

    def test_falls_back_to_everything(self):
        """If nothing matches, the whole jar is returned."""
        jar = CookieJar.from_header("_ga=1; _gid=2")
        filtered = jar.filter_important()
        assert filtered.names() == ["_ga", "_gid"]
        assert filtered is not jar

    def test_custom_markers_case_insensitive(self):
        """Markers match case-insensitively against the name."""
        jar = CookieJar.from_header("MYAPP_AUTH=1; other=2")
        assert jar.filter_important(["myapp_auth"]).names() == ["MYAPP_AUTH"]
