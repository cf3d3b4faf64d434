"""
Tests for the upstream handler: success predicate, transit detection,
login-page detection, and the handler factory.
"""

import pytest

from session_bridge.auth.auth_factory import AuthFactory
from session_bridge.auth.canvas_auth import CanvasAuthHandler

from conftest import UPSTREAM


class TestLoginCompletePredicate:
    """The one predicate the polling loop relies on."""

    @pytest.mark.parametrize("url", [
        f"{UPSTREAM}/dashboard",
        f"{UPSTREAM}/",
        f"{UPSTREAM}/courses/42",
        f"{UPSTREAM}/?login_success=1",
    ])
    def test_upstream_pages_complete(self, handler, url):
        """Back on the upstream host, off the auth pages → done."""
        assert handler.is_login_complete(url)

    @pytest.mark.parametrize("url", [
        f"{UPSTREAM}/login",
        f"{UPSTREAM}/login/saml",
        f"{UPSTREAM}/auth/callback",
        f"{UPSTREAM}/Shibboleth.sso/SAML2/POST",
        "https://idp.university.edu/idp/profile/SAML2/Redirect/SSO",
        "https://login.microsoftonline.com/common/oauth2",
        "about:blank",
        "",
    ])
    def test_transit_and_foreign_pages_not_complete(self, handler, url):
        """Login, SAML, IdP and foreign hosts keep polling."""
        assert not handler.is_login_complete(url)

    def test_success_marker_wins_over_transit_marker(self, handler):
        """login_success=1 on the upstream host means done even on /login."""
        assert handler.is_login_complete(f"{UPSTREAM}/login?login_success=1")

    def test_success_marker_on_foreign_host_ignored(self, handler):
        """The success marker only counts on the upstream host."""
        assert not handler.is_login_complete("https://evil.example/?login_success=1")


class TestHandlerUrls:
    """URL helpers."""

    def test_login_entry_url(self, handler):
        assert handler.login_entry_url == f"{UPSTREAM}/login"

    def test_url_for_relative_and_absolute(self, handler):
        assert handler.url_for("/api/v1/users/self") == f"{UPSTREAM}/api/v1/users/self"
        assert handler.url_for("https://other.example/x") == "https://other.example/x"

    def test_trailing_slash_stripped(self):
        assert CanvasAuthHandler(UPSTREAM + "/").base_url == UPSTREAM

    def test_probe_endpoints(self, handler):
        """Validation priority, strong and light probes."""
        assert handler.validation_endpoints == [
            "/api/v1/users/self", "/api/v1/courses", "/dashboard",
        ]
        assert handler.who_am_i_endpoint == "/api/v1/users/self"
        assert handler.keep_alive_endpoint == "/dashboard"

    def test_keep_alive_endpoint_override(self):
        assert CanvasAuthHandler(UPSTREAM, keep_alive_endpoint="/").keep_alive_endpoint == "/"


class TestPageRequiresLogin:
    """HTML login-form detection for 200-status login pages."""

    def test_password_form_detected(self, handler):
        html = '<html><body><form action="/login"><input type="password" name="p"></form></body></html>'
        assert handler.page_requires_login(html)

    def test_saml_autopost_detected(self, handler):
        html = '<form method="post" action="https://idp.example/SAML2/POST"><input type="hidden"></form>'
        assert handler.page_requires_login(html)

    def test_dashboard_not_login(self, handler):
        html = '<html><body><div id="dashboard"><h1>Courses</h1></div></body></html>'
        assert not handler.page_requires_login(html)

    def test_empty_body(self, handler):
        assert not handler.page_requires_login("")


class TestParseUserInfo:
    """Canvas profile whitelisting."""

    def test_keeps_profile_fields(self, handler):
        info = handler.parse_user_info({"id": 7, "name": "Alice", "permissions": {"x": 1}})
        assert info == {"id": 7, "name": "Alice"}

    @pytest.mark.parametrize("payload", [None, [], [{"id": 1}], {"name": "no id"}, "html"])
    def test_non_profile_payloads(self, handler, payload):
        assert handler.parse_user_info(payload) is None


class TestAuthFactory:
    """Handler registry."""

    def test_canvas_registered(self):
        assert "canvas" in AuthFactory.list_handlers()

    def test_create_by_name(self):
        handler = AuthFactory.create("Canvas", UPSTREAM)
        assert isinstance(handler, CanvasAuthHandler)
        assert handler.base_url == UPSTREAM

    def test_create_unknown_raises(self):
        with pytest.raises(KeyError):
            AuthFactory.create("moodle")

    def test_detect_instructure(self):
        handler = AuthFactory.detect("https://school.instructure.com/courses/1")
        assert isinstance(handler, CanvasAuthHandler)
        assert handler.base_url == "https://school.instructure.com"

    def test_detect_nothing(self):
        assert AuthFactory.detect("https://www.example.com/about") is None
