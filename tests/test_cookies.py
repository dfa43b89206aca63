from fastapi import Response
from starlette.requests import Request

from microblog.config import SESSION_COOKIE_NAME, Settings
from microblog.utils.cookies import SessionCookieManager


def make_request(cookie: str | None = None) -> Request:
    headers = []
    if cookie is not None:
        headers.append((b"cookie", cookie.encode()))
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


class TestSessionCookieManager:
    def test_issue(self):
        manager = SessionCookieManager(domain="blog.example.com", secure=True, samesite="strict")
        response = Response()

        manager.issue(response, "token-value", max_age=3600)

        header = response.headers["set-cookie"]
        assert header.startswith(f"{SESSION_COOKIE_NAME}=token-value")
        assert "HttpOnly" in header
        assert "Max-Age=3600" in header
        assert "Domain=blog.example.com" in header
        assert "Path=/" in header
        assert "Secure" in header
        assert "SameSite=strict" in header

    def test_clear_matches_issued_attributes(self):
        manager = SessionCookieManager(domain="blog.example.com", secure=True)
        response = Response()

        manager.clear(response)

        header = response.headers["set-cookie"]
        assert "Max-Age=0" in header
        assert "Domain=blog.example.com" in header
        assert "Secure" in header
        assert "HttpOnly" in header

    def test_read(self):
        manager = SessionCookieManager()
        assert manager.read(make_request(f"{SESSION_COOKIE_NAME}=abc; other=1")) == "abc"
        assert manager.read(make_request("other=1")) is None
        assert manager.read(make_request()) is None

    def test_from_settings(self):
        settings = Settings(
            public_url="https://blog.example.com/app",
            environment="production",
            cookie_samesite="lax",
        )
        manager = SessionCookieManager.from_settings(settings)
        assert manager.domain == "blog.example.com"
        assert manager.secure is True
        assert manager.samesite == "lax"

    def test_explicit_settings_win(self):
        settings = Settings(
            public_url="https://blog.example.com",
            cookie_domain=".example.com",
            cookie_secure=False,
        )
        manager = SessionCookieManager.from_settings(settings)
        assert manager.domain == ".example.com"
        assert manager.secure is False
