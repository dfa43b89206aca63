from typing import Literal

from fastapi import Request, Response

from microblog.config import SESSION_COOKIE_NAME, Settings


class SessionCookieManager:
    """
    Issues, reads and clears the HTTP-only session cookie.

    The cookie value is the identity provider's token exactly as received;
    every request re-verifies it, so the cookie is transport only.
    """

    def __init__(
        self,
        name: str = SESSION_COOKIE_NAME,
        domain: str | None = None,
        secure: bool = False,
        samesite: Literal["lax", "strict", "none"] = "lax",
        path: str = "/",
    ):
        self.name = name
        self.domain = domain
        self.secure = secure
        self.samesite = samesite
        self.path = path

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionCookieManager":
        return cls(
            domain=settings.get_cookie_domain(),
            secure=settings.get_cookie_secure(),
            samesite=settings.cookie_samesite,
        )

    def issue(self, response: Response, token: str, max_age: int) -> None:
        response.set_cookie(
            self.name,
            token,
            max_age=max_age,
            path=self.path,
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    def clear(self, response: Response) -> None:
        # Attributes must match the issued cookie or browsers keep it
        response.set_cookie(
            self.name,
            "",
            max_age=0,
            path=self.path,
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )

    def read(self, request: Request) -> str | None:
        return request.cookies.get(self.name) or None
