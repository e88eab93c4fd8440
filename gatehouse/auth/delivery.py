"""
Cookie delivery for browser clients.

The routing layer turns these descriptors into ``Set-Cookie`` headers,
either with ``Cookie.to_header()`` or by passing the fields to its own
response API.
"""

from dataclasses import dataclass
from http.cookies import SimpleCookie

from .config.schema import CookieConfig
from .types import TokenPair

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE = 900


@dataclass
class Cookie:
    name: str
    value: str
    max_age: int
    path: str = "/"
    domain: str | None = None
    secure: bool = True
    httponly: bool = True
    samesite: str = "Strict"

    def to_header(self) -> str:
        """Render the ``Set-Cookie`` header value."""
        jar = SimpleCookie()
        jar[self.name] = self.value
        morsel = jar[self.name]
        morsel["max-age"] = self.max_age
        morsel["path"] = self.path
        morsel["samesite"] = self.samesite
        if self.domain:
            morsel["domain"] = self.domain
        if self.secure:
            morsel["secure"] = True
        if self.httponly:
            morsel["httponly"] = True
        return morsel.OutputString()


class CookieDelivery:
    """Builds the cookies that carry tokens and OAuth state."""

    def __init__(self, config: CookieConfig | None = None):
        self.config = config or CookieConfig()

    def _cookie(self, name: str, value: str, max_age: int) -> Cookie:
        return Cookie(
            name=name,
            value=value,
            max_age=max_age,
            path=self.config.path,
            domain=self.config.domain,
            secure=self.config.secure,
        )

    def token_cookies(self, pair: TokenPair) -> list[Cookie]:
        return [
            self._cookie(ACCESS_TOKEN_COOKIE, pair.access_token, pair.expires_in),
            self._cookie(REFRESH_TOKEN_COOKIE, pair.refresh_token, pair.refresh_expires_in),
        ]

    def access_cookie(self, access_token: str, max_age: int) -> Cookie:
        """Cookie for a reissued access token alone."""
        return self._cookie(ACCESS_TOKEN_COOKIE, access_token, max_age)

    def clear_token_cookies(self) -> list[Cookie]:
        return [
            self._cookie(ACCESS_TOKEN_COOKIE, "", 0),
            self._cookie(REFRESH_TOKEN_COOKIE, "", 0),
        ]

    def oauth_state_cookie(self, state: str) -> Cookie:
        return self._cookie(OAUTH_STATE_COOKIE, state, OAUTH_STATE_MAX_AGE)

    def clear_oauth_state_cookie(self) -> Cookie:
        return self._cookie(OAUTH_STATE_COOKIE, "", 0)
