"""
OAuthProvider interface.

A provider knows its endpoints, how to build the authorization URL, how to
exchange an authorization code for provider tokens, how to fetch the user
profile, and how to map that profile onto a ``NormalizedProfile``.

Security considerations:
- Provider HTTP failures surface as ``OAuthProviderError``; nothing is
  retried here
- Profiles missing identity fields are rejected with
  ``IncompleteProfileError`` rather than provisioned partially
- Access tokens and client secrets are never logged
"""

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import httpx

from ..config.schema import OAuthProviderSettings
from ..exceptions import IncompleteProfileError, OAuthProviderError
from ..types import NormalizedProfile
from ..utils import mask_sensitive_data

logger = logging.getLogger(__name__)


class OAuthProvider(ABC):
    """Abstract base class for OAuth 2.0 authorization-code providers."""

    name: str = ""
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    userinfo_endpoint: str = ""
    default_scopes: tuple[str, ...] = ()
    scope_separator: str = " "
    extra_authorization_params: dict[str, str] = {}
    userinfo_params: dict[str, str] = {}

    def __init__(self, settings: OAuthProviderSettings, client: httpx.AsyncClient):
        """
        Args:
            settings: Client registration for this provider
            client: Shared HTTP client; its timeout bounds every call
        """
        self.settings = settings
        self.client = client

    @property
    def scopes(self) -> list[str]:
        return list(self.settings.scopes or self.default_scopes)

    def get_login_url(self, state: str, redirect_uri: str | None = None) -> str:
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": redirect_uri or self.settings.redirect_uri,
            "response_type": "code",
            "scope": self.scope_separator.join(self.scopes),
            "state": state,
            **self.extra_authorization_params,
        }
        return f"{self.authorization_endpoint}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str | None = None) -> dict[str, Any]:
        """
        Exchange an authorization code for the provider's token response.

        Raises:
            OAuthProviderError: On transport failure, an error status, or a
                response without an access token
        """
        data = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "code": code,
            "redirect_uri": redirect_uri or self.settings.redirect_uri,
            "grant_type": "authorization_code",
        }
        token_result = await self._request(
            "POST", self.token_endpoint, data=data, headers={"Accept": "application/json"}
        )

        if not token_result.get("access_token"):
            logger.error(
                f"OAuth token response from {self.name} has no access token: "
                f"{mask_sensitive_data(token_result)}"
            )
            raise OAuthProviderError(f"{self.name} did not return an access token")
        return token_result

    async def fetch_profile(self, token_response: dict[str, Any]) -> dict[str, Any]:
        """
        Fetch the raw user profile using the exchanged access token.

        Raises:
            OAuthProviderError: On transport failure or an error status
        """
        headers = {
            "Authorization": f"Bearer {token_response['access_token']}",
            "Accept": "application/json",
        }
        return await self._request(
            "GET", self.userinfo_endpoint, headers=headers, params=self.userinfo_params or None
        )

    @abstractmethod
    def normalize_profile(self, raw: dict[str, Any]) -> NormalizedProfile:
        """
        Map a raw provider profile onto the engine's identity fields.

        Raises:
            IncompleteProfileError: If id, email, first or last name is missing
        """

    async def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"OAuth {self.name} request to {url} failed with status {e.response.status_code}"
            )
            raise OAuthProviderError(
                f"{self.name} responded with status {e.response.status_code}",
                details={"provider": self.name, "status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"OAuth {self.name} request to {url} failed: {e}")
            raise OAuthProviderError(
                f"Could not reach {self.name}", details={"provider": self.name}
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise OAuthProviderError(f"{self.name} returned a malformed response") from e

        if not isinstance(payload, dict):
            raise OAuthProviderError(f"{self.name} returned an unexpected response")
        return payload

    def _build_profile(
        self,
        external_id: Any,
        email: Any,
        first_name: Any,
        last_name: Any,
        picture: str | None = None,
        email_verified: bool = False,
    ) -> NormalizedProfile:
        fields = {
            "id": external_id,
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
        }
        missing = [key for key, value in fields.items() if not value]
        if missing:
            logger.warning(f"Incomplete {self.name} profile, missing: {', '.join(missing)}")
            raise IncompleteProfileError(
                f"{self.name} profile is missing required fields",
                details={"provider": self.name, "missing": missing},
            )

        return NormalizedProfile(
            provider=self.name,
            external_id=str(external_id),
            email=str(email).strip().lower(),
            first_name=str(first_name),
            last_name=str(last_name),
            picture=picture,
            email_verified=email_verified,
        )
