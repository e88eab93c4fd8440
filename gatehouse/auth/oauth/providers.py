"""Bundled OAuth providers."""

from typing import Any

from ..types import NormalizedProfile
from .base import OAuthProvider


class GoogleOAuthProvider(OAuthProvider):
    name = "google"
    authorization_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    userinfo_endpoint = "https://www.googleapis.com/oauth2/v3/userinfo"
    default_scopes = ("openid", "email", "profile")
    extra_authorization_params = {"prompt": "select_account"}

    def normalize_profile(self, raw: dict[str, Any]) -> NormalizedProfile:
        return self._build_profile(
            raw.get("sub"),
            raw.get("email"),
            raw.get("given_name"),
            raw.get("family_name"),
            raw.get("picture"),
            email_verified=raw.get("email_verified") in (True, "true"),
        )


class MicrosoftOAuthProvider(OAuthProvider):
    name = "microsoft"
    authorization_endpoint = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
    token_endpoint = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    userinfo_endpoint = "https://graph.microsoft.com/v1.0/me"
    default_scopes = ("openid", "email", "profile", "User.Read")

    def normalize_profile(self, raw: dict[str, Any]) -> NormalizedProfile:
        # Graph leaves ``mail`` empty for many personal accounts. Neither field
        # is verified by Microsoft, the tenant controls both.
        return self._build_profile(
            raw.get("id"),
            raw.get("mail") or raw.get("userPrincipalName"),
            raw.get("givenName"),
            raw.get("surname"),
        )


class FacebookOAuthProvider(OAuthProvider):
    name = "facebook"
    authorization_endpoint = "https://www.facebook.com/v18.0/dialog/oauth"
    token_endpoint = "https://graph.facebook.com/v18.0/oauth/access_token"
    userinfo_endpoint = "https://graph.facebook.com/me"
    default_scopes = ("email", "public_profile")
    scope_separator = ","
    userinfo_params = {"fields": "id,email,first_name,last_name,picture"}

    def normalize_profile(self, raw: dict[str, Any]) -> NormalizedProfile:
        picture = (raw.get("picture") or {}).get("data", {}).get("url")
        return self._build_profile(
            raw.get("id"),
            raw.get("email"),
            raw.get("first_name"),
            raw.get("last_name"),
            picture,
        )
