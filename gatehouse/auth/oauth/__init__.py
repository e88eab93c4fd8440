"""OAuth relying-party support: providers, registry and the callback handshake."""

from .base import OAuthProvider
from .handshake import OAuthHandshake
from .providers import FacebookOAuthProvider, GoogleOAuthProvider, MicrosoftOAuthProvider
from .registry import OAuthProviderRegistry

__all__ = [
    "OAuthProvider",
    "OAuthHandshake",
    "OAuthProviderRegistry",
    "GoogleOAuthProvider",
    "MicrosoftOAuthProvider",
    "FacebookOAuthProvider",
]
