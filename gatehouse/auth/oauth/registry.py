"""Registry mapping OAuth provider names to implementations."""

import importlib
import logging

import httpx

from ..config.schema import OAuthConfig, OAuthProviderSettings
from ..exceptions import AuthValidationError, ConfigurationError
from .base import OAuthProvider

logger = logging.getLogger(__name__)


class OAuthProviderRegistry:
    """Registry for bundled and external OAuth provider implementations."""

    def __init__(self):
        self._bundled_implementations: dict[str, str] = {
            "google": "gatehouse.auth.oauth.providers:GoogleOAuthProvider",
            "microsoft": "gatehouse.auth.oauth.providers:MicrosoftOAuthProvider",
            "facebook": "gatehouse.auth.oauth.providers:FacebookOAuthProvider",
        }
        self._external_implementations: dict[str, str | type[OAuthProvider]] = {}
        self._instances: dict[str, OAuthProvider] = {}

    def register_external_provider(
        self, provider_name: str, implementation: str | type[OAuthProvider]
    ) -> None:
        """Register an external provider.

        Args:
            provider_name: Name used in configuration and callback URLs
            implementation: Provider class or import path 'module.path:Class'
        """
        self._external_implementations[provider_name.lower()] = implementation

    def resolve_provider_class(self, provider_name: str) -> type[OAuthProvider]:
        """
        Raises:
            ConfigurationError: If the name is unknown or cannot be imported
        """
        name = provider_name.lower()
        implementation = self._external_implementations.get(name) or self._bundled_implementations.get(name)
        if implementation is None:
            raise ConfigurationError(f"Unknown OAuth provider: {provider_name}")

        if isinstance(implementation, str):
            module_path, _, class_name = implementation.partition(":")
            try:
                module = importlib.import_module(module_path)
                implementation = getattr(module, class_name)
            except (ImportError, AttributeError) as e:
                raise ConfigurationError(
                    f"Cannot import OAuth provider '{implementation}': {e}"
                ) from e

        if not (isinstance(implementation, type) and issubclass(implementation, OAuthProvider)):
            raise ConfigurationError(f"{implementation!r} is not an OAuthProvider")
        return implementation

    def configure(self, config: OAuthConfig, client: httpx.AsyncClient) -> None:
        """Instantiate every provider named in the configuration."""
        for name, settings in config.providers.items():
            self.add(name, settings, client)

    def add(
        self, provider_name: str, settings: OAuthProviderSettings, client: httpx.AsyncClient
    ) -> OAuthProvider:
        provider_class = self.resolve_provider_class(provider_name)
        provider = provider_class(settings, client)
        self._instances[provider_name.lower()] = provider
        logger.info(f"OAuth provider '{provider_name}' configured")
        return provider

    def get(self, provider_name: str) -> OAuthProvider:
        """
        Raises:
            AuthValidationError: If the provider is not configured
        """
        provider = self._instances.get((provider_name or "").lower())
        if provider is None:
            raise AuthValidationError(
                f"Unsupported OAuth provider: {provider_name}",
                errors={"provider": [f"'{provider_name}' is not configured"]},
            )
        return provider

    @property
    def configured_providers(self) -> list[str]:
        return sorted(self._instances)
