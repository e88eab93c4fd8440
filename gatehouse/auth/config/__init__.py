"""Configuration system for authentication."""

from .loader import AuthConfigLoader
from .schema import (
    AccessControlConfig,
    CookieConfig,
    GatehouseConfig,
    LockoutConfig,
    MfaConfig,
    OAuthConfig,
    OAuthProviderSettings,
    PermissionDef,
    RoleDef,
    SessionConfig,
    SweeperConfig,
    TokenConfig,
)

__all__ = [
    # Schema models
    "AccessControlConfig",
    "CookieConfig",
    "GatehouseConfig",
    "LockoutConfig",
    "MfaConfig",
    "OAuthConfig",
    "OAuthProviderSettings",
    "PermissionDef",
    "RoleDef",
    "SessionConfig",
    "SweeperConfig",
    "TokenConfig",
    # Loading
    "AuthConfigLoader",
]
