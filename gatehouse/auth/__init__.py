"""
Gatehouse Authentication Engine

Token issuance and rotation, failed-login lockout, concurrent session caps,
role-based access control and OAuth sign-in, composed behind ``AuthEngine``.

Security Notice:
This module handles sensitive security operations. Implementations of the
storage interfaces must keep revocation and single-use state consistent:
- Token revocation is a compare-and-set on the stored record
- OAuth states are consumed atomically
- Password hashes never leave the credential store
"""

from .account_guard import AccountGuard
from .caches import OAuthStateStore, RevocationCache
from .config import AuthConfigLoader, GatehouseConfig
from .credential_store import CredentialStore
from .delivery import Cookie, CookieDelivery
from .engine import AuthEngine, AuthResult, status_for_error
from .exceptions import (
    AccountDisabledError,
    AccountLockedError,
    AuthenticationError,
    AuthError,
    AuthorizationError,
    AuthValidationError,
    ComponentInitializationError,
    ConfigurationError,
    IncompleteProfileError,
    InvalidCredentialsError,
    InvalidMfaCodeError,
    InvalidOAuthStateError,
    InvalidRoleError,
    InvalidTokenError,
    MissingTokenError,
    OAuthAuthorizationDeniedError,
    OAuthError,
    OAuthProviderError,
    PermissionDeniedError,
    ResourceConflictError,
    ResourceNotFoundError,
    TokenExpiredError,
    TokenRevokedError,
)
from .mfa import MfaVerifier
from .oauth import OAuthHandshake, OAuthProvider, OAuthProviderRegistry
from .password_hasher import BcryptPasswordHasher, PasswordHasher
from .rbac import RBACResolver
from .session_governor import SessionGovernor
from .sweeper import ExpirySweeper
from .token_service import TokenService
from .types import (
    AuthProfile,
    AuthStatus,
    LockReason,
    Permission,
    Role,
    TokenKind,
    TokenPair,
    TokenRecord,
    User,
    UserStatus,
)
from .utils import Clock, SystemClock, extract_bearer_token, mask_sensitive_data, secure_compare
from .factory import AuthSystemBootstrap, create_engine

__all__ = [
    # Engine
    "AuthEngine",
    "AuthResult",
    "status_for_error",
    "AuthSystemBootstrap",
    "create_engine",
    # Components
    "AccountGuard",
    "SessionGovernor",
    "RBACResolver",
    "MfaVerifier",
    "ExpirySweeper",
    "OAuthHandshake",
    "OAuthProvider",
    "OAuthProviderRegistry",
    "CookieDelivery",
    "Cookie",
    # Interfaces
    "CredentialStore",
    "RevocationCache",
    "OAuthStateStore",
    "TokenService",
    "PasswordHasher",
    "BcryptPasswordHasher",
    # Configuration
    "AuthConfigLoader",
    "GatehouseConfig",
    # Types
    "AuthProfile",
    "AuthStatus",
    "LockReason",
    "Permission",
    "Role",
    "TokenKind",
    "TokenPair",
    "TokenRecord",
    "User",
    "UserStatus",
    # Exceptions
    "AuthError",
    "AuthenticationError",
    "AuthorizationError",
    "AuthValidationError",
    "AccountDisabledError",
    "AccountLockedError",
    "ComponentInitializationError",
    "ConfigurationError",
    "IncompleteProfileError",
    "InvalidCredentialsError",
    "InvalidMfaCodeError",
    "InvalidOAuthStateError",
    "InvalidRoleError",
    "InvalidTokenError",
    "MissingTokenError",
    "OAuthAuthorizationDeniedError",
    "OAuthError",
    "OAuthProviderError",
    "PermissionDeniedError",
    "ResourceConflictError",
    "ResourceNotFoundError",
    "TokenExpiredError",
    "TokenRevokedError",
    # Utilities
    "Clock",
    "SystemClock",
    "extract_bearer_token",
    "mask_sensitive_data",
    "secure_compare",
]
