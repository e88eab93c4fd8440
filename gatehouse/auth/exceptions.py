"""Exception classes for the authentication engine.

Every error carries a stable ``code`` and the ``http_status`` the routing
layer should answer with.
"""

from datetime import datetime


class AuthError(Exception):
    """Base exception for all authentication-related errors."""

    code = "auth_error"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class AuthenticationError(AuthError):
    """Raised when authentication fails."""

    code = "authentication_failed"
    http_status = 401


class AuthorizationError(AuthError):
    """Raised when authorization fails (user lacks required permissions)."""

    code = "authorization_failed"
    http_status = 403


class AuthValidationError(AuthError):
    """Raised when auth data validation fails.

    ``errors`` maps field names to the messages that apply to them.
    """

    code = "validation_failed"
    http_status = 400

    def __init__(
        self,
        message: str,
        errors: dict[str, list[str]] | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.errors = errors or {}


class InvalidCredentialsError(AuthenticationError):
    """Raised when provided credentials are invalid."""

    code = "invalid_credentials"


class InvalidMfaCodeError(InvalidCredentialsError):
    """Raised when a one-time MFA code does not verify."""

    code = "invalid_mfa_code"


class AccountLockedError(AuthenticationError):
    """Raised when a login targets a locked account."""

    code = "account_locked"
    http_status = 423

    def __init__(self, until: datetime | None, details: dict | None = None):
        self.until = until
        if until:
            message = f"Account is locked until {until.isoformat()}"
        else:
            message = "Account is locked"
        super().__init__(message, details)


class AccountDisabledError(AuthenticationError):
    """Raised when a suspended or inactive account tries to authenticate."""

    code = "account_disabled"
    http_status = 403


class MissingTokenError(AuthenticationError):
    code = "missing_token"


class TokenExpiredError(AuthenticationError):
    """Raised when a token is past its expiry. Clients should refresh."""

    code = "expired_token"


class InvalidTokenError(AuthenticationError):
    """Raised when a token fails decoding or signature checks. Clients should re-login."""

    code = "invalid_token"


class TokenRevokedError(InvalidTokenError):
    """Raised when a token's ``jti`` has been revoked."""

    code = "token_revoked"


class PermissionDeniedError(AuthorizationError):
    """Raised when a user lacks required permissions for an action."""

    code = "insufficient_permission"

    def __init__(
        self, permission: str, resource: str | None = None, details: dict | None = None
    ):
        self.permission = permission
        self.resource = resource

        if resource:
            message = f"Permission denied: '{permission}' for resource '{resource}'"
        else:
            message = f"Permission denied: '{permission}'"

        super().__init__(message, details)


class InvalidRoleError(AuthorizationError):
    """Raised when a user does not hold a required role."""

    code = "invalid_role"

    def __init__(self, role: str, details: dict | None = None):
        self.role = role
        super().__init__(f"Role required: '{role}'", details)


class ResourceNotFoundError(AuthError):
    code = "resource_not_found"
    http_status = 404


class ResourceConflictError(AuthError):
    """Raised on duplicate role names or permission resource/action pairs."""

    code = "resource_conflict"
    http_status = 409


class OAuthError(AuthError):
    """Base class for OAuth handshake failures."""

    code = "oauth_error"
    http_status = 401


class InvalidOAuthStateError(OAuthError):
    """Raised when a callback's ``state`` is unknown, replayed, or expired."""

    code = "invalid_oauth_state"


class OAuthAuthorizationDeniedError(OAuthError):
    """Raised when the provider redirects back with an ``error`` parameter."""

    code = "oauth_denied"


class OAuthProviderError(OAuthError):
    """Raised when the provider cannot be reached or answers with an error."""

    code = "oauth_provider_error"
    http_status = 502


class IncompleteProfileError(OAuthProviderError):
    """Raised when a provider profile lacks required identity fields."""

    code = "incomplete_profile"


class ConfigurationError(AuthError):
    """Raised when auth configuration is invalid."""

    code = "configuration_error"


class ComponentInitializationError(ConfigurationError):
    """Raised when an auth component cannot be constructed."""

    code = "initialization_error"
