"""Core data types for the authentication engine."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserStatus(Enum):
    """Lifecycle states of a user account."""

    ACTIVE = "active"
    PENDING = "pending"
    SUSPENDED = "suspended"
    LOCKED = "locked"
    INACTIVE = "inactive"


class LockReason(Enum):
    """Why an account is in the LOCKED state."""

    FAILED_ATTEMPTS = "failed_attempts"
    ADMINISTRATIVE = "administrative"


class TokenKind(Enum):
    """Kinds of bearer tokens issued by the token authority."""

    ACCESS = "access"
    REFRESH = "refresh"
    MFA = "mfa"


class AuthStatus(Enum):
    """Outcome of an engine operation."""

    SUCCESS = "success"
    MFA_REQUIRED = "mfa_required"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_DISABLED = "account_disabled"
    MISSING_TOKEN = "missing_token"
    TOKEN_EXPIRED = "expired_token"
    INVALID_TOKEN = "invalid_token"
    FORBIDDEN = "forbidden"
    VALIDATION_FAILED = "validation_failed"
    NOT_FOUND = "resource_not_found"
    CONFLICT = "resource_conflict"
    OAUTH_FAILED = "oauth_failed"
    UPSTREAM_FAILURE = "upstream_failure"
    ERROR = "error"


@dataclass
class User:
    """A user account as persisted by the credential store."""

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    password_hash: str | None = None
    status: UserStatus = UserStatus.ACTIVE
    failed_attempts: int = 0
    locked_until: datetime | None = None
    lock_reason: LockReason | None = None
    role_ids: list[str] = field(default_factory=list)
    mfa_enabled: bool = False
    mfa_secret: str | None = None
    email_verified: bool = False
    auth_provider: str | None = None
    provider_user_id: str | None = None
    picture: str | None = None
    last_login: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def __post_init__(self):
        """Validate user after creation."""
        if not self.id or not self.id.strip():
            from .exceptions import AuthValidationError

            raise AuthValidationError("User ID cannot be empty")
        if not self.email or not self.email.strip():
            from .exceptions import AuthValidationError

            raise AuthValidationError("User email cannot be empty")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def is_locked(self, now: datetime) -> bool:
        """Check if the account is locked at the given instant."""
        if self.status is not UserStatus.LOCKED:
            return False
        if self.locked_until is None:
            return True
        return now < self.locked_until


@dataclass
class Permission:
    """A resource/action permission."""

    id: str
    resource: str
    action: str
    name: str = ""
    description: str | None = None
    attributes: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def __post_init__(self):
        if not self.name:
            self.name = f"{self.resource}:{self.action}"

    def matches(self, resource: str, action: str) -> bool:
        return self.resource == resource and self.action == action


@dataclass
class Role:
    """A named role owning a set of permissions.

    The parent link is an identifier, never a live reference, so the role
    hierarchy can be walked by id without building object cycles.
    """

    id: str
    name: str
    description: str | None = None
    parent_id: str | None = None
    permission_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def __post_init__(self):
        """Validate role after creation."""
        if not self.name or not self.name.strip():
            from .exceptions import AuthValidationError

            raise AuthValidationError("Role name cannot be empty")


@dataclass
class TokenRecord:
    """Persisted record of an issued token, keyed by its ``jti``."""

    jti: str
    user_id: str
    kind: TokenKind
    expires_at: datetime
    created_at: datetime = field(default_factory=_utcnow)
    revoked: bool = False
    revoked_at: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        """A record is active while it is neither revoked nor expired."""
        return not self.revoked and not self.is_expired(now)


@dataclass
class AuthProfile:
    """Authorization profile embedded in access tokens."""

    user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    roles: list[str] = field(default_factory=list)
    role_ids: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    status: str = UserStatus.ACTIVE.value
    email_verified: bool = False
    mfa_enabled: bool = False

    def to_claims(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "roles": list(self.roles),
            "role_ids": list(self.role_ids),
            "permissions": list(self.permissions),
            "status": self.status,
            "email_verified": self.email_verified,
            "mfa_enabled": self.mfa_enabled,
        }

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "AuthProfile":
        return cls(
            user_id=claims["user_id"],
            email=claims.get("email", ""),
            first_name=claims.get("first_name", ""),
            last_name=claims.get("last_name", ""),
            roles=list(claims.get("roles", [])),
            role_ids=list(claims.get("role_ids", [])),
            permissions=list(claims.get("permissions", [])),
            status=claims.get("status", UserStatus.ACTIVE.value),
            email_verified=bool(claims.get("email_verified", False)),
            mfa_enabled=bool(claims.get("mfa_enabled", False)),
        )


@dataclass
class TokenPair:
    """Access/refresh pair returned to the client."""

    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    refresh_jti: str
    refresh_expires_at: datetime
    token_type: str = "Bearer"


@dataclass
class RefreshIdentity:
    """Minimal identity carried by a verified refresh token."""

    user_id: str
    jti: str
    roles: list[str] = field(default_factory=list)


@dataclass
class TokenMetadata:
    issued_at: datetime
    expires_at: datetime
    user_id: str
    jti: str | None = None


@dataclass
class LockStatus:
    locked: bool
    until: datetime | None = None


@dataclass
class FailureResult:
    attempts: int
    locked: bool
    until: datetime | None = None


@dataclass
class NormalizedProfile:
    """Provider profile mapped onto the engine's identity fields."""

    provider: str
    external_id: str
    email: str
    first_name: str
    last_name: str
    picture: str | None = None
    # True only when the provider asserts the user proved ownership of the email
    email_verified: bool = False


@dataclass
class OAuthStateEntry:
    """A single-use OAuth ``state`` value awaiting its callback."""

    state: str
    provider: str
    created_at: datetime
    redirect_uri: str | None = None

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()


@dataclass
class AuthorizationRequest:
    authorization_url: str
    state: str
    provider: str


@dataclass
class OAuthIdentity:
    """Result of a completed OAuth callback."""

    user: User
    profile: NormalizedProfile
    is_new_user: bool
    linked_existing: bool = False
