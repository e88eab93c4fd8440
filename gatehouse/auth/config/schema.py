"""Configuration schema models using Pydantic."""

import re

from pydantic import BaseModel, Field, field_validator, model_validator

ALLOWED_ALGORITHMS = ("HS256", "HS384", "HS512")
ROLE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\s.-]+$")


class TokenConfig(BaseModel):
    """Signing and lifetime settings for issued tokens."""

    secret_key: str = Field(..., min_length=32, description="HMAC signing secret")
    algorithm: str = Field("HS256", description="JWT signing algorithm")
    access_token_expiry: int = Field(900, description="Access token lifetime in seconds")
    refresh_token_expiry: int = Field(
        604800, description="Refresh token lifetime in seconds"
    )
    mfa_challenge_expiry: int = Field(
        300, description="Lifetime of the challenge token between password and MFA code"
    )
    issuer: str | None = Field(None, description="Value of the 'iss' claim")
    audience: str | None = Field(None, description="Value of the 'aud' claim")

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v):
        if v not in ALLOWED_ALGORITHMS:
            raise ValueError(
                f"Unsupported JWT algorithm: {v}. Use one of {', '.join(ALLOWED_ALGORITHMS)}"
            )
        return v

    @field_validator("access_token_expiry", "refresh_token_expiry", "mfa_challenge_expiry")
    @classmethod
    def validate_expiry(cls, v):
        if v < 1:
            raise ValueError("Token expiry must be at least 1 second")
        return v

    @model_validator(mode="after")
    def validate_lifetimes(self):
        if self.refresh_token_expiry <= self.access_token_expiry:
            raise ValueError("Refresh token expiry must exceed access token expiry")
        return self


class LockoutConfig(BaseModel):
    """Failed-login lockout policy."""

    threshold: int = Field(5, description="Failed attempts before the account locks")
    duration: int = Field(1800, description="Lockout duration in seconds")

    @field_validator("threshold", "duration")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Lockout settings must be positive")
        return v


class SessionConfig(BaseModel):
    """Concurrent session policy."""

    max_concurrent_sessions: int = Field(
        5, description="Maximum live refresh tokens per user"
    )
    serialize_per_user: bool = Field(
        False, description="Serialize cap enforcement and issue per user"
    )

    @field_validator("max_concurrent_sessions")
    @classmethod
    def validate_concurrent_limit(cls, v):
        if v < 1:
            raise ValueError("Concurrent session limit must be at least 1")
        return v


class OAuthProviderSettings(BaseModel):
    """Client registration for one OAuth provider."""

    client_id: str = Field(..., description="OAuth client ID")
    client_secret: str = Field(..., description="OAuth client secret")
    redirect_uri: str = Field(..., description="Registered callback URL")
    scopes: list[str] | None = Field(
        None, description="Requested scopes; provider defaults when omitted"
    )


class OAuthConfig(BaseModel):
    """OAuth relying-party settings."""

    providers: dict[str, OAuthProviderSettings] = Field(
        default_factory=dict, description="Provider settings keyed by provider name"
    )
    state_ttl: int = Field(900, description="Lifetime of an OAuth state in seconds")
    default_roles: list[str] = Field(
        default_factory=list, description="Role names given to provisioned users"
    )
    link_by_email: bool = Field(
        False,
        description="Link a provider identity to an existing user when the provider verified the email",
    )
    timeout: float = Field(10.0, description="Provider HTTP timeout in seconds")

    @field_validator("providers")
    @classmethod
    def normalize_provider_names(cls, v):
        return {name.lower(): settings for name, settings in v.items()}


class CookieConfig(BaseModel):
    """Cookie attributes used when delivering tokens to browsers."""

    secure: bool = Field(True, description="Set the Secure attribute")
    domain: str | None = Field(None, description="Cookie domain")
    path: str = Field("/", description="Cookie path")


class SweeperConfig(BaseModel):
    interval: float = Field(300.0, description="Seconds between expiry sweeps")


class MfaConfig(BaseModel):
    """TOTP settings."""

    issuer: str = Field("Gatehouse", description="Issuer shown in authenticator apps")
    valid_window: int = Field(
        1, description="Number of adjacent time steps accepted"
    )


class PermissionDef(BaseModel):
    """Permission seeded at startup."""

    resource: str = Field(..., description="Resource this permission applies to")
    action: str = Field(..., description="Action this permission allows")
    description: str | None = Field(None, description="Permission description")


class RoleDef(BaseModel):
    """Role seeded at startup."""

    name: str = Field(..., description="Role name")
    description: str | None = Field(None, description="Role description")
    permissions: list[str] = Field(
        default_factory=list, description="Permission names, 'resource:action'"
    )
    parent: str | None = Field(None, description="Parent role name")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not 3 <= len(v) <= 50 or not ROLE_NAME_PATTERN.match(v):
            raise ValueError(
                "Role name must be 3-50 characters of letters, digits, spaces, '_', '.' or '-'"
            )
        return v


class AccessControlConfig(BaseModel):
    """Roles and permissions created at startup."""

    permissions: list[PermissionDef] = Field(default_factory=list)
    roles: list[RoleDef] = Field(default_factory=list)


class GatehouseConfig(BaseModel):
    """Main authentication configuration."""

    tokens: TokenConfig = Field(..., description="Token settings")
    lockout: LockoutConfig = Field(default_factory=LockoutConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    cookies: CookieConfig = Field(default_factory=CookieConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    mfa: MfaConfig = Field(default_factory=MfaConfig)
    access_control: AccessControlConfig = Field(default_factory=AccessControlConfig)
    bcrypt_rounds: int = Field(12, description="bcrypt work factor")
    login_min_duration: float = Field(
        0.1, description="Minimum seconds a login attempt takes; 0 disables"
    )
    default_roles: list[str] = Field(
        default_factory=list, description="Role names given to registered users"
    )

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_rounds(cls, v):
        if not 4 <= v <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        return v
