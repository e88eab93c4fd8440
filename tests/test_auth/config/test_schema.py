"""Test configuration schema models."""

import pytest
from pydantic import ValidationError

from gatehouse.auth.config.schema import (
    GatehouseConfig,
    LockoutConfig,
    OAuthConfig,
    RoleDef,
    SessionConfig,
    TokenConfig,
)

SECRET = "a-very-long-signing-secret-for-the-tests-0123456789"


class TestTokenConfig:
    """Test TokenConfig validation."""

    def test_defaults(self):
        config = TokenConfig(secret_key=SECRET)

        assert config.algorithm == "HS256"
        assert config.access_token_expiry == 900
        assert config.refresh_token_expiry == 604800
        assert config.issuer is None

    def test_short_secret(self):
        with pytest.raises(ValidationError):
            TokenConfig(secret_key="x" * 31)

    def test_unsupported_algorithm(self):
        with pytest.raises(ValidationError, match="Unsupported JWT algorithm"):
            TokenConfig(secret_key=SECRET, algorithm="none")

    def test_refresh_must_outlive_access(self):
        with pytest.raises(ValidationError, match="must exceed"):
            TokenConfig(secret_key=SECRET, access_token_expiry=3600, refresh_token_expiry=3600)

    def test_non_positive_expiry(self):
        with pytest.raises(ValidationError):
            TokenConfig(secret_key=SECRET, access_token_expiry=0)


class TestPolicyConfigs:
    def test_lockout_defaults(self):
        config = LockoutConfig()
        assert config.threshold == 5
        assert config.duration == 1800

    def test_lockout_must_be_positive(self):
        with pytest.raises(ValidationError):
            LockoutConfig(threshold=0)

    def test_session_limit(self):
        assert SessionConfig().max_concurrent_sessions == 5
        assert SessionConfig().serialize_per_user is False
        with pytest.raises(ValidationError):
            SessionConfig(max_concurrent_sessions=0)

    def test_provider_names_lowercased(self):
        config = OAuthConfig(
            providers={
                "Google": {
                    "client_id": "id",
                    "client_secret": "secret",
                    "redirect_uri": "https://app.example.com/cb",
                }
            }
        )
        assert list(config.providers) == ["google"]
        assert config.state_ttl == 900
        assert config.link_by_email is False


class TestGatehouseConfig:
    def test_minimal(self):
        config = GatehouseConfig(tokens={"secret_key": SECRET})

        assert config.bcrypt_rounds == 12
        assert config.cookies.secure is True
        assert config.sweeper.interval == 300
        assert config.access_control.roles == []

    def test_bcrypt_rounds_range(self):
        with pytest.raises(ValidationError, match="bcrypt rounds"):
            GatehouseConfig(tokens={"secret_key": SECRET}, bcrypt_rounds=3)

    def test_role_definitions(self):
        config = GatehouseConfig(
            tokens={"secret_key": SECRET},
            access_control={
                "permissions": [{"resource": "articles", "action": "read"}],
                "roles": [{"name": "member", "permissions": ["articles:read"]}],
            },
        )
        assert config.access_control.roles[0].permissions == ["articles:read"]

    def test_role_name_validation(self):
        with pytest.raises(ValidationError):
            RoleDef(name="no")
        with pytest.raises(ValidationError):
            RoleDef(name="bad/name")
