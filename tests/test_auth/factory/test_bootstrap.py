"""Test wiring the auth system from configuration."""

import pytest
from bevy import get_registry

from gatehouse.auth.account_guard import AccountGuard
from gatehouse.auth.config.schema import GatehouseConfig
from gatehouse.auth.credential_store import CredentialStore
from gatehouse.auth.engine import AuthEngine
from gatehouse.auth.exceptions import ConfigurationError
from gatehouse.auth.factory import AuthSystemBootstrap, create_engine
from gatehouse.auth.oauth.registry import OAuthProviderRegistry
from gatehouse.auth.rbac import RBACResolver
from gatehouse.auth.sweeper import ExpirySweeper
from gatehouse.auth.token_service import TokenService
from gatehouse.auth.types import AuthStatus

TEST_SECRET = "test-secret-key-must-be-long-enough-for-hs256"


def build_config(**overrides) -> GatehouseConfig:
    data = {
        "tokens": {"secret_key": TEST_SECRET},
        "bcrypt_rounds": 4,
        "login_min_duration": 0,
        "access_control": {
            "permissions": [
                {"resource": "articles", "action": "read"},
                {"resource": "articles", "action": "write"},
            ],
            "roles": [
                {"name": "member", "permissions": ["articles:read"]},
                {"name": "editor", "permissions": ["articles:write"], "parent": "member"},
            ],
        },
        "default_roles": ["member"],
    }
    data.update(overrides)
    return GatehouseConfig.model_validate(data)


class TestAuthSystemBootstrap:
    """Test component setup."""

    @pytest.mark.asyncio
    async def test_components_registered(self, clock, http_client):
        container = get_registry().create_container()
        bootstrap = AuthSystemBootstrap(build_config(), clock=clock, http_client=http_client)

        engine = await bootstrap.setup_components(container)

        assert container.get(AuthEngine) is engine
        assert container.get(CredentialStore) is bootstrap.store
        assert container.get(TokenService) is engine.tokens
        assert isinstance(container.get(AccountGuard), AccountGuard)
        assert isinstance(container.get(OAuthProviderRegistry), OAuthProviderRegistry)

    @pytest.mark.asyncio
    async def test_access_control_seeded(self, clock, http_client):
        container = get_registry().create_container()
        bootstrap = AuthSystemBootstrap(build_config(), clock=clock, http_client=http_client)
        await bootstrap.setup_components(container)

        member = await bootstrap.store.get_role_by_name("member")
        editor = await bootstrap.store.get_role_by_name("editor")
        assert editor.parent_id == member.id
        assert await bootstrap.store.get_permission_by_name("articles:write") is not None

    @pytest.mark.asyncio
    async def test_seeding_is_idempotent(self, clock, http_client):
        container = get_registry().create_container()
        bootstrap = AuthSystemBootstrap(build_config(), clock=clock, http_client=http_client)
        await bootstrap.setup_components(container)

        await bootstrap.seed_access_control(container.get(RBACResolver))

        roles = await bootstrap.store.list_roles()
        assert sorted(role.name for role in roles) == ["editor", "member"]

    @pytest.mark.asyncio
    async def test_unknown_permission(self, clock, http_client):
        config = build_config(
            access_control={"roles": [{"name": "member", "permissions": ["articles:read"]}]}
        )
        bootstrap = AuthSystemBootstrap(config, clock=clock, http_client=http_client)

        with pytest.raises(ConfigurationError, match="unknown permission"):
            await bootstrap.setup_components(get_registry().create_container())

    @pytest.mark.asyncio
    async def test_unknown_parent(self, clock, http_client):
        config = build_config(
            access_control={"roles": [{"name": "editor", "parent": "member"}]}
        )
        bootstrap = AuthSystemBootstrap(config, clock=clock, http_client=http_client)

        with pytest.raises(ConfigurationError, match="unknown parent"):
            await bootstrap.setup_components(get_registry().create_container())

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, clock, http_client):
        container = get_registry().create_container()
        bootstrap = AuthSystemBootstrap(build_config(), clock=clock, http_client=http_client)
        await bootstrap.setup_components(container)

        await bootstrap.start(container)
        assert container.get(ExpirySweeper).running

        await bootstrap.shutdown(container)
        assert not container.get(ExpirySweeper).running
        # The caller's client stays open
        assert not http_client.is_closed

    @pytest.mark.asyncio
    async def test_owned_client_closed_on_shutdown(self, clock):
        container = get_registry().create_container()
        bootstrap = AuthSystemBootstrap(build_config(), clock=clock)
        await bootstrap.setup_components(container)
        client = bootstrap.http_client

        await bootstrap.shutdown(container)

        assert client.is_closed
        assert bootstrap.http_client is None


class TestCreateEngine:
    @pytest.mark.asyncio
    async def test_register_and_login(self, clock, http_client):
        engine = await create_engine(build_config(), clock=clock, http_client=http_client)

        registered = await engine.register(
            "new@example.com", "long-enough-password", "New", "User"
        )
        assert registered.status is AuthStatus.SUCCESS

        result = await engine.login("new@example.com", "long-enough-password")
        assert result.status is AuthStatus.SUCCESS
        assert "articles:read" in result.profile.permissions
