"""
Pytest configuration and shared fixtures for auth tests.
"""

from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from gatehouse.auth.account_guard import AccountGuard
from gatehouse.auth.config.schema import (
    GatehouseConfig,
    LockoutConfig,
    OAuthConfig,
    OAuthProviderSettings,
    SessionConfig,
    TokenConfig,
)
from gatehouse.auth.delivery import CookieDelivery
from gatehouse.auth.engine import AuthEngine
from gatehouse.auth.mfa import MfaVerifier
from gatehouse.auth.oauth.handshake import OAuthHandshake
from gatehouse.auth.oauth.registry import OAuthProviderRegistry
from gatehouse.auth.password_hasher import BcryptPasswordHasher
from gatehouse.auth.rbac import RBACResolver
from gatehouse.auth.session_governor import SessionGovernor
from gatehouse.auth.types import User, UserStatus
from gatehouse.bundled.auth.memory import (
    MemoryCredentialStore,
    MemoryOAuthStateStore,
    MemoryRevocationCache,
    MemoryStore,
)
from gatehouse.bundled.auth.tokens import JwtTokenAuthority

TEST_SECRET = "test-secret-key-must-be-long-enough-for-hs256"


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


class ProviderStub:
    """Serves canned OAuth token and profile responses through httpx.MockTransport."""

    def __init__(self):
        self.token_response: dict = {"access_token": "provider-access-token"}
        self.token_status = 200
        self.profile: dict = {
            "sub": "google-123",
            "email": "Ada@Example.com",
            "email_verified": True,
            "given_name": "Ada",
            "family_name": "Lovelace",
            "picture": "https://example.com/ada.png",
        }
        self.profile_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            return httpx.Response(self.token_status, json=self.token_response)
        return httpx.Response(self.profile_status, json=self.profile)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def memory(clock):
    return MemoryStore(time_func=lambda: clock.now().timestamp())


@pytest.fixture
def store(memory):
    return MemoryCredentialStore(memory)


@pytest.fixture
def revocations(memory):
    return MemoryRevocationCache(memory)


@pytest.fixture
def states(memory):
    return MemoryOAuthStateStore(memory)


@pytest.fixture
def token_config():
    return TokenConfig(
        secret_key=TEST_SECRET,
        access_token_expiry=900,
        refresh_token_expiry=86400,
    )


@pytest.fixture
def config(token_config):
    return GatehouseConfig(
        tokens=token_config,
        lockout=LockoutConfig(threshold=5, duration=1800),
        sessions=SessionConfig(max_concurrent_sessions=3),
        oauth=OAuthConfig(
            providers={
                "google": OAuthProviderSettings(
                    client_id="google-client",
                    client_secret="google-secret",
                    redirect_uri="https://app.example.com/oauth/callback/google",
                )
            },
            default_roles=["member"],
        ),
        bcrypt_rounds=4,
        login_min_duration=0,
        default_roles=["member"],
    )


@pytest.fixture
def tokens(config, store, revocations, clock):
    return JwtTokenAuthority(config.tokens, store, revocations, clock)


@pytest.fixture
def guard(config, store, clock):
    return AccountGuard(store, config.lockout, clock)


@pytest.fixture
def sessions(config, store, tokens, clock):
    return SessionGovernor(store, tokens, config.sessions, clock)


@pytest.fixture
def rbac(store, clock):
    return RBACResolver(store, clock)


@pytest.fixture
def provider_stub():
    return ProviderStub()


@pytest_asyncio.fixture
async def http_client(provider_stub):
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider_stub.handler))
    yield client
    await client.aclose()


@pytest.fixture
def providers(config, http_client):
    registry = OAuthProviderRegistry()
    registry.configure(config.oauth, http_client)
    return registry


@pytest.fixture
def handshake(config, providers, states, store, rbac, clock):
    return OAuthHandshake(providers, states, store, rbac, config.oauth, clock)


@pytest.fixture
def hasher():
    return BcryptPasswordHasher(rounds=4)


@pytest.fixture
def mfa(config, clock):
    return MfaVerifier(config.mfa, clock)


@pytest.fixture
def engine(config, store, tokens, guard, sessions, rbac, handshake, hasher, mfa, clock):
    return AuthEngine(
        config,
        store,
        tokens,
        guard,
        sessions,
        rbac,
        handshake,
        hasher,
        mfa,
        CookieDelivery(config.cookies),
        clock,
    )


@pytest_asyncio.fixture
async def member_role(rbac):
    read = await rbac.create_permission("articles", "read")
    return await rbac.create_role("member", "Regular member", permission_ids=[read.id])


@pytest.fixture
def make_user(store, hasher, clock):
    """Create users with a bcrypt-hashed password."""

    async def factory(
        email: str = "user@example.com",
        password: str = "correct-password",
        status: UserStatus = UserStatus.ACTIVE,
        role_ids: list[str] | None = None,
        user_id: str | None = None,
    ) -> User:
        user = User(
            id=user_id or f"user-{email.split('@')[0]}",
            email=email,
            first_name="Test",
            last_name="User",
            password_hash=await hasher.hash(password),
            status=status,
            role_ids=list(role_ids or []),
            created_at=clock.now(),
        )
        return await store.create_user(user)

    return factory
