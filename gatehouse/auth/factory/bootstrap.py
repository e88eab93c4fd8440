"""Auth system bootstrap for wiring the engine components from configuration."""

import logging

import httpx
from bevy import Container, get_registry

from ...bundled.auth.memory import (
    MemoryCredentialStore,
    MemoryOAuthStateStore,
    MemoryRevocationCache,
    MemoryStore,
)
from ...bundled.auth.tokens import JwtTokenAuthority
from ..account_guard import AccountGuard
from ..caches import OAuthStateStore, RevocationCache
from ..config.schema import GatehouseConfig
from ..credential_store import CredentialStore
from ..delivery import CookieDelivery
from ..engine import AuthEngine
from ..exceptions import (
    ComponentInitializationError,
    ConfigurationError,
    ResourceConflictError,
)
from ..mfa import MfaVerifier
from ..oauth.handshake import OAuthHandshake
from ..oauth.registry import OAuthProviderRegistry
from ..password_hasher import BcryptPasswordHasher, PasswordHasher
from ..rbac import RBACResolver, permission_name
from ..session_governor import SessionGovernor
from ..sweeper import ExpirySweeper
from ..token_service import TokenService
from ..utils import Clock, SystemClock

logger = logging.getLogger(__name__)


class AuthSystemBootstrap:
    """Bootstraps the authentication engine from configuration.

    Components are created in dependency order and registered in a bevy
    container under their interface types, so application code can ask the
    container for ``TokenService`` or ``RBACResolver`` directly.
    """

    def __init__(
        self,
        config: GatehouseConfig,
        store: CredentialStore | None = None,
        clock: Clock | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the bootstrap with configuration.

        Args:
            config: Authentication configuration
            store: Credential store; an in-memory store when omitted
            clock: Time source shared by every component
            http_client: Client used to reach OAuth providers
        """
        self.config = config
        self.clock = clock or SystemClock()
        self.memory = MemoryStore(
            cleanup_interval=config.sweeper.interval,
            time_func=lambda: self.clock.now().timestamp(),
        )
        self.store = store or MemoryCredentialStore(self.memory)
        self.http_client = http_client
        self._owns_http_client = http_client is None

    async def setup_components(self, container: Container) -> AuthEngine:
        """Create every component and register it in the container.

        Raises:
            ConfigurationError: If configuration is invalid
            ComponentInitializationError: If component setup fails
        """
        try:
            revocations = MemoryRevocationCache(self.memory)
            states = MemoryOAuthStateStore(self.memory, self.config.oauth.state_ttl)

            tokens = JwtTokenAuthority(self.config.tokens, self.store, revocations, self.clock)
            guard = AccountGuard(self.store, self.config.lockout, self.clock)
            sessions = SessionGovernor(self.store, tokens, self.config.sessions, self.clock)
            rbac = RBACResolver(self.store, self.clock)

            if self.http_client is None:
                self.http_client = httpx.AsyncClient(timeout=self.config.oauth.timeout)
            providers = OAuthProviderRegistry()
            providers.configure(self.config.oauth, self.http_client)
            handshake = OAuthHandshake(
                providers, states, self.store, rbac, self.config.oauth, self.clock
            )

            hasher = BcryptPasswordHasher(self.config.bcrypt_rounds)
            mfa = MfaVerifier(self.config.mfa, self.clock)
            delivery = CookieDelivery(self.config.cookies)
            sweeper = ExpirySweeper(
                self.store,
                states,
                revocations,
                interval=self.config.sweeper.interval,
                state_ttl=self.config.oauth.state_ttl,
                clock=self.clock,
            )

            engine = AuthEngine(
                self.config,
                self.store,
                tokens,
                guard,
                sessions,
                rbac,
                handshake,
                hasher,
                mfa,
                delivery,
                self.clock,
            )

            container.add(GatehouseConfig, self.config)
            container.add(CredentialStore, self.store)
            container.add(RevocationCache, revocations)
            container.add(OAuthStateStore, states)
            container.add(TokenService, tokens)
            container.add(AccountGuard, guard)
            container.add(SessionGovernor, sessions)
            container.add(RBACResolver, rbac)
            container.add(OAuthProviderRegistry, providers)
            container.add(OAuthHandshake, handshake)
            container.add(PasswordHasher, hasher)
            container.add(MfaVerifier, mfa)
            container.add(CookieDelivery, delivery)
            container.add(ExpirySweeper, sweeper)
            container.add(AuthEngine, engine)

            await self.seed_access_control(rbac)

        except (ConfigurationError, ComponentInitializationError):
            raise
        except Exception as e:
            raise ComponentInitializationError(f"Failed to set up auth system: {e}") from e

        logger.info(
            f"Auth system ready with OAuth providers {providers.configured_providers or 'none'}"
        )
        return engine

    async def seed_access_control(self, rbac: RBACResolver) -> None:
        """Create the configured permissions and roles that do not exist yet.

        Roles are processed in order, so a parent must be listed before its
        children unless it already exists in the store.
        """
        access = self.config.access_control

        for definition in access.permissions:
            name = permission_name(definition.resource, definition.action)
            if await self.store.get_permission_by_name(name) is not None:
                continue
            await rbac.create_permission(
                definition.resource, definition.action, name, definition.description
            )

        for definition in access.roles:
            if await self.store.get_role_by_name(definition.name) is not None:
                continue

            permission_ids = []
            for name in definition.permissions:
                permission = await self.store.get_permission_by_name(name)
                if permission is None:
                    raise ConfigurationError(
                        f"Role '{definition.name}' references unknown permission '{name}'"
                    )
                permission_ids.append(permission.id)

            parent_id = None
            if definition.parent:
                parent = await self.store.get_role_by_name(definition.parent)
                if parent is None:
                    raise ConfigurationError(
                        f"Role '{definition.name}' references unknown parent '{definition.parent}'"
                    )
                parent_id = parent.id

            try:
                await rbac.create_role(
                    definition.name, definition.description, parent_id, permission_ids
                )
            except ResourceConflictError as e:
                raise ConfigurationError(e.message) from e

    async def start(self, container: Container) -> None:
        """Start background housekeeping."""
        await container.get(ExpirySweeper).start()

    async def shutdown(self, container: Container) -> None:
        await container.get(ExpirySweeper).stop()
        await self.memory.stop_cleanup()
        if self._owns_http_client and self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None


async def create_engine(
    config: GatehouseConfig,
    store: CredentialStore | None = None,
    clock: Clock | None = None,
    http_client: httpx.AsyncClient | None = None,
    container: Container | None = None,
) -> AuthEngine:
    """Build a ready-to-use engine, registering components in ``container``."""
    container = container or get_registry().create_container()
    bootstrap = AuthSystemBootstrap(config, store, clock, http_client)
    return await bootstrap.setup_components(container)
