"""
OAuth 2.0 authorization-code flow, relying-party side.

Flow::

    begin_login ──> provider consent ──> complete_callback
                                          1. error parameter  -> denied
                                          2. consume state    -> replay / expiry / mismatch
                                          3. exchange code
                                          4. fetch + normalize profile
                                          5. link or provision the user

The state is consumed before any network call, so a replayed or forged
callback never reaches the provider.
"""

import logging
import uuid

from ..caches import OAuthStateStore
from ..config.schema import OAuthConfig
from ..credential_store import CredentialStore
from ..exceptions import (
    AuthValidationError,
    InvalidOAuthStateError,
    OAuthAuthorizationDeniedError,
    ResourceConflictError,
)
from ..rbac import RBACResolver
from ..types import (
    AuthorizationRequest,
    NormalizedProfile,
    OAuthIdentity,
    OAuthStateEntry,
    User,
    UserStatus,
)
from ..utils import Clock, SystemClock, generate_state_token
from .registry import OAuthProviderRegistry

logger = logging.getLogger(__name__)


class OAuthHandshake:
    """Drives OAuth logins from authorization URL to resolved user."""

    def __init__(
        self,
        registry: OAuthProviderRegistry,
        states: OAuthStateStore,
        store: CredentialStore,
        rbac: RBACResolver,
        config: OAuthConfig | None = None,
        clock: Clock | None = None,
    ):
        self.registry = registry
        self.states = states
        self.store = store
        self.rbac = rbac
        self.config = config or OAuthConfig()
        self.clock = clock or SystemClock()

    async def begin_login(
        self, provider: str, redirect_uri: str | None = None
    ) -> AuthorizationRequest:
        """Record a fresh state and build the provider's authorization URL."""
        oauth_provider = self.registry.get(provider)
        state = generate_state_token(32)
        self.states.put(
            OAuthStateEntry(
                state=state,
                provider=oauth_provider.name,
                created_at=self.clock.now(),
                redirect_uri=redirect_uri,
            )
        )

        logger.info(f"Started OAuth login with {oauth_provider.name}")
        return AuthorizationRequest(
            authorization_url=oauth_provider.get_login_url(state, redirect_uri),
            state=state,
            provider=oauth_provider.name,
        )

    def _consume_state(self, provider: str, state: str | None) -> OAuthStateEntry:
        if not state:
            raise InvalidOAuthStateError("Missing OAuth state parameter")

        entry = self.states.consume(state)
        if entry is None:
            logger.warning(f"Unknown or replayed OAuth state for {provider}")
            raise InvalidOAuthStateError("Invalid or already used OAuth state")

        if entry.age_seconds(self.clock.now()) >= self.config.state_ttl:
            logger.warning(f"Expired OAuth state for {provider}")
            raise InvalidOAuthStateError("OAuth state has expired")

        if entry.provider != provider:
            logger.warning(f"OAuth state issued for {entry.provider} presented to {provider}")
            raise InvalidOAuthStateError("OAuth state does not match provider")

        return entry

    async def complete_callback(
        self,
        provider: str,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> OAuthIdentity:
        """
        Handle the provider redirect.

        Raises:
            OAuthAuthorizationDeniedError: If the provider reported an error
            InvalidOAuthStateError: On a missing, replayed, expired or
                mismatched state
            OAuthProviderError: If the code exchange or profile fetch fails
            IncompleteProfileError: If the profile lacks identity fields
        """
        if error:
            logger.info(f"OAuth authorization with {provider} denied: {error}")
            raise OAuthAuthorizationDeniedError(
                f"Authorization was denied by {provider}", details={"error": error}
            )

        oauth_provider = self.registry.get(provider)
        entry = self._consume_state(oauth_provider.name, state)

        if not code:
            raise AuthValidationError(
                "Authorization code is required", errors={"code": ["Missing authorization code"]}
            )

        token_response = await oauth_provider.exchange_code(code, entry.redirect_uri)
        raw_profile = await oauth_provider.fetch_profile(token_response)
        profile = oauth_provider.normalize_profile(raw_profile)

        user, is_new_user, linked = await self.resolve_user(profile)
        return OAuthIdentity(
            user=user, profile=profile, is_new_user=is_new_user, linked_existing=linked
        )

    async def resolve_user(self, profile: NormalizedProfile) -> tuple[User, bool, bool]:
        """
        Find or create the user behind a provider identity.

        Users are matched by provider identity. An email match only links
        when ``link_by_email`` is on and the provider verified the email;
        otherwise the sign-in is refused rather than taking over the account.

        Returns:
            ``(user, is_new_user, linked_existing)``
        """
        user = await self.store.get_user_by_provider(profile.provider, profile.external_id)
        if user is not None:
            return user, False, False

        existing = await self.store.get_user_by_email(profile.email)
        if existing is not None:
            if not (self.config.link_by_email and profile.email_verified):
                logger.warning(
                    f"Refused {profile.provider} sign-in for an email already registered "
                    f"to user {existing.id}"
                )
                raise ResourceConflictError(
                    "Email is already registered with another sign-in method",
                    details={"field": "email"},
                )
            user = await self.store.update_user(
                existing.id,
                auth_provider=profile.provider,
                provider_user_id=profile.external_id,
                email_verified=True,
                picture=existing.picture or profile.picture,
            )
            logger.info(f"Linked {profile.provider} identity to existing user {user.id}")
            return user, False, True

        user = User(
            id=str(uuid.uuid4()),
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            password_hash=None,
            status=UserStatus.ACTIVE,
            role_ids=await self.rbac.resolve_role_ids(self.config.default_roles),
            email_verified=profile.email_verified,
            auth_provider=profile.provider,
            provider_user_id=profile.external_id,
            picture=profile.picture,
            created_at=self.clock.now(),
        )
        await self.store.create_user(user)
        logger.info(f"Provisioned user {user.id} from {profile.provider}")
        return user, True, False
