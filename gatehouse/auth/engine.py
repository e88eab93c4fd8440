"""
Authentication engine facade.

``AuthEngine`` composes the token authority, account guard, session
governor, RBAC resolver and OAuth handshake into the operations a routing
layer exposes (login, MFA verification, refresh, logout, validation,
authorization and OAuth). Every operation returns an ``AuthResult``.
Expected failures arrive as a status plus the ``AuthError`` that caused
them; unexpected faults still raise.

Security considerations:
- Logins take a minimum amount of time so responses do not reveal whether
  an email is registered
- Failed MFA codes count towards the lockout threshold
- Refresh always rotates; the presented refresh token is single-use
"""

import functools
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from .account_guard import AccountGuard
from .config.schema import GatehouseConfig
from .credential_store import CredentialStore
from .delivery import Cookie, CookieDelivery
from .exceptions import (
    AccountDisabledError,
    AccountLockedError,
    AuthError,
    AuthorizationError,
    AuthValidationError,
    InvalidCredentialsError,
    InvalidMfaCodeError,
    InvalidOAuthStateError,
    InvalidTokenError,
    MissingTokenError,
    OAuthError,
    OAuthProviderError,
    ResourceConflictError,
    ResourceNotFoundError,
    TokenExpiredError,
)
from .mfa import MfaVerifier
from .oauth.handshake import OAuthHandshake
from .password_hasher import PasswordHasher
from .rbac import RBACResolver
from .session_governor import SessionGovernor
from .token_service import TokenService
from .types import (
    AuthorizationRequest,
    AuthProfile,
    AuthStatus,
    TokenPair,
    User,
    UserStatus,
)
from .utils import Clock, SystemClock, extract_bearer_token, secure_compare, timing_protection

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8
DISABLED_STATUSES = (UserStatus.SUSPENDED, UserStatus.INACTIVE)

# First match wins, so subclasses come before their bases
_STATUS_BY_ERROR: list[tuple[type[AuthError], AuthStatus]] = [
    (AccountLockedError, AuthStatus.ACCOUNT_LOCKED),
    (AccountDisabledError, AuthStatus.ACCOUNT_DISABLED),
    (InvalidCredentialsError, AuthStatus.INVALID_CREDENTIALS),
    (MissingTokenError, AuthStatus.MISSING_TOKEN),
    (TokenExpiredError, AuthStatus.TOKEN_EXPIRED),
    (InvalidTokenError, AuthStatus.INVALID_TOKEN),
    (AuthorizationError, AuthStatus.FORBIDDEN),
    (AuthValidationError, AuthStatus.VALIDATION_FAILED),
    (ResourceNotFoundError, AuthStatus.NOT_FOUND),
    (ResourceConflictError, AuthStatus.CONFLICT),
    (OAuthProviderError, AuthStatus.UPSTREAM_FAILURE),
    (OAuthError, AuthStatus.OAUTH_FAILED),
]


def status_for_error(error: AuthError) -> AuthStatus:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return AuthStatus.ERROR


@dataclass
class AuthResult:
    """Outcome of an engine operation."""

    status: AuthStatus
    user_id: str | None = None
    tokens: TokenPair | None = None
    profile: AuthProfile | None = None
    access_token: str | None = None
    authorization: AuthorizationRequest | None = None
    mfa_required: bool = False
    mfa_token: str | None = None
    is_new_user: bool = False
    cookies: list[Cookie] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error: AuthError | None = None

    @property
    def ok(self) -> bool:
        return self.status in (AuthStatus.SUCCESS, AuthStatus.MFA_REQUIRED)

    @property
    def http_status(self) -> int:
        if self.error is not None:
            return self.error.http_status
        return 200

    @classmethod
    def failure(cls, error: AuthError) -> "AuthResult":
        return cls(status=status_for_error(error), error=error)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready body, without cookie values."""
        if self.error is not None:
            return {"status": self.status.value, "error": self.error.to_dict()}

        body: dict[str, Any] = {"status": self.status.value, "mfa_required": self.mfa_required}
        if self.user_id:
            body["user_id"] = self.user_id
        if self.tokens:
            body["tokens"] = {
                "access_token": self.tokens.access_token,
                "refresh_token": self.tokens.refresh_token,
                "expires_in": self.tokens.expires_in,
                "token_type": self.tokens.token_type,
            }
        if self.profile:
            body["user"] = self.profile.to_claims()
        if self.access_token:
            body["access_token"] = self.access_token
        if self.mfa_token:
            body["mfa_token"] = self.mfa_token
        if self.authorization:
            body["authorization_url"] = self.authorization.authorization_url
        if self.is_new_user:
            body["is_new_user"] = True
        body.update(self.data)
        return body


def _returns_result(func):
    """Convert ``AuthError`` raised by an engine operation into a failed result."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> AuthResult:
        try:
            return await func(self, *args, **kwargs)
        except AuthError as e:
            logger.info(f"{func.__name__} failed: {e.code}: {e.message}")
            return AuthResult.failure(e)

    return wrapper


class AuthEngine:
    """Entry point for authentication and access-control operations."""

    def __init__(
        self,
        config: GatehouseConfig,
        store: CredentialStore,
        tokens: TokenService,
        guard: AccountGuard,
        sessions: SessionGovernor,
        rbac: RBACResolver,
        oauth: OAuthHandshake,
        hasher: PasswordHasher,
        mfa: MfaVerifier,
        delivery: CookieDelivery | None = None,
        clock: Clock | None = None,
    ):
        self.config = config
        self.store = store
        self.tokens = tokens
        self.guard = guard
        self.sessions = sessions
        self.rbac = rbac
        self.oauth = oauth
        self.hasher = hasher
        self.mfa = mfa
        self.delivery = delivery or CookieDelivery(config.cookies)
        self.clock = clock or SystemClock()

    # Helpers

    async def _ensure_can_sign_in(self, user: User) -> None:
        if user.status in DISABLED_STATUSES:
            raise AccountDisabledError(f"Account is {user.status.value}")

        lock = await self.guard.check_locked(user.id)
        if lock.locked:
            raise AccountLockedError(lock.until)

    async def _open_session(
        self, user: User, ip_address: str | None, user_agent: str | None
    ) -> AuthResult:
        # Lock checks and failure resets may have rewritten the record
        user = await self.store.get_user(user.id) or user

        async with self.sessions.session_lock(user.id):
            await self.sessions.enforce_cap(user.id)
            profile = await self.rbac.build_profile(user)
            pair = self.tokens.issue_pair(profile)
            await self.tokens.persist_refresh(pair, user.id, ip_address, user_agent)

        await self.store.update_user(user.id, last_login=self.clock.now())
        logger.info(f"User {user.id} signed in")
        return AuthResult(
            status=AuthStatus.SUCCESS,
            user_id=user.id,
            tokens=pair,
            profile=profile,
            cookies=self.delivery.token_cookies(pair),
        )

    async def _load_profile(self, user_id: str) -> AuthProfile:
        user = await self.store.get_user(user_id)
        if user is None:
            raise InvalidTokenError("Token subject no longer exists")
        await self._ensure_can_sign_in(user)
        return await self.rbac.build_profile(user)

    async def _require_user(self, user_id: str) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")
        return user

    # Registration and login

    @_returns_result
    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role_names: list[str] | None = None,
    ) -> AuthResult:
        errors: dict[str, list[str]] = {}
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            errors.setdefault("email", []).append("A valid email address is required")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            errors.setdefault("password", []).append(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        if not (first_name or "").strip():
            errors.setdefault("first_name", []).append("First name is required")
        if not (last_name or "").strip():
            errors.setdefault("last_name", []).append("Last name is required")
        if errors:
            raise AuthValidationError("Registration validation failed", errors=errors)

        if await self.store.get_user_by_email(email) is not None:
            raise ResourceConflictError("Email is already registered", details={"field": "email"})

        role_names = role_names if role_names is not None else self.config.default_roles
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            password_hash=await self.hasher.hash(password),
            status=UserStatus.ACTIVE,
            role_ids=await self.rbac.resolve_role_ids(role_names),
            created_at=self.clock.now(),
        )
        await self.store.create_user(user)
        logger.info(f"Registered user {user.id}")

        return AuthResult(
            status=AuthStatus.SUCCESS,
            user_id=user.id,
            profile=await self.rbac.build_profile(user),
        )

    @_returns_result
    async def login(
        self,
        email: str,
        password: str,
        mfa_code: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """POST /login."""
        async with timing_protection(self.config.login_min_duration):
            if not email or not password:
                raise AuthValidationError(
                    "Email and password are required",
                    errors={
                        key: [f"{key.capitalize()} is required"]
                        for key, value in (("email", email), ("password", password))
                        if not value
                    },
                )

            user = await self.store.get_user_by_email(email.strip().lower())
            if user is None:
                raise InvalidCredentialsError("Invalid email or password")

            await self._ensure_can_sign_in(user)

            if not await self.hasher.verify(password, user.password_hash):
                failure = await self.guard.increment_failure(user.id)
                if failure.locked:
                    raise AccountLockedError(failure.until)
                raise InvalidCredentialsError(
                    "Invalid email or password",
                    details={"attempts_remaining": max(0, self.guard.threshold - failure.attempts)},
                )

            if user.mfa_enabled:
                if not mfa_code:
                    # Failures are only reset once the second factor passes
                    logger.info(f"MFA required for user {user.id}")
                    return AuthResult(
                        status=AuthStatus.MFA_REQUIRED,
                        user_id=user.id,
                        mfa_required=True,
                        mfa_token=self.tokens.issue_mfa_challenge(user.id),
                    )
                await self._check_mfa_code(user, mfa_code)

            await self.guard.reset_failures(user.id)
            return await self._open_session(user, ip_address, user_agent)

    async def _check_mfa_code(self, user: User, code: str) -> None:
        if not self.mfa.verify(user.mfa_secret, code):
            failure = await self.guard.increment_failure(user.id)
            if failure.locked:
                raise AccountLockedError(failure.until)
            raise InvalidMfaCodeError("Invalid MFA code")

    @_returns_result
    async def verify_mfa(
        self,
        mfa_token: str | None,
        mfa_code: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """
        POST /verify-mfa, the second step after an ``MFA_REQUIRED`` login.

        ``mfa_token`` is the challenge returned by that login. It proves the
        password step passed and is used up by the first correct code.
        """
        if not mfa_token or not mfa_code:
            raise AuthValidationError(
                "MFA challenge and code are required",
                errors={
                    key: [f"{label} is required"]
                    for key, label, value in (
                        ("mfa_token", "MFA challenge", mfa_token),
                        ("mfa_code", "MFA code", mfa_code),
                    )
                    if not value
                },
            )

        async with timing_protection(self.config.login_min_duration):
            user_id = await self.tokens.verify_mfa_challenge(mfa_token)
            user = await self.store.get_user(user_id)
            if user is None or not user.mfa_enabled:
                raise InvalidCredentialsError("MFA verification is not available")

            await self._ensure_can_sign_in(user)
            await self._check_mfa_code(user, mfa_code)
            await self.tokens.consume_mfa_challenge(mfa_token)

            await self.guard.reset_failures(user.id)
            return await self._open_session(user, ip_address, user_agent)

    # Tokens

    @_returns_result
    async def refresh(
        self,
        refresh_token: str | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """POST /refresh. The presented token is revoked before the new pair is issued."""
        if not refresh_token:
            raise MissingTokenError("Refresh token is required")

        pair = await self.tokens.rotate(refresh_token, self._load_profile, ip_address, user_agent)
        profile = await self.tokens.verify_access(pair.access_token)
        return AuthResult(
            status=AuthStatus.SUCCESS,
            user_id=profile.user_id,
            tokens=pair,
            profile=profile,
            cookies=self.delivery.token_cookies(pair),
        )

    @_returns_result
    async def logout(
        self, access_token: str | None = None, refresh_token: str | None = None
    ) -> AuthResult:
        """POST /logout. Revokes the presented tokens."""
        if not access_token and not refresh_token:
            raise MissingTokenError("A token is required to log out")

        revoked = []
        for token in (refresh_token, access_token):
            if token:
                token_id = await self.tokens.revoke(token)
                if token_id:
                    revoked.append(token_id)

        return AuthResult(
            status=AuthStatus.SUCCESS,
            cookies=self.delivery.clear_token_cookies(),
            data={"revoked": len(revoked)},
        )

    @_returns_result
    async def logout_all(self, access_token: str | None) -> AuthResult:
        """POST /logout-all. Revokes every session of the token's user."""
        if not access_token:
            raise MissingTokenError("Access token is required")

        profile = await self.tokens.verify_access(access_token)
        revoked = await self.tokens.revoke_user_tokens(profile.user_id)
        await self.tokens.revoke(access_token)

        return AuthResult(
            status=AuthStatus.SUCCESS,
            user_id=profile.user_id,
            cookies=self.delivery.clear_token_cookies(),
            data={"revoked": len(revoked)},
        )

    @_returns_result
    async def validate(
        self, token: str | None = None, authorization_header: str | None = None
    ) -> AuthResult:
        """
        GET /validate.

        When the access token is close to expiry a replacement is returned in
        ``access_token`` together with its cookie.
        """
        token = token or extract_bearer_token(authorization_header)
        if not token:
            raise MissingTokenError("Access token is required")

        profile, extended = await self.tokens.validate_and_extend(token)
        cookies = []
        if extended:
            cookies.append(self.delivery.access_cookie(extended, self.config.tokens.access_token_expiry))

        return AuthResult(
            status=AuthStatus.SUCCESS,
            user_id=profile.user_id,
            profile=profile,
            access_token=extended,
            cookies=cookies,
        )

    @_returns_result
    async def authorize(
        self,
        token: str | None = None,
        authorization_header: str | None = None,
        permission: str | None = None,
        role: str | None = None,
        resource: str | None = None,
        action: str | None = None,
    ) -> AuthResult:
        """
        Verify an access token and check the requested permission, role or
        resource action. All supplied requirements must hold.
        """
        token = token or extract_bearer_token(authorization_header)
        if not token:
            raise MissingTokenError("Access token is required")

        profile = await self.tokens.verify_access(token)
        if permission:
            await self.rbac.require_permission(profile, permission, resource)
        if resource and action:
            await self.rbac.require_resource_permission(profile, resource, action)
        if role:
            await self.rbac.require_role(profile, role)

        return AuthResult(status=AuthStatus.SUCCESS, user_id=profile.user_id, profile=profile)

    # OAuth

    @_returns_result
    async def begin_oauth(self, provider: str, redirect_uri: str | None = None) -> AuthResult:
        """GET/POST /oauth/initiate."""
        request = await self.oauth.begin_login(provider, redirect_uri)
        return AuthResult(
            status=AuthStatus.SUCCESS,
            authorization=request,
            cookies=[self.delivery.oauth_state_cookie(request.state)],
        )

    @_returns_result
    async def complete_oauth(
        self,
        provider: str,
        code: str | None,
        state: str | None,
        error: str | None = None,
        state_cookie: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult:
        """
        GET /oauth/callback/:provider.

        When the browser sent back the state cookie it must match the
        ``state`` query parameter.
        """
        if not error and state_cookie is not None and not secure_compare(state_cookie, state or ""):
            raise InvalidOAuthStateError("OAuth state does not match the browser session")

        identity = await self.oauth.complete_callback(provider, code, state, error)
        await self._ensure_can_sign_in(identity.user)

        result = await self._open_session(identity.user, ip_address, user_agent)
        result.is_new_user = identity.is_new_user
        result.cookies.append(self.delivery.clear_oauth_state_cookie())
        return result

    # MFA enrolment

    @_returns_result
    async def setup_mfa(self, user_id: str) -> AuthResult:
        """Store a new TOTP secret. MFA stays off until ``enable_mfa`` confirms a code."""
        user = await self._require_user(user_id)
        if user.mfa_enabled:
            raise ResourceConflictError("MFA is already enabled")

        secret = self.mfa.generate_secret()
        await self.store.update_user(user_id, mfa_secret=secret)
        return AuthResult(
            status=AuthStatus.SUCCESS,
            user_id=user_id,
            data={
                "secret": secret,
                "provisioning_uri": self.mfa.provisioning_uri(secret, user.email),
            },
        )

    @_returns_result
    async def enable_mfa(self, user_id: str, mfa_code: str) -> AuthResult:
        user = await self._require_user(user_id)
        if not user.mfa_secret:
            raise AuthValidationError(
                "MFA has not been set up", errors={"mfa_code": ["Run MFA setup first"]}
            )
        if not self.mfa.verify(user.mfa_secret, mfa_code):
            raise InvalidMfaCodeError("Invalid MFA code")

        await self.store.update_user(user_id, mfa_enabled=True)
        logger.info(f"MFA enabled for user {user_id}")
        return AuthResult(status=AuthStatus.SUCCESS, user_id=user_id)

    @_returns_result
    async def disable_mfa(self, user_id: str, mfa_code: str) -> AuthResult:
        user = await self._require_user(user_id)
        if not user.mfa_enabled:
            return AuthResult(status=AuthStatus.SUCCESS, user_id=user_id)
        if not self.mfa.verify(user.mfa_secret, mfa_code):
            raise InvalidMfaCodeError("Invalid MFA code")

        await self.store.update_user(user_id, mfa_enabled=False, mfa_secret=None)
        logger.info(f"MFA disabled for user {user_id}")
        return AuthResult(status=AuthStatus.SUCCESS, user_id=user_id)
