"""
TokenService interface for the Gatehouse authentication engine.

This module defines the abstract base class for token management: issuing
access/refresh pairs, verifying them, rotating refresh tokens and revoking
them.

Security considerations:
- Tokens must be cryptographically signed and carry a unique ``jti``
- Revocation is checked before the signature, against both the local
  revocation cache and the credential store
- A refresh token is single-use: rotation revokes it before issuing
- Expired and invalid tokens are reported distinctly so clients know
  whether to refresh or re-authenticate
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime

from .config.schema import TokenConfig
from .exceptions import ConfigurationError
from .types import AuthProfile, RefreshIdentity, TokenMetadata, TokenPair

ProfileLoader = Callable[[str], Awaitable[AuthProfile]]


class TokenService(ABC):
    """
    Abstract base class for token services.

    Security requirements:
    - Tokens MUST be signed with a secret of at least 32 characters
    - ``verify_*`` MUST consult revocation state before trusting a token
    - ``rotate`` MUST revoke the presented refresh token before issuing

    Implementations receive their storage and caches through the
    constructor so they can be wired by the bootstrap container.
    """

    MIN_SECRET_LENGTH = 32

    def __init__(self, config: TokenConfig):
        self._validate_config(config)
        self.config = config

    def _validate_config(self, config: TokenConfig) -> None:
        """
        Raises:
            ConfigurationError: If the signing secret is too short
        """
        if len(config.secret_key or "") < self.MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Token secret must be at least {self.MIN_SECRET_LENGTH} characters"
            )

    @abstractmethod
    def issue_pair(self, profile: AuthProfile) -> TokenPair:
        """
        Issue a fresh access/refresh pair for a profile.

        Has no persistence side effect; see ``persist_refresh``.
        """

    @abstractmethod
    def issue_access(self, profile: AuthProfile) -> tuple[str, str, datetime]:
        """
        Issue a standalone access token.

        Returns:
            ``(token, jti, expires_at)``
        """

    @abstractmethod
    async def persist_refresh(
        self,
        pair: TokenPair,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Record the refresh token of ``pair`` in the credential store."""

    @abstractmethod
    async def verify_access(self, token: str) -> AuthProfile:
        """
        Verify an access token and return the embedded profile.

        Raises:
            TokenRevokedError: If the token was revoked
            TokenExpiredError: If the token is past expiry
            InvalidTokenError: On any other failure
        """

    @abstractmethod
    async def verify_refresh(self, token: str) -> RefreshIdentity:
        """Verify a refresh token. Raises as ``verify_access``."""

    @abstractmethod
    async def validate_and_extend(self, token: str) -> tuple[AuthProfile, str | None]:
        """
        Verify an access token, reissuing it when little lifetime remains.

        Returns:
            The profile and the replacement access token, or None
        """

    @abstractmethod
    async def rotate(
        self,
        old_refresh_token: str,
        profile_loader: ProfileLoader,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """
        Exchange a refresh token for a new pair.

        The old token is revoked before the new pair is issued. When
        persisting the new refresh record fails the error propagates and
        the old token stays revoked.
        """

    @abstractmethod
    def issue_mfa_challenge(self, user_id: str) -> str:
        """
        Issue the short-lived token that links a passed password check to
        the MFA code submitted after it.
        """

    @abstractmethod
    async def verify_mfa_challenge(self, token: str) -> str:
        """
        Verify an MFA challenge without using it up.

        Returns:
            The user ID the challenge was issued to

        Raises:
            TokenRevokedError: If the challenge was already used
            TokenExpiredError: If the challenge is past expiry
            InvalidTokenError: On any other failure
        """

    @abstractmethod
    async def consume_mfa_challenge(self, token: str) -> str:
        """Verify an MFA challenge and mark it used. Only one caller succeeds."""

    @abstractmethod
    async def revoke(self, token: str) -> str | None:
        """
        Revoke a single token. The signature must verify, but expired
        tokens are accepted.

        Returns:
            The revoked ``jti``, or None if the token carried none
        """

    @abstractmethod
    async def revoke_jti(self, jti: str, expires_at: datetime | None = None) -> bool:
        """
        Revoke by token ID in both the store and the local cache.

        Args:
            expires_at: Token expiry, bounds how long the cache remembers it
        """

    @abstractmethod
    async def revoke_user_tokens(self, user_id: str) -> list[str]:
        """Revoke every outstanding token of a user."""

    @abstractmethod
    def blacklist(self, token: str) -> str | None:
        """Add a token to the local revocation cache only."""

    @abstractmethod
    def is_blacklisted(self, jti: str) -> bool:
        pass

    @abstractmethod
    def token_metadata(self, token: str) -> TokenMetadata | None:
        """Read ``iat``/``exp``/``user_id`` without verifying the token."""
