"""
JWT-based token authority implementation.

Issues HMAC-signed access/refresh pairs, verifies them against the
revocation cache and the credential store, and rotates refresh tokens.
"""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from gatehouse.auth.caches import RevocationCache
from gatehouse.auth.config.schema import TokenConfig
from gatehouse.auth.credential_store import CredentialStore
from gatehouse.auth.exceptions import (
    InvalidTokenError,
    TokenExpiredError,
    TokenRevokedError,
)
from gatehouse.auth.token_service import ProfileLoader, TokenService
from gatehouse.auth.types import (
    AuthProfile,
    RefreshIdentity,
    TokenKind,
    TokenMetadata,
    TokenPair,
    TokenRecord,
)
from gatehouse.auth.utils import Clock, SystemClock

logger = logging.getLogger(__name__)

REGISTERED_CLAIMS = ("jti", "iat", "exp", "iss", "aud", "type")

# Fraction of the access lifetime below which validate_and_extend reissues
EXTENSION_THRESHOLD = 0.25


class JwtTokenAuthority(TokenService):
    """JWT-based token authority."""

    def __init__(
        self,
        config: TokenConfig,
        store: CredentialStore,
        revocations: RevocationCache,
        clock: Clock | None = None,
    ):
        """
        Initialize the JWT token authority.

        Args:
            config: Signing secret, algorithm, lifetimes, issuer and audience
            store: Credential store holding the authoritative token records
            revocations: Process-local revocation cache
            clock: Time source for issuance and expiry checks
        """
        super().__init__(config)

        self.store = store
        self.revocations = revocations
        self.clock = clock or SystemClock()

        self.secret_key = config.secret_key
        self.algorithm = config.algorithm
        self.access_token_expiry = config.access_token_expiry
        self.refresh_token_expiry = config.refresh_token_expiry
        self.issuer = config.issuer
        self.audience = config.audience

    # Issuance

    def _encode(self, kind: TokenKind, payload: dict[str, Any], lifetime: int) -> tuple[str, str, datetime]:
        token_id = str(uuid.uuid4())
        created_at = self.clock.now()
        expires_at = created_at + timedelta(seconds=lifetime)

        claims = {
            "jti": token_id,
            "iat": int(created_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "type": kind.value,
            **payload,
        }
        if self.issuer:
            claims["iss"] = self.issuer
        if self.audience:
            claims["aud"] = self.audience

        token_value = jwt.encode(claims, self.secret_key, algorithm=self.algorithm)
        return token_value, token_id, expires_at

    def issue_access(self, profile: AuthProfile) -> tuple[str, str, datetime]:
        """
        Issue a standalone access token.

        Returns:
            ``(token, jti, expires_at)``
        """
        return self._encode(TokenKind.ACCESS, profile.to_claims(), self.access_token_expiry)

    def issue_pair(self, profile: AuthProfile) -> TokenPair:
        access_token, _, _ = self.issue_access(profile)
        refresh_token, refresh_jti, refresh_expires_at = self._encode(
            TokenKind.REFRESH,
            {
                "user_id": profile.user_id,
                "roles": list(profile.roles),
                "role_ids": list(profile.role_ids),
            },
            self.refresh_token_expiry,
        )

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_token_expiry,
            refresh_expires_in=self.refresh_token_expiry,
            refresh_jti=refresh_jti,
            refresh_expires_at=refresh_expires_at,
        )

    async def persist_refresh(
        self,
        pair: TokenPair,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        await self.store.save_token(
            TokenRecord(
                jti=pair.refresh_jti,
                user_id=user_id,
                kind=TokenKind.REFRESH,
                expires_at=pair.refresh_expires_at,
                created_at=self.clock.now(),
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

    # Verification

    def _peek(self, token: str) -> dict[str, Any]:
        """Decode claims without checking the signature."""
        try:
            return jwt.decode(
                token,
                options={"verify_signature": False},
                algorithms=[self.algorithm],
            )
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Malformed token: {e}") from e

    def _signed_claims(self, token: str) -> dict[str, Any]:
        """Decode claims with the signature checked and expiry ignored."""
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={"verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

    async def _verify(self, token: str, expected: TokenKind) -> dict[str, Any]:
        if not token:
            raise InvalidTokenError("Token is empty")

        unverified = self._peek(token)
        token_id = unverified.get("jti")
        if not token_id or not isinstance(token_id, str):
            raise InvalidTokenError("Token missing required 'jti' claim")

        if self.is_blacklisted(token_id):
            raise TokenRevokedError("Token has been revoked")

        record = await self.store.get_token(token_id)
        if record is not None and record.revoked:
            self.revocations.add(token_id, self._remaining(record.expires_at))
            raise TokenRevokedError("Token has been revoked")

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={
                    "require": ["jti", "iat", "exp"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

        # Expiry is judged against the injected clock rather than PyJWT's
        if self.clock.now().timestamp() >= payload["exp"]:
            raise TokenExpiredError("Token has expired")

        if payload.get("type") != expected.value:
            raise InvalidTokenError(f"Expected a {expected.value} token")

        if expected is TokenKind.REFRESH and record is None:
            raise InvalidTokenError("Refresh token is not recognized")

        return payload

    async def verify_access(self, token: str) -> AuthProfile:
        payload = await self._verify(token, TokenKind.ACCESS)
        try:
            return AuthProfile.from_claims(payload)
        except KeyError as e:
            raise InvalidTokenError(f"Token missing required claim: {e}") from e

    async def verify_refresh(self, token: str) -> RefreshIdentity:
        payload = await self._verify(token, TokenKind.REFRESH)
        user_id = payload.get("user_id")
        if not user_id:
            raise InvalidTokenError("Token missing required 'user_id' claim")
        return RefreshIdentity(
            user_id=user_id, jti=payload["jti"], roles=list(payload.get("roles", []))
        )

    async def validate_and_extend(self, token: str) -> tuple[AuthProfile, str | None]:
        """
        Verify an access token and reissue it when close to expiry.

        Returns:
            The profile and, when less than a quarter of the access lifetime
            remains, a fresh access token (otherwise None)
        """
        profile = await self.verify_access(token)
        metadata = self.token_metadata(token)

        remaining = self._remaining(metadata.expires_at)
        if remaining >= self.access_token_expiry * EXTENSION_THRESHOLD:
            return profile, None

        new_token, _, _ = self.issue_access(profile)
        logger.debug(f"Extended access token for user {profile.user_id}")
        return profile, new_token

    # MFA challenges

    def issue_mfa_challenge(self, user_id: str) -> str:
        token, _, _ = self._encode(
            TokenKind.MFA, {"user_id": user_id}, self.config.mfa_challenge_expiry
        )
        return token

    async def verify_mfa_challenge(self, token: str) -> str:
        payload = await self._verify(token, TokenKind.MFA)
        user_id = payload.get("user_id")
        if not user_id:
            raise InvalidTokenError("Token missing required 'user_id' claim")
        return user_id

    async def consume_mfa_challenge(self, token: str) -> str:
        user_id = await self.verify_mfa_challenge(token)
        claims = self._signed_claims(token)

        # No await between the check and the add, so one caller wins
        if self.is_blacklisted(claims["jti"]):
            raise TokenRevokedError("MFA challenge has already been used")
        self.revocations.add(claims["jti"], self._remaining(self._expiry_from_claims(claims)))
        return user_id

    # Rotation and revocation

    async def rotate(
        self,
        old_refresh_token: str,
        profile_loader: ProfileLoader,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        identity = await self.verify_refresh(old_refresh_token)

        # Losing this race means another request already rotated the token
        if not await self.revoke_jti(identity.jti):
            raise TokenRevokedError("Token has been revoked")

        profile = await profile_loader(identity.user_id)
        pair = self.issue_pair(profile)
        await self.persist_refresh(pair, profile.user_id, ip_address, user_agent)

        logger.info(f"Rotated refresh token for user {identity.user_id}")
        return pair

    async def revoke(self, token: str) -> str | None:
        try:
            claims = self._signed_claims(token)
        except InvalidTokenError:
            return None

        token_id = claims.get("jti")
        if not token_id:
            return None

        await self.revoke_jti(token_id, self._expiry_from_claims(claims))
        return token_id

    async def revoke_jti(self, jti: str, expires_at: datetime | None = None) -> bool:
        """
        Returns:
            True if a stored record was flipped to revoked by this call
        """
        now = self.clock.now()
        flipped = await self.store.revoke_token(jti, now)

        if expires_at is None:
            record = await self.store.get_token(jti)
            expires_at = record.expires_at if record else now + timedelta(
                seconds=self.refresh_token_expiry
            )
        self.revocations.add(jti, self._remaining(expires_at))

        if flipped:
            logger.info(f"Revoked token {jti}")
        return flipped

    async def revoke_user_tokens(self, user_id: str) -> list[str]:
        revoked = await self.store.revoke_user_tokens(user_id, None, self.clock.now())
        for token_id in revoked:
            self.revocations.add(token_id, self.refresh_token_expiry)

        logger.info(f"Revoked {len(revoked)} tokens for user {user_id}")
        return revoked

    def blacklist(self, token: str) -> str | None:
        try:
            claims = self._signed_claims(token)
        except InvalidTokenError:
            return None

        token_id = claims.get("jti")
        if not token_id:
            return None

        expires_at = self._expiry_from_claims(claims)
        ttl = self._remaining(expires_at) if expires_at else self.refresh_token_expiry
        self.revocations.add(token_id, ttl)
        return token_id

    def is_blacklisted(self, jti: str) -> bool:
        return self.revocations.contains(jti)

    def token_metadata(self, token: str) -> TokenMetadata | None:
        try:
            claims = self._peek(token)
        except InvalidTokenError:
            return None

        issued_at = claims.get("iat")
        expires_at = claims.get("exp")
        if issued_at is None or expires_at is None:
            return None

        return TokenMetadata(
            issued_at=datetime.fromtimestamp(issued_at, UTC),
            expires_at=datetime.fromtimestamp(expires_at, UTC),
            user_id=claims.get("user_id", ""),
            jti=claims.get("jti"),
        )

    def _remaining(self, expires_at: datetime) -> float:
        return max(0.0, (expires_at - self.clock.now()).total_seconds())

    @staticmethod
    def _expiry_from_claims(claims: dict[str, Any]) -> datetime | None:
        exp = claims.get("exp")
        if not isinstance(exp, int | float):
            return None
        return datetime.fromtimestamp(exp, UTC)
