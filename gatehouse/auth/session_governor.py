"""
Concurrent session limits.

A session is a non-revoked, non-expired refresh token record. Before a new
session is issued the governor makes room by revoking the oldest one when
the user is at the cap. It never refuses a login.
"""

import asyncio
import contextlib
import logging
import weakref
from collections.abc import AsyncIterator

from .config.schema import SessionConfig
from .credential_store import CredentialStore
from .token_service import TokenService
from .types import TokenKind, TokenRecord
from .utils import Clock, SystemClock

logger = logging.getLogger(__name__)


class SessionGovernor:
    """Caps the number of live refresh tokens per user."""

    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenService,
        config: SessionConfig | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.tokens = tokens
        self.config = config or SessionConfig()
        self.clock = clock or SystemClock()
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def max_concurrent_sessions(self) -> int:
        return self.config.max_concurrent_sessions

    async def active_sessions(self, user_id: str) -> list[TokenRecord]:
        """Live sessions of a user, oldest first."""
        return await self.store.list_active_tokens(
            user_id, TokenKind.REFRESH, self.clock.now()
        )

    async def enforce_cap(self, user_id: str, max_sessions: int | None = None) -> str | None:
        """
        Make room for one new session.

        At or above the cap, the single oldest session is revoked.

        Returns:
            The evicted ``jti``, or None when nothing was evicted
        """
        limit = max_sessions or self.max_concurrent_sessions
        sessions = await self.active_sessions(user_id)
        if len(sessions) < limit:
            return None

        oldest = sessions[0]
        await self.tokens.revoke_jti(oldest.jti, oldest.expires_at)
        logger.info(
            f"Session limit ({limit}) reached for user {user_id}, evicted session {oldest.jti}"
        )
        return oldest.jti

    @contextlib.asynccontextmanager
    async def session_lock(self, user_id: str) -> AsyncIterator[None]:
        """
        Serialize cap enforcement and issue for one user.

        A no-op unless ``serialize_per_user`` is enabled.
        """
        if not self.config.serialize_per_user:
            yield
            return

        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        async with lock:
            yield
