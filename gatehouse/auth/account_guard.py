"""
Failed-login tracking and account lockout.

The guard counts consecutive failed credential checks per user and locks
the account once the threshold is reached. Locks set by the guard expire
lazily: the first ``check_locked`` after the lockout window returns the
user to ``ACTIVE``.

Updates for one user are serialized with a per-user ``asyncio.Lock`` so
concurrent failures cannot lose increments within a process.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta

from .config.schema import LockoutConfig
from .credential_store import CredentialStore
from .exceptions import ResourceNotFoundError
from .types import FailureResult, LockReason, LockStatus, User, UserStatus
from .utils import Clock, SystemClock

logger = logging.getLogger(__name__)


class AccountGuard:
    """Tracks failed credential checks and enforces lockouts."""

    def __init__(
        self,
        store: CredentialStore,
        config: LockoutConfig | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.config = config or LockoutConfig()
        self.clock = clock or SystemClock()
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @property
    def threshold(self) -> int:
        return self.config.threshold

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(seconds=self.config.duration)

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def _load(self, user_id: str) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")
        return user

    async def check_locked(self, user_id: str) -> LockStatus:
        """
        Report whether the account is locked right now.

        This is a read with a write side effect: an expired lock is cleared
        (status ``ACTIVE``, counter 0) before returning.
        """
        async with self._lock_for(user_id):
            user = await self._load(user_id)
            if user.status is not UserStatus.LOCKED:
                return LockStatus(locked=False)

            now = self.clock.now()
            if user.is_locked(now):
                return LockStatus(locked=True, until=user.locked_until)

            await self.store.update_user(
                user_id,
                status=UserStatus.ACTIVE,
                failed_attempts=0,
                locked_until=None,
                lock_reason=None,
            )
            logger.info(f"Lockout expired for user {user_id}, account unlocked")
            return LockStatus(locked=False)

    async def increment_failure(self, user_id: str) -> FailureResult:
        """
        Record one failed credential check.

        Reaching the threshold locks the account in the same update.
        """
        async with self._lock_for(user_id):
            user = await self._load(user_id)
            attempts = user.failed_attempts + 1
            fields = {"failed_attempts": attempts}

            if user.lock_reason is LockReason.ADMINISTRATIVE and user.is_locked(self.clock.now()):
                await self.store.update_user(user_id, **fields)
                return FailureResult(attempts=attempts, locked=True, until=user.locked_until)

            until = None
            locked = attempts >= self.threshold
            if locked:
                until = self.clock.now() + self.lockout_duration
                fields.update(
                    status=UserStatus.LOCKED,
                    locked_until=until,
                    lock_reason=LockReason.FAILED_ATTEMPTS,
                )

            await self.store.update_user(user_id, **fields)

            if locked:
                logger.warning(
                    f"Account {user_id} locked after {attempts} failed attempts "
                    f"until {until.isoformat()}"
                )
            return FailureResult(attempts=attempts, locked=locked, until=until)

    async def reset_failures(self, user_id: str) -> None:
        """Zero the counter and clear a lock set by the guard itself."""
        async with self._lock_for(user_id):
            user = await self._load(user_id)
            fields = {"failed_attempts": 0}
            if user.status is UserStatus.LOCKED and user.lock_reason is not LockReason.ADMINISTRATIVE:
                fields.update(status=UserStatus.ACTIVE, locked_until=None, lock_reason=None)

            if user.failed_attempts or len(fields) > 1:
                await self.store.update_user(user_id, **fields)

    async def lock(self, user_id: str, until: datetime | None = None) -> User:
        """
        Lock an account administratively.

        Args:
            until: When the lock lapses; None locks until ``unlock``
        """
        async with self._lock_for(user_id):
            await self._load(user_id)
            user = await self.store.update_user(
                user_id,
                status=UserStatus.LOCKED,
                locked_until=until,
                lock_reason=LockReason.ADMINISTRATIVE,
            )
        logger.warning(f"Account {user_id} locked administratively")
        return user

    async def unlock(self, user_id: str) -> User:
        async with self._lock_for(user_id):
            await self._load(user_id)
            user = await self.store.update_user(
                user_id,
                status=UserStatus.ACTIVE,
                failed_attempts=0,
                locked_until=None,
                lock_reason=None,
            )
        logger.info(f"Account {user_id} unlocked")
        return user
