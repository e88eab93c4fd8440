"""Tests for failed-login tracking and account lockout."""

import asyncio

import pytest

from gatehouse.auth.exceptions import ResourceNotFoundError
from gatehouse.auth.types import LockReason, UserStatus


class TestFailureCounting:
    """Test the failure counter and threshold lock."""

    @pytest.mark.asyncio
    async def test_failures_below_threshold(self, guard, make_user, store):
        user = await make_user()

        for expected in range(1, 5):
            result = await guard.increment_failure(user.id)
            assert result.attempts == expected
            assert not result.locked

        stored = await store.get_user(user.id)
        assert stored.failed_attempts == 4
        assert stored.status is UserStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_threshold_locks_account(self, guard, make_user, store, clock):
        """The fifth failure locks the account for the configured duration."""
        user = await make_user()
        for _ in range(4):
            await guard.increment_failure(user.id)

        result = await guard.increment_failure(user.id)

        assert result.locked
        assert result.attempts == 5
        assert (result.until - clock.now()).total_seconds() == 1800
        stored = await store.get_user(user.id)
        assert stored.status is UserStatus.LOCKED
        assert stored.lock_reason is LockReason.FAILED_ATTEMPTS
        assert stored.locked_until == result.until

    @pytest.mark.asyncio
    async def test_reset_failures(self, guard, make_user, store):
        user = await make_user()
        await guard.increment_failure(user.id)
        await guard.increment_failure(user.id)

        await guard.reset_failures(user.id)

        assert (await store.get_user(user.id)).failed_attempts == 0

    @pytest.mark.asyncio
    async def test_concurrent_failures_are_all_counted(self, guard, make_user, store):
        user = await make_user()

        await asyncio.gather(*(guard.increment_failure(user.id) for _ in range(3)))

        assert (await store.get_user(user.id)).failed_attempts == 3

    @pytest.mark.asyncio
    async def test_per_user_locks_are_dropped_when_released(self, guard, make_user):
        users = [await make_user(email=f"user{n}@example.com") for n in range(20)]

        for user in users:
            await guard.increment_failure(user.id)
            await guard.reset_failures(user.id)

        assert len(guard._locks) == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, guard):
        with pytest.raises(ResourceNotFoundError):
            await guard.increment_failure("missing")
        with pytest.raises(ResourceNotFoundError):
            await guard.check_locked("missing")


class TestLazyUnlock:
    """Test that expired locks are cleared on the next check."""

    @pytest.mark.asyncio
    async def test_lock_holds_until_expiry(self, guard, make_user, clock):
        user = await make_user()
        for _ in range(5):
            await guard.increment_failure(user.id)

        clock.advance(1799)
        status = await guard.check_locked(user.id)
        assert status.locked
        assert status.until is not None

    @pytest.mark.asyncio
    async def test_expired_lock_is_cleared(self, guard, make_user, store, clock):
        user = await make_user()
        for _ in range(5):
            await guard.increment_failure(user.id)

        clock.advance(1800)
        status = await guard.check_locked(user.id)

        assert not status.locked
        stored = await store.get_user(user.id)
        assert stored.status is UserStatus.ACTIVE
        assert stored.failed_attempts == 0
        assert stored.locked_until is None
        assert stored.lock_reason is None


class TestAdministrativeLock:
    """Test manual lock and unlock."""

    @pytest.mark.asyncio
    async def test_indefinite_admin_lock(self, guard, make_user, clock):
        user = await make_user()
        await guard.lock(user.id)

        clock.advance(10 * 365 * 86400)
        assert (await guard.check_locked(user.id)).locked

    @pytest.mark.asyncio
    async def test_admin_lock_survives_reset(self, guard, make_user, store):
        """Resetting failures does not lift a lock set by an administrator."""
        user = await make_user()
        await guard.lock(user.id)

        await guard.reset_failures(user.id)

        stored = await store.get_user(user.id)
        assert stored.status is UserStatus.LOCKED
        assert stored.lock_reason is LockReason.ADMINISTRATIVE

    @pytest.mark.asyncio
    async def test_failures_during_admin_lock_keep_admin_reason(self, guard, make_user, store):
        user = await make_user()
        await guard.lock(user.id)

        for _ in range(6):
            result = await guard.increment_failure(user.id)
        assert result.locked
        assert result.until is None

        stored = await store.get_user(user.id)
        assert stored.lock_reason is LockReason.ADMINISTRATIVE
        assert stored.failed_attempts == 6

    @pytest.mark.asyncio
    async def test_timed_admin_lock_lapses(self, guard, make_user, clock):
        user = await make_user()
        await guard.lock(user.id, until=clock.now().replace(hour=13))

        clock.advance(3600)
        assert not (await guard.check_locked(user.id)).locked

    @pytest.mark.asyncio
    async def test_unlock(self, guard, make_user, store):
        user = await make_user()
        for _ in range(5):
            await guard.increment_failure(user.id)

        await guard.unlock(user.id)

        stored = await store.get_user(user.id)
        assert stored.status is UserStatus.ACTIVE
        assert stored.failed_attempts == 0
        assert not (await guard.check_locked(user.id)).locked
