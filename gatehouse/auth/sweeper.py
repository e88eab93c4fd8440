"""Periodic housekeeping for expired tokens, OAuth states and revocations."""

import asyncio
import logging
from datetime import timedelta

from .caches import OAuthStateStore, RevocationCache
from .credential_store import CredentialStore
from .utils import Clock, SystemClock

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Background task purging state that can no longer matter.

    Sweeping is housekeeping only; no check relies on it having run.
    """

    def __init__(
        self,
        store: CredentialStore,
        states: OAuthStateStore,
        revocations: RevocationCache,
        interval: float = 300.0,
        state_ttl: float = 900.0,
        clock: Clock | None = None,
    ):
        self.store = store
        self.states = states
        self.revocations = revocations
        self.interval = interval
        self.state_ttl = state_ttl
        self.clock = clock or SystemClock()
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> dict[str, int]:
        """Run one pass. Returns the number of items removed per kind."""
        now = self.clock.now()
        removed = {
            "tokens": await self.store.delete_expired_tokens(now),
            "oauth_states": self.states.purge(now - timedelta(seconds=self.state_ttl)),
            "revocations": self.revocations.expire(),
        }
        if any(removed.values()):
            logger.info(f"Expiry sweep removed {removed}")
        return removed

    async def start(self) -> None:
        if not self.running:
            self._running = True
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}")
            await asyncio.sleep(self.interval)
