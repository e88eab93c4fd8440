"""In-memory revocation cache and OAuth state store backed by ``MemoryStore``."""

import logging
from datetime import datetime

from gatehouse.auth.caches import OAuthStateStore, RevocationCache
from gatehouse.auth.types import OAuthStateEntry

from .store import MemoryStore

logger = logging.getLogger(__name__)


class MemoryRevocationCache(RevocationCache):
    """Process-local blacklist of revoked token IDs.

    Entries live as long as the token they describe would have, after
    which the signature check rejects the token on its own.
    """

    NAMESPACE = "revoked_tokens"

    def __init__(self, store: MemoryStore | None = None):
        self.store = store or MemoryStore()

    def add(self, jti: str, ttl_seconds: float | None = None) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            return
        self.store.set(self.NAMESPACE, jti, True, ttl_seconds)

    def contains(self, jti: str) -> bool:
        return self.store.exists(self.NAMESPACE, jti)

    def expire(self) -> int:
        return self.store.cleanup_expired(self.NAMESPACE)

    def __len__(self) -> int:
        return self.store.size(self.NAMESPACE)


class MemoryOAuthStateStore(OAuthStateStore):
    """Process-local registry of outstanding OAuth states.

    The store-level TTL only bounds memory. Callers still check the entry
    age against their own clock when consuming.
    """

    NAMESPACE = "oauth_states"

    def __init__(self, store: MemoryStore | None = None, ttl_seconds: float = 900.0):
        self.store = store or MemoryStore()
        self.ttl_seconds = ttl_seconds

    def put(self, entry: OAuthStateEntry) -> None:
        self.store.set(self.NAMESPACE, entry.state, entry, self.ttl_seconds)

    def consume(self, state: str) -> OAuthStateEntry | None:
        return self.store.pop(self.NAMESPACE, state)

    def purge(self, older_than: datetime) -> int:
        removed = 0
        for key, entry in self.store.items(self.NAMESPACE):
            if entry.created_at < older_than and self.store.delete(self.NAMESPACE, key):
                removed += 1
        if removed:
            logger.debug(f"Purged {removed} stale OAuth states")
        return removed

    def __len__(self) -> int:
        return self.store.size(self.NAMESPACE)
