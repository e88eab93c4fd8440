"""
Short-lived state caches used by the authentication engine.

Two caches live behind these interfaces:

- ``RevocationCache``: advisory, process-local record of revoked token
  IDs. The credential store remains authoritative, so an entry missing
  here never lets a revoked token through.
- ``OAuthStateStore``: single-use OAuth ``state`` values awaiting their
  callback.

Security considerations:
- ``consume`` must remove the entry in the same step that reads it
- Entries must expire so the caches stay bounded
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .types import OAuthStateEntry


class RevocationCache(ABC):
    """Set of revoked ``jti`` values with per-entry expiry."""

    @abstractmethod
    def add(self, jti: str, ttl_seconds: float | None = None) -> None:
        """
        Record a revoked token ID.

        Args:
            jti: Token ID
            ttl_seconds: How long to remember it; typically the token's
                remaining lifetime. None keeps it until removed.
        """

    @abstractmethod
    def contains(self, jti: str) -> bool:
        pass

    @abstractmethod
    def expire(self) -> int:
        """Drop lapsed entries. Returns the number removed."""


class OAuthStateStore(ABC):
    """Registry of outstanding OAuth ``state`` values."""

    @abstractmethod
    def put(self, entry: OAuthStateEntry) -> None:
        pass

    @abstractmethod
    def consume(self, state: str) -> OAuthStateEntry | None:
        """
        Atomically remove and return the entry for ``state``.

        A second call with the same value returns None.
        """

    @abstractmethod
    def purge(self, older_than: datetime) -> int:
        """Remove entries created before ``older_than``. Returns the count."""
