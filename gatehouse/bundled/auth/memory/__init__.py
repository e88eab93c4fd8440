"""Memory-based storage for the authentication engine."""

from .caches import MemoryOAuthStateStore, MemoryRevocationCache
from .credential_store import MemoryCredentialStore
from .store import MemoryStore

__all__ = [
    "MemoryStore",
    "MemoryCredentialStore",
    "MemoryRevocationCache",
    "MemoryOAuthStateStore",
]
