"""
Password hashing for the Gatehouse authentication engine.

Security considerations:
- bcrypt with a configurable work factor and a fresh salt per hash
- Verification never raises on malformed hashes; it simply fails
- Plaintext passwords are never logged
"""

import asyncio
import logging
from abc import ABC, abstractmethod

import bcrypt

logger = logging.getLogger(__name__)


class PasswordHasher(ABC):
    """Abstract password hasher."""

    @abstractmethod
    async def hash(self, password: str) -> str:
        pass

    @abstractmethod
    async def verify(self, password: str, password_hash: str | None) -> bool:
        """
        Check a password against a stored hash.

        Returns:
            False when the hash is missing or malformed
        """


class BcryptPasswordHasher(PasswordHasher):
    """
    Password hasher using bcrypt.

    Hashing runs in a worker thread so the event loop is not blocked by
    the bcrypt work factor.
    """

    def __init__(self, rounds: int = 12):
        """
        Args:
            rounds: bcrypt work factor (4-31, higher = more secure/slower)
        """
        if rounds < 4 or rounds > 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")

        self.rounds = rounds
        logger.info(f"Bcrypt password hasher initialized with {rounds} rounds")

    async def hash(self, password: str) -> str:
        if not password:
            raise ValueError("Password cannot be empty")

        hashed = await asyncio.to_thread(
            bcrypt.hashpw, password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)
        )
        return hashed.decode("utf-8")

    async def verify(self, password: str, password_hash: str | None) -> bool:
        if not password or not password_hash:
            return False

        try:
            return await asyncio.to_thread(
                bcrypt.checkpw, password.encode("utf-8"), password_hash.encode("utf-8")
            )
        except ValueError as e:
            logger.warning(f"Stored password hash could not be checked: {e}")
            return False
