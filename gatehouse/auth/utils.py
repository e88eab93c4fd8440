"""
Small security helpers shared by the engine components.

Covers the injectable clock, login timing padding, constant-time comparison,
nonce generation, bearer header parsing and redaction of log payloads.
"""

import asyncio
import secrets
import time
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Protocol

from cryptography.hazmat.primitives import constant_time

# Substrings that mark a dictionary key as holding a secret
REDACTED_KEY_PARTS = (
    "password",
    "token",
    "secret",
    "key",
    "credential",
    "authorization",
    "code",
    "state",
    "hash",
)


class Clock(Protocol):
    """Source of the current instant. Always timezone-aware UTC."""

    def now(self) -> datetime: ...


class SystemClock:
    """Clock backed by the system wall clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class MinimumRuntime:
    """
    Pads the wrapped block so it never finishes sooner than ``seconds``.

    Login failures for unknown emails, wrong passwords and locked accounts
    then all take the same time, so response latency reveals nothing about
    which check failed. The padding also applies when the block raises.
    """

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError("Minimum runtime must be positive")
        self.seconds = seconds
        self._deadline: float | None = None

    async def __aenter__(self):
        self._deadline = time.perf_counter() + self.seconds
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._deadline is not None:
            remaining = self._deadline - time.perf_counter()
            if remaining > 0:
                await asyncio.sleep(remaining)
        return False


@asynccontextmanager
async def timing_protection(seconds: float) -> AsyncGenerator[None]:
    """``MinimumRuntime`` that a non-positive duration turns off."""
    if seconds <= 0:
        yield
        return

    async with MinimumRuntime(seconds):
        yield


def secure_compare(a: str, b: str) -> bool:
    """Compare two secrets in constant time.

    Unequal lengths still go through the constant-time comparison after
    padding, so the length difference is not the early exit.
    """
    left, right = a.encode("utf-8"), b.encode("utf-8")
    width = max(len(left), len(right))
    padded_equal = constant_time.bytes_eq(left.ljust(width, b"\0"), right.ljust(width, b"\0"))
    return padded_equal and len(left) == len(right)


def generate_state_token(nbytes: int = 32) -> str:
    """URL-safe random value for OAuth ``state`` and other single-use nonces."""
    return secrets.token_urlsafe(nbytes)


def extract_bearer_token(authorization_header: str | None) -> str | None:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Returns:
        The token, or None when the header is absent or malformed
    """
    if not authorization_header:
        return None

    scheme, _, token = authorization_header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None

    return token.strip()


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return mask_sensitive_data(value)
    if isinstance(value, str) and len(value) > 4:
        return f"{value[:2]}***{value[-2:]}"
    return "***"


def mask_sensitive_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """
    Copy ``data`` with secret-looking values redacted, for log output.

    Long strings keep their first and last two characters. Nested mappings
    are processed recursively.
    """
    masked = {}
    for key, value in data.items():
        if any(part in key.lower() for part in REDACTED_KEY_PARTS):
            masked[key] = _redact(value)
        elif isinstance(value, Mapping):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value
    return masked
