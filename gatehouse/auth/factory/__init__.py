"""Component wiring for the authentication engine."""

from .bootstrap import AuthSystemBootstrap, create_engine

__all__ = [
    "AuthSystemBootstrap",
    "create_engine",
]
