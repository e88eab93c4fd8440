"""
CredentialStore interface for the Gatehouse authentication engine.

The credential store persists users, roles, permissions and token records.
The engine never owns a schema; it talks to whatever backend implements
this contract.

Security considerations:
- Token records are the authoritative revocation state
- Role name lookups must be case-insensitive
- Every method is a coroutine so callers can cancel or bound it with a
  deadline (``asyncio.timeout``)
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from .types import Permission, Role, TokenKind, TokenRecord, User


class CredentialStore(ABC):
    """
    Abstract base class for credential stores.

    Implementations are expected to make each method a single logical
    write or read. Multi-step invariants (uniqueness, cycle checks) are
    enforced by the callers using check-then-write.
    """

    # Users

    @abstractmethod
    async def get_user(self, user_id: str) -> User | None:
        """Get user by ID."""

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email, compared case-insensitively."""

    @abstractmethod
    async def get_user_by_provider(
        self, provider: str, provider_user_id: str
    ) -> User | None:
        """Get the user linked to an external identity provider account."""

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """
        Persist a new user.

        Raises:
            ResourceConflictError: If the ID or email is already taken
        """

    @abstractmethod
    async def update_user(self, user_id: str, **fields: Any) -> User:
        """
        Apply field updates to a user in a single write.

        Raises:
            ResourceNotFoundError: If the user does not exist
        """

    # Roles

    @abstractmethod
    async def get_role(self, role_id: str) -> Role | None:
        pass

    @abstractmethod
    async def get_role_by_name(self, name: str) -> Role | None:
        """Get role by name, compared case-insensitively."""

    @abstractmethod
    async def list_roles(self) -> list[Role]:
        pass

    @abstractmethod
    async def get_child_roles(self, parent_id: str) -> list[Role]:
        """Get the roles whose parent is ``parent_id`` (one level only)."""

    @abstractmethod
    async def save_role(self, role: Role) -> Role:
        """Insert or replace a role."""

    @abstractmethod
    async def delete_role(self, role_id: str) -> bool:
        pass

    # Permissions

    @abstractmethod
    async def get_permission(self, permission_id: str) -> Permission | None:
        pass

    @abstractmethod
    async def get_permissions(self, permission_ids: list[str]) -> list[Permission]:
        """Get the permissions that exist among ``permission_ids``."""

    @abstractmethod
    async def get_permission_by_name(self, name: str) -> Permission | None:
        pass

    @abstractmethod
    async def find_permission(self, resource: str, action: str) -> Permission | None:
        pass

    @abstractmethod
    async def list_permissions(self) -> list[Permission]:
        pass

    @abstractmethod
    async def save_permission(self, permission: Permission) -> Permission:
        """Insert or replace a permission."""

    @abstractmethod
    async def delete_permission(self, permission_id: str) -> bool:
        pass

    # Token records

    @abstractmethod
    async def save_token(self, record: TokenRecord) -> TokenRecord:
        """Insert a token record. Issue is always a single insert."""

    @abstractmethod
    async def get_token(self, jti: str) -> TokenRecord | None:
        pass

    @abstractmethod
    async def revoke_token(self, jti: str, revoked_at: datetime) -> bool:
        """
        Mark a token record revoked.

        Returns:
            True if a non-revoked record was found and flipped
        """

    @abstractmethod
    async def revoke_user_tokens(
        self, user_id: str, kind: TokenKind | None, revoked_at: datetime
    ) -> list[str]:
        """
        Revoke every non-revoked token of a user.

        Returns:
            The ``jti`` values that were revoked
        """

    @abstractmethod
    async def list_active_tokens(
        self, user_id: str, kind: TokenKind, now: datetime
    ) -> list[TokenRecord]:
        """
        List non-revoked, non-expired records of a user.

        Returns:
            Records ordered oldest first by ``created_at``
        """

    @abstractmethod
    async def delete_expired_tokens(self, now: datetime) -> int:
        """Hard-delete records past expiry. Returns the number removed."""
