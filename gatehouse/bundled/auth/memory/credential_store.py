"""Memory-based credential store implementation."""

import dataclasses
import logging
from datetime import UTC, datetime
from typing import Any

from gatehouse.auth.credential_store import CredentialStore
from gatehouse.auth.exceptions import (
    AuthValidationError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from gatehouse.auth.types import Permission, Role, TokenKind, TokenRecord, User

from .store import MemoryStore

logger = logging.getLogger(__name__)


class MemoryCredentialStore(CredentialStore):
    """Memory-based credential store.

    This store supports:
    - User records with email and provider indexes
    - Roles and permissions keyed by id
    - Token records keyed by ``jti``
    - Thread-safe operations via the shared ``MemoryStore``

    Records are replaced, never mutated in place, so objects handed out by
    earlier reads are stable snapshots.
    """

    USERS = "users"
    EMAIL_INDEX = "users_by_email"
    PROVIDER_INDEX = "users_by_provider"
    ROLES = "roles"
    PERMISSIONS = "permissions"
    TOKENS = "tokens"

    def __init__(self, store: MemoryStore | None = None):
        self.store = store or MemoryStore()

    # Users

    async def get_user(self, user_id: str) -> User | None:
        return self.store.get(self.USERS, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        user_id = self.store.get(self.EMAIL_INDEX, email.strip().lower())
        if user_id is None:
            return None
        return await self.get_user(user_id)

    async def get_user_by_provider(
        self, provider: str, provider_user_id: str
    ) -> User | None:
        user_id = self.store.get(self.PROVIDER_INDEX, self._provider_key(provider, provider_user_id))
        if user_id is None:
            return None
        return await self.get_user(user_id)

    async def create_user(self, user: User) -> User:
        email_key = user.email.strip().lower()
        with self.store.lock:
            if self.store.exists(self.USERS, user.id):
                raise ResourceConflictError(f"User {user.id} already exists")
            if self.store.exists(self.EMAIL_INDEX, email_key):
                raise ResourceConflictError(
                    "Email is already registered", details={"field": "email"}
                )

            self.store.set(self.USERS, user.id, user)
            self.store.set(self.EMAIL_INDEX, email_key, user.id)
            if user.auth_provider and user.provider_user_id:
                self.store.set(
                    self.PROVIDER_INDEX,
                    self._provider_key(user.auth_provider, user.provider_user_id),
                    user.id,
                )
        return user

    async def update_user(self, user_id: str, **fields: Any) -> User:
        with self.store.lock:
            current = self.store.get(self.USERS, user_id)
            if current is None:
                raise ResourceNotFoundError(f"User {user_id} not found")

            fields.setdefault("updated_at", datetime.now(UTC))
            try:
                updated = dataclasses.replace(current, **fields)
            except TypeError as e:
                raise AuthValidationError(f"Invalid user update: {e}") from e

            old_email = current.email.strip().lower()
            new_email = updated.email.strip().lower()
            if new_email != old_email:
                if self.store.exists(self.EMAIL_INDEX, new_email):
                    raise ResourceConflictError(
                        "Email is already registered", details={"field": "email"}
                    )
                self.store.delete(self.EMAIL_INDEX, old_email)
                self.store.set(self.EMAIL_INDEX, new_email, user_id)

            if updated.auth_provider and updated.provider_user_id:
                self.store.set(
                    self.PROVIDER_INDEX,
                    self._provider_key(updated.auth_provider, updated.provider_user_id),
                    user_id,
                )

            self.store.set(self.USERS, user_id, updated)
        return updated

    @staticmethod
    def _provider_key(provider: str, provider_user_id: str) -> str:
        return f"{provider.lower()}:{provider_user_id}"

    # Roles

    async def get_role(self, role_id: str) -> Role | None:
        return self.store.get(self.ROLES, role_id)

    async def get_role_by_name(self, name: str) -> Role | None:
        wanted = name.strip().lower()
        for _, role in self.store.items(self.ROLES):
            if role.name.lower() == wanted:
                return role
        return None

    async def list_roles(self) -> list[Role]:
        return sorted((role for _, role in self.store.items(self.ROLES)), key=lambda r: r.name)

    async def get_child_roles(self, parent_id: str) -> list[Role]:
        return [role for _, role in self.store.items(self.ROLES) if role.parent_id == parent_id]

    async def save_role(self, role: Role) -> Role:
        self.store.set(self.ROLES, role.id, role)
        return role

    async def delete_role(self, role_id: str) -> bool:
        return self.store.delete(self.ROLES, role_id)

    # Permissions

    async def get_permission(self, permission_id: str) -> Permission | None:
        return self.store.get(self.PERMISSIONS, permission_id)

    async def get_permissions(self, permission_ids: list[str]) -> list[Permission]:
        permissions = []
        for permission_id in permission_ids:
            permission = self.store.get(self.PERMISSIONS, permission_id)
            if permission is not None:
                permissions.append(permission)
        return permissions

    async def get_permission_by_name(self, name: str) -> Permission | None:
        for _, permission in self.store.items(self.PERMISSIONS):
            if permission.name == name:
                return permission
        return None

    async def find_permission(self, resource: str, action: str) -> Permission | None:
        for _, permission in self.store.items(self.PERMISSIONS):
            if permission.matches(resource, action):
                return permission
        return None

    async def list_permissions(self) -> list[Permission]:
        return sorted(
            (permission for _, permission in self.store.items(self.PERMISSIONS)),
            key=lambda p: p.name,
        )

    async def save_permission(self, permission: Permission) -> Permission:
        self.store.set(self.PERMISSIONS, permission.id, permission)
        return permission

    async def delete_permission(self, permission_id: str) -> bool:
        return self.store.delete(self.PERMISSIONS, permission_id)

    # Token records

    async def save_token(self, record: TokenRecord) -> TokenRecord:
        with self.store.lock:
            if self.store.exists(self.TOKENS, record.jti):
                raise ResourceConflictError(f"Token {record.jti} already recorded")
            self.store.set(self.TOKENS, record.jti, record)
        return record

    async def get_token(self, jti: str) -> TokenRecord | None:
        return self.store.get(self.TOKENS, jti)

    async def revoke_token(self, jti: str, revoked_at: datetime) -> bool:
        with self.store.lock:
            record = self.store.get(self.TOKENS, jti)
            if record is None or record.revoked:
                return False
            self.store.set(
                self.TOKENS,
                jti,
                dataclasses.replace(record, revoked=True, revoked_at=revoked_at),
            )
        return True

    async def revoke_user_tokens(
        self, user_id: str, kind: TokenKind | None, revoked_at: datetime
    ) -> list[str]:
        revoked = []
        with self.store.lock:
            for jti, record in self.store.items(self.TOKENS):
                if record.user_id != user_id or record.revoked:
                    continue
                if kind is not None and record.kind is not kind:
                    continue
                self.store.set(
                    self.TOKENS,
                    jti,
                    dataclasses.replace(record, revoked=True, revoked_at=revoked_at),
                )
                revoked.append(jti)
        return revoked

    async def list_active_tokens(
        self, user_id: str, kind: TokenKind, now: datetime
    ) -> list[TokenRecord]:
        records = [
            record
            for _, record in self.store.items(self.TOKENS)
            if record.user_id == user_id and record.kind is kind and record.is_active(now)
        ]
        records.sort(key=lambda r: r.created_at)
        return records

    async def delete_expired_tokens(self, now: datetime) -> int:
        removed = 0
        with self.store.lock:
            for jti, record in self.store.items(self.TOKENS):
                if record.is_expired(now):
                    self.store.delete(self.TOKENS, jti)
                    removed += 1
        if removed:
            logger.info(f"Deleted {removed} expired token records")
        return removed
