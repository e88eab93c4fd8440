"""
Role-based access control for the Gatehouse authentication engine.

Roles own permissions directly. A role may name a parent, but the parent
link only shapes the displayed hierarchy: permissions are never inherited
through it. A check succeeds when the profile lists the permission itself
or when one of the user's directly assigned roles owns it.

Security considerations:
- Role name and (resource, action) uniqueness is checked before writes
- The parent chain must stay acyclic; parents are validated by walking
  descendants by id
- Roles with children cannot be deleted
"""

import logging
import re
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from .credential_store import CredentialStore
from .exceptions import (
    AuthValidationError,
    InvalidRoleError,
    PermissionDeniedError,
    ResourceConflictError,
    ResourceNotFoundError,
)
from .types import AuthProfile, Permission, Role, User
from .utils import Clock, SystemClock

logger = logging.getLogger(__name__)

ROLE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\s.-]+$")
PERMISSION_TOKEN_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")
PERMISSION_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.:-]+$")
MAX_DESCRIPTION_LENGTH = 200

RoleChangeCallback = Callable[[str, str, list[str]], Awaitable[None]]

_UNSET: Any = object()


def permission_name(resource: str, action: str) -> str:
    return f"{resource}:{action}"


class RBACResolver:
    """
    Resolves permission and role checks and manages roles and permissions.

    Role change callbacks are awaited with ``(user_id, change, role_ids)``
    whenever a user's role set is modified, where ``change`` is
    ``"assigned"`` or ``"removed"``.
    """

    def __init__(self, store: CredentialStore, clock: Clock | None = None):
        self.store = store
        self.clock = clock or SystemClock()
        self._role_change_callbacks: list[RoleChangeCallback] = []

    def on_role_change(self, callback: RoleChangeCallback) -> None:
        self._role_change_callbacks.append(callback)

    async def _notify_role_change(self, user_id: str, change: str, role_ids: list[str]) -> None:
        for callback in self._role_change_callbacks:
            await callback(user_id, change, role_ids)

    # Checks

    async def _direct_roles(self, profile: AuthProfile) -> list[Role]:
        roles = []
        for role_id in profile.role_ids:
            role = await self.store.get_role(role_id)
            if role is not None:
                roles.append(role)
        return roles

    async def has_permission(self, profile: AuthProfile, name: str) -> bool:
        if name in profile.permissions:
            return True

        for role in await self._direct_roles(profile):
            permissions = await self.store.get_permissions(role.permission_ids)
            if any(permission.name == name for permission in permissions):
                return True
        return False

    async def has_resource_permission(
        self, profile: AuthProfile, resource: str, action: str
    ) -> bool:
        if permission_name(resource, action) in profile.permissions:
            return True

        for role in await self._direct_roles(profile):
            permissions = await self.store.get_permissions(role.permission_ids)
            if any(permission.matches(resource, action) for permission in permissions):
                return True
        return False

    async def has_role(self, profile: AuthProfile, role_name: str) -> bool:
        """Exact, case-sensitive match against the user's assigned roles."""
        if not profile.role_ids:
            return role_name in profile.roles

        return any(role.name == role_name for role in await self._direct_roles(profile))

    async def require_permission(
        self, profile: AuthProfile, name: str, resource: str | None = None
    ) -> None:
        """
        Raises:
            PermissionDeniedError: If the profile lacks the permission
        """
        if not await self.has_permission(profile, name):
            logger.warning(f"Permission '{name}' denied for user {profile.user_id}")
            raise PermissionDeniedError(name, resource)

    async def require_resource_permission(
        self, profile: AuthProfile, resource: str, action: str
    ) -> None:
        if not await self.has_resource_permission(profile, resource, action):
            logger.warning(
                f"Permission '{permission_name(resource, action)}' denied for user {profile.user_id}"
            )
            raise PermissionDeniedError(permission_name(resource, action), resource)

    async def require_role(self, profile: AuthProfile, role_name: str) -> None:
        """
        Raises:
            InvalidRoleError: If the profile does not hold the role
        """
        if not await self.has_role(profile, role_name):
            logger.warning(f"Role '{role_name}' required but missing for user {profile.user_id}")
            raise InvalidRoleError(role_name)

    async def build_profile(self, user: User) -> AuthProfile:
        """Assemble the token profile: role names plus directly owned permissions."""
        roles = []
        role_ids = []
        permissions: list[str] = []
        for role_id in user.role_ids:
            role = await self.store.get_role(role_id)
            if role is None:
                logger.warning(f"User {user.id} references missing role {role_id}")
                continue
            roles.append(role.name)
            role_ids.append(role.id)
            for permission in await self.store.get_permissions(role.permission_ids):
                if permission.name not in permissions:
                    permissions.append(permission.name)

        return AuthProfile(
            user_id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            roles=roles,
            role_ids=role_ids,
            permissions=permissions,
            status=user.status.value,
            email_verified=user.email_verified,
            mfa_enabled=user.mfa_enabled,
        )

    # Hierarchy

    async def get_descendant_ids(self, role_id: str) -> set[str]:
        """All roles below ``role_id``, walked breadth-first by id."""
        descendants: set[str] = set()
        frontier = [role_id]
        while frontier:
            current = frontier.pop()
            for child in await self.store.get_child_roles(current):
                if child.id not in descendants:
                    descendants.add(child.id)
                    frontier.append(child.id)
        return descendants

    async def validate_parent(self, parent_id: str, child_id: str | None) -> None:
        """
        Check that ``parent_id`` may become the parent of ``child_id``.

        Raises:
            AuthValidationError: On self-parenting or a cycle
            ResourceNotFoundError: If the parent role does not exist
        """
        if child_id is not None and parent_id == child_id:
            raise AuthValidationError(
                "A role cannot be its own parent",
                errors={"parent_id": ["A role cannot be its own parent"]},
            )

        if await self.store.get_role(parent_id) is None:
            raise ResourceNotFoundError(f"Parent role {parent_id} not found")

        if child_id is not None and parent_id in await self.get_descendant_ids(child_id):
            raise AuthValidationError(
                "Parent assignment would create a cycle",
                errors={"parent_id": ["Parent is a descendant of this role"]},
            )

    async def role_tree(self) -> list[dict[str, Any]]:
        """Nested ``{"role": Role, "children": [...]}`` nodes for display."""
        roles = await self.store.list_roles()
        by_parent: dict[str | None, list[Role]] = {}
        known = {role.id for role in roles}
        for role in roles:
            parent = role.parent_id if role.parent_id in known else None
            by_parent.setdefault(parent, []).append(role)

        def build(parent_id: str | None) -> list[dict[str, Any]]:
            return [
                {"role": role, "children": build(role.id)}
                for role in by_parent.get(parent_id, [])
            ]

        return build(None)

    # Permission management

    def _validate_permission_fields(
        self,
        resource: str | None = None,
        action: str | None = None,
        name: str | None = None,
        description: str | None = None,
        attributes: list[str] | None = None,
    ) -> None:
        errors: dict[str, list[str]] = {}

        if resource is not None:
            if not 2 <= len(resource) <= 50:
                errors.setdefault("resource", []).append("Resource must be between 2 and 50 characters")
            elif not PERMISSION_TOKEN_PATTERN.match(resource):
                errors.setdefault("resource", []).append("Resource contains invalid characters")

        if action is not None:
            if not 2 <= len(action) <= 30:
                errors.setdefault("action", []).append("Action must be between 2 and 30 characters")
            elif not PERMISSION_TOKEN_PATTERN.match(action):
                errors.setdefault("action", []).append("Action contains invalid characters")

        if name is not None:
            if not 3 <= len(name) <= 100:
                errors.setdefault("name", []).append("Permission name must be between 3 and 100 characters")
            elif not PERMISSION_NAME_PATTERN.match(name):
                errors.setdefault("name", []).append("Permission name contains invalid characters")

        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            errors.setdefault("description", []).append(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
            )

        for attribute in attributes or []:
            if not 1 <= len(attribute) <= 50:
                errors.setdefault("attributes", []).append(
                    "Each attribute must be between 1 and 50 characters"
                )
                break

        if errors:
            raise AuthValidationError("Permission validation failed", errors=errors)

    async def _check_permission_conflicts(
        self, resource: str, action: str, name: str, exclude_id: str | None = None
    ) -> None:
        existing = await self.store.get_permission_by_name(name)
        if existing is not None and existing.id != exclude_id:
            raise ResourceConflictError(
                f"Permission with name '{name}' already exists",
                details={"resource": "permission", "name": name},
            )

        existing = await self.store.find_permission(resource, action)
        if existing is not None and existing.id != exclude_id:
            raise ResourceConflictError(
                f"Permission for '{resource}:{action}' already exists",
                details={"resource": "permission", "resource_name": resource, "action": action},
            )

    async def create_permission(
        self,
        resource: str,
        action: str,
        name: str | None = None,
        description: str | None = None,
        attributes: list[str] | None = None,
    ) -> Permission:
        name = name or permission_name(resource, action)
        self._validate_permission_fields(resource, action, name, description, attributes)
        await self._check_permission_conflicts(resource, action, name)

        permission = Permission(
            id=str(uuid.uuid4()),
            resource=resource,
            action=action,
            name=name,
            description=description,
            attributes=list(attributes or []),
            created_at=self.clock.now(),
        )
        await self.store.save_permission(permission)
        logger.info(f"Created permission {permission.name}")
        return permission

    async def get_permission(self, permission_id: str) -> Permission:
        permission = await self.store.get_permission(permission_id)
        if permission is None:
            raise ResourceNotFoundError(f"Permission {permission_id} not found")
        return permission

    async def list_permissions(self) -> list[Permission]:
        return await self.store.list_permissions()

    async def update_permission(
        self,
        permission_id: str,
        resource: str | None = None,
        action: str | None = None,
        name: str | None = None,
        description: str | None = None,
        attributes: list[str] | None = None,
    ) -> Permission:
        current = await self.get_permission(permission_id)
        self._validate_permission_fields(resource, action, name, description, attributes)

        new_resource = resource if resource is not None else current.resource
        new_action = action if action is not None else current.action
        new_name = name if name is not None else current.name
        await self._check_permission_conflicts(new_resource, new_action, new_name, permission_id)

        updated = Permission(
            id=current.id,
            resource=new_resource,
            action=new_action,
            name=new_name,
            description=description if description is not None else current.description,
            attributes=list(attributes) if attributes is not None else list(current.attributes),
            created_at=current.created_at,
            updated_at=self.clock.now(),
        )
        await self.store.save_permission(updated)
        return updated

    async def delete_permission(self, permission_id: str) -> bool:
        """Delete a permission after detaching it from every role."""
        await self.get_permission(permission_id)

        for role in await self.store.list_roles():
            if permission_id in role.permission_ids:
                await self._save_role_permissions(
                    role, [pid for pid in role.permission_ids if pid != permission_id]
                )

        deleted = await self.store.delete_permission(permission_id)
        if deleted:
            logger.info(f"Deleted permission {permission_id}")
        return deleted

    # Role management

    def _validate_role_fields(
        self, name: str | None = None, description: str | None = None
    ) -> None:
        errors: dict[str, list[str]] = {}

        if name is not None:
            if not 3 <= len(name) <= 50:
                errors.setdefault("name", []).append("Role name must be between 3 and 50 characters")
            elif not ROLE_NAME_PATTERN.match(name):
                errors.setdefault("name", []).append(
                    "Role name contains invalid characters (use letters, digits, spaces, '_', '.' or '-')"
                )

        if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            errors.setdefault("description", []).append(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters"
            )

        if errors:
            raise AuthValidationError("Role validation failed", errors=errors)

    async def _check_role_name_conflict(self, name: str, exclude_id: str | None = None) -> None:
        existing = await self.store.get_role_by_name(name)
        if existing is not None and existing.id != exclude_id:
            raise ResourceConflictError(
                f"Role with name '{name}' already exists",
                details={"resource": "role", "name": name},
            )

    async def _require_permissions_exist(self, permission_ids: list[str]) -> None:
        found = {permission.id for permission in await self.store.get_permissions(permission_ids)}
        missing = [pid for pid in permission_ids if pid not in found]
        if missing:
            raise ResourceNotFoundError(
                f"Permissions not found: {', '.join(missing)}", details={"missing": missing}
            )

    async def create_role(
        self,
        name: str,
        description: str | None = None,
        parent_id: str | None = None,
        permission_ids: list[str] | None = None,
    ) -> Role:
        self._validate_role_fields(name, description)
        await self._check_role_name_conflict(name)
        if parent_id is not None:
            await self.validate_parent(parent_id, None)

        permission_ids = list(dict.fromkeys(permission_ids or []))
        await self._require_permissions_exist(permission_ids)

        role = Role(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            parent_id=parent_id,
            permission_ids=permission_ids,
            created_at=self.clock.now(),
        )
        await self.store.save_role(role)
        logger.info(f"Created role {role.name} with {len(permission_ids)} permissions")
        return role

    async def get_role(self, role_id: str) -> Role:
        role = await self.store.get_role(role_id)
        if role is None:
            raise ResourceNotFoundError(f"Role {role_id} not found")
        return role

    async def get_role_by_name(self, name: str) -> Role:
        role = await self.store.get_role_by_name(name)
        if role is None:
            raise ResourceNotFoundError(f"Role '{name}' not found")
        return role

    async def list_roles(self) -> list[Role]:
        return await self.store.list_roles()

    async def get_child_roles(self, role_id: str) -> list[Role]:
        await self.get_role(role_id)
        return await self.store.get_child_roles(role_id)

    async def update_role(
        self,
        role_id: str,
        name: str | None = None,
        description: str | None = None,
        parent_id: str | None = _UNSET,
        permission_ids: list[str] | None = None,
    ) -> Role:
        """
        Update a role. Pass ``parent_id=None`` to detach it from its parent;
        omit it to keep the current parent.
        """
        current = await self.get_role(role_id)
        self._validate_role_fields(name, description)
        if name is not None:
            await self._check_role_name_conflict(name, role_id)

        new_parent = current.parent_id if parent_id is _UNSET else parent_id
        if new_parent is not None and new_parent != current.parent_id:
            await self.validate_parent(new_parent, role_id)

        if permission_ids is not None:
            permission_ids = list(dict.fromkeys(permission_ids))
            await self._require_permissions_exist(permission_ids)

        updated = Role(
            id=current.id,
            name=name if name is not None else current.name,
            description=description if description is not None else current.description,
            parent_id=new_parent,
            permission_ids=permission_ids if permission_ids is not None else list(current.permission_ids),
            created_at=current.created_at,
            updated_at=self.clock.now(),
        )
        await self.store.save_role(updated)
        return updated

    async def delete_role(self, role_id: str) -> bool:
        """
        Delete a role.

        Raises:
            ResourceConflictError: If the role still has child roles
        """
        role = await self.get_role(role_id)

        children = await self.store.get_child_roles(role_id)
        if children:
            raise ResourceConflictError(
                f"Cannot delete role '{role.name}' because it has {len(children)} child roles",
                details={"role_id": role_id, "child_role_count": len(children)},
            )

        if role.permission_ids:
            await self._save_role_permissions(role, [])

        deleted = await self.store.delete_role(role_id)
        if deleted:
            logger.info(f"Deleted role {role.name}")
        return deleted

    async def _save_role_permissions(self, role: Role, permission_ids: list[str]) -> Role:
        updated = Role(
            id=role.id,
            name=role.name,
            description=role.description,
            parent_id=role.parent_id,
            permission_ids=permission_ids,
            created_at=role.created_at,
            updated_at=self.clock.now(),
        )
        return await self.store.save_role(updated)

    async def add_permissions_to_role(self, role_id: str, permission_ids: list[str]) -> Role:
        if not permission_ids:
            raise AuthValidationError(
                "At least one permission is required",
                errors={"permission_ids": ["At least one permission is required"]},
            )
        role = await self.get_role(role_id)
        await self._require_permissions_exist(permission_ids)

        merged = list(dict.fromkeys([*role.permission_ids, *permission_ids]))
        return await self._save_role_permissions(role, merged)

    async def remove_permissions_from_role(self, role_id: str, permission_ids: list[str]) -> Role:
        if not permission_ids:
            raise AuthValidationError(
                "At least one permission is required",
                errors={"permission_ids": ["At least one permission is required"]},
            )
        role = await self.get_role(role_id)
        remaining = [pid for pid in role.permission_ids if pid not in set(permission_ids)]
        return await self._save_role_permissions(role, remaining)

    # User role assignment

    async def assign_roles(self, user_id: str, role_ids: list[str]) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")
        for role_id in role_ids:
            await self.get_role(role_id)

        added = [rid for rid in dict.fromkeys(role_ids) if rid not in user.role_ids]
        if not added:
            return user

        user = await self.store.update_user(user_id, role_ids=[*user.role_ids, *added])
        logger.info(f"Assigned roles {added} to user {user_id}")
        await self._notify_role_change(user_id, "assigned", added)
        return user

    async def remove_roles(self, user_id: str, role_ids: list[str]) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")

        removed = [rid for rid in user.role_ids if rid in set(role_ids)]
        if not removed:
            return user

        user = await self.store.update_user(
            user_id, role_ids=[rid for rid in user.role_ids if rid not in set(removed)]
        )
        logger.info(f"Removed roles {removed} from user {user_id}")
        await self._notify_role_change(user_id, "removed", removed)
        return user

    async def resolve_role_ids(self, role_names: list[str]) -> list[str]:
        """Map role names to ids, skipping names that do not exist."""
        role_ids = []
        for name in role_names:
            role = await self.store.get_role_by_name(name)
            if role is None:
                logger.warning(f"Default role '{name}' does not exist")
                continue
            role_ids.append(role.id)
        return role_ids
