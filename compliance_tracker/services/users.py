"""User and role service: users, system roles, organization roles and assignments."""

import logging
import re
import secrets
import string
import time
from datetime import datetime
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from ..models import (
    RoleAssignment,
    RoleType,
    User,
    UserOrganizationRole,
    UserStatus,
    utcnow,
)
from ..models import derived
from ..roles import (
    DEFAULT_ORGANIZATION_ROLES,
    DEFAULT_PERMISSIONS,
    DEFAULT_USER_ROLES,
    RoleCatalog,
)
from ..schemas.roles import RoleAssignmentCreate
from ..schemas.users import UserCreate, UserUpdate
from .permissions import PermissionService
from .persistence import PersistenceManager

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_user_id(email: str) -> str:
    """``<email prefix>-<ms timestamp>-<6 random chars>``."""
    prefix = re.sub(r"[^a-z0-9]", "", email.split("@")[0].lower()) or "user"
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def _merge(existing: list[str], extra: list[str]) -> list[str]:
    return list(dict.fromkeys([*existing, *extra]))


class UserRoleManager:
    """User lifecycle and every kind of role grant."""

    def __init__(
        self,
        store: PersistenceManager,
        catalog: RoleCatalog,
        permissions: PermissionService,
    ):
        self.store = store
        self.catalog = catalog
        self.permissions = permissions

    # =========================================================================
    # USERS
    # =========================================================================

    async def create_user(self, data: UserCreate | dict) -> User:
        """Create a user. Missing ids are generated; status defaults to active."""
        payload = self.store.validate(UserCreate, data)
        if not payload.user_id:
            payload.user_id = generate_user_id(payload.email)
        if "status" not in payload.model_fields_set:
            payload.status = UserStatus.ACTIVE.value
        user = await self.store.create_user(payload.model_dump())
        logger.info(f"Created user {user.user_id} ({user.email})")
        return user

    async def update_user(self, user_id: str, data: UserUpdate | dict) -> User:
        user = await self.store.update_user(user_id, data)
        logger.info(f"Updated user {user_id}")
        return user

    async def get_user(self, user_id: str) -> User:
        user = await self.store.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def get_user_by_email(self, email: str) -> User | None:
        return await self.store.find_user_by_email(email)

    async def list_users(
        self,
        organization_id: str | None = None,
        status: str | None = None,
        role: str | None = None,
    ) -> list[User]:
        users = await self.store.list_users(organization_id=organization_id, status=status)
        if role:
            users = [u for u in users if role in (u.system_roles or [])]
        return users

    async def users_by_role(self, role: str) -> list[User]:
        return await self.list_users(role=role)

    # =========================================================================
    # SYSTEM ROLES
    # =========================================================================

    async def _write_system_roles(self, user_id: str, roles: list[str]) -> User:
        problem = self.catalog.user_roles_problem(roles)
        if problem:
            raise ValidationError.for_field("system_roles", problem)
        return await self.store.update_user(user_id, {"system_roles": roles})

    async def assign_system_roles(self, user_id: str, roles: list[str]) -> User:
        """Add roles to a user's list; mixing system and customer tiers is rejected."""
        user = await self.get_user(user_id)
        updated = await self._write_system_roles(user_id, _merge(user.system_roles or [], roles))
        logger.info(f"Assigned roles to user {user_id}: {', '.join(roles)}")
        return updated

    async def set_system_roles(self, user_id: str, roles: list[str]) -> User:
        await self.get_user(user_id)
        return await self._write_system_roles(user_id, list(dict.fromkeys(roles)))

    async def remove_system_roles(self, user_id: str, roles: list[str]) -> User:
        user = await self.get_user(user_id)
        remaining = [r for r in (user.system_roles or []) if r not in set(roles)]
        updated = await self.store.update_user(user_id, {"system_roles": remaining})
        logger.info(f"Removed roles from user {user_id}: {', '.join(roles)}")
        return updated

    # =========================================================================
    # ENGAGEMENT PARTICIPATION (user side)
    # =========================================================================

    async def add_user_to_engagement(
        self,
        user_id: str,
        engagement_id: str,
        roles: list[str],
        assigned_controls: list[str] | None = None,
    ) -> User:
        """Record participation on the user, merging with an existing entry."""
        user = await self.get_user(user_id)
        assigned_controls = assigned_controls or []
        engagements = [dict(e) for e in user.engagements or []]
        for entry in engagements:
            if entry.get("engagement_id") == engagement_id:
                entry["roles"] = _merge(entry.get("roles", []), roles)
                entry["assigned_controls"] = _merge(
                    entry.get("assigned_controls", []), assigned_controls
                )
                entry["active"] = True
                break
        else:
            engagements.append({
                "engagement_id": engagement_id,
                "roles": list(dict.fromkeys(roles)),
                "assigned_controls": list(dict.fromkeys(assigned_controls)),
                "joined_date": utcnow(),
                "active": True,
            })
        updated = await self.store.update_user(user_id, {"engagements": engagements})
        logger.info(f"Added user {user_id} to engagement {engagement_id} with roles: {', '.join(roles)}")
        return updated

    async def remove_user_from_engagement(self, user_id: str, engagement_id: str) -> User:
        user = await self.get_user(user_id)
        engagements = [
            e for e in user.engagements or [] if e.get("engagement_id") != engagement_id
        ]
        updated = await self.store.update_user(user_id, {"engagements": engagements})
        logger.info(f"Removed user {user_id} from engagement {engagement_id}")
        return updated

    async def users_in_engagement(self, engagement_id: str) -> list[User]:
        users = await self.store.list_users()
        return [
            u for u in users
            if any(e.get("engagement_id") == engagement_id for e in derived.active_engagements(u))
        ]

    # =========================================================================
    # ORGANIZATION ROLES
    # =========================================================================

    async def assign_organization_roles(
        self,
        user_id: str,
        organization_id: str,
        roles: list[str],
        assigned_by: str,
        expires_at: datetime | None = None,
        meta: dict | None = None,
    ) -> UserOrganizationRole:
        """Create or replace a user's role set inside one organization."""
        await self.get_user(user_id)
        if await self.store.find_organization_by_id(organization_id) is None:
            raise NotFoundError("Organization", organization_id)

        existing = await self.store.find_user_organization_role(user_id, organization_id)
        if existing is None:
            mapping = await self.store.create_user_organization_role({
                "user_id": user_id,
                "organization_id": organization_id,
                "roles": roles,
                "assigned_by": assigned_by,
                "expires_at": expires_at,
                "meta": meta or {},
            })
        else:
            patch: dict[str, Any] = {
                "roles": roles,
                "expires_at": expires_at,
                "status": "active",
            }
            if meta is not None:
                patch["meta"] = meta
            mapping = await self.store.update_user_organization_role(existing.id, patch)
        logger.info(
            f"Assigned organization roles {', '.join(roles)} to user {user_id} in org {organization_id}"
        )
        return mapping

    async def remove_organization_roles(self, user_id: str, organization_id: str) -> bool:
        removed = await self.store.delete_user_organization_role(user_id, organization_id)
        logger.info(f"Removed organization roles for user {user_id} from org {organization_id}")
        return removed

    async def organization_roles_for(self, user_id: str, organization_id: str) -> list[str]:
        """Effective organization roles; expired or suspended sets grant none."""
        mapping = await self.store.find_user_organization_role(user_id, organization_id)
        if mapping is None or not derived.is_org_role_effective(mapping):
            return []
        return list(mapping.roles or [])

    async def user_has_organization_role(
        self, user_id: str, organization_id: str, role: str
    ) -> bool:
        return role in await self.organization_roles_for(user_id, organization_id)

    async def user_organizations(self, user_id: str) -> list[str]:
        mappings = await self.store.list_user_organization_roles(user_id=user_id)
        return [m.organization_id for m in mappings if derived.is_org_role_effective(m)]

    async def organization_members(
        self, organization_id: str, roles: list[str] | None = None
    ) -> list[User]:
        mappings = await self.store.list_user_organization_roles(organization_id=organization_id)
        members = []
        for mapping in mappings:
            if not derived.is_org_role_effective(mapping):
                continue
            if roles and not set(roles) & set(mapping.roles or []):
                continue
            user = await self.store.find_user_by_id(mapping.user_id)
            if user is not None:
                members.append(user)
        return members

    # =========================================================================
    # ROLE ASSIGNMENTS
    # =========================================================================

    def _known_role(self, role_type: str, role_id: str) -> bool:
        if role_type == RoleType.ORGANIZATION.value:
            return role_id in self.catalog.organization_roles
        return role_id in self.catalog.engagement_roles

    async def assign_role(self, data: RoleAssignmentCreate | dict) -> RoleAssignment:
        """Grant a role within a context, optionally expiring."""
        payload = self.store.validate(RoleAssignmentCreate, data)
        await self.get_user(payload.user_id)
        if not self._known_role(payload.role_type, payload.role_id):
            raise ValidationError.for_field(
                "role_id", f"Unknown {payload.role_type} role: {payload.role_id}"
            )
        assignment = await self.store.create_role_assignment(payload)
        logger.info(
            f"Assigned {payload.role_type} role {payload.role_id} to {payload.user_id}"
            f" (expires {payload.expires_at or 'never'})"
        )
        return assignment

    async def revoke_role(self, assignment_id: str) -> RoleAssignment:
        assignment = await self.store.deactivate_role_assignment(assignment_id)
        logger.info(f"Revoked role assignment {assignment_id}")
        return assignment

    async def active_assignments(self, user_id: str) -> list[RoleAssignment]:
        return await self.store.find_active_assignments_by_user(user_id)

    async def cleanup_expired_roles(self, now: datetime | None = None) -> dict[str, int]:
        """Opportunistic compaction; read paths already ignore expired grants."""
        now = now or utcnow()
        deleted = await self.store.delete_expired_role_assignments(now)
        expired = await self.store.expire_user_organization_roles(now)
        logger.info(
            f"Role expiry cleanup: {deleted} assignments deleted, {expired} organization role sets expired"
        )
        return {"assignments_deleted": deleted, "organization_roles_expired": expired}

    # =========================================================================
    # PERMISSIONS
    # =========================================================================

    async def has_permission(
        self, user_id: str, permission: str, context: dict | None = None
    ) -> bool:
        return await self.permissions.has_permission(user_id, permission, context)

    async def can_manage_role(self, manager_role: str, target_role: str) -> bool:
        return await self.permissions.can_manage_role(manager_role, target_role)

    # =========================================================================
    # DEFAULT DEFINITIONS
    # =========================================================================

    async def seed_default_roles(self) -> dict[str, int]:
        """Store the built-in permissions and role definitions that are missing."""
        created = {"permissions": 0, "system": 0, "engagement": 0, "organization": 0}

        for permission_id, (description, category, risk) in DEFAULT_PERMISSIONS.items():
            if await self.store.find_permission(permission_id) is None:
                await self.store.create_permission({
                    "id": permission_id,
                    "name": permission_id,
                    "description": description,
                    "category": category,
                    "risk_level": risk,
                })
                created["permissions"] += 1

        for role_id, (name, description, category, access, perms) in DEFAULT_USER_ROLES.items():
            if role_id not in self.catalog.engagement_roles:
                continue
            definition = {
                "id": role_id,
                "name": name,
                "description": description,
                "permissions": perms,
            }
            if role_id in self.catalog.system_roles:
                if await self.store.find_role_definition("system", role_id) is None:
                    await self.store.create_role_definition("system", definition)
                    created["system"] += 1
            if await self.store.find_role_definition("engagement", role_id) is None:
                await self.store.create_role_definition("engagement", {
                    **definition,
                    "category": category,
                    "access_level": access,
                    "can_manage_roles": self.catalog.default_manageable_roles(role_id),
                })
                created["engagement"] += 1

        for role_id, (name, description, perms) in DEFAULT_ORGANIZATION_ROLES.items():
            if await self.store.find_role_definition("organization", role_id) is None:
                await self.store.create_role_definition("organization", {
                    "id": role_id,
                    "name": name,
                    "description": description,
                    "permissions": perms,
                })
                created["organization"] += 1

        logger.info(f"Seeded default role definitions: {created}")
        return created

    async def health_check(self) -> dict[str, Any]:
        database = await self.store.health_check()
        user_count = await self.store.count_users() if database["connected"] else 0
        return {
            "status": database["status"],
            "initialized": database["initialized"],
            "user_count": user_count,
            "role_config_loaded": bool(self.catalog.engagement_roles),
        }
