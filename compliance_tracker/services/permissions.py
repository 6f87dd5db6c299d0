"""Permission resolution across every role source a user can hold.

A principal's permissions are the union of the permissions granted by:

- the user's ``system_roles`` (always)
- active, unexpired role assignments: system-type always, organization
  and engagement types only when the context names the same scope
- the user's organization role set for the context organization
- the user's active participation roles in the context engagement

There are no deny rules. ``*`` grants everything.
"""

import logging
from datetime import datetime
from typing import Any

from ..core.errors import NotFoundError, ValidationError
from ..models import User, utcnow
from ..models import derived
from ..roles import (
    DEFAULT_ORGANIZATION_ROLES,
    DEFAULT_USER_ROLES,
    WILDCARD_PERMISSION,
    RoleCatalog,
)
from ..schemas.roles import RoleContext
from ..validators import is_valid_engagement_id, is_valid_organization_id
from .persistence import PersistenceManager

logger = logging.getLogger(__name__)


def parse_context(context: RoleContext | dict | None) -> RoleContext:
    """Validate a permission context, rejecting malformed scope ids."""
    if context is None:
        return RoleContext()
    if isinstance(context, dict):
        unknown = set(context) - {"organization_id", "engagement_id"}
        if unknown:
            raise ValidationError.for_field(
                "context", f"Unknown context keys: {', '.join(sorted(unknown))}"
            )
        context = RoleContext(**context)
    if context.organization_id is not None and not is_valid_organization_id(
        context.organization_id
    ):
        raise ValidationError.for_field(
            "context.organization_id", f"Malformed organization id: {context.organization_id}"
        )
    if context.engagement_id is not None and not is_valid_engagement_id(context.engagement_id):
        raise ValidationError.for_field(
            "context.engagement_id", f"Malformed engagement id: {context.engagement_id}"
        )
    return context


class RoleDefinitions:
    """Snapshot of stored role definitions with built-in fallbacks."""

    def __init__(self, user_roles: dict[str, Any], organization_roles: dict[str, Any]):
        self.user_roles = user_roles
        self.organization_roles = organization_roles

    def user_role_permissions(self, role_id: str) -> set[str]:
        definition = self.user_roles.get(role_id)
        if definition is not None:
            return set(definition.permissions or []) if definition.active else set()
        default = DEFAULT_USER_ROLES.get(role_id)
        return set(default[4]) if default else set()

    def organization_role_permissions(self, role_id: str) -> set[str]:
        definition = self.organization_roles.get(role_id)
        if definition is not None:
            return set(definition.permissions or []) if definition.active else set()
        default = DEFAULT_ORGANIZATION_ROLES.get(role_id)
        return set(default[2]) if default else set()


class PermissionService:
    """Answers ``has_permission`` and lists effective permissions."""

    def __init__(self, store: PersistenceManager, catalog: RoleCatalog):
        self.store = store
        self.catalog = catalog

    async def load_definitions(self) -> RoleDefinitions:
        """Stored definitions; system-role rows take precedence over engagement rows."""
        user_roles: dict[str, Any] = {}
        for row in await self.store.list_role_definitions("engagement", active_only=False):
            user_roles[row.id] = row
        for row in await self.store.list_role_definitions("system", active_only=False):
            user_roles[row.id] = row
        organization_roles = {
            row.id: row
            for row in await self.store.list_role_definitions("organization", active_only=False)
        }
        return RoleDefinitions(user_roles, organization_roles)

    async def effective_permissions(
        self,
        user: User,
        context: RoleContext | dict | None = None,
        now: datetime | None = None,
    ) -> set[str]:
        context = parse_context(context)
        now = now or utcnow()
        if not derived.is_user_active(user):
            return set()

        definitions = await self.load_definitions()
        granted: set[str] = set()

        for role in user.system_roles or []:
            granted |= definitions.user_role_permissions(role)

        for assignment in await self.store.find_active_assignments_by_user(user.user_id, now):
            if not derived.is_assignment_effective(assignment, now):
                continue
            role_type = derived.state_value(assignment.role_type)
            if role_type == "system":
                granted |= definitions.user_role_permissions(assignment.role_id)
            elif role_type == "organization":
                if context.organization_id and assignment.organization_id == context.organization_id:
                    granted |= definitions.organization_role_permissions(assignment.role_id)
            elif role_type == "engagement":
                if context.engagement_id and assignment.engagement_id == context.engagement_id:
                    granted |= definitions.user_role_permissions(assignment.role_id)

        if context.organization_id:
            org_roles = await self.store.find_user_organization_role(
                user.user_id, context.organization_id
            )
            if org_roles is not None and derived.is_org_role_effective(org_roles, now):
                for role in org_roles.roles or []:
                    granted |= definitions.organization_role_permissions(role)

        if context.engagement_id:
            for role in derived.engagement_roles_for(user, context.engagement_id):
                granted |= definitions.user_role_permissions(role)

        return granted

    async def has_permission(
        self,
        user_id: str,
        permission: str,
        context: RoleContext | dict | None = None,
    ) -> bool:
        """Whether ``user_id`` holds ``permission`` in ``context``.

        Never raises for a plain "no"; raises ``NotFoundError`` for an
        unknown user and ``ValidationError`` for a malformed context.
        """
        context = parse_context(context)
        user = await self.store.find_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        granted = await self.effective_permissions(user, context)
        allowed = WILDCARD_PERMISSION in granted or permission in granted
        logger.debug(f"Permission check {user_id} {permission} {context.model_dump()}: {allowed}")
        return allowed

    async def role_permissions(self, role_id: str, kind: str = "user") -> list[str]:
        definitions = await self.load_definitions()
        if kind == "organization":
            return sorted(definitions.organization_role_permissions(role_id))
        return sorted(definitions.user_role_permissions(role_id))

    async def can_manage_role(self, manager_role: str, target_role: str) -> bool:
        """Closed-world check of ``can_manage_roles`` for an engagement role."""
        if target_role not in self.catalog.engagement_roles:
            return False
        definition = await self.store.find_role_definition("engagement", manager_role)
        if definition is not None and definition.can_manage_roles:
            return target_role in definition.can_manage_roles
        return target_role in self.catalog.default_manageable_roles(manager_role)
