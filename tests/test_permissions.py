"""
Tests for permission resolution.

A principal's permissions are the union of every role source it holds.
These tests check each source in isolation and the scoping rules between
them: organization and engagement grants only count inside their context.
"""

from datetime import timedelta

import pytest

from compliance_tracker.core.errors import NotFoundError, ValidationError
from compliance_tracker.models import utcnow
from compliance_tracker.services.permissions import PermissionService, parse_context

OTHER_ENGAGEMENT = "globex_internal-audit_2601:v1"


# =============================================================================
# TEST: CONTEXT PARSING
# =============================================================================


class TestContext:
    def test_empty_context(self):
        context = parse_context(None)
        assert context.organization_id is None
        assert context.engagement_id is None

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(ValidationError):
            parse_context({"team_id": "red"})

    def test_malformed_ids_are_rejected(self):
        with pytest.raises(ValidationError):
            parse_context({"organization_id": "acme corp"})
        with pytest.raises(ValidationError):
            parse_context({"engagement_id": "not-an-engagement"})


# =============================================================================
# TEST: ROLE SOURCES
# =============================================================================


class TestRoleSources:
    async def test_admin_wildcard(self, container, admin_user):
        permissions: PermissionService = container.permissions
        assert await permissions.has_permission(admin_user.user_id, "anything.at_all")

    async def test_system_roles_apply_everywhere(self, container, customer_user):
        await container.users.set_system_roles(customer_user.user_id, ["executive"])
        assert await container.permissions.has_permission(customer_user.user_id, "reports.view")
        assert not await container.permissions.has_permission(
            customer_user.user_id, "controls.assess"
        )

    async def test_engagement_participation_is_scoped(self, container, engagement, customer_user):
        await container.audit.add_participant(engagement.id, customer_user.email, ["sme"])
        permissions = container.permissions

        assert await permissions.has_permission(
            customer_user.user_id, "controls.respond", {"engagement_id": engagement.id}
        )
        assert not await permissions.has_permission(
            customer_user.user_id, "controls.respond", {"engagement_id": OTHER_ENGAGEMENT}
        )
        assert not await permissions.has_permission(customer_user.user_id, "controls.respond")

    async def test_organization_roles_are_scoped(self, container, organization, customer_user):
        await container.users.assign_organization_roles(
            customer_user.user_id, organization.id, ["manage_engagements"], assigned_by="admin"
        )
        permissions = container.permissions

        assert await permissions.has_permission(
            customer_user.user_id, "engagement.manage", {"organization_id": organization.id}
        )
        assert not await permissions.has_permission(
            customer_user.user_id, "engagement.manage", {"organization_id": "globex"}
        )

    async def test_assignments_respect_context_and_expiry(self, container, customer_user):
        users = container.users
        await users.assign_role({
            "user_id": customer_user.user_id,
            "role_type": "engagement",
            "role_id": "controlOwner",
            "context": {"engagement_id": OTHER_ENGAGEMENT},
            "assigned_by": "admin",
        })
        await users.assign_role({
            "user_id": customer_user.user_id,
            "role_type": "system",
            "role_id": "executive",
            "assigned_by": "admin",
            "expires_at": utcnow() - timedelta(minutes=1),
        })
        permissions = container.permissions

        assert await permissions.has_permission(
            customer_user.user_id, "controls.edit", {"engagement_id": OTHER_ENGAGEMENT}
        )
        assert not await permissions.has_permission(customer_user.user_id, "controls.edit")
        # The expired system grant gives nothing
        assert not await permissions.has_permission(customer_user.user_id, "reports.view")

    async def test_inactive_users_hold_nothing(self, container, admin_user):
        await container.users.update_user(admin_user.user_id, {"status": "suspended"})
        assert not await container.permissions.has_permission(admin_user.user_id, "reports.view")

    async def test_unknown_user(self, container):
        with pytest.raises(NotFoundError):
            await container.permissions.has_permission("ghost", "reports.view")


# =============================================================================
# TEST: STORED DEFINITIONS
# =============================================================================


class TestStoredDefinitions:
    async def test_stored_definition_overrides_default(self, container, customer_user):
        await container.store.create_role_definition("engagement", {
            "id": "executive",
            "name": "Executive",
            "permissions": ["reports.export"],
            "category": "customer",
            "access_level": "executive",
        })
        await container.users.set_system_roles(customer_user.user_id, ["executive"])
        permissions = container.permissions

        assert await permissions.has_permission(customer_user.user_id, "reports.export")
        assert not await permissions.has_permission(customer_user.user_id, "reports.view")

    async def test_inactive_definition_grants_nothing(self, container, customer_user):
        await container.store.create_role_definition("engagement", {
            "id": "sme",
            "name": "SME",
            "permissions": ["controls.view"],
            "category": "customer",
            "access_level": "control",
            "active": False,
        })
        await container.users.set_system_roles(customer_user.user_id, ["sme"])
        assert await container.permissions.role_permissions("sme") == []
        assert not await container.permissions.has_permission(
            customer_user.user_id, "controls.view"
        )

    async def test_can_manage_role_defaults(self, container):
        permissions = container.permissions
        assert await permissions.can_manage_role("admin", "auditor")
        assert await permissions.can_manage_role("owner", "sme")
        assert not await permissions.can_manage_role("owner", "admin")
        assert not await permissions.can_manage_role("sme", "owner")
        assert not await permissions.can_manage_role("admin", "overlord")

    async def test_can_manage_role_from_definition(self, container):
        await container.store.create_role_definition("engagement", {
            "id": "manager",
            "name": "Manager",
            "permissions": ["team.manage"],
            "category": "customer",
            "access_level": "customer",
            "can_manage_roles": ["sme"],
        })
        permissions = container.permissions
        assert await permissions.can_manage_role("manager", "sme")
        assert not await permissions.can_manage_role("manager", "executive")
