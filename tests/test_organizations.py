"""
Tests for the organization manager.

These tests verify:
1. CREATE: ids are derived from names and made unique
2. DOMAINS: a domain belongs to at most one live organization
3. STATUS: moves follow the organization status graph
4. REGISTRATION: self sign-up depends on status, settings and domain
"""

import re

import pytest

from compliance_tracker.core.errors import (
    DuplicateFieldError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
)
from compliance_tracker.services.organizations import (
    MAX_ID_PROBES,
    OrganizationManager,
    generate_organization_id,
    generate_short_name,
)

CREATOR = "admin@auditfirm.com"


# =============================================================================
# TEST: ID AND NAME DERIVATION
# =============================================================================


class TestDerivedNames:
    def test_organization_id_is_slugged(self):
        assert generate_organization_id("Acme Corp") == "acme-corp"
        assert generate_organization_id("  Globex & Sons, Inc. ") == "globex-sons-inc"
        assert len(generate_organization_id("x" * 80)) == 50

    def test_short_name_uses_initials(self):
        assert generate_short_name("Acme Corp") == "AC"
        assert generate_short_name("International Business Machines Global Services") == "IBMG"
        assert generate_short_name("") == "ORG"


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreateOrganization:
    async def test_create_fills_defaults(self, container):
        manager: OrganizationManager = container.organizations

        org = await manager.create_organization(
            {"name": "Acme Corp", "org_domains": ["ACME.com"]}, created_by=CREATOR
        )

        assert org.id == "acme-corp"
        assert org.status == "pending"
        assert org.created_by == CREATOR
        assert org.org_domains == ["acme.com"]
        assert org.aka_names["formal_name"] == "Acme Corp"
        assert org.aka_names["friendly_name"] == "Acme Corp"
        assert org.aka_names["short_name"] == "AC"
        assert org.settings["allow_self_registration"] is False

    async def test_generated_ids_get_numeric_suffixes(self, container):
        manager = container.organizations
        first = await manager.create_organization({"name": "Acme Corp"}, created_by=CREATOR)
        second = await manager.create_organization({"name": "Acme Corp"}, created_by=CREATOR)
        third = await manager.create_organization({"name": "Acme  Corp"}, created_by=CREATOR)

        assert [first.id, second.id, third.id] == ["acme-corp", "acme-corp-1", "acme-corp-2"]

    async def test_id_probing_falls_back_to_timestamp(self, container, monkeypatch):
        probed = []

        async def always_taken(org_id):
            probed.append(org_id)
            return True

        monkeypatch.setattr(container.store, "organization_exists", always_taken)
        result = await container.organizations.ensure_unique_organization_id("acme")

        assert len(probed) == MAX_ID_PROBES + 1
        assert probed[-1] == f"acme-{MAX_ID_PROBES}"
        assert result != f"acme-{MAX_ID_PROBES}"
        assert re.fullmatch(r"acme-\d{13}", result)

    async def test_explicit_duplicate_id_is_rejected(self, container):
        manager = container.organizations
        await manager.create_organization({"name": "Acme", "id": "acme"}, created_by=CREATOR)

        with pytest.raises(DuplicateFieldError) as exc_info:
            await manager.create_organization({"name": "Other", "id": "acme"}, created_by=CREATOR)
        assert exc_info.value.field == "id"

    async def test_blank_name_is_rejected(self, container):
        with pytest.raises(ValidationError):
            await container.organizations.create_organization({"name": "   "}, created_by=CREATOR)

    async def test_invalid_domain_is_rejected(self, container):
        with pytest.raises(ValidationError):
            await container.organizations.create_organization(
                {"name": "Bad Domains", "org_domains": ["not a domain"]}, created_by=CREATOR
            )


# =============================================================================
# TEST: DOMAINS
# =============================================================================


class TestDomains:
    async def test_domain_collision_names_the_owner(self, container, organization):
        with pytest.raises(DuplicateFieldError) as exc_info:
            await container.organizations.create_organization(
                {"name": "Acme Imposter", "org_domains": ["acme.com"]}, created_by=CREATOR
            )
        assert exc_info.value.field == "org_domains"
        assert organization.id in exc_info.value.message

    async def test_archived_organizations_release_their_domains(self, container, organization):
        manager = container.organizations
        await manager.set_status(organization.id, "active")
        await manager.set_status(organization.id, "archived")

        successor = await manager.create_organization(
            {"name": "Acme Holdings", "org_domains": ["acme.com"]}, created_by=CREATOR
        )
        assert successor.org_domains == ["acme.com"]

    async def test_update_may_keep_its_own_domains(self, container, organization):
        updated = await container.organizations.update_organization(
            organization.id, {"org_domains": ["acme.com", "acme.io"]}
        )
        assert updated.org_domains == ["acme.com", "acme.io"]

    async def test_find_by_domain_only_matches_registrable_orgs(self, container, organization):
        manager = container.organizations
        assert await manager.find_by_domain("acme.com") is None

        await manager.set_status(organization.id, "active")
        found = await manager.find_by_domain("acme.com")
        assert found is not None
        assert found.id == organization.id


# =============================================================================
# TEST: STATUS & REGISTRATION
# =============================================================================


class TestStatus:
    async def test_status_follows_graph(self, container, organization):
        manager = container.organizations
        org = await manager.set_status(organization.id, "active")
        assert org.status == "active"
        org = await manager.set_status(organization.id, "paused")
        assert org.status == "paused"

        with pytest.raises(StateTransitionError):
            await manager.set_status(organization.id, "pending")

    async def test_unknown_organization(self, container):
        with pytest.raises(NotFoundError):
            await container.organizations.get_organization("nope")

    async def test_self_registration(self, container, organization):
        manager = container.organizations
        await manager.update_organization(
            organization.id, {"settings": {"allow_self_registration": True}}
        )
        # Pending organizations never accept sign-ups
        assert not await manager.can_user_register(organization.id, "new@acme.com")

        await manager.set_status(organization.id, "active")
        assert await manager.can_user_register(organization.id, "new@acme.com")
        assert not await manager.can_user_register(organization.id, "new@globex.com")

    async def test_health_check(self, container, organization):
        health = await container.organizations.health_check()
        assert health["status"] == "healthy"
        assert health["organization_count"] == 1
