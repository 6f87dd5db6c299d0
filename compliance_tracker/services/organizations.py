"""Organization service: creation with derived defaults, domains and status."""

import logging
import re
import time
from typing import Any

from ..core.errors import DuplicateFieldError, NotFoundError
from ..models import Engagement, Organization, User, utcnow
from ..models import derived
from ..models.derived import REGISTRABLE_ORG_STATUSES, state_value
from ..schemas.organizations import OrganizationCreate, OrganizationUpdate
from .persistence import PersistenceManager

logger = logging.getLogger(__name__)

MAX_ID_PROBES = 1000
MAX_ID_LENGTH = 50
MAX_SHORT_NAME = 4


def generate_short_name(name: str) -> str:
    """Initials of each word, upper-cased, at most four characters."""
    initials = "".join(word[0] for word in name.split() if word)
    return initials.upper()[:MAX_SHORT_NAME] or "ORG"


def generate_organization_id(name: str) -> str:
    """Slug an organization name into an id candidate."""
    slug = re.sub(r"[^a-z0-9\s-]", "", name.lower()).strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:MAX_ID_LENGTH].strip("-")


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].strip().lower()


class OrganizationManager:
    """Multi-step organization workflows on top of the persistence manager."""

    def __init__(self, store: PersistenceManager):
        self.store = store

    # =========================================================================
    # IDS & NAMES
    # =========================================================================

    async def ensure_unique_organization_id(self, base_id: str) -> str:
        """Return ``base_id`` or the first free ``base_id-N``.

        Probing stops after a fixed number of attempts and falls back to a
        timestamp suffix.
        """
        if not await self.store.organization_exists(base_id):
            return base_id
        for counter in range(1, MAX_ID_PROBES + 1):
            candidate = f"{base_id}-{counter}"
            if not await self.store.organization_exists(candidate):
                return candidate
        fallback = f"{base_id}-{int(time.time() * 1000)}"
        logger.warning(f"Organization id probing exhausted for {base_id}, using {fallback}")
        return fallback

    async def check_domain_conflicts(
        self, domains: list[str], exclude_org_id: str | None = None
    ) -> None:
        conflicts = await self.store.domain_conflicts(domains, exclude_org_id=exclude_org_id)
        if conflicts:
            domain, owner = conflicts[0]
            raise DuplicateFieldError(
                "org_domains",
                domain,
                message=f"Domain {domain} is already registered to organization: {owner}",
            )

    # =========================================================================
    # CRUD
    # =========================================================================

    async def create_organization(
        self, data: OrganizationCreate | dict, created_by: str
    ) -> Organization:
        """Create an organization.

        Order of checks: name present, id uniqueness, domain collisions.
        A missing id is generated from the name and made unique.
        """
        payload = self.store.validate(OrganizationCreate, data)

        if payload.id:
            if await self.store.organization_exists(payload.id):
                raise DuplicateFieldError(
                    "id", payload.id, message=f"Organization ID already exists: {payload.id}"
                )
            org_id = payload.id
        else:
            base_id = generate_organization_id(payload.name) or "org"
            org_id = await self.ensure_unique_organization_id(base_id)

        await self.check_domain_conflicts(payload.org_domains)

        aka_names = payload.aka_names.model_dump()
        if not aka_names.get("short_name"):
            aka_names["short_name"] = generate_short_name(payload.name)

        values = payload.model_dump()
        values.update(id=org_id, aka_names=aka_names, created_by=payload.created_by or created_by)
        org = await self.store.create_organization(values)
        logger.info(f"Created organization {org.id} ({org.name}) by {created_by}")
        return org

    async def get_organization(self, org_id: str) -> Organization:
        org = await self.store.find_organization_by_id(org_id)
        if org is None:
            raise NotFoundError("Organization", org_id)
        return org

    async def list_organizations(self, status: str | None = None) -> list[Organization]:
        return await self.store.list_organizations(status=status)

    async def update_organization(
        self, org_id: str, data: OrganizationUpdate | dict
    ) -> Organization:
        payload = self.store.validate(OrganizationUpdate, data)
        await self.get_organization(org_id)
        if payload.org_domains:
            await self.check_domain_conflicts(payload.org_domains, exclude_org_id=org_id)
        org = await self.store.update_organization(org_id, payload)
        logger.info(f"Updated organization {org_id}: {sorted(payload.model_fields_set)}")
        return org

    async def set_status(self, org_id: str, status: str) -> Organization:
        org = await self.store.update_organization(org_id, {"status": status})
        logger.info(f"Organization {org_id} status -> {state_value(org.status)}")
        return org

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def find_by_domain(self, domain: str) -> Organization | None:
        """Organization that accepts sign-ups from ``domain``, if any."""
        matches = await self.store.find_organizations_by_domain(
            domain, statuses=[s.value for s in REGISTRABLE_ORG_STATUSES]
        )
        return matches[0] if matches else None

    async def can_user_register(self, org_id: str, email: str) -> bool:
        org = await self.get_organization(org_id)
        if state_value(org.status) not in {s.value for s in REGISTRABLE_ORG_STATUSES}:
            return False
        return derived.can_user_register(org, email_domain(email))

    async def organization_users(self, org_id: str) -> list[User]:
        await self.get_organization(org_id)
        return await self.store.list_users(organization_id=org_id)

    async def organization_engagements(
        self, org_id: str, include_closed: bool = True
    ) -> list[Engagement]:
        await self.get_organization(org_id)
        return await self.store.list_engagements(org=org_id, include_closed=include_closed)

    async def health_check(self) -> dict[str, Any]:
        database = await self.store.health_check()
        count = await self.store.count(Organization) if database["connected"] else 0
        return {
            "status": database["status"],
            "initialized": database["initialized"],
            "organization_count": count,
            "checked_at": utcnow(),
        }
