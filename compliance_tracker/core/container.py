"""Component container built once at startup.

Each manager receives its collaborators here; nothing is a module-level
singleton. The container lives on ``app.state.container`` for the API and
is built directly by jobs and tests.
"""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from ..roles import RoleCatalog
from ..services.audit import AuditManager
from ..services.compliance import ComplianceFrameworksManager
from ..services.helpers import ComplianceHelpers
from ..services.messaging import MessagingManager
from ..services.oauth import OAuthClient
from ..services.organizations import OrganizationManager
from ..services.permissions import PermissionService
from ..services.persistence import PersistenceManager
from ..services.users import UserRoleManager
from .config import Settings, validate_settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    catalog: RoleCatalog
    store: PersistenceManager
    permissions: PermissionService
    organizations: OrganizationManager
    users: UserRoleManager
    audit: AuditManager
    messaging: MessagingManager
    compliance: ComplianceFrameworksManager
    compliance_helpers: ComplianceHelpers
    oauth: OAuthClient

    async def start(self) -> None:
        """Connect storage and load frameworks; failures are fatal."""
        await self.store.initialize()
        await self.compliance.initialize()
        logger.info("Service container started")

    async def stop(self) -> None:
        await self.oauth.close()
        await self.store.close()
        logger.info("Service container stopped")


def build_container(
    settings: Settings,
    engine: AsyncEngine | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ServiceContainer:
    """Wire every component from validated settings."""
    validate_settings(settings)
    catalog = RoleCatalog.from_settings(settings)
    store = PersistenceManager(settings, catalog=catalog, engine=engine)
    permissions = PermissionService(store, catalog)
    users = UserRoleManager(store, catalog, permissions)
    compliance = ComplianceFrameworksManager(store, settings)
    return ServiceContainer(
        settings=settings,
        catalog=catalog,
        store=store,
        permissions=permissions,
        organizations=OrganizationManager(store),
        users=users,
        audit=AuditManager(store, users),
        messaging=MessagingManager(store),
        compliance=compliance,
        compliance_helpers=ComplianceHelpers(compliance),
        oauth=OAuthClient(settings, http_client=http_client),
    )
