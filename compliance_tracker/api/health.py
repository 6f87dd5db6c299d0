"""Component health routes."""

from fastapi import APIRouter

from ..core.dependencies import ContainerDep

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/components")
async def component_health(container: ContainerDep):
    """Health of the store and every manager built on it."""
    return {
        "database": await container.store.health_check(),
        "organizations": await container.organizations.health_check(),
        "users": await container.users.health_check(),
        "audit": await container.audit.health_check(),
        "messaging": await container.messaging.health_check(),
        "compliance": await container.compliance_helpers.health_check(),
    }
