"""Organization routes, including organization membership roles."""

from fastapi import APIRouter, Depends, Query, status

from ..core.dependencies import AdminDep, ContainerDep, require_permission
from ..schemas.engagements import EngagementResponse
from ..schemas.organizations import (
    DomainCheck,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationStatusUpdate,
    OrganizationUpdate,
)
from ..schemas.roles import OrganizationRolesAssign, UserOrganizationRoleResponse
from ..schemas.users import UserResponse

router = APIRouter(prefix="/organizations", tags=["organizations"])


# =============================================================================
# ORGANIZATIONS
# =============================================================================


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    request: OrganizationCreate,
    current_user: AdminDep,
    container: ContainerDep,
):
    """Create an organization. A missing id is generated from the name."""
    return await container.organizations.create_organization(request, created_by=current_user.email)


@router.get("", response_model=list[OrganizationResponse])
async def list_organizations(
    current_user: AdminDep,
    container: ContainerDep,
    status_filter: str | None = Query(default=None, alias="status"),
):
    return await container.organizations.list_organizations(status=status_filter)


@router.post("/check-domain")
async def check_domain(request: DomainCheck, current_user: AdminDep, container: ContainerDep):
    """Which organization, if any, already claims a domain."""
    conflicts = await container.store.domain_conflicts([request.domain])
    return {
        "domain": request.domain,
        "available": not conflicts,
        "organization_id": conflicts[0][1] if conflicts else None,
    }


@router.get(
    "/{org_id}",
    response_model=OrganizationResponse,
    dependencies=[Depends(require_permission("engagement.view", scope="org_id"))],
)
async def get_organization(org_id: str, container: ContainerDep):
    return await container.organizations.get_organization(org_id)


@router.patch("/{org_id}", response_model=OrganizationResponse)
async def update_organization(
    org_id: str,
    request: OrganizationUpdate,
    current_user: AdminDep,
    container: ContainerDep,
):
    return await container.organizations.update_organization(org_id, request)


@router.put("/{org_id}/status", response_model=OrganizationResponse)
async def update_organization_status(
    org_id: str,
    request: OrganizationStatusUpdate,
    current_user: AdminDep,
    container: ContainerDep,
):
    """Move an organization along its status graph."""
    return await container.organizations.set_status(org_id, request.status)


@router.get(
    "/{org_id}/users",
    response_model=list[UserResponse],
    dependencies=[Depends(require_permission("user.manage", scope="org_id"))],
)
async def organization_users(org_id: str, container: ContainerDep):
    return await container.organizations.organization_users(org_id)


@router.get(
    "/{org_id}/engagements",
    response_model=list[EngagementResponse],
    dependencies=[Depends(require_permission("engagement.view", scope="org_id"))],
)
async def organization_engagements(
    org_id: str,
    container: ContainerDep,
    include_closed: bool = False,
):
    return await container.organizations.organization_engagements(org_id, include_closed)


# =============================================================================
# MEMBERSHIP ROLES
# =============================================================================


@router.get(
    "/{org_id}/members",
    response_model=list[UserResponse],
    dependencies=[Depends(require_permission("user.manage", scope="org_id"))],
)
async def organization_members(org_id: str, container: ContainerDep):
    await container.organizations.get_organization(org_id)
    return await container.users.organization_members(org_id)


@router.put(
    "/{org_id}/members/{user_id}",
    response_model=UserOrganizationRoleResponse,
)
async def assign_member_roles(
    org_id: str,
    user_id: str,
    request: OrganizationRolesAssign,
    current_user: AdminDep,
    container: ContainerDep,
):
    """Set a user's role set inside the organization."""
    return await container.users.assign_organization_roles(
        user_id,
        org_id,
        request.roles,
        assigned_by=current_user.user_id,
        expires_at=request.expires_at,
        meta=request.meta.model_dump() if request.meta else None,
    )


@router.delete("/{org_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    org_id: str,
    user_id: str,
    current_user: AdminDep,
    container: ContainerDep,
):
    await container.users.remove_organization_roles(user_id, org_id)
