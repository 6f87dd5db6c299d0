"""User routes: profiles, system roles, role assignments and permission checks."""

from fastapi import APIRouter, HTTPException, Query, status

from ..core.dependencies import AdminDep, ContainerDep, CurrentUserDep
from ..models import derived
from ..schemas.engagements import ControlProfileResponse, EngagementResponse
from ..schemas.roles import RoleAssignmentCreate, RoleAssignmentResponse
from ..schemas.users import (
    PermissionCheck,
    PermissionCheckResult,
    SystemRolesUpdate,
    UserCreate,
    UserResponse,
    UserUpdate,
)

router = APIRouter(prefix="/users", tags=["users"])


# =============================================================================
# CURRENT USER
# =============================================================================


@router.get("/me/engagements", response_model=list[EngagementResponse])
async def my_engagements(current_user: CurrentUserDep, container: ContainerDep):
    return await container.audit.user_engagements(current_user)


@router.get("/me/controls", response_model=list[ControlProfileResponse])
async def my_controls(current_user: CurrentUserDep, container: ContainerDep):
    """Control profiles assigned to the current user that are not complete."""
    return await container.audit.controls_for_owner(current_user.email)


# =============================================================================
# USERS
# =============================================================================


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(request: UserCreate, current_user: AdminDep, container: ContainerDep):
    return await container.users.create_user(request)


@router.get("", response_model=list[UserResponse])
async def list_users(
    current_user: AdminDep,
    container: ContainerDep,
    organization_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    role: str | None = None,
):
    return await container.users.list_users(
        organization_id=organization_id, status=status_filter, role=role
    )


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, current_user: CurrentUserDep, container: ContainerDep):
    if user_id != current_user.user_id and not derived.is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return await container.users.get_user(user_id)


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    request: UserUpdate,
    current_user: AdminDep,
    container: ContainerDep,
):
    return await container.users.update_user(user_id, request)


# =============================================================================
# SYSTEM ROLES
# =============================================================================


@router.post("/{user_id}/roles", response_model=UserResponse)
async def assign_system_roles(
    user_id: str,
    request: SystemRolesUpdate,
    current_user: AdminDep,
    container: ContainerDep,
):
    """Add system roles. Mixing system and customer roles is rejected."""
    return await container.users.assign_system_roles(user_id, request.roles)


@router.put("/{user_id}/roles", response_model=UserResponse)
async def set_system_roles(
    user_id: str,
    request: SystemRolesUpdate,
    current_user: AdminDep,
    container: ContainerDep,
):
    return await container.users.set_system_roles(user_id, request.roles)


@router.delete("/{user_id}/roles", response_model=UserResponse)
async def remove_system_roles(
    user_id: str,
    request: SystemRolesUpdate,
    current_user: AdminDep,
    container: ContainerDep,
):
    return await container.users.remove_system_roles(user_id, request.roles)


# =============================================================================
# ROLE ASSIGNMENTS
# =============================================================================


@router.post(
    "/{user_id}/assignments",
    response_model=RoleAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_role(
    user_id: str,
    request: RoleAssignmentCreate,
    current_user: AdminDep,
    container: ContainerDep,
):
    if request.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="user_id in body does not match the path",
        )
    return await container.users.assign_role(request)


@router.get("/{user_id}/assignments", response_model=list[RoleAssignmentResponse])
async def list_assignments(user_id: str, current_user: AdminDep, container: ContainerDep):
    return await container.users.active_assignments(user_id)


@router.delete("/assignments/{assignment_id}", response_model=RoleAssignmentResponse)
async def revoke_assignment(
    assignment_id: str,
    current_user: AdminDep,
    container: ContainerDep,
):
    return await container.users.revoke_role(assignment_id)


@router.post("/{user_id}/permissions/check", response_model=PermissionCheckResult)
async def check_permission(
    user_id: str,
    request: PermissionCheck,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    """Whether ``user_id`` holds a permission in an optional context."""
    if user_id != current_user.user_id and not derived.is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    context = {
        key: value
        for key, value in (
            ("organization_id", request.organization_id),
            ("engagement_id", request.engagement_id),
        )
        if value
    }
    granted = await container.permissions.has_permission(user_id, request.permission, context)
    return PermissionCheckResult(user_id=user_id, permission=request.permission, granted=granted)
