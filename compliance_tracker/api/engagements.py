"""Engagement routes: lifecycle, participants and control profiles."""

from fastapi import APIRouter, Depends, Query, status

from ..core.dependencies import ContainerDep, require_permission
from ..schemas.engagements import (
    ControlAssignment,
    ControlProfileAdd,
    ControlProfileResponse,
    EngagementCreate,
    EngagementResponse,
    EngagementStageUpdate,
    EngagementStatusUpdate,
    EngagementUpdate,
    OverdueItem,
    Participant,
    ParticipantAdd,
)

router = APIRouter(prefix="/engagements", tags=["engagements"])

can_view = Depends(require_permission("engagement.view", scope="engagement_id"))
can_edit = Depends(require_permission("engagement.edit", scope="engagement_id"))


# =============================================================================
# ENGAGEMENTS
# =============================================================================


@router.post(
    "",
    response_model=EngagementResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("engagement.manage"))],
)
async def create_engagement(request: EngagementCreate, container: ContainerDep):
    """Create an engagement; the id is generated when not supplied."""
    return await container.audit.create_engagement(request)


@router.get(
    "",
    response_model=list[EngagementResponse],
    dependencies=[Depends(require_permission("engagement.manage"))],
)
async def list_engagements(
    container: ContainerDep,
    org: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    include_closed: bool = True,
):
    return await container.audit.list_engagements(
        org=org, status=status_filter, include_closed=include_closed
    )


@router.get(
    "/overdue",
    response_model=list[OverdueItem],
    dependencies=[Depends(require_permission("engagement.manage"))],
)
async def overdue_items(container: ContainerDep):
    """Overdue findings, remediations and engagements, most overdue first."""
    return await container.audit.overdue_items()


@router.get("/{engagement_id}", response_model=EngagementResponse, dependencies=[can_view])
async def get_engagement(engagement_id: str, container: ContainerDep):
    return await container.audit.get_engagement(engagement_id)


@router.patch("/{engagement_id}", response_model=EngagementResponse, dependencies=[can_edit])
async def update_engagement(
    engagement_id: str,
    request: EngagementUpdate,
    container: ContainerDep,
):
    return await container.audit.update_engagement(engagement_id, request)


@router.put("/{engagement_id}/status", response_model=EngagementResponse, dependencies=[can_edit])
async def update_engagement_status(
    engagement_id: str,
    request: EngagementStatusUpdate,
    container: ContainerDep,
):
    return await container.audit.update_status(engagement_id, request.status)


@router.put("/{engagement_id}/stage", response_model=EngagementResponse, dependencies=[can_edit])
async def update_engagement_stage(
    engagement_id: str,
    request: EngagementStageUpdate,
    container: ContainerDep,
):
    """Advance the stage. Stages never move backwards."""
    return await container.audit.update_stage(engagement_id, request.stage)


# =============================================================================
# PARTICIPANTS
# =============================================================================


@router.get(
    "/{engagement_id}/participants",
    response_model=list[Participant],
    dependencies=[can_view],
)
async def list_participants(
    engagement_id: str,
    container: ContainerDep,
    role: str | None = None,
):
    if role:
        return await container.audit.participants_by_role(engagement_id, role)
    return await container.audit.participants(engagement_id)


@router.post(
    "/{engagement_id}/participants",
    response_model=EngagementResponse,
    dependencies=[can_edit],
)
async def add_participant(
    engagement_id: str,
    request: ParticipantAdd,
    container: ContainerDep,
):
    return await container.audit.add_participant(
        engagement_id, request.user_id, request.roles, request.assigned_controls
    )


@router.delete(
    "/{engagement_id}/participants/{email}",
    response_model=EngagementResponse,
    dependencies=[can_edit],
)
async def remove_participant(engagement_id: str, email: str, container: ContainerDep):
    return await container.audit.remove_participant(engagement_id, email)


@router.post(
    "/{engagement_id}/participants/{email}/controls",
    response_model=EngagementResponse,
    dependencies=[can_edit],
)
async def assign_controls(
    engagement_id: str,
    email: str,
    request: ControlAssignment,
    container: ContainerDep,
):
    return await container.audit.assign_controls(engagement_id, email, request.controls)


# =============================================================================
# CONTROL PROFILES
# =============================================================================


@router.post(
    "/{engagement_id}/controls",
    response_model=ControlProfileResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_edit],
)
async def create_control_profile(
    engagement_id: str,
    request: ControlProfileAdd,
    container: ContainerDep,
):
    data = request.model_dump()
    data["engagement_id"] = engagement_id
    return await container.audit.create_control_profile(data)


@router.get(
    "/{engagement_id}/controls",
    response_model=list[ControlProfileResponse],
    dependencies=[can_view],
)
async def list_control_profiles(
    engagement_id: str,
    container: ContainerDep,
):
    await container.audit.get_engagement(engagement_id)
    return await container.audit.control_profiles(engagement_id)
