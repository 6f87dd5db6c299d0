"""Control profile routes addressed by profile id."""

from fastapi import APIRouter, HTTPException, status

from ..core.container import ServiceContainer
from ..core.dependencies import ContainerDep, CurrentUserDep
from ..models import EngagementControlProfile, User
from ..schemas.engagements import (
    ControlNote,
    ControlProfileResponse,
    ControlProfileUpdate,
    ControlStatusUpdate,
    EvidenceItem,
    PriorSubmission,
)

router = APIRouter(prefix="/controls", tags=["controls"])


async def _authorized_profile(
    profile_id: str,
    permission: str,
    current_user: User,
    container: ServiceContainer,
) -> EngagementControlProfile:
    """Load a profile and check ``permission`` inside its engagement."""
    profile = await container.audit.get_control_profile(profile_id)
    allowed = await container.permissions.has_permission(
        current_user.user_id, permission, {"engagement_id": profile.engagement_id}
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission required: {permission}",
        )
    return profile


@router.get("/{profile_id}", response_model=ControlProfileResponse)
async def get_control_profile(
    profile_id: str,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    return await _authorized_profile(profile_id, "controls.view", current_user, container)


@router.patch("/{profile_id}", response_model=ControlProfileResponse)
async def update_control_profile(
    profile_id: str,
    request: ControlProfileUpdate,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    await _authorized_profile(profile_id, "controls.edit", current_user, container)
    return await container.audit.update_control_profile(profile_id, request)


@router.put("/{profile_id}/status", response_model=ControlProfileResponse)
async def update_control_status(
    profile_id: str,
    request: ControlStatusUpdate,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    await _authorized_profile(profile_id, "controls.assess", current_user, container)
    return await container.audit.update_control_status(profile_id, request.status)


@router.post("/{profile_id}/evidence", response_model=ControlProfileResponse)
async def add_evidence(
    profile_id: str,
    request: EvidenceItem,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    """Attach evidence. An open control moves to responded."""
    await _authorized_profile(profile_id, "controls.respond", current_user, container)
    return await container.audit.add_evidence(profile_id, request)


@router.get("/{profile_id}/notes", response_model=list[ControlNote])
async def list_notes(
    profile_id: str,
    current_user: CurrentUserDep,
    container: ContainerDep,
    include_private: bool = False,
):
    await _authorized_profile(profile_id, "controls.view", current_user, container)
    if include_private:
        # Private notes are for reviewers only
        await _authorized_profile(profile_id, "controls.assess", current_user, container)
    return await container.audit.notes(profile_id, include_private)


@router.post("/{profile_id}/notes", response_model=ControlProfileResponse)
async def add_note(
    profile_id: str,
    request: ControlNote,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    await _authorized_profile(profile_id, "controls.view", current_user, container)
    return await container.audit.add_note(profile_id, request)


@router.post("/{profile_id}/prior-submissions", response_model=ControlProfileResponse)
async def add_prior_submission(
    profile_id: str,
    request: PriorSubmission,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    await _authorized_profile(profile_id, "controls.edit", current_user, container)
    return await container.audit.add_prior_submission(profile_id, request)
