"""Finding and remediation plan routes."""

from fastapi import APIRouter, Depends, Query, status

from ..core.dependencies import ContainerDep, require_permission
from ..schemas.engagements import (
    FindingCreate,
    FindingResponse,
    FindingStatusUpdate,
    RemediationPlanCreate,
    RemediationPlanResponse,
    RemediationProgress,
)

router = APIRouter(tags=["findings"])

can_assess = Depends(require_permission("controls.assess"))
can_view = Depends(require_permission("reports.view"))


# =============================================================================
# FINDINGS
# =============================================================================


@router.post(
    "/findings",
    response_model=FindingResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_assess],
)
async def create_finding(request: FindingCreate, container: ContainerDep):
    return await container.audit.create_finding(request)


@router.get("/findings", response_model=list[FindingResponse], dependencies=[can_view])
async def list_findings(
    container: ContainerDep,
    engagement_id: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
):
    return await container.audit.list_findings(engagement_id=engagement_id, status=status_filter)


@router.get("/findings/{finding_id}", response_model=FindingResponse, dependencies=[can_view])
async def get_finding(finding_id: str, container: ContainerDep):
    return await container.audit.get_finding(finding_id)


@router.put(
    "/findings/{finding_id}/status",
    response_model=FindingResponse,
    dependencies=[can_assess],
)
async def update_finding_status(
    finding_id: str,
    request: FindingStatusUpdate,
    container: ContainerDep,
):
    return await container.audit.update_finding_status(finding_id, request.status)


# =============================================================================
# REMEDIATION
# =============================================================================


@router.post(
    "/findings/{finding_id}/remediation",
    response_model=RemediationPlanResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[can_assess],
)
async def create_remediation_plan(
    finding_id: str,
    request: RemediationPlanCreate,
    container: ContainerDep,
):
    """Plan a remediation. The finding moves to in-remediation."""
    return await container.audit.create_remediation_plan(finding_id, request)


@router.get(
    "/findings/{finding_id}/remediation",
    response_model=list[RemediationPlanResponse],
    dependencies=[can_view],
)
async def list_remediation_plans(finding_id: str, container: ContainerDep):
    await container.audit.get_finding(finding_id)
    return await container.audit.remediation_for_finding(finding_id)


@router.get(
    "/remediation/{plan_id}",
    response_model=RemediationPlanResponse,
    dependencies=[can_view],
)
async def get_remediation_plan(plan_id: str, container: ContainerDep):
    return await container.audit.get_remediation_plan(plan_id)


@router.put(
    "/remediation/{plan_id}/progress",
    response_model=RemediationPlanResponse,
    dependencies=[can_assess],
)
async def update_remediation_progress(
    plan_id: str,
    request: RemediationProgress,
    container: ContainerDep,
):
    """Record progress in [0, 1]. Full progress remediates the finding."""
    return await container.audit.update_remediation_progress(
        plan_id, request.progress, request.notes
    )
