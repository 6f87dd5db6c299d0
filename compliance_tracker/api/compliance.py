"""Compliance framework, assessment and gap-analysis routes."""

from fastapi import APIRouter, Depends, Query

from ..core.dependencies import ContainerDep, CurrentUserDep, require_permission
from ..core.errors import NotFoundError
from ..schemas.compliance import (
    AssessmentInput,
    ControlAssessmentResponse,
    FrameworkControl,
    FrameworkDefinition,
    GapAnalysis,
    HighPriorityGap,
    StatusSummary,
)

router = APIRouter(prefix="/compliance", tags=["compliance"])

can_view = Depends(require_permission("controls.view"))
can_report = Depends(require_permission("reports.view"))


# =============================================================================
# FRAMEWORKS
# =============================================================================


@router.get("/frameworks", response_model=list[str], dependencies=[can_view])
async def list_frameworks(container: ContainerDep):
    return await container.compliance_helpers.available_frameworks()


@router.get(
    "/frameworks/{framework}",
    response_model=FrameworkDefinition,
    dependencies=[can_view],
)
async def get_framework(framework: str, container: ContainerDep):
    definition = await container.compliance_helpers.framework_details(framework)
    if definition is None:
        raise NotFoundError("Framework", framework)
    return definition


@router.get(
    "/frameworks/{framework}/controls",
    response_model=list[FrameworkControl],
    dependencies=[can_view],
)
async def framework_controls(
    framework: str,
    container: ContainerDep,
    category: str | None = None,
):
    return await container.compliance_helpers.framework_controls(framework, category)


# =============================================================================
# ASSESSMENTS
# =============================================================================


@router.put(
    "/frameworks/{framework}/controls/{control_id}/assessment",
    response_model=ControlAssessmentResponse,
    dependencies=[Depends(require_permission("controls.assess"))],
)
async def assess_control(
    framework: str,
    control_id: str,
    request: AssessmentInput,
    current_user: CurrentUserDep,
    container: ContainerDep,
):
    """Record the assessment of one control, replacing any earlier one."""
    if request.assessor is None:
        request.assessor = current_user.email
    return await container.compliance_helpers.assess_control(framework, control_id, request)


@router.get(
    "/frameworks/{framework}/controls/{control_id}/assessment",
    response_model=ControlAssessmentResponse,
    dependencies=[can_view],
)
async def get_control_assessment(framework: str, control_id: str, container: ContainerDep):
    assessment = await container.compliance_helpers.control_assessment(framework, control_id)
    if assessment is None:
        raise NotFoundError("Assessment", f"{framework}/{control_id}")
    return assessment


@router.get(
    "/assessments/recent",
    response_model=list[ControlAssessmentResponse],
    dependencies=[can_view],
)
async def recent_assessments(
    container: ContainerDep,
    limit: int = Query(default=10, ge=1, le=100),
):
    return await container.compliance_helpers.recent_assessments(limit)


@router.get(
    "/assessments/pending",
    response_model=list[HighPriorityGap],
    dependencies=[can_view],
)
async def controls_requiring_assessment(
    container: ContainerDep,
    framework: str | None = None,
):
    """Controls that have never been assessed."""
    return await container.compliance_helpers.controls_requiring_assessment(framework)


# =============================================================================
# REPORTING
# =============================================================================


@router.get("/frameworks/{framework}/score", dependencies=[can_report])
async def framework_score(framework: str, container: ContainerDep):
    if await container.compliance_helpers.framework_details(framework) is None:
        raise NotFoundError("Framework", framework)
    return {
        "framework": framework,
        "score": await container.compliance_helpers.framework_score(framework),
    }


@router.get(
    "/frameworks/{framework}/gaps",
    response_model=GapAnalysis,
    dependencies=[can_report],
)
async def gap_analysis(framework: str, container: ContainerDep):
    analysis = await container.compliance_helpers.gap_analysis(framework)
    if analysis is None:
        raise NotFoundError("Framework", framework)
    return analysis


@router.get("/summary", response_model=StatusSummary, dependencies=[can_report])
async def status_summary(container: ContainerDep):
    return await container.compliance_helpers.status_summary()


@router.get("/gaps/high-priority", response_model=list[HighPriorityGap], dependencies=[can_report])
async def high_priority_gaps(container: ContainerDep):
    return await container.compliance_helpers.high_priority_gaps()
