"""Read-side helpers other components use to query compliance state.

``ComplianceHelpers`` wraps a ``ComplianceFrameworksManager`` and makes
sure it is initialized before the first call.
"""

import logging
from typing import Any

from ..models import ControlAssessment
from ..schemas.compliance import (
    AssessmentInput,
    FrameworkControl,
    FrameworkDefinition,
    FrameworkScore,
    GapAnalysis,
    HighPriorityGap,
    StatusSummary,
)
from .compliance import HIGH_PRIORITIES, ComplianceFrameworksManager

logger = logging.getLogger(__name__)


class ComplianceHelpers:
    """Lazy façade over the compliance frameworks manager."""

    def __init__(self, manager: ComplianceFrameworksManager):
        self.manager = manager

    async def ensure_initialized(self) -> ComplianceFrameworksManager:
        if not self.manager.initialized:
            await self.manager.initialize()
        return self.manager

    async def available_frameworks(self) -> list[str]:
        manager = await self.ensure_initialized()
        return await manager.get_frameworks()

    async def framework_details(self, framework: str) -> FrameworkDefinition | None:
        manager = await self.ensure_initialized()
        return await manager.get_framework(framework)

    async def framework_controls(
        self, framework: str, category: str | None = None
    ) -> list[FrameworkControl]:
        manager = await self.ensure_initialized()
        return await manager.get_framework_controls(framework, category)

    async def framework_score(self, framework: str) -> float:
        manager = await self.ensure_initialized()
        return await manager.calculate_compliance_score(framework)

    async def overall_compliance_score(self) -> float:
        """Mean score across every loaded framework; 0 when none are loaded."""
        frameworks = await self.available_frameworks()
        if not frameworks:
            return 0.0
        scores = [await self.framework_score(f) for f in frameworks]
        return round(sum(scores) / len(scores), 2)

    async def status_summary(self) -> StatusSummary:
        frameworks = await self.available_frameworks()
        summary = StatusSummary(
            total_frameworks=len(frameworks),
            average_compliance_score=await self.overall_compliance_score(),
        )
        for framework in frameworks:
            analysis = await self.manager.perform_gap_analysis(framework)
            summary.framework_scores[framework] = FrameworkScore(
                score=analysis.compliance_score,
                total_controls=analysis.total_controls,
                compliant_controls=analysis.compliant_controls,
                partially_compliant_controls=analysis.partially_compliant_controls,
                gaps=analysis.gaps,
            )
            summary.total_controls += analysis.total_controls
            summary.assessed_controls += (
                analysis.compliant_controls + analysis.partially_compliant_controls
            )
            summary.compliant_controls += analysis.compliant_controls
        return summary

    async def gap_analysis(self, framework: str) -> GapAnalysis | None:
        manager = await self.ensure_initialized()
        return await manager.perform_gap_analysis(framework)

    async def all_gap_analyses(self) -> dict[str, GapAnalysis]:
        return {
            framework: await self.gap_analysis(framework)
            for framework in await self.available_frameworks()
        }

    async def high_priority_gaps(self) -> list[HighPriorityGap]:
        gaps = []
        for framework, analysis in (await self.all_gap_analyses()).items():
            for gap in analysis.gap_details:
                if gap.priority in HIGH_PRIORITIES:
                    gaps.append(HighPriorityGap(**gap.model_dump(), framework=framework))
        return gaps

    async def controls_requiring_assessment(
        self, framework: str | None = None
    ) -> list[HighPriorityGap]:
        """Controls that have never been assessed."""
        frameworks = [framework] if framework else await self.available_frameworks()
        pending = []
        for name in frameworks:
            analysis = await self.gap_analysis(name)
            if analysis is None:
                continue
            for gap in analysis.gap_details:
                if gap.reason == "Not assessed":
                    pending.append(HighPriorityGap(**gap.model_dump(), framework=name))
        return pending

    async def assess_control(
        self, framework: str, control_id: str, assessment: AssessmentInput | dict
    ) -> ControlAssessment:
        manager = await self.ensure_initialized()
        return await manager.assess_control(framework, control_id, assessment)

    async def control_assessment(
        self, framework: str, control_id: str
    ) -> ControlAssessment | None:
        manager = await self.ensure_initialized()
        return await manager.get_control_assessment(framework, control_id)

    async def recent_assessments(self, limit: int = 10) -> list[ControlAssessment]:
        """Most recent assessments across loaded frameworks."""
        manager = await self.ensure_initialized()
        loaded = set(await manager.get_frameworks())
        recent = [a for a in await manager.store.list_assessments() if a.framework in loaded]
        return recent[:limit]

    async def health_check(self) -> dict[str, Any]:
        manager = await self.ensure_initialized()
        health = await manager.health_check()
        health["helper_available"] = True
        return health
