"""Compliance frameworks: control catalogs, assessments, scores and gaps.

Framework definitions are loaded into memory at startup from
``settings.framework_sources``. Assessments are persisted, one row per
(framework, control); re-assessing a control replaces its row.
"""

import logging
from typing import Any

from ..core.config import Settings
from ..core.errors import NotFoundError
from ..models import ComplianceStatus, ControlAssessment
from ..schemas.compliance import (
    AssessedControl,
    AssessmentInput,
    ControlAssessmentResponse,
    FrameworkControl,
    FrameworkDefinition,
    GapAnalysis,
    GapDetail,
)
from .persistence import PersistenceManager

logger = logging.getLogger(__name__)

HIGH_PRIORITIES = ("High", "Critical")

DEFAULT_FRAMEWORKS: dict[str, dict[str, Any]] = {
    "NIST": {
        "name": "NIST Cybersecurity Framework",
        "version": "1.1",
        "categories": ["Identify", "Protect", "Detect", "Respond", "Recover"],
        "controls": [
            {
                "id": "ID.AM-1",
                "name": "Physical devices and systems within the organization are inventoried",
                "category": "Identify",
                "subcategory": "Asset Management",
                "description": "Maintain an inventory of physical devices and systems",
                "priority": "High",
            },
            {
                "id": "PR.AC-1",
                "name": "Identities and credentials are issued, managed, verified, revoked, and audited",
                "category": "Protect",
                "subcategory": "Access Control",
                "description": "Manage user identities and access credentials",
                "priority": "High",
            },
        ],
    },
    "ISO27001": {
        "name": "ISO/IEC 27001:2013",
        "version": "2013",
        "categories": [
            "Information Security Policies",
            "Organization of Information Security",
            "Human Resource Security",
        ],
        "controls": [
            {
                "id": "A.5.1.1",
                "name": "Information security policy",
                "category": "Information Security Policies",
                "description": "A set of policies for information security shall be defined",
                "priority": "High",
            },
        ],
    },
    "SOC2": {
        "name": "SOC 2 Type II",
        "version": "2017",
        "categories": [
            "Security",
            "Availability",
            "Processing Integrity",
            "Confidentiality",
            "Privacy",
        ],
        "controls": [
            {
                "id": "CC6.1",
                "name": "Logical and physical access controls",
                "category": "Security",
                "description": "The entity implements logical and physical access controls",
                "priority": "High",
            },
        ],
    },
}


def load_framework_definition(key: str) -> FrameworkDefinition:
    """Built-in definition for ``key``; unknown names get an empty catalog."""
    definition = DEFAULT_FRAMEWORKS.get(
        key, {"name": key, "version": "1.0", "categories": [], "controls": []}
    )
    return FrameworkDefinition.model_validate({"key": key, **definition})


def compliance_score(controls: list[FrameworkControl], assessments: dict[str, Any]) -> float:
    """(compliant + 0.5 * partially compliant) / total, rounded to 2 places."""
    if not controls:
        return 0.0
    compliant = partial = 0
    for control in controls:
        assessment = assessments.get(control.id)
        if assessment is None:
            continue
        status = getattr(assessment.status, "value", assessment.status)
        if status == ComplianceStatus.COMPLIANT.value:
            compliant += 1
        elif status == ComplianceStatus.PARTIALLY_COMPLIANT.value:
            partial += 1
    return round((compliant + partial * 0.5) / len(controls), 2)


class ComplianceFrameworksManager:
    """Framework catalog plus persisted control assessments."""

    def __init__(self, store: PersistenceManager, settings: Settings):
        self.store = store
        self.settings = settings
        self.frameworks: dict[str, FrameworkDefinition] = {}
        self.control_mappings: dict[str, list[str]] = {}
        self.initialized = False

    async def initialize(self) -> None:
        for key in self.settings.framework_sources:
            self.frameworks[key] = load_framework_definition(key)
            logger.info(f"Loaded framework: {key}")
        self.control_mappings = dict(self.settings.control_mappings)
        self.initialized = True
        logger.info("Compliance frameworks system initialized successfully")

    # =========================================================================
    # CATALOG
    # =========================================================================

    async def get_frameworks(self) -> list[str]:
        return list(self.frameworks)

    async def get_framework(self, framework: str) -> FrameworkDefinition | None:
        return self.frameworks.get(framework)

    async def get_framework_controls(
        self, framework: str, category: str | None = None
    ) -> list[FrameworkControl]:
        definition = self.frameworks.get(framework)
        if definition is None:
            return []
        if category:
            return [c for c in definition.controls if c.category == category]
        return list(definition.controls)

    # =========================================================================
    # ASSESSMENTS
    # =========================================================================

    async def assess_control(
        self, framework: str, control_id: str, assessment: AssessmentInput | dict
    ) -> ControlAssessment:
        definition = self.frameworks.get(framework)
        if definition is None:
            raise NotFoundError("Framework", framework)
        if control_id not in {c.id for c in definition.controls}:
            raise NotFoundError("Control", f"{framework}/{control_id}")

        row = await self.store.upsert_assessment(framework, control_id, assessment)
        if self.settings.compliance_notify_audit_system:
            logger.info(f"Assessment updated: {framework} - {control_id}")
        return row

    async def get_control_assessment(
        self, framework: str, control_id: str
    ) -> ControlAssessment | None:
        return (await self._assessment_map(framework)).get(control_id)

    async def get_framework_assessments(self, framework: str) -> list[ControlAssessment]:
        return await self.store.list_assessments(framework)

    async def _assessment_map(self, framework: str) -> dict[str, ControlAssessment]:
        return {a.control_id: a for a in await self.store.list_assessments(framework)}

    # =========================================================================
    # SCORING
    # =========================================================================

    async def calculate_compliance_score(self, framework: str) -> float:
        definition = self.frameworks.get(framework)
        if definition is None:
            return 0.0
        return compliance_score(definition.controls, await self._assessment_map(framework))

    async def perform_gap_analysis(self, framework: str) -> GapAnalysis | None:
        """Partition every control of ``framework`` by its latest assessment.

        Unassessed and non-compliant controls are gaps. Not-applicable
        controls are counted on their own and are never gaps.
        """
        definition = self.frameworks.get(framework)
        if definition is None:
            return None

        assessments = await self._assessment_map(framework)
        gaps: list[GapDetail] = []
        compliant: list[AssessedControl] = []
        partial: list[AssessedControl] = []
        not_applicable = 0

        for control in definition.controls:
            assessment = assessments.get(control.id)
            if assessment is None:
                gaps.append(GapDetail(
                    control_id=control.id,
                    control_name=control.name,
                    category=control.category,
                    priority=control.priority,
                    reason="Not assessed",
                ))
                continue

            status = getattr(assessment.status, "value", assessment.status)
            if status == ComplianceStatus.NON_COMPLIANT.value:
                gaps.append(GapDetail(
                    control_id=control.id,
                    control_name=control.name,
                    category=control.category,
                    priority=control.priority,
                    reason="Non-compliant",
                    findings=list(assessment.findings or []),
                ))
            elif status == ComplianceStatus.NOT_APPLICABLE.value:
                not_applicable += 1
            else:
                assessed = AssessedControl(
                    control_id=control.id,
                    control_name=control.name,
                    category=control.category,
                    assessment=ControlAssessmentResponse.model_validate(assessment),
                )
                if status == ComplianceStatus.COMPLIANT.value:
                    compliant.append(assessed)
                else:
                    partial.append(assessed)

        return GapAnalysis(
            framework_name=framework,
            total_controls=len(definition.controls),
            compliant_controls=len(compliant),
            partially_compliant_controls=len(partial),
            not_applicable_controls=not_applicable,
            gaps=len(gaps),
            compliance_score=compliance_score(definition.controls, assessments),
            gap_details=gaps,
            partially_compliant_details=partial,
        )

    async def health_check(self) -> dict[str, Any]:
        return {
            "status": "healthy" if self.initialized else "error",
            "initialized": self.initialized,
            "frameworks_loaded": len(self.frameworks),
            "assessments_count": len(await self.store.list_assessments()),
            "control_mappings_count": len(self.control_mappings),
            "available_frameworks": list(self.frameworks),
        }
