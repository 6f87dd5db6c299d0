"""Compliance framework, assessment and gap-analysis schemas."""

from datetime import datetime

from pydantic import Field

from ..models import ComplianceStatus, MaturityLevel
from .base import TrackerBaseModel


class FrameworkControl(TrackerBaseModel):
    id: str
    name: str
    category: str
    subcategory: str | None = None
    description: str | None = None
    priority: str = "Medium"


class FrameworkDefinition(TrackerBaseModel):
    key: str
    name: str
    version: str
    categories: list[str] = Field(default_factory=list)
    controls: list[FrameworkControl] = Field(default_factory=list)


class AssessmentInput(TrackerBaseModel):
    status: ComplianceStatus
    maturity_level: MaturityLevel | None = None
    assessor: str | None = None
    evidence: list[str] = Field(default_factory=list)
    findings: list[str] = Field(default_factory=list)
    remediation: str | None = None
    next_assessment_date: datetime | None = None


class ControlAssessmentResponse(AssessmentInput):
    id: str
    framework: str
    control_id: str
    assessment_date: datetime


class GapDetail(TrackerBaseModel):
    control_id: str
    control_name: str
    category: str
    priority: str
    reason: str
    findings: list[str] = Field(default_factory=list)


class AssessedControl(TrackerBaseModel):
    control_id: str
    control_name: str
    category: str
    assessment: ControlAssessmentResponse


class GapAnalysis(TrackerBaseModel):
    framework_name: str
    total_controls: int
    compliant_controls: int
    partially_compliant_controls: int
    not_applicable_controls: int = 0
    gaps: int
    compliance_score: float
    gap_details: list[GapDetail] = Field(default_factory=list)
    partially_compliant_details: list[AssessedControl] = Field(default_factory=list)


class HighPriorityGap(GapDetail):
    framework: str


class FrameworkScore(TrackerBaseModel):
    score: float
    total_controls: int
    compliant_controls: int
    partially_compliant_controls: int
    gaps: int


class StatusSummary(TrackerBaseModel):
    total_frameworks: int
    average_compliance_score: float
    framework_scores: dict[str, FrameworkScore] = Field(default_factory=dict)
    total_controls: int = 0
    assessed_controls: int = 0
    compliant_controls: int = 0

