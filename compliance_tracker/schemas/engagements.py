"""Engagement and control-profile schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    Field,
    ValidationInfo,
    computed_field,
    field_validator,
    model_validator,
)

from ..models import (
    ControlStatus,
    EngagementStage,
    EngagementStatus,
    EngagementType,
    FindingStatus,
    Framework,
    RemediationStatus,
    Severity,
    new_id,
    utcnow,
)
from ..validators import (
    evidence_problem,
    invalid_soc2_components,
    is_date_after,
    is_valid_engagement_id,
    timeline_out_of_order,
)
from .base import (
    EmailAddress,
    PatchModel,
    TimestampMixin,
    TrackerBaseModel,
    UrlString,
    catalog_from,
)
from .users import EngagementRoleList


# =============================================================================
# EMBEDDED DOCUMENTS
# =============================================================================


class FrameworkSelection(TrackerBaseModel):
    framework: Framework
    components: list[str] = Field(default_factory=list)
    version: str | None = None

    @model_validator(mode="after")
    def check_components(self) -> "FrameworkSelection":
        if self.framework == Framework.SOC2.value:
            invalid = invalid_soc2_components(self.components)
            if invalid:
                raise ValueError(f"Invalid SOC2 components: {', '.join(invalid)}")
        return self


class Participant(TrackerBaseModel):
    user_id: EmailAddress
    roles: EngagementRoleList = Field(..., min_length=1, max_length=5)
    assigned_controls: list[str] = Field(default_factory=list)
    joined_date: datetime = Field(default_factory=utcnow)
    active: bool = True


class Timeline(TrackerBaseModel):
    start_date: datetime
    onboard_survey_due: datetime | None = None
    irl_delivery: datetime | None = None
    kickoff_call: datetime | None = None
    fieldwork_start: datetime | None = None
    fieldwork_end: datetime | None = None
    evidence_cutoff: datetime | None = None
    closing_call: datetime | None = None
    draft_report_delivery: datetime | None = None
    end_date: datetime
    deliverables_due: datetime | None = None

    @model_validator(mode="after")
    def check_order(self) -> "Timeline":
        if not is_date_after(self.start_date, self.end_date):
            raise ValueError("end_date must be after start_date")
        misordered = timeline_out_of_order(self.model_dump())
        if misordered:
            earlier, later = misordered
            raise ValueError(f"{later} must not be before {earlier}")
        return self


class EngagementMetadata(TrackerBaseModel):
    priority: Severity = Severity.MEDIUM
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


def _metadata_field():
    return Field(
        default_factory=EngagementMetadata,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )


def _check_frameworks(selections: list[FrameworkSelection], info: ValidationInfo) -> None:
    catalog = catalog_from(info)
    if catalog is None:
        return
    unavailable = [s.framework for s in selections if s.framework not in catalog.available_frameworks]
    if unavailable:
        raise ValueError(f"Frameworks not available: {', '.join(unavailable)}")


def _check_participants(participants: list[Participant], info: ValidationInfo) -> None:
    catalog = catalog_from(info)
    if catalog is not None and len(participants) > catalog.max_participants:
        raise ValueError(f"An engagement may have at most {catalog.max_participants} participants")
    emails = [p.user_id for p in participants]
    if len(emails) != len(set(emails)):
        raise ValueError("Participants must be unique")


# =============================================================================
# ENGAGEMENT
# =============================================================================


class EngagementBase(TrackerBaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    frameworks: list[FrameworkSelection] = Field(..., min_length=1, max_length=10)
    timeline: Timeline
    engagement_owner: EmailAddress
    participants: list[Participant] = Field(default_factory=list)
    notes: str | None = Field(default=None, max_length=5000)
    portal_url: UrlString | None = None
    meta: EngagementMetadata = _metadata_field()


class EngagementCreate(EngagementBase):
    """Payload for creating an engagement; ``id`` is generated when absent."""

    id: str | None = None
    org: str = Field(..., min_length=1, max_length=100)
    type: EngagementType
    status: EngagementStatus = EngagementStatus.PENDING
    stage: EngagementStage = EngagementStage.ONBOARDING

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_engagement_id(v):
            raise ValueError("Engagement id must look like org_type_yymm:v<n>")
        return v

    @field_validator("frameworks")
    @classmethod
    def validate_frameworks(cls, v: list[FrameworkSelection], info: ValidationInfo):
        _check_frameworks(v, info)
        return v

    @field_validator("participants")
    @classmethod
    def validate_participants(cls, v: list[Participant], info: ValidationInfo):
        _check_participants(v, info)
        return v


class EngagementUpdate(PatchModel):
    """Partial engagement update; ``id`` and ``org`` are immutable."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    type: EngagementType | None = None
    frameworks: list[FrameworkSelection] | None = Field(default=None, min_length=1, max_length=10)
    status: EngagementStatus | None = None
    stage: EngagementStage | None = None
    timeline: Timeline | None = None
    engagement_owner: EmailAddress | None = None
    participants: list[Participant] | None = None
    notes: str | None = Field(default=None, max_length=5000)
    portal_url: UrlString | None = None
    meta: EngagementMetadata | None = Field(
        default=None,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )

    @field_validator("frameworks")
    @classmethod
    def validate_frameworks(cls, v, info: ValidationInfo):
        if v is not None:
            _check_frameworks(v, info)
        return v

    @field_validator("participants")
    @classmethod
    def validate_participants(cls, v, info: ValidationInfo):
        if v is not None:
            _check_participants(v, info)
        return v


class EngagementStatusUpdate(TrackerBaseModel):
    status: EngagementStatus


class EngagementStageUpdate(TrackerBaseModel):
    stage: EngagementStage


class ParticipantAdd(TrackerBaseModel):
    user_id: EmailAddress
    roles: list[str] = Field(..., min_length=1, max_length=5)
    assigned_controls: list[str] = Field(default_factory=list)


class ControlAssignment(TrackerBaseModel):
    controls: list[str] = Field(..., min_length=1)


class EngagementResponse(EngagementBase, TimestampMixin):
    id: str
    org: str
    type: EngagementType
    status: EngagementStatus
    stage: EngagementStage

    @computed_field
    @property
    def participant_count(self) -> int:
        return len([p for p in self.participants if p.active])


# =============================================================================
# CONTROL PROFILE
# =============================================================================


class EvidenceItem(TrackerBaseModel):
    id: str = Field(default_factory=new_id)
    type: Literal["file", "link"]
    subtype: Literal["document", "image"] | None = None
    name: str | None = Field(default=None, max_length=255)
    url: str | None = None
    description: str | None = Field(default=None, max_length=500)
    provided_by: str
    provided_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_shape(self) -> "EvidenceItem":
        problem = evidence_problem(self.model_dump())
        if problem:
            raise ValueError(problem)
        self.provided_by = self.provided_by.strip().lower()
        return self


class ControlNote(TrackerBaseModel):
    id: str = Field(default_factory=new_id)
    private: bool = False
    note: str = Field(..., min_length=1, max_length=2000)
    author: EmailAddress
    created: datetime = Field(default_factory=utcnow)


class PriorSubmission(TrackerBaseModel):
    engagement_id: str
    submission_date: datetime
    status: str | None = None
    notes: str | None = None


class ControlFinding(TrackerBaseModel):
    has_finding: bool = False
    severity: Severity | None = None
    description: str | None = None
    recommendation: str | None = None
    management_response: str | None = None


class ControlProfileBase(TrackerBaseModel):
    included: bool = True
    justification: str | None = Field(default=None, max_length=1000)
    control_owner: EmailAddress | None = None
    owner_response: str | None = Field(default=None, max_length=5000)
    evidence: list[EvidenceItem] = Field(default_factory=list)
    control_notes: list[ControlNote] = Field(default_factory=list)
    prior_submissions: list[PriorSubmission] = Field(default_factory=list)
    risk_rating: Severity | None = None
    finding: ControlFinding = Field(default_factory=ControlFinding)


class ControlProfileAdd(ControlProfileBase):
    """Control profile added under an engagement taken from the route."""

    requirement_id: str = Field(..., min_length=1, max_length=100)
    status: ControlStatus = ControlStatus.OPEN


class ControlProfileCreate(ControlProfileAdd):
    engagement_id: str = Field(..., min_length=1)


class ControlProfileUpdate(PatchModel):
    """Partial control-profile update; the (engagement, requirement) key is immutable."""

    included: bool | None = None
    justification: str | None = Field(default=None, max_length=1000)
    control_owner: EmailAddress | None = None
    status: ControlStatus | None = None
    owner_response: str | None = Field(default=None, max_length=5000)
    evidence: list[EvidenceItem] | None = None
    control_notes: list[ControlNote] | None = None
    prior_submissions: list[PriorSubmission] | None = None
    risk_rating: Severity | None = None
    finding: ControlFinding | None = None


class ControlStatusUpdate(TrackerBaseModel):
    status: ControlStatus


class ControlProfileResponse(ControlProfileBase, TimestampMixin):
    id: str
    engagement_id: str
    requirement_id: str
    status: ControlStatus


# =============================================================================
# FINDINGS & REMEDIATION
# =============================================================================


class FindingCreate(TrackerBaseModel):
    engagement_id: str = Field(..., min_length=1)
    control_id: str | None = None
    framework: str | None = None
    severity: Severity
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    evidence: list[str] = Field(default_factory=list)
    recommendation: str | None = None
    due_date: datetime | None = None
    assigned_to: EmailAddress | None = None


class FindingResponse(FindingCreate, TimestampMixin):
    id: str
    status: FindingStatus


class FindingStatusUpdate(TrackerBaseModel):
    status: FindingStatus


class FindingUpdate(PatchModel):
    status: FindingStatus | None = None
    assigned_to: EmailAddress | None = None
    due_date: datetime | None = None


class RemediationPlanCreate(TrackerBaseModel):
    assigned_to: EmailAddress | None = None
    start_date: datetime | None = None
    target_date: datetime | None = None
    actions: list[str] = Field(default_factory=list)
    notes: str = ""

    @model_validator(mode="after")
    def check_dates(self) -> "RemediationPlanCreate":
        if not is_date_after(self.start_date, self.target_date):
            raise ValueError("target_date must be after start_date")
        return self


class RemediationProgress(TrackerBaseModel):
    progress: float = Field(..., ge=0.0, le=1.0)
    notes: str | None = None


class RemediationPlanUpdate(PatchModel):
    status: RemediationStatus | None = None
    progress: float | None = Field(default=None, ge=0.0, le=1.0)
    notes: str | None = None
    completed_date: datetime | None = None


class RemediationPlanResponse(RemediationPlanCreate, TimestampMixin):
    id: str
    finding_id: str
    status: RemediationStatus
    progress: float
    completed_date: datetime | None = None


class OverdueItem(TrackerBaseModel):
    kind: Literal["engagement", "finding", "remediation"]
    id: str
    title: str
    due_date: datetime
    engagement_id: str | None = None
    days_overdue: int = 0
