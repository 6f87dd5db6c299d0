"""Role definition and role assignment schemas."""

from datetime import datetime

from pydantic import (
    AliasChoices,
    Field,
    ValidationInfo,
    computed_field,
    field_validator,
    model_validator,
)

from ..models import (
    AccessLevel,
    AssignmentStatus,
    PermissionCategory,
    RiskLevel,
    RoleCategory,
    RoleType,
)
from .base import PatchModel, TimestampMixin, TrackerBaseModel, catalog_from


# =============================================================================
# DEFINITIONS
# =============================================================================


class PermissionCreate(TrackerBaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    category: PermissionCategory
    risk_level: RiskLevel = RiskLevel.LOW


class RoleDefinitionCreate(TrackerBaseModel):
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    permissions: list[str] = Field(default_factory=list, max_length=50)
    active: bool = True


class EngagementRoleCreate(RoleDefinitionCreate):
    category: RoleCategory
    can_manage_roles: list[str] = Field(default_factory=list)
    access_level: AccessLevel

    @field_validator("can_manage_roles")
    @classmethod
    def validate_manageable(cls, v: list[str], info: ValidationInfo) -> list[str]:
        catalog = catalog_from(info)
        if catalog is not None:
            unknown = [r for r in v if r not in catalog.engagement_roles]
            if unknown:
                raise ValueError(f"can_manage_roles names unknown roles: {', '.join(unknown)}")
        return list(dict.fromkeys(v))


# =============================================================================
# ASSIGNMENTS
# =============================================================================


class RoleContext(TrackerBaseModel):
    organization_id: str | None = None
    engagement_id: str | None = None


class RoleAssignmentCreate(TrackerBaseModel):
    user_id: str = Field(..., min_length=1)
    role_type: RoleType
    role_id: str = Field(..., min_length=1)
    context: RoleContext = Field(default_factory=RoleContext)
    assigned_by: str = Field(..., min_length=1)
    expires_at: datetime | None = None
    active: bool = True
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_context(self) -> "RoleAssignmentCreate":
        if self.role_type == RoleType.ORGANIZATION.value and not self.context.organization_id:
            raise ValueError("Organization role assignments require context.organization_id")
        if self.role_type == RoleType.ENGAGEMENT.value and not self.context.engagement_id:
            raise ValueError("Engagement role assignments require context.engagement_id")
        return self


class RoleAssignmentResponse(TrackerBaseModel):
    id: str
    user_id: str
    role_type: RoleType
    role_id: str
    organization_id: str | None = None
    engagement_id: str | None = None
    assigned_by: str
    assigned_date: datetime
    expires_at: datetime | None = None
    active: bool
    notes: str | None = None

    @computed_field
    @property
    def context(self) -> RoleContext:
        return RoleContext(organization_id=self.organization_id, engagement_id=self.engagement_id)


class AssignmentMetadata(TrackerBaseModel):
    assignment_reason: str | None = Field(default=None, max_length=500)
    approved_by: str | None = None
    notes: str | None = Field(default=None, max_length=1000)


def _check_org_roles(v: list[str], info: ValidationInfo) -> list[str]:
    catalog = catalog_from(info)
    if catalog is not None:
        unknown = [r for r in v if r not in catalog.organization_roles]
        if unknown:
            raise ValueError(f"Unknown organization roles: {', '.join(unknown)}")
    return list(dict.fromkeys(v))


class UserOrganizationRoleCreate(TrackerBaseModel):
    user_id: str = Field(..., min_length=1)
    organization_id: str = Field(..., min_length=1)
    roles: list[str] = Field(..., min_length=1, max_length=10)
    assigned_by: str = Field(..., min_length=1)
    expires_at: datetime | None = None
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    meta: AssignmentMetadata = Field(
        default_factory=AssignmentMetadata,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )

    @field_validator("roles")
    @classmethod
    def validate_roles(cls, v: list[str], info: ValidationInfo) -> list[str]:
        return _check_org_roles(v, info)


class UserOrganizationRoleUpdate(PatchModel):
    roles: list[str] | None = Field(default=None, min_length=1, max_length=10)
    expires_at: datetime | None = None
    status: AssignmentStatus | None = None
    meta: AssignmentMetadata | None = Field(
        default=None,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )

    @field_validator("roles")
    @classmethod
    def validate_roles(cls, v: list[str] | None, info: ValidationInfo) -> list[str] | None:
        return _check_org_roles(v, info) if v is not None else v


class UserOrganizationRoleResponse(UserOrganizationRoleCreate, TimestampMixin):
    id: str
    assigned_at: datetime


class OrganizationRolesAssign(TrackerBaseModel):
    roles: list[str] = Field(..., min_length=1, max_length=10)
    expires_at: datetime | None = None
    meta: AssignmentMetadata | None = Field(
        default=None, validation_alias=AliasChoices("meta", "metadata")
    )
