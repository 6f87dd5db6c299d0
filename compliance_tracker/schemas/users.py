"""User schemas. Internal credential fields never appear in responses."""

from datetime import datetime
from typing import Annotated

from pydantic import (
    AfterValidator,
    EmailStr,
    Field,
    ValidationInfo,
    computed_field,
    field_validator,
)

from ..models import UserStatus, utcnow
from ..validators import is_valid_phone, is_valid_timezone
from .base import PatchModel, TimestampMixin, TrackerBaseModel, catalog_from


def _check_phone(v: str) -> str:
    if not is_valid_phone(v):
        raise ValueError("Invalid phone number format")
    return v


def _check_system_roles(v: list[str], info: ValidationInfo) -> list[str]:
    catalog = catalog_from(info)
    if catalog is not None:
        problem = catalog.user_roles_problem(v)
        if problem:
            raise ValueError(problem)
    return list(dict.fromkeys(v))


def _check_engagement_roles(v: list[str], info: ValidationInfo) -> list[str]:
    catalog = catalog_from(info)
    if catalog is not None:
        unknown = [r for r in v if r not in catalog.engagement_roles]
        if unknown:
            raise ValueError(f"Unknown engagement roles: {', '.join(unknown)}")
    return list(dict.fromkeys(v))


PhoneNumber = Annotated[str, AfterValidator(_check_phone)]
SystemRoleList = Annotated[list[str], AfterValidator(_check_system_roles)]
EngagementRoleList = Annotated[list[str], AfterValidator(_check_engagement_roles)]


class EngagementParticipation(TrackerBaseModel):
    """One engagement the user takes part in."""

    engagement_id: str = Field(..., min_length=1)
    roles: EngagementRoleList = Field(default_factory=list, max_length=5)
    assigned_controls: list[str] = Field(default_factory=list)
    joined_date: datetime = Field(default_factory=utcnow)
    active: bool = True


class UserPreferences(TrackerBaseModel):
    notifications: bool = True
    email_updates: bool = True
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if not is_valid_timezone(v):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class OAuthProviderInfo(TrackerBaseModel):
    id: str
    email: str | None = None
    last_used: datetime = Field(default_factory=utcnow)


class UserBase(TrackerBaseModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    organization: str = Field(..., min_length=1, max_length=200)
    organization_id: str | None = Field(default=None, max_length=100)
    department: str | None = Field(default=None, max_length=100)
    title: str | None = Field(default=None, max_length=100)
    phone: PhoneNumber | None = None
    system_roles: SystemRoleList = Field(default_factory=list)
    engagements: list[EngagementParticipation] = Field(default_factory=list)
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    status: UserStatus = UserStatus.PENDING

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("first_name", "last_name", "organization")
    @classmethod
    def strip_names(cls, v: str) -> str:
        return v.strip()


class UserCreate(UserBase):
    """Payload for creating a user; ``user_id`` is generated when absent."""

    user_id: str | None = Field(default=None, max_length=150)
    oauth_providers: dict[str, OAuthProviderInfo] = Field(default_factory=dict)
    last_login: datetime | None = None
    email_verified: bool = False


class UserUpdate(PatchModel):
    """Partial user update. ``user_id`` is immutable and rejected here."""

    email: EmailStr | None = None
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    organization: str | None = Field(default=None, min_length=1, max_length=200)
    organization_id: str | None = Field(default=None, max_length=100)
    department: str | None = Field(default=None, max_length=100)
    title: str | None = Field(default=None, max_length=100)
    phone: PhoneNumber | None = None
    system_roles: SystemRoleList | None = None
    engagements: list[EngagementParticipation] | None = None
    preferences: UserPreferences | None = None
    status: UserStatus | None = None
    oauth_providers: dict[str, OAuthProviderInfo] | None = None
    last_login: datetime | None = None
    email_verified: bool | None = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str | None) -> str | None:
        return v.strip().lower() if v else v


class UserResponse(UserBase, TimestampMixin):
    """Public view of a user."""

    user_id: str
    email: str
    oauth_providers: dict[str, OAuthProviderInfo] = Field(default_factory=dict)
    last_login: datetime | None = None
    email_verified: bool = False

    @computed_field
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class SystemRolesUpdate(TrackerBaseModel):
    roles: list[str]


class PermissionCheck(TrackerBaseModel):
    permission: str
    organization_id: str | None = None
    engagement_id: str | None = None


class PermissionCheckResult(TrackerBaseModel):
    user_id: str
    permission: str
    granted: bool
