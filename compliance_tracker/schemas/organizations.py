"""Organization schemas."""

from typing import Literal

from pydantic import Field, field_validator, model_validator

from ..models import DefaultOrganizationRole, OrganizationStatus
from ..validators import MAX_ORG_DOMAINS, is_valid_domain, is_valid_organization_id
from .base import PatchModel, TimestampMixin, TrackerBaseModel, UrlString


class AkaNames(TrackerBaseModel):
    """Alternate names an organization is known by."""

    formal_name: str = Field(..., min_length=1, max_length=200)
    friendly_name: str | None = Field(default=None, max_length=100)
    short_name: str | None = Field(default=None, max_length=20)
    dba: str | None = Field(default=None, max_length=200)

    @field_validator("short_name")
    @classmethod
    def uppercase_short_name(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v


class OrganizationSettings(TrackerBaseModel):
    allow_self_registration: bool = False
    default_organization_role: DefaultOrganizationRole = DefaultOrganizationRole.PENDING
    require_approval: bool = True
    default_engagement_role: Literal["sme", "controlOwner", "manager", "executive"] = "sme"


def _normalize_domains(domains: list[str]) -> list[str]:
    if len(domains) > MAX_ORG_DOMAINS:
        raise ValueError(f"An organization may list at most {MAX_ORG_DOMAINS} domains")
    normalized: list[str] = []
    for domain in domains:
        domain = domain.strip().lower()
        if not is_valid_domain(domain):
            raise ValueError(f"Invalid domain format: {domain}")
        if domain not in normalized:
            normalized.append(domain)
    return normalized


class OrganizationBase(TrackerBaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    aka_names: AkaNames | None = None
    org_domains: list[str] = Field(default_factory=list)
    settings: OrganizationSettings = Field(default_factory=OrganizationSettings)
    crm_link: UrlString | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Organization name is required")
        return v

    @field_validator("org_domains")
    @classmethod
    def validate_domains(cls, v: list[str]) -> list[str]:
        return _normalize_domains(v)


class OrganizationCreate(OrganizationBase):
    """Payload for creating an organization; ``id`` is generated when absent."""

    id: str | None = Field(default=None, max_length=100)
    status: OrganizationStatus = OrganizationStatus.PENDING
    created_by: str | None = Field(default=None, max_length=254)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_organization_id(v):
            raise ValueError("Organization id may only contain letters, digits and hyphens")
        return v

    @model_validator(mode="after")
    def default_aka_names(self) -> "OrganizationCreate":
        if self.aka_names is None:
            self.aka_names = AkaNames(formal_name=self.name, friendly_name=self.name[:100])
        elif not self.aka_names.friendly_name:
            self.aka_names.friendly_name = self.aka_names.formal_name[:100]
        return self


class OrganizationUpdate(PatchModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    aka_names: AkaNames | None = None
    status: OrganizationStatus | None = None
    org_domains: list[str] | None = None
    settings: OrganizationSettings | None = None
    crm_link: UrlString | None = None

    @field_validator("org_domains")
    @classmethod
    def validate_domains(cls, v: list[str] | None) -> list[str] | None:
        return _normalize_domains(v) if v is not None else v


class OrganizationStatusUpdate(TrackerBaseModel):
    status: OrganizationStatus


class DomainCheck(TrackerBaseModel):
    domain: str

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.strip().lower()
        if not is_valid_domain(v):
            raise ValueError(f"Invalid domain format: {v}")
        return v


class OrganizationResponse(OrganizationBase, TimestampMixin):
    id: str
    aka_names: AkaNames
    status: OrganizationStatus
    created_by: str
