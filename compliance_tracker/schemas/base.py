"""Base schemas and common types for the compliance tracker API."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, ValidationInfo

from ..roles import RoleCatalog
from ..validators import is_valid_email, is_valid_url


# =============================================================================
# SHARED FIELD TYPES
# =============================================================================


def _email(value: str) -> str:
    value = value.strip().lower()
    if not is_valid_email(value):
        raise ValueError("Invalid email format")
    return value


def _url(value: str) -> str:
    if not is_valid_url(value):
        raise ValueError("Must be a valid http(s) URL")
    return value


EmailAddress = Annotated[str, AfterValidator(_email)]
UrlString = Annotated[str, AfterValidator(_url)]


def catalog_from(info: ValidationInfo) -> RoleCatalog | None:
    """Role catalog passed in through ``model_validate(..., context=...)``.

    Catalog-dependent checks only run when a catalog is supplied; the
    persistence manager always supplies one on writes.
    """
    if info.context:
        return info.context.get("catalog")
    return None


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class TrackerBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


class PatchModel(TrackerBaseModel):
    """Partial update; unknown or immutable fields are rejected."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
        extra="forbid",
    )


class TimestampMixin(BaseModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime
    updated_at: datetime | None = None


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(TrackerBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(TrackerBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
