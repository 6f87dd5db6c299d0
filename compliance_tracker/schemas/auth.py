"""Authentication and OAuth schemas."""

from pydantic import Field

from .base import TrackerBaseModel
from .users import UserResponse


class OAuthIdentity(TrackerBaseModel):
    """What every provider profile is reduced to before bootstrap."""

    provider: str
    provider_user_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    organization: str = "Unknown Organization"


class SessionToken(TrackerBaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Seconds until expiry")
    user: UserResponse
    created: bool = False


class OAuthProviders(TrackerBaseModel):
    providers: list[str]
