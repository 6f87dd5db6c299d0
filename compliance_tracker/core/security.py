"""Signed JWTs: session tokens carrying the user id and OAuth state cookies."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import jwt
from pydantic import BaseModel

from .config import Settings
from .errors import AuthenticationError

if TYPE_CHECKING:
    from ..models import User
    from ..services.users import UserRoleManager

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE = 600


class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # User ID
    exp: datetime
    iat: datetime
    type: str = "access"


def serialize_user(user: "User") -> str:
    """Session key for a user."""
    return user.user_id


async def deserialize_user(user_id: str, users: "UserRoleManager") -> "User":
    """Load the user behind a session key; raises ``NotFoundError``."""
    return await users.get_user(user_id)


def create_access_token(
    user_id: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed access token for ``user_id``."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.session_token_expire_minutes)
    )
    payload = {
        "sub": user_id,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str, settings: Settings) -> TokenPayload:
    """Decode and validate an access token."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Session token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected session token: {e}")
        raise AuthenticationError("Invalid session token") from e

    decoded = TokenPayload(**payload)
    if decoded.type != "access":
        raise AuthenticationError("Invalid token type")
    return decoded


def create_state_token(state: str, provider: str, settings: Settings) -> str:
    """Signed copy of an OAuth ``state`` bound to one provider, kept in a cookie."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": state,
        "provider": provider,
        "exp": now + timedelta(seconds=OAUTH_STATE_MAX_AGE),
        "iat": now,
        "type": "oauth_state",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def verify_state_token(
    token: str | None, state: str, provider: str, settings: Settings
) -> None:
    """Check the ``state`` echoed by the provider against the signed cookie."""
    if not token:
        raise AuthenticationError("Missing OAuth state cookie")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected OAuth state cookie: {e}")
        raise AuthenticationError("Invalid OAuth state") from e

    if (
        payload.get("type") != "oauth_state"
        or payload.get("provider") != provider
        or not secrets.compare_digest(str(payload.get("sub", "")), state)
    ):
        raise AuthenticationError("OAuth state mismatch")
