"""Authentication routes: OAuth sign-in and session tokens."""

import logging
import secrets

from fastapi import APIRouter, Cookie, Query, Response
from fastapi.responses import RedirectResponse

from ..core.dependencies import ContainerDep, CurrentUserDep
from ..core.security import (
    OAUTH_STATE_COOKIE,
    OAUTH_STATE_MAX_AGE,
    create_access_token,
    create_state_token,
    serialize_user,
    verify_state_token,
)
from ..schemas.auth import OAuthProviders, SessionToken
from ..schemas.users import UserResponse
from ..services.oauth import bootstrap_oauth_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/providers", response_model=OAuthProviders)
async def list_providers(container: ContainerDep):
    """OAuth providers with credentials configured."""
    return OAuthProviders(providers=container.settings.enabled_oauth_providers)


@router.get("/{provider}/login")
async def oauth_login(provider: str, container: ContainerDep):
    """Redirect to the provider's consent screen."""
    state = secrets.token_urlsafe(16)
    response = RedirectResponse(container.oauth.authorization_url(provider, state))
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        create_state_token(state, provider, container.settings),
        max_age=OAUTH_STATE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=container.settings.environment == "production",
    )
    return response


@router.get("/{provider}/callback", response_model=SessionToken)
async def oauth_callback(
    provider: str,
    response: Response,
    container: ContainerDep,
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
    oauth_state: str | None = Cookie(default=None),
):
    """Finish the OAuth flow and issue a session token.

    The echoed ``state`` must match the signed cookie set at login. The
    first user to ever sign in becomes the system administrator.
    """
    verify_state_token(oauth_state, state, provider, container.settings)
    response.delete_cookie(OAUTH_STATE_COOKIE)
    identity = await container.oauth.authenticate(provider, code)
    user, created = await bootstrap_oauth_user(
        identity, container.users, container.organizations
    )
    settings = container.settings
    return SessionToken(
        access_token=create_access_token(serialize_user(user), settings),
        expires_in=settings.session_token_expire_minutes * 60,
        user=UserResponse.model_validate(user),
        created=created,
    )


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: CurrentUserDep):
    return current_user
