"""FastAPI dependencies for the service container and authentication."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..models import User
from ..models import derived
from .container import ServiceContainer
from .errors import AuthenticationError, NotFoundError
from .security import decode_token, deserialize_user

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


def get_container(request: Request) -> ServiceContainer:
    """Container built in the application lifespan."""
    return request.app.state.container


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]


async def get_current_user(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    container: ContainerDep,
) -> User:
    """Dependency to get the current authenticated user."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_token(credentials.credentials, container.settings)
        user = await deserialize_user(payload.sub, container.users)
    except (AuthenticationError, NotFoundError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    if not derived.is_user_active(user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is not active",
        )
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def require_admin(current_user: CurrentUserDep) -> User:
    """Require the ``admin`` system role."""
    if not derived.is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user


AdminDep = Annotated[User, Depends(require_admin)]


def require_permission(permission: str, scope: str | None = None):
    """Dependency factory checking ``permission`` in the path's scope.

    ``scope`` names the path parameter holding the context id:
    ``org_id`` for an organization, ``engagement_id`` for an engagement.
    """

    async def checker(
        request: Request,
        current_user: CurrentUserDep,
        container: ContainerDep,
    ) -> User:
        context = {}
        if scope == "org_id":
            context["organization_id"] = request.path_params.get("org_id")
        elif scope == "engagement_id":
            context["engagement_id"] = request.path_params.get("engagement_id")
        allowed = await container.permissions.has_permission(
            current_user.user_id, permission, context
        )
        if not allowed:
            logger.info(f"Denied {permission} to {current_user.user_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission required: {permission}",
            )
        return current_user

    return checker
