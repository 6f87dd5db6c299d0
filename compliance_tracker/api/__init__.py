"""API routes for the compliance tracker."""

from fastapi import APIRouter

from .auth import router as auth_router
from .compliance import router as compliance_router
from .controls import router as controls_router
from .engagements import router as engagements_router
from .findings import router as findings_router
from .health import router as health_router
from .messages import router as messages_router
from .organizations import router as organizations_router
from .users import router as users_router

# Main API router
api_router = APIRouter()

# Auth routes (OAuth sign-in, /auth/me)
api_router.include_router(auth_router)

# Organizations and users, including role management
api_router.include_router(organizations_router)
api_router.include_router(users_router)

# Audit work: engagements, control profiles, findings and remediation
api_router.include_router(engagements_router)
api_router.include_router(controls_router)
api_router.include_router(findings_router)

api_router.include_router(compliance_router)
api_router.include_router(messages_router)
api_router.include_router(health_router)

__all__ = ["api_router"]
