"""Compliance Tracker API Schemas.

Schemas are organized by domain:
- base: Common base classes and errors
- organizations: Organizations and domains
- users: Users, preferences and permission checks
- roles: Role definitions, assignments and organization roles
- engagements: Engagements, control profiles, findings and remediation
- messages: Messages and notifications
- compliance: Frameworks, assessments and gap analysis
- auth: OAuth identities and session tokens
"""

from .base import (
    # Base classes
    TrackerBaseModel,
    PatchModel,
    TimestampMixin,
    # Errors
    ErrorDetail,
    ErrorResponse,
)
from .organizations import (
    OrganizationCreate,
    OrganizationResponse,
    OrganizationStatusUpdate,
    OrganizationUpdate,
)
from .users import (
    PermissionCheck,
    PermissionCheckResult,
    SystemRolesUpdate,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from .roles import (
    OrganizationRolesAssign,
    RoleAssignmentCreate,
    RoleAssignmentResponse,
    UserOrganizationRoleCreate,
    UserOrganizationRoleResponse,
)
from .engagements import (
    # Engagements
    EngagementCreate,
    EngagementResponse,
    EngagementUpdate,
    # Control profiles
    ControlProfileCreate,
    ControlProfileResponse,
    ControlProfileUpdate,
    # Findings
    FindingCreate,
    FindingResponse,
    OverdueItem,
    RemediationPlanCreate,
    RemediationPlanResponse,
)
from .messages import (
    MessageCreate,
    MessageResponse,
    NotificationCreate,
    NotificationResponse,
)
from .compliance import (
    AssessmentInput,
    ControlAssessmentResponse,
    GapAnalysis,
    StatusSummary,
)
from .auth import OAuthIdentity, SessionToken

__all__ = [
    # Base
    "TrackerBaseModel",
    "PatchModel",
    "TimestampMixin",
    "ErrorDetail",
    "ErrorResponse",
    # Organizations
    "OrganizationCreate",
    "OrganizationResponse",
    "OrganizationStatusUpdate",
    "OrganizationUpdate",
    # Users
    "PermissionCheck",
    "PermissionCheckResult",
    "SystemRolesUpdate",
    "UserCreate",
    "UserResponse",
    "UserUpdate",
    # Roles
    "OrganizationRolesAssign",
    "RoleAssignmentCreate",
    "RoleAssignmentResponse",
    "UserOrganizationRoleCreate",
    "UserOrganizationRoleResponse",
    # Engagements
    "EngagementCreate",
    "EngagementResponse",
    "EngagementUpdate",
    "ControlProfileCreate",
    "ControlProfileResponse",
    "ControlProfileUpdate",
    "FindingCreate",
    "FindingResponse",
    "OverdueItem",
    "RemediationPlanCreate",
    "RemediationPlanResponse",
    # Messages
    "MessageCreate",
    "MessageResponse",
    "NotificationCreate",
    "NotificationResponse",
    # Compliance
    "AssessmentInput",
    "ControlAssessmentResponse",
    "GapAnalysis",
    "StatusSummary",
    # Auth
    "OAuthIdentity",
    "SessionToken",
]
