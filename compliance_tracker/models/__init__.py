"""SQLAlchemy ORM Models for the compliance tracker."""

from .base import Base, StringIDMixin, TimestampMixin, as_utc, new_id, utcnow
from .models import (
    # Enums
    AccessLevel,
    AssignmentStatus,
    ComplianceStatus,
    ControlStatus,
    DefaultOrganizationRole,
    EngagementStage,
    EngagementStatus,
    EngagementType,
    FindingStatus,
    Framework,
    MaturityLevel,
    MessagePriority,
    MessageStatus,
    MessageType,
    NotificationType,
    OrganizationStatus,
    PermissionCategory,
    RemediationStatus,
    RiskLevel,
    RoleCategory,
    RoleType,
    Severity,
    UserRole,
    UserStatus,
    # Organization & User
    Organization,
    OrganizationDomain,
    User,
    # Engagements
    Engagement,
    EngagementControlProfile,
    # Roles
    EngagementRole,
    OrganizationRole,
    Permission,
    RoleAssignment,
    SystemRole,
    UserOrganizationRole,
    # Messaging
    Message,
    Notification,
    # Compliance
    ControlAssessment,
    Finding,
    RemediationPlan,
)

__all__ = [
    # Base
    "Base",
    "StringIDMixin",
    "TimestampMixin",
    "as_utc",
    "new_id",
    "utcnow",
    # Enums
    "AccessLevel",
    "AssignmentStatus",
    "ComplianceStatus",
    "ControlStatus",
    "DefaultOrganizationRole",
    "EngagementStage",
    "EngagementStatus",
    "EngagementType",
    "FindingStatus",
    "Framework",
    "MaturityLevel",
    "MessagePriority",
    "MessageStatus",
    "MessageType",
    "NotificationType",
    "OrganizationStatus",
    "PermissionCategory",
    "RemediationStatus",
    "RiskLevel",
    "RoleCategory",
    "RoleType",
    "Severity",
    "UserRole",
    "UserStatus",
    # Organization & User
    "Organization",
    "OrganizationDomain",
    "User",
    # Engagements
    "Engagement",
    "EngagementControlProfile",
    # Roles
    "EngagementRole",
    "OrganizationRole",
    "Permission",
    "RoleAssignment",
    "SystemRole",
    "UserOrganizationRole",
    # Messaging
    "Message",
    "Notification",
    # Compliance
    "ControlAssessment",
    "Finding",
    "RemediationPlan",
]
