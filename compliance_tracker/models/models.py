"""SQLAlchemy ORM models for the compliance tracker.

Entities reference each other by string id only. Embedded sub-documents
(timelines, participants, evidence, notes) are JSON columns.
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Enum,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, StringIDMixin, TimestampMixin, utcnow


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class OrganizationStatus(str, PyEnum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    DISABLED = "disabled"
    ARCHIVED = "archived"


class DefaultOrganizationRole(str, PyEnum):
    """Role granted to self-registered members of an organization."""
    PENDING = "pending"
    MANAGE_ENGAGEMENTS = "manage_engagements"
    VIEW_REPORTS = "view_reports"
    MANAGE_USERS = "manage_users"


class UserStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class UserRole(str, PyEnum):
    """Every role a user or engagement participant may hold."""
    ADMIN = "admin"
    AUDITOR = "auditor"
    OWNER = "owner"
    SME = "sme"
    CONTROL_OWNER = "controlOwner"
    MANAGER = "manager"
    EXECUTIVE = "executive"


class EngagementType(str, PyEnum):
    GAP_ASSESSMENT = "gap-assessment"
    INTERNAL_AUDIT = "internal-audit"
    AUDIT_PREP = "audit-prep"
    AUDIT_FACILITATION = "audit-facilitation"


class Framework(str, PyEnum):
    SOC2 = "SOC2"
    ISO27001 = "ISO27001"
    NIST = "NIST"
    HIPAA = "HIPAA"
    PCI_DSS = "PCI-DSS"
    GDPR = "GDPR"
    CCPA = "CCPA"


class EngagementStatus(str, PyEnum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    EXTENDED = "extended"
    CLOSED = "closed"


class EngagementStage(str, PyEnum):
    """Engagement phases in their only legal order."""
    ONBOARDING = "onboarding"
    FIELDWORK = "fieldwork"
    DELIVERABLE_CREATION = "deliverable creation"
    DELIVERABLE_REVIEW = "deliverable review"
    WRAP_UP = "wrap-up"


class Severity(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ControlStatus(str, PyEnum):
    OPEN = "open"
    RESPONDED = "responded"
    UNDER_REVIEW = "under_review"
    ACTION_REQUIRED = "action_required"
    COMPLETE = "complete"


class PermissionCategory(str, PyEnum):
    SYSTEM = "system"
    ORGANIZATION = "organization"
    ENGAGEMENT = "engagement"
    USER = "user"
    DATA = "data"


class RiskLevel(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RoleCategory(str, PyEnum):
    SYSTEM = "system"
    CONSULTANT = "consultant"
    CUSTOMER = "customer"


class AccessLevel(str, PyEnum):
    FULL = "full"
    ENGAGEMENT = "engagement"
    CUSTOMER = "customer"
    CONTROL = "control"
    LIMITED = "limited"
    VIEW = "view"
    EXECUTIVE = "executive"


class RoleType(str, PyEnum):
    SYSTEM = "system"
    ORGANIZATION = "organization"
    ENGAGEMENT = "engagement"


class AssignmentStatus(str, PyEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"


class MessageStatus(str, PyEnum):
    DRAFT = "draft"
    SENT = "sent"
    READ = "read"
    DELETED = "deleted"


class MessagePriority(str, PyEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MessageType(str, PyEnum):
    MESSAGE = "message"
    NOTIFICATION = "notification"
    SYSTEM = "system"
    REQUEST = "request"
    RESPONSE = "response"


class NotificationType(str, PyEnum):
    ENGAGEMENT_INVITE = "engagement_invite"
    CONTROL_ASSIGNED = "control_assigned"
    EVIDENCE_REQUESTED = "evidence_requested"
    FINDING_CREATED = "finding_created"
    STATUS_CHANGED = "status_changed"
    MENTION = "mention"
    DEADLINE_REMINDER = "deadline_reminder"
    SYSTEM_ANNOUNCEMENT = "system_announcement"


class ComplianceStatus(str, PyEnum):
    COMPLIANT = "compliant"
    NON_COMPLIANT = "non-compliant"
    PARTIALLY_COMPLIANT = "partially-compliant"
    NOT_APPLICABLE = "not-applicable"


class MaturityLevel(str, PyEnum):
    INITIAL = "initial"
    DEVELOPING = "developing"
    DEFINED = "defined"
    MANAGED = "managed"
    OPTIMIZED = "optimized"


class FindingStatus(str, PyEnum):
    OPEN = "open"
    IN_REMEDIATION = "in-remediation"
    REMEDIATED = "remediated"
    CLOSED = "closed"


class RemediationStatus(str, PyEnum):
    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


# Shared by several tables; one named database type each
SEVERITY_TYPE = _enum(Severity, "severity")
PRIORITY_TYPE = _enum(MessagePriority, "message_priority")


# =============================================================================
# ORGANIZATION & USER MODELS
# =============================================================================


class Organization(Base, TimestampMixin):
    """Customer organization under audit."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    aka_names: Mapped[dict] = mapped_column(default=dict)
    status: Mapped[OrganizationStatus] = mapped_column(
        _enum(OrganizationStatus, "organization_status"),
        default=OrganizationStatus.PENDING,
        nullable=False,
        index=True,
    )
    org_domains: Mapped[list] = mapped_column(default=list)
    settings: Mapped[dict] = mapped_column(default=dict)
    crm_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_by: Mapped[str] = mapped_column(String(254), nullable=False)


class OrganizationDomain(Base):
    """Lookup rows mirroring ``Organization.org_domains`` for domain queries."""

    __tablename__ = "organization_domains"
    __table_args__ = (
        UniqueConstraint("organization_id", "domain", name="uq_organization_domain"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    domain: Mapped[str] = mapped_column(String(253), nullable=False, index=True)


class User(Base, TimestampMixin):
    """Platform user, either auditor-side or customer-side."""

    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String(150), primary_key=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    organization: Mapped[str] = mapped_column(String(200), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)
    title: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    system_roles: Mapped[list] = mapped_column(default=list)
    engagements: Mapped[list] = mapped_column(default=list)
    preferences: Mapped[dict] = mapped_column(default=dict)
    status: Mapped[UserStatus] = mapped_column(
        _enum(UserStatus, "user_status"),
        default=UserStatus.PENDING,
        nullable=False,
        index=True,
    )
    oauth_providers: Mapped[dict] = mapped_column(default=dict)
    last_login: Mapped[datetime | None] = mapped_column(nullable=True)

    # Internal-only; never serialized
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_reset_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_reset_expires: Mapped[datetime | None] = mapped_column(nullable=True)
    email_verification_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


# =============================================================================
# ENGAGEMENT MODELS
# =============================================================================


class Engagement(Base, TimestampMixin):
    """An audit engagement for one organization."""

    __tablename__ = "engagements"

    id: Mapped[str] = mapped_column(String(150), primary_key=True)
    org: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    type: Mapped[EngagementType] = mapped_column(
        _enum(EngagementType, "engagement_type"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    frameworks: Mapped[list] = mapped_column(default=list)
    status: Mapped[EngagementStatus] = mapped_column(
        _enum(EngagementStatus, "engagement_status"),
        default=EngagementStatus.PENDING,
        nullable=False,
        index=True,
    )
    stage: Mapped[EngagementStage] = mapped_column(
        _enum(EngagementStage, "engagement_stage"),
        default=EngagementStage.ONBOARDING,
        nullable=False,
    )
    timeline: Mapped[dict] = mapped_column(default=dict)
    engagement_owner: Mapped[str] = mapped_column(String(254), nullable=False)
    participants: Mapped[list] = mapped_column(default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    portal_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", default=dict)


class EngagementControlProfile(Base, StringIDMixin, TimestampMixin):
    """Per-engagement state of one control requirement."""

    __tablename__ = "engagement_control_profiles"
    __table_args__ = (
        UniqueConstraint("engagement_id", "requirement_id", name="uq_engagement_requirement"),
        Index("ix_control_profiles_owner_status", "control_owner", "status"),
    )

    engagement_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    requirement_id: Mapped[str] = mapped_column(String(100), nullable=False)
    included: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    justification: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    control_owner: Mapped[str | None] = mapped_column(String(254), nullable=True)
    status: Mapped[ControlStatus] = mapped_column(
        _enum(ControlStatus, "control_status"),
        default=ControlStatus.OPEN,
        nullable=False,
    )
    owner_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence: Mapped[list] = mapped_column(default=list)
    control_notes: Mapped[list] = mapped_column(default=list)
    prior_submissions: Mapped[list] = mapped_column(default=list)
    risk_rating: Mapped[Severity | None] = mapped_column(
        SEVERITY_TYPE, nullable=True
    )
    finding: Mapped[dict] = mapped_column(default=dict)


# =============================================================================
# ROLE & PERMISSION MODELS
# =============================================================================


class Permission(Base, TimestampMixin):
    """A single grantable capability, e.g. ``controls.view``."""

    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    category: Mapped[PermissionCategory] = mapped_column(
        _enum(PermissionCategory, "permission_category"), nullable=False
    )
    risk_level: Mapped[RiskLevel] = mapped_column(
        _enum(RiskLevel, "risk_level"), default=RiskLevel.LOW, nullable=False
    )


class RoleDefinitionMixin:
    """Columns shared by every role definition table."""

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    permissions: Mapped[list] = mapped_column(default=list)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class SystemRole(Base, RoleDefinitionMixin, TimestampMixin):
    __tablename__ = "system_roles"


class OrganizationRole(Base, RoleDefinitionMixin, TimestampMixin):
    __tablename__ = "organization_roles"


class EngagementRole(Base, RoleDefinitionMixin, TimestampMixin):
    """Role a participant holds inside one engagement."""

    __tablename__ = "engagement_roles"

    category: Mapped[RoleCategory] = mapped_column(
        _enum(RoleCategory, "role_category"), nullable=False
    )
    can_manage_roles: Mapped[list] = mapped_column(default=list)
    access_level: Mapped[AccessLevel] = mapped_column(
        _enum(AccessLevel, "access_level"), nullable=False
    )


class RoleAssignment(Base, StringIDMixin, TimestampMixin):
    """Grants a role to a user, optionally scoped to an org or engagement."""

    __tablename__ = "role_assignments"
    __table_args__ = (
        Index("ix_role_assignments_user_active", "user_id", "active"),
    )

    user_id: Mapped[str] = mapped_column(String(150), nullable=False)
    role_type: Mapped[RoleType] = mapped_column(_enum(RoleType, "role_type"), nullable=False)
    role_id: Mapped[str] = mapped_column(String(100), nullable=False)
    organization_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    engagement_id: Mapped[str | None] = mapped_column(String(150), nullable=True)
    assigned_by: Mapped[str] = mapped_column(String(254), nullable=False)
    assigned_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)


class UserOrganizationRole(Base, StringIDMixin, TimestampMixin):
    """A user's role set inside one organization."""

    __tablename__ = "user_organization_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_user_organization"),
    )

    user_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    roles: Mapped[list] = mapped_column(default=list)
    assigned_by: Mapped[str] = mapped_column(String(150), nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[AssignmentStatus] = mapped_column(
        _enum(AssignmentStatus, "assignment_status"),
        default=AssignmentStatus.ACTIVE,
        nullable=False,
    )
    meta: Mapped[dict] = mapped_column("metadata", default=dict)


# =============================================================================
# MESSAGING MODELS
# =============================================================================


class Message(Base, StringIDMixin, TimestampMixin):
    """Engagement- or control-scoped message."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_engagement_created", "engagement_id", "created_at"),
        Index("ix_messages_to_status", "to", "status"),
    )

    engagement_id: Mapped[str] = mapped_column(String(150), nullable=False)
    control_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    sender: Mapped[str] = mapped_column("from", String(254), nullable=False)
    recipient: Mapped[str | None] = mapped_column("to", String(254), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    mentions: Mapped[list] = mapped_column(default=list)
    status: Mapped[MessageStatus] = mapped_column(
        _enum(MessageStatus, "message_status"),
        default=MessageStatus.DRAFT,
        nullable=False,
    )
    meta: Mapped[dict] = mapped_column(default=dict)
    thread_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    reply_to: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attachments: Mapped[list] = mapped_column(default=list)
    priority: Mapped[MessagePriority] = mapped_column(
        PRIORITY_TYPE,
        default=MessagePriority.NORMAL,
        nullable=False,
    )
    type: Mapped[MessageType] = mapped_column(
        _enum(MessageType, "message_type"),
        default=MessageType.MESSAGE,
        nullable=False,
    )
    flags: Mapped[dict] = mapped_column(default=dict)


class Notification(Base, StringIDMixin):
    """System-generated notice addressed to a single user."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
    )

    user_id: Mapped[str] = mapped_column(String(150), nullable=False)
    type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(1000), nullable=False)
    related_entity: Mapped[dict | None] = mapped_column(nullable=True)
    priority: Mapped[MessagePriority] = mapped_column(
        PRIORITY_TYPE,
        default=MessagePriority.NORMAL,
        nullable=False,
    )
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    action_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    action_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# COMPLIANCE & FINDINGS MODELS
# =============================================================================


class ControlAssessment(Base, StringIDMixin, TimestampMixin):
    """Latest assessment of one framework control."""

    __tablename__ = "control_assessments"
    __table_args__ = (
        UniqueConstraint("framework", "control_id", name="uq_framework_control"),
    )

    framework: Mapped[str] = mapped_column(String(50), nullable=False)
    control_id: Mapped[str] = mapped_column(String(100), nullable=False)
    assessor: Mapped[str | None] = mapped_column(String(254), nullable=True)
    status: Mapped[ComplianceStatus] = mapped_column(
        _enum(ComplianceStatus, "compliance_status"), nullable=False
    )
    maturity_level: Mapped[MaturityLevel | None] = mapped_column(
        _enum(MaturityLevel, "maturity_level"), nullable=True
    )
    evidence: Mapped[list] = mapped_column(default=list)
    findings: Mapped[list] = mapped_column(default=list)
    remediation: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_assessment_date: Mapped[datetime | None] = mapped_column(nullable=True)
    assessment_date: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Finding(Base, StringIDMixin, TimestampMixin):
    """Audit finding raised against a control in an engagement."""

    __tablename__ = "findings"

    engagement_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    control_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    framework: Mapped[str | None] = mapped_column(String(50), nullable=True)
    severity: Mapped[Severity] = mapped_column(SEVERITY_TYPE, nullable=False)
    status: Mapped[FindingStatus] = mapped_column(
        _enum(FindingStatus, "finding_status"),
        default=FindingStatus.OPEN,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence: Mapped[list] = mapped_column(default=list)
    recommendation: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    assigned_to: Mapped[str | None] = mapped_column(String(254), nullable=True)


class RemediationPlan(Base, StringIDMixin, TimestampMixin):
    """Plan to close out a finding."""

    __tablename__ = "remediation_plans"

    finding_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[RemediationStatus] = mapped_column(
        _enum(RemediationStatus, "remediation_status"),
        default=RemediationStatus.PLANNED,
        nullable=False,
    )
    assigned_to: Mapped[str | None] = mapped_column(String(254), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    target_date: Mapped[datetime | None] = mapped_column(nullable=True)
    actions: Mapped[list] = mapped_column(default=list)
    progress: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    completed_date: Mapped[datetime | None] = mapped_column(nullable=True)
