"""Derived fields and instance-level predicates over plain model rows."""

from datetime import datetime

from .base import as_utc, utcnow
from .models import (
    AssignmentStatus,
    ControlStatus,
    Engagement,
    EngagementControlProfile,
    Message,
    MessageStatus,
    Notification,
    Organization,
    OrganizationStatus,
    RoleAssignment,
    User,
    UserOrganizationRole,
    UserStatus,
)

# Organization statuses that can still receive domain-based sign-ups
REGISTRABLE_ORG_STATUSES = (OrganizationStatus.ACTIVE, OrganizationStatus.PAUSED)


def state_value(v):
    """Plain string value of an enum member or string."""
    return getattr(v, "value", v)


# =============================================================================
# ORGANIZATION
# =============================================================================


def is_active(org: Organization) -> bool:
    return state_value(org.status) == OrganizationStatus.ACTIVE.value


def display_name(org: Organization) -> str:
    aka = org.aka_names or {}
    return aka.get("friendly_name") or aka.get("formal_name") or org.name


def can_user_register(org: Organization, domain: str) -> bool:
    """Whether a user from ``domain`` may self-register into ``org``."""
    settings = org.settings or {}
    if not settings.get("allow_self_registration", False):
        return False
    domains = org.org_domains or []
    if not domains:
        return True
    return domain.lower() in {d.lower() for d in domains}


# =============================================================================
# USER
# =============================================================================


def full_name(user: User) -> str:
    return f"{user.first_name} {user.last_name}".strip()


def is_admin(user: User) -> bool:
    return "admin" in (user.system_roles or [])


def is_user_active(user: User) -> bool:
    return state_value(user.status) == UserStatus.ACTIVE.value


def active_engagements(user: User) -> list[dict]:
    return [e for e in (user.engagements or []) if e.get("active", True)]


def engagement_roles_for(user: User, engagement_id: str) -> list[str]:
    for entry in active_engagements(user):
        if entry.get("engagement_id") == engagement_id:
            return list(entry.get("roles", []))
    return []


# =============================================================================
# ENGAGEMENT
# =============================================================================


def participant_count(engagement: Engagement) -> int:
    return len([p for p in (engagement.participants or []) if p.get("active", True)])


def framework_list(engagement: Engagement) -> list[str]:
    return [f["framework"] for f in (engagement.frameworks or [])]


def find_participant(engagement: Engagement, user_id: str) -> dict | None:
    for participant in engagement.participants or []:
        if participant.get("user_id") == user_id:
            return participant
    return None


def has_evidence(profile: EngagementControlProfile) -> bool:
    return bool(profile.evidence)


def is_complete(profile: EngagementControlProfile) -> bool:
    return state_value(profile.status) == ControlStatus.COMPLETE.value


def public_notes(profile: EngagementControlProfile) -> list[dict]:
    return [n for n in (profile.control_notes or []) if not n.get("private", False)]


# =============================================================================
# ROLES
# =============================================================================


def is_expired(assignment: RoleAssignment | UserOrganizationRole, now: datetime | None = None) -> bool:
    expires_at = as_utc(assignment.expires_at)
    return expires_at is not None and expires_at <= (now or utcnow())


def is_assignment_effective(assignment: RoleAssignment, now: datetime | None = None) -> bool:
    return bool(assignment.active) and not is_expired(assignment, now)


def is_org_role_effective(role: UserOrganizationRole, now: datetime | None = None) -> bool:
    return state_value(role.status) == AssignmentStatus.ACTIVE.value and not is_expired(role, now)


# =============================================================================
# MESSAGING
# =============================================================================


def is_read(message: Message) -> bool:
    meta = message.meta or {}
    return state_value(message.status) == MessageStatus.READ.value or bool(meta.get("read"))


def read_count(message: Message) -> int:
    return len((message.meta or {}).get("read", []))


def is_broadcast(message: Message) -> bool:
    return not message.recipient


def is_control_level(message: Message) -> bool:
    return bool(message.control_id)


def was_read_by(message: Message, user_id: str) -> bool:
    return any(r.get("by") == user_id for r in (message.meta or {}).get("read", []))


def is_notification_live(notification: Notification, now: datetime | None = None) -> bool:
    expires_at = as_utc(notification.expires_at)
    return expires_at is None or expires_at > (now or utcnow())
