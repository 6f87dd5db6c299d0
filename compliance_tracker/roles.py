"""Role catalog: the closed role sets plus the default role definitions.

The catalog is built once from ``Settings`` and handed to whatever needs
to validate role ids. Nothing here reads configuration on its own.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

from .core.config import Settings
from .validators import invalid_members, mixes_role_tiers

MAX_USER_ROLES = 5
WILDCARD_PERMISSION = "*"

DEFAULT_PERMISSIONS = {
    # id: (description, category, risk level)
    "user.manage": ("Manage users and roles", "user", "high"),
    "user.invite": ("Invite new users", "user", "medium"),
    "engagement.manage": ("Create and manage engagements", "engagement", "high"),
    "engagement.view": ("View engagement details", "engagement", "low"),
    "engagement.edit": ("Edit engagement settings", "engagement", "medium"),
    "system.configure": ("Configure system settings", "system", "high"),
    "controls.view": ("View control details", "data", "low"),
    "controls.edit": ("Edit control settings", "data", "medium"),
    "controls.assess": ("Assess and score controls", "data", "medium"),
    "controls.respond": ("Respond to control requests", "data", "low"),
    "controls.approve": ("Approve control responses", "data", "medium"),
    "reports.view": ("View reports and dashboards", "data", "low"),
    "team.manage": ("Manage team members", "organization", "medium"),
}

DEFAULT_USER_ROLES = {
    # id: (name, description, category, access level, permissions)
    "admin": (
        "Administrator", "Full system administration access", "system", "full",
        [WILDCARD_PERMISSION],
    ),
    "auditor": (
        "Auditor", "Conducts audits and assessments", "consultant", "engagement",
        ["engagement.view", "engagement.edit", "controls.assess"],
    ),
    "owner": (
        "Customer Owner", "Customer organization owner/administrator", "customer", "customer",
        ["engagement.view", "user.invite", "controls.view"],
    ),
    "sme": (
        "Subject Matter Expert", "Provides expertise on specific controls", "customer", "limited",
        ["controls.view", "controls.respond"],
    ),
    "controlOwner": (
        "Control Owner", "Owns and manages specific controls", "customer", "control",
        ["controls.view", "controls.edit", "controls.respond"],
    ),
    "manager": (
        "Manager", "Manages team and approves responses", "customer", "customer",
        ["controls.view", "controls.approve", "team.manage"],
    ),
    "executive": (
        "Executive", "Executive oversight and approval", "customer", "executive",
        ["engagement.view", "reports.view", "controls.approve"],
    ),
}

DEFAULT_ORGANIZATION_ROLES = {
    "pending": ("Pending", "Awaiting approval", []),
    "manage_engagements": (
        "Manage Engagements", "Create and run engagements for the organization",
        ["engagement.manage", "engagement.view", "engagement.edit"],
    ),
    "view_reports": ("View Reports", "Read-only reporting access", ["reports.view", "engagement.view"]),
    "manage_users": ("Manage Users", "Invite and manage organization members", ["user.manage", "user.invite"]),
}


@dataclass(frozen=True)
class RoleCatalog:
    """Closed sets of role ids, injected from configuration."""

    system_roles: frozenset[str]
    customer_roles: frozenset[str]
    organization_roles: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_ORGANIZATION_ROLES)
    )
    max_participants: int = 50
    available_frameworks: tuple[str, ...] = ("SOC2", "ISO27001", "NIST", "HIPAA", "PCI-DSS")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoleCatalog":
        return cls(
            system_roles=frozenset(settings.system_roles),
            customer_roles=frozenset(settings.customer_roles),
            max_participants=settings.max_participants,
            available_frameworks=tuple(settings.available_frameworks),
        )

    @property
    def engagement_roles(self) -> frozenset[str]:
        return self.system_roles | self.customer_roles

    def tier(self, role: str) -> str | None:
        if role in self.system_roles:
            return "system"
        if role in self.customer_roles:
            return "customer"
        return None

    def user_roles_problem(self, roles: Iterable[str]) -> str | None:
        """Describe why ``roles`` is not a valid user role list, or None."""
        roles = list(roles)
        if len(roles) > MAX_USER_ROLES:
            return f"A user may hold at most {MAX_USER_ROLES} roles"
        unknown = invalid_members(roles, self.engagement_roles)
        if unknown:
            return f"Unknown roles: {', '.join(unknown)}"
        if mixes_role_tiers(roles, self.system_roles, self.customer_roles):
            return (
                "Cannot mix system roles "
                f"({', '.join(sorted(self.system_roles))}) with customer roles "
                f"({', '.join(sorted(self.customer_roles))})"
            )
        return None

    def default_manageable_roles(self, role_id: str) -> list[str]:
        """Roles ``role_id`` may manage when its definition names none."""
        if role_id == "admin":
            return sorted(self.engagement_roles - {"admin"})
        if role_id == "owner":
            return sorted(self.customer_roles - {"owner"})
        return []


DEFAULT_CATALOG = RoleCatalog(
    system_roles=frozenset({"admin", "auditor"}),
    customer_roles=frozenset({"owner", "sme", "controlOwner", "manager", "executive"}),
)
