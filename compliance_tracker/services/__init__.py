"""Business logic services for the compliance tracker."""

from .audit import AuditManager
from .compliance import ComplianceFrameworksManager, compliance_score, load_framework_definition
from .helpers import ComplianceHelpers
from .messaging import MessagingManager
from .oauth import OAuthClient, bootstrap_oauth_user, identity_from_profile
from .organizations import OrganizationManager
from .permissions import PermissionService
from .persistence import PersistenceManager
from .users import UserRoleManager

__all__ = [
    # Storage
    "PersistenceManager",
    # Organizations, users & roles
    "OrganizationManager",
    "UserRoleManager",
    "PermissionService",
    # Engagements
    "AuditManager",
    "MessagingManager",
    # Compliance frameworks
    "ComplianceFrameworksManager",
    "ComplianceHelpers",
    "compliance_score",
    "load_framework_definition",
    # OAuth
    "OAuthClient",
    "bootstrap_oauth_user",
    "identity_from_profile",
]
