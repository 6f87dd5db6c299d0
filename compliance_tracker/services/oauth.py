"""OAuth sign-in: provider code exchange and first-login user bootstrap.

Every provider is reduced to an ``OAuthIdentity`` and then handed to
``bootstrap_oauth_user``, the one place that decides whether a login
creates a user and whether that user becomes the first admin.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from ..core.config import Settings
from ..core.errors import AuthenticationError, NotFoundError, ValidationError
from ..models import User, UserStatus, utcnow
from ..models import derived
from ..schemas.auth import OAuthIdentity
from ..validators import is_valid_domain
from .organizations import OrganizationManager, email_domain
from .persistence import DOMAIN_OWNING_STATUSES
from .users import UserRoleManager

logger = logging.getLogger(__name__)

UNKNOWN_ORGANIZATION = "Unknown Organization"
UNKNOWN_LAST_NAME = "Unknown"


@dataclass(frozen=True)
class ProviderEndpoints:
    authorize_url: str
    token_url: str
    userinfo_url: str
    scope: str


def provider_endpoints(provider: str, settings: Settings) -> ProviderEndpoints:
    if provider == "google":
        return ProviderEndpoints(
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
            scope="openid email profile",
        )
    if provider == "microsoft":
        return ProviderEndpoints(
            authorize_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
            token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
            userinfo_url="https://graph.microsoft.com/v1.0/me",
            scope="openid email profile User.Read",
        )
    if provider == "linkedin":
        return ProviderEndpoints(
            authorize_url="https://www.linkedin.com/oauth/v2/authorization",
            token_url="https://www.linkedin.com/oauth/v2/accessToken",
            userinfo_url="https://api.linkedin.com/v2/userinfo",
            scope="openid profile email",
        )
    if provider == "okta" and settings.okta_domain:
        base = f"https://{settings.okta_domain}/oauth2/default/v1"
        return ProviderEndpoints(
            authorize_url=f"{base}/authorize",
            token_url=f"{base}/token",
            userinfo_url=f"{base}/userinfo",
            scope="openid email profile",
        )
    raise NotFoundError("OAuth provider", provider)


# =============================================================================
# PROFILE EXTRACTION
# =============================================================================


def organization_from_email(email: str | None) -> str:
    """Guess an organization name from the email domain: ``a@acme.com`` -> ``Acme``."""
    if not email or "@" not in email:
        return UNKNOWN_ORGANIZATION
    label = email_domain(email).split(".")[0]
    return label.capitalize() if label else UNKNOWN_ORGANIZATION


def _split_display_name(name: str | None) -> tuple[str, str]:
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def identity_from_profile(provider: str, profile: dict) -> OAuthIdentity:
    """Normalize a provider's user-info document."""
    if provider == "microsoft":
        email = profile.get("mail") or profile.get("userPrincipalName")
        first_name = profile.get("givenName") or ""
        last_name = profile.get("surname") or ""
        organization = profile.get("companyName") or organization_from_email(email)
        provider_user_id = profile.get("id")
    else:
        email = profile.get("email")
        first_name = profile.get("given_name") or ""
        last_name = profile.get("family_name") or ""
        if not (first_name or last_name):
            first_name, last_name = _split_display_name(profile.get("name"))
        if provider == "linkedin":
            organization = profile.get("headline") or organization_from_email(email)
        else:
            organization = organization_from_email(email)
        provider_user_id = profile.get("sub") or profile.get("id")

    if not email:
        raise AuthenticationError(f"No email address provided by {provider}")
    if not provider_user_id:
        raise AuthenticationError(f"No account id provided by {provider}")

    return OAuthIdentity(
        provider=provider,
        provider_user_id=str(provider_user_id),
        email=email.strip().lower(),
        first_name=first_name,
        last_name=last_name,
        organization=organization,
    )


# =============================================================================
# PROVIDER CLIENT
# =============================================================================


class OAuthClient:
    """Authorization-code flow against the configured providers."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    async def close(self):
        await self.http_client.aclose()

    def redirect_uri(self, provider: str) -> str:
        return f"{self.settings.base_url}{self.settings.api_prefix}/auth/{provider}/callback"

    def _credentials(self, provider: str) -> tuple[str, str]:
        credentials = self.settings.oauth_credentials(provider)
        if credentials is None:
            raise NotFoundError("OAuth provider", provider)
        return credentials

    def authorization_url(self, provider: str, state: str) -> str:
        client_id, _ = self._credentials(provider)
        endpoints = provider_endpoints(provider, self.settings)
        query = urlencode({
            "client_id": client_id,
            "redirect_uri": self.redirect_uri(provider),
            "response_type": "code",
            "scope": endpoints.scope,
            "state": state,
        })
        return f"{endpoints.authorize_url}?{query}"

    async def exchange_code(self, provider: str, code: str) -> str:
        """Trade an authorization code for an access token."""
        client_id, client_secret = self._credentials(provider)
        endpoints = provider_endpoints(provider, self.settings)
        try:
            response = await self.http_client.post(
                endpoints.token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri(provider),
                    "client_id": client_id,
                    "client_secret": client_secret,
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"{provider} token exchange failed: {e}")
            raise AuthenticationError(f"{provider} token exchange failed") from e

        access_token = response.json().get("access_token")
        if not access_token:
            raise AuthenticationError(f"{provider} did not return an access token")
        return access_token

    async def fetch_profile(self, provider: str, access_token: str) -> dict:
        endpoints = provider_endpoints(provider, self.settings)
        try:
            response = await self.http_client.get(
                endpoints.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"{provider} profile request failed: {e}")
            raise AuthenticationError(f"{provider} profile request failed") from e
        return response.json()

    async def authenticate(self, provider: str, code: str) -> OAuthIdentity:
        access_token = await self.exchange_code(provider, code)
        profile = await self.fetch_profile(provider, access_token)
        return identity_from_profile(provider, profile)


# =============================================================================
# BOOTSTRAP
# =============================================================================


async def _resolve_organization(
    identity: OAuthIdentity, organizations: OrganizationManager
) -> tuple[str | None, str]:
    """Organization (id, name) for a new user's email domain.

    A domain nobody owns yet gets a pending organization that an admin
    has to activate before anyone can self-register into it.
    """
    domain = email_domain(identity.email)
    org = await organizations.find_by_domain(domain)
    if org is not None:
        return org.id, derived.display_name(org)

    if not is_valid_domain(domain):
        return None, identity.organization

    owners = await organizations.store.find_organizations_by_domain(
        domain, statuses=list(DOMAIN_OWNING_STATUSES)
    )
    if owners:
        return owners[0].id, derived.display_name(owners[0])

    org = await organizations.create_organization(
        {"name": identity.organization, "org_domains": [domain]},
        created_by=identity.email,
    )
    return org.id, org.name


async def bootstrap_oauth_user(
    identity: OAuthIdentity,
    users: UserRoleManager,
    organizations: OrganizationManager,
) -> tuple[User, bool]:
    """Sign in ``identity``, creating the user on first login.

    Returns ``(user, created)``. The very first user of the system is
    made an admin; everyone after that starts without system roles.
    """
    provider_info = {
        "id": identity.provider_user_id,
        "email": identity.email,
        "last_used": utcnow(),
    }

    existing = await users.get_user_by_email(identity.email)
    if existing is not None:
        providers = {**(existing.oauth_providers or {}), identity.provider: provider_info}
        user = await users.update_user(
            existing.user_id, {"last_login": utcnow(), "oauth_providers": providers}
        )
        logger.info(f"OAuth login via {identity.provider}: {user.user_id}")
        return user, False

    is_first_user = await users.store.count_users() == 0
    organization_id, organization = await _resolve_organization(identity, organizations)
    local_part = identity.email.split("@")[0]

    try:
        user = await users.create_user({
            "email": identity.email,
            "first_name": identity.first_name or local_part,
            "last_name": identity.last_name or UNKNOWN_LAST_NAME,
            "organization": organization or UNKNOWN_ORGANIZATION,
            "organization_id": organization_id,
            "system_roles": ["admin"] if is_first_user else [],
            "status": UserStatus.ACTIVE.value,
            "oauth_providers": {identity.provider: provider_info},
            "last_login": utcnow(),
            "email_verified": True,
        })
    except ValidationError as e:
        raise AuthenticationError(f"Cannot create user from {identity.provider} profile: {e}") from e

    logger.info(
        f"Created user {user.user_id} from {identity.provider} login"
        f"{' as first admin' if is_first_user else ''}"
    )
    return user, True
