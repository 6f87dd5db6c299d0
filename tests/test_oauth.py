"""
Tests for OAuth sign-in.

Provider HTTP traffic goes through ``httpx.MockTransport``; nothing leaves
the process.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from compliance_tracker.core.errors import AuthenticationError, NotFoundError
from compliance_tracker.core.security import create_state_token, verify_state_token
from compliance_tracker.schemas.auth import OAuthIdentity
from compliance_tracker.services.oauth import (
    OAuthClient,
    bootstrap_oauth_user,
    identity_from_profile,
    organization_from_email,
)

GOOGLE_PROFILE = {
    "sub": "google-123",
    "email": "Sam@Acme.com",
    "given_name": "Sam",
    "family_name": "Smith",
}


def mock_google(token_status=200, profile=None):
    """Handler answering the Google token and userinfo endpoints."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.host == "oauth2.googleapis.com":
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "provider-token"})
        if request.url.host == "openidconnect.googleapis.com":
            assert request.headers["Authorization"] == "Bearer provider-token"
            return httpx.Response(200, json=profile or GOOGLE_PROFILE)
        return httpx.Response(404)

    return handler, calls


def identity(email="sam@acme.com", **overrides) -> OAuthIdentity:
    values = {
        "provider": "google",
        "provider_user_id": "google-123",
        "email": email,
        "first_name": "Sam",
        "last_name": "Smith",
        "organization": organization_from_email(email),
    }
    values.update(overrides)
    return OAuthIdentity(**values)


# =============================================================================
# TEST: PROFILE EXTRACTION
# =============================================================================


class TestProfiles:
    def test_google_profile(self):
        result = identity_from_profile("google", GOOGLE_PROFILE)
        assert result.email == "sam@acme.com"
        assert result.first_name == "Sam"
        assert result.organization == "Acme"
        assert result.provider_user_id == "google-123"

    def test_google_display_name_fallback(self):
        result = identity_from_profile(
            "google", {"sub": "1", "email": "a@b.io", "name": "Grace Brewster Hopper"}
        )
        assert (result.first_name, result.last_name) == ("Grace", "Brewster Hopper")

    def test_microsoft_profile(self):
        result = identity_from_profile("microsoft", {
            "id": "ms-9",
            "userPrincipalName": "pat@contoso.com",
            "givenName": "Pat",
            "surname": "Lee",
            "companyName": "Contoso Ltd",
        })
        assert result.email == "pat@contoso.com"
        assert result.organization == "Contoso Ltd"

    def test_linkedin_profile_uses_headline(self):
        result = identity_from_profile("linkedin", {
            "sub": "li-1",
            "email": "kim@globex.com",
            "given_name": "Kim",
            "family_name": "Park",
            "headline": "Globex Security",
        })
        assert result.organization == "Globex Security"

    def test_profile_without_email_is_rejected(self):
        with pytest.raises(AuthenticationError):
            identity_from_profile("google", {"sub": "1"})

    def test_organization_from_email(self):
        assert organization_from_email("a@acme.co.uk") == "Acme"
        assert organization_from_email(None) == "Unknown Organization"


# =============================================================================
# TEST: PROVIDER CLIENT
# =============================================================================


class TestOAuthClient:
    def test_authorization_url(self, settings):
        client = OAuthClient(settings, http_client=httpx.AsyncClient())
        url = urlparse(client.authorization_url("google", "state-1"))
        query = parse_qs(url.query)

        assert url.netloc == "accounts.google.com"
        assert query["client_id"] == ["google-client"]
        assert query["state"] == ["state-1"]
        assert query["redirect_uri"] == ["http://localhost:8000/api/v1/auth/google/callback"]

    def test_unconfigured_provider(self, settings):
        client = OAuthClient(settings, http_client=httpx.AsyncClient())
        with pytest.raises(NotFoundError):
            client.authorization_url("microsoft", "state-1")

    async def test_authenticate(self, settings):
        handler, calls = mock_google()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = OAuthClient(settings, http_client=http)
            result = await client.authenticate("google", "auth-code")

        assert result.email == "sam@acme.com"
        token_request = parse_qs(calls[0].content.decode())
        assert token_request["code"] == ["auth-code"]
        assert token_request["client_secret"] == ["google-secret"]

    async def test_failed_exchange(self, settings):
        handler, _ = mock_google(token_status=400)
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = OAuthClient(settings, http_client=http)
            with pytest.raises(AuthenticationError):
                await client.authenticate("google", "bad-code")


# =============================================================================
# TEST: STATE COOKIE
# =============================================================================


class TestStateCookie:
    def test_matching_state_passes(self, settings):
        token = create_state_token("state-1", "google", settings)
        verify_state_token(token, "state-1", "google", settings)

    @pytest.mark.parametrize(
        "state, provider",
        [("state-2", "google"), ("state-1", "microsoft")],
    )
    def test_mismatch_is_rejected(self, settings, state, provider):
        token = create_state_token("state-1", "google", settings)
        with pytest.raises(AuthenticationError):
            verify_state_token(token, state, provider, settings)

    def test_missing_or_foreign_cookie_is_rejected(self, settings):
        with pytest.raises(AuthenticationError):
            verify_state_token(None, "state-1", "google", settings)

        other = settings.model_copy(update={"secret_key": "another-secret-key-for-signing"})
        token = create_state_token("state-1", "google", other)
        with pytest.raises(AuthenticationError):
            verify_state_token(token, "state-1", "google", settings)


# =============================================================================
# TEST: BOOTSTRAP
# =============================================================================


class TestBootstrap:
    async def test_first_user_becomes_admin(self, container):
        user, created = await bootstrap_oauth_user(
            identity(), container.users, container.organizations
        )

        assert created
        assert user.system_roles == ["admin"]
        assert user.email_verified is True
        assert user.oauth_providers["google"]["id"] == "google-123"

        # An unknown domain gets a pending organization
        org = await container.organizations.get_organization(user.organization_id)
        assert org.status == "pending"
        assert org.org_domains == ["acme.com"]

    async def test_later_users_share_the_organization(self, container):
        first, _ = await bootstrap_oauth_user(identity(), container.users, container.organizations)
        second, created = await bootstrap_oauth_user(
            identity("bo@acme.com", provider_user_id="google-456", first_name="", last_name=""),
            container.users,
            container.organizations,
        )

        assert created
        assert second.system_roles == []
        assert second.organization_id == first.organization_id
        assert second.first_name == "bo"
        assert second.last_name == "Unknown"

    async def test_active_organization_is_found_by_domain(self, container, admin_user):
        org = await container.organizations.create_organization(
            {"name": "Globex Corporation", "org_domains": ["globex.com"]},
            created_by=admin_user.email,
        )
        await container.organizations.set_status(org.id, "active")

        user, _ = await bootstrap_oauth_user(
            identity("kim@globex.com"), container.users, container.organizations
        )
        assert user.organization_id == org.id
        assert user.organization == "Globex Corporation"

    async def test_returning_user_is_updated(self, container):
        user, _ = await bootstrap_oauth_user(identity(), container.users, container.organizations)
        again, created = await bootstrap_oauth_user(
            identity(provider="microsoft", provider_user_id="ms-9"),
            container.users,
            container.organizations,
        )

        assert not created
        assert again.user_id == user.user_id
        assert set(again.oauth_providers) == {"google", "microsoft"}
