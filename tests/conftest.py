"""
Shared fixtures for the compliance tracker tests.

Every test gets a fresh in-memory SQLite database behind a fully wired
service container, so managers are exercised exactly as the API uses them.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from compliance_tracker.core.config import Settings
from compliance_tracker.core.container import build_container
from compliance_tracker.core.security import create_access_token
from compliance_tracker.main import create_app
from compliance_tracker.models import Engagement, Organization, User


# =============================================================================
# INFRASTRUCTURE
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Test settings with one OAuth provider configured."""
    return Settings(
        environment="test",
        database_url="sqlite://",
        secret_key="test-secret-key",
        google_client_id="google-client",
        google_client_secret="google-secret",
    )


@pytest.fixture
async def engine():
    """In-memory SQLite shared across sessions through a static pool."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest.fixture
async def container(settings, engine):
    """Started service container over the test database."""
    container = build_container(settings, engine=engine)
    await container.start()
    yield container
    await container.stop()


@pytest.fixture
def store(container):
    return container.store


@pytest.fixture
async def client(settings, container):
    """HTTP client bound to the ASGI app.

    ASGITransport does not run the lifespan, so the started container is
    attached to the app directly.
    """
    app = create_app(settings, container=container)
    app.state.container = container
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


# =============================================================================
# DOMAIN DATA
# =============================================================================


def engagement_payload(org_id: str, **overrides) -> dict:
    """Minimal valid engagement creation payload."""
    start = datetime(2026, 1, 5, tzinfo=timezone.utc)
    payload = {
        "org": org_id,
        "type": "gap-assessment",
        "name": "SOC 2 Readiness",
        "frameworks": [{"framework": "SOC2", "components": ["security", "availability"]}],
        "timeline": {
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=90)).isoformat(),
        },
        "engagement_owner": "lead@auditfirm.com",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
async def admin_user(container) -> User:
    return await container.users.create_user({
        "email": "admin@auditfirm.com",
        "first_name": "Ada",
        "last_name": "Admin",
        "organization": "Audit Firm",
        "system_roles": ["admin"],
    })


@pytest.fixture
async def customer_user(container) -> User:
    return await container.users.create_user({
        "email": "sam@acme.com",
        "first_name": "Sam",
        "last_name": "Smith",
        "organization": "Acme Corp",
    })


@pytest.fixture
async def organization(container, admin_user) -> Organization:
    return await container.organizations.create_organization(
        {"name": "Acme Corp", "org_domains": ["acme.com"]},
        created_by=admin_user.email,
    )


@pytest.fixture
async def engagement(container, organization) -> Engagement:
    return await container.audit.create_engagement(engagement_payload(organization.id))


@pytest.fixture
def admin_token(settings, admin_user) -> str:
    return create_access_token(admin_user.user_id, settings)


@pytest.fixture
def admin_headers(admin_token) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def customer_headers(settings, customer_user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(customer_user.user_id, settings)}"}
