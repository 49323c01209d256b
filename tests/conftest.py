import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_BASE_URL"] = "http://test"
os.environ["ENVIRONMENT"] = "test"

from urllib.parse import parse_qs, urlsplit  # noqa: E402

import pytest  # noqa: E402
from fastapi.responses import RedirectResponse  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.analytics.posthog import PostHogClient, get_posthog_client  # noqa: E402
from app.analytics.tracking import EventTracker, get_event_tracker  # noqa: E402
from app.database import get_db, init_db  # noqa: E402
from app.main import app as fastapi_app  # noqa: E402
from app.oauth import OAuthFlowError, OAuthIdentity, get_oauth_gateway  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeGateway:
    """Stands in for the provider round trip: redirects off-site, then hands back `identity`."""

    def __init__(self, enabled=("google", "github", "facebook")):
        self.enabled = list(enabled)
        self.identity = None
        self.fail = False

    def is_enabled(self, provider):
        return provider in self.enabled

    async def authorize_redirect(self, request, provider, redirect_uri):
        return RedirectResponse(f"https://oauth.example/{provider}/authorize?redirect_uri={redirect_uri}",
                                status_code=302)

    async def fetch_identity(self, request, provider):
        if self.fail or self.identity is None:
            raise OAuthFlowError("access_denied")
        return OAuthIdentity(
            provider=provider,
            account_id=self.identity.account_id,
            name=self.identity.name,
            email=self.identity.email,
            image=self.identity.image,
        )


class RecordingTracker(EventTracker):
    def __init__(self):
        super().__init__(api_key="")
        self.events = []

    async def capture(self, distinct_id, event, properties=None):
        self.events.append((distinct_id, event, properties or {}))
        return False

    def names(self):
        return [e[1] for e in self.events]


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def tracker():
    return RecordingTracker()


@pytest.fixture
def initialized_app(session_factory, gateway, tracker):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_oauth_gateway] = lambda: gateway
    fastapi_app.dependency_overrides[get_event_tracker] = lambda: tracker
    fastapi_app.dependency_overrides[get_posthog_client] = lambda: PostHogClient(api_key="", project_id="")
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(initialized_app):
    async with AsyncClient(transport=ASGITransport(app=initialized_app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def register_user(client, gateway):
    """Run the whole admin-registration flow and leave `client` signed in as the new user."""

    async def _register(alias="alice", provider="google", account_id=None, email=None):
        res = await client.post("/api/auth/authorize", json={"alias": alias, "provider": provider})
        assert res.status_code == 200, res.text
        auth_url = res.json()["auth_url"]

        start = urlsplit(auth_url)
        res = await client.get(f"{start.path}?{start.query}")
        assert res.status_code == 302

        gateway.identity = OAuthIdentity(
            provider=provider,
            account_id=account_id or f"{alias}-oauth-id",
            name=alias.title(),
            email=email or f"{alias}@example.com",
        )
        res = await client.get(f"/api/auth/callback/{provider}")
        assert res.status_code == 303
        setup = urlsplit(res.headers["location"])
        assert setup.path == "/api/auth/callback-setup"
        assert parse_qs(setup.query)["alias"] == [alias]

        res = await client.get(f"{setup.path}?{setup.query}")
        assert res.status_code == 303, res.headers.get("location")
        assert res.headers["location"].startswith("/auth/setup-complete")
        return res

    return _register


@pytest.fixture
async def logged_in(client, register_user):
    await register_user()
    return client
