from urllib.parse import parse_qs, urlsplit

import pytest

from app.exceptions import InvalidAliasError
from app.oauth import OAuthIdentity
from app.repositories.user_repo import UserRepository
from app.services.auth_service import AuthService


def _location(res):
    return res.headers["location"]


def _error_code(res):
    loc = urlsplit(_location(res))
    assert loc.path == "/auth/error"
    return parse_qs(loc.query)["error"][0]


async def test_authorize_creates_pending_user(client, db):
    res = await client.post("/api/auth/authorize", json={"alias": " carol ", "provider": "github"})
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "User created, authorization required"

    url = urlsplit(body["auth_url"])
    assert (url.scheme, url.netloc, url.path) == ("http", "test", "/auth/start")
    params = parse_qs(url.query)
    assert params["provider"] == ["github"]
    assert params["callbackUrl"] == ["http://test/api/auth/callback-setup?alias=carol"]

    user = await UserRepository().get_by_alias(db, "carol")
    assert user.id == body["user_id"]
    assert user.is_pending
    assert user.oauth_id.startswith("temp-")


async def test_authorize_validation(client):
    for payload in (
        {"alias": "ab", "provider": "google"},
        {"alias": "has space", "provider": "google"},
        {"alias": "x" * 21, "provider": "google"},
        {"alias": "dave", "provider": "twitter"},
        {"alias": "dave"},
    ):
        res = await client.post("/api/auth/authorize", json=payload)
        assert res.status_code == 400, payload
        assert res.json()["error"] == "Invalid input data"


async def test_authorize_duplicate_alias(client):
    await client.post("/api/auth/authorize", json={"alias": "erin", "provider": "google"})
    res = await client.post("/api/auth/authorize", json={"alias": "erin", "provider": "github"})
    assert res.status_code == 409
    assert res.json()["error"] == "Alias already exists"


async def test_lookup(client, register_user):
    res = await client.post("/api/auth/lookup", json={"username": "nobody"})
    assert res.status_code == 404
    assert res.json()["error"] == "User not found"

    await client.post("/api/auth/authorize", json={"alias": "pending_one", "provider": "facebook"})
    res = await client.post("/api/auth/lookup", json={"username": "pending_one"})
    assert res.status_code == 400
    assert "not completed OAuth authorization" in res.json()["error"]

    res = await client.post("/api/auth/lookup", json={"username": "  "})
    assert res.status_code == 400

    await register_user("frank", "github")
    res = await client.post("/api/auth/lookup", json={"username": " frank "})
    assert res.status_code == 200
    assert res.json() == {"alias": "frank", "provider": "github"}


async def test_full_registration_signs_user_in(client, register_user, tracker):
    res = await client.get("/api/auth/session")
    assert res.json() == {}

    await register_user("grace", "google", account_id="g-123", email="grace@example.com")

    res = await client.get("/api/auth/session")
    body = res.json()
    assert body["user"]["alias"] == "grace"
    assert body["user"]["email"] == "grace@example.com"
    assert body["provider"] == "google"
    assert body["provider_id"] == "g-123"
    assert "registration_completed" in tracker.names()
    assert "oauth_redirect_started" in tracker.names()


async def test_returning_user_signs_in(client, gateway, register_user, db):
    await register_user("heidi", "github", account_id="gh-1")
    await client.get("/api/auth/signout")
    assert (await client.get("/api/auth/session")).json() == {}

    res = await client.get("/api/auth/signin/github", params={"callbackUrl": "http://test/?tags=work"})
    assert res.status_code == 302
    assert _location(res).startswith("https://oauth.example/github/authorize")

    gateway.identity = OAuthIdentity("github", "gh-1", name="Heidi H", email="new@example.com")
    res = await client.get("/api/auth/callback/github")
    assert res.status_code == 303
    assert _location(res) == "/?tags=work"

    session = (await client.get("/api/auth/session")).json()
    assert session["user"]["alias"] == "heidi"
    # profile refreshed from the provider
    user = await UserRepository().get_by_alias(db, "heidi")
    assert user.email == "new@example.com"
    assert user.oauth_name == "Heidi H"


async def test_unknown_identity_is_denied(client, gateway):
    await client.get("/api/auth/signin/google")
    gateway.identity = OAuthIdentity("google", "stranger")
    res = await client.get("/api/auth/callback/google")
    assert _error_code(res) == "AccessDenied"
    assert (await client.get("/api/auth/session")).json() == {}


async def test_pending_user_of_other_provider_is_not_claimed(client, gateway, db):
    await client.post("/api/auth/authorize", json={"alias": "ivan", "provider": "facebook"})
    gateway.identity = OAuthIdentity("google", "someone")
    res = await client.get("/api/auth/callback/google")
    assert _error_code(res) == "AccessDenied"
    user = await UserRepository().get_by_alias(db, "ivan")
    assert user.is_pending


async def test_newest_pending_user_is_claimed(client, gateway, db):
    await client.post("/api/auth/authorize", json={"alias": "older", "provider": "google"})
    await client.post("/api/auth/authorize", json={"alias": "newer", "provider": "google"})

    gateway.identity = OAuthIdentity("google", "acct-9")
    res = await client.get("/api/auth/callback/google")
    assert res.status_code == 303

    repo = UserRepository()
    assert (await repo.get_by_alias(db, "newer")).oauth_id == "acct-9"
    assert (await repo.get_by_alias(db, "older")).is_pending
    # linked but not authorized: no session user yet
    assert (await client.get("/api/auth/session")).json() == {}


async def test_oauth_failure(client, gateway):
    gateway.fail = True
    res = await client.get("/api/auth/callback/google")
    assert _error_code(res) == "OAuthCallback"


async def test_unconfigured_provider(client, gateway):
    gateway.enabled = ["google"]
    res = await client.get("/api/auth/signin/facebook")
    assert _error_code(res) == "Configuration"
    res = await client.get("/api/auth/callback/facebook")
    assert _error_code(res) == "Configuration"


async def test_callback_setup_errors(client, gateway, register_user):
    res = await client.get("/api/auth/callback-setup")
    assert _error_code(res) == "MissingAlias"

    res = await client.get("/api/auth/callback-setup", params={"alias": "judy"})
    assert _error_code(res) == "NoSession"

    await client.post("/api/auth/authorize", json={"alias": "judy", "provider": "github"})
    await client.post("/api/auth/authorize", json={"alias": "ken", "provider": "google"})

    # session identity for google; judy registered with github
    gateway.identity = OAuthIdentity("google", "ken-id")
    await client.get("/api/auth/callback/google")
    res = await client.get("/api/auth/callback-setup", params={"alias": "judy"})
    assert _error_code(res) == "ProviderMismatch"

    res = await client.get("/api/auth/callback-setup", params={"alias": "nobody"})
    assert _error_code(res) == "UserNotFound"

    await client.post("/api/auth/authorize", json={"alias": "leo", "provider": "google"})
    res = await client.get("/api/auth/callback-setup", params={"alias": "leo"})
    assert _error_code(res) == "OAuthNotCompleted"


async def test_callback_setup_rejects_someone_elses_identity(client, gateway):
    await client.post("/api/auth/authorize", json={"alias": "mallory", "provider": "google"})
    gateway.identity = OAuthIdentity("google", "mallory-id")
    await client.get("/api/auth/callback/google")

    # a second pending user linked from a different browser
    await client.post("/api/auth/authorize", json={"alias": "victim", "provider": "google"})
    gateway.identity = OAuthIdentity("google", "victim-id")
    await client.get("/api/auth/callback/google")
    gateway.identity = OAuthIdentity("google", "mallory-id")
    await client.get("/api/auth/callback/google")

    res = await client.get("/api/auth/callback-setup", params={"alias": "victim"})
    assert _error_code(res) == "IdentityMismatch"


async def test_callback_setup_for_authorized_user_is_idempotent(client, register_user):
    await register_user("nina", "google")
    res = await client.get("/api/auth/callback-setup", params={"alias": "nina"})
    assert res.status_code == 303
    assert _location(res) == "/auth/setup-complete?alias=nina"


async def test_callback_setup_does_not_hand_out_authorized_users(client, gateway, register_user):
    await register_user("nina", "google")
    await client.get("/api/auth/signout")

    await client.post("/api/auth/authorize", json={"alias": "peggy", "provider": "google"})
    gateway.identity = OAuthIdentity("google", "peggy-id")
    await client.get("/api/auth/callback/google")

    res = await client.get("/api/auth/callback-setup", params={"alias": "nina"})
    assert _error_code(res) == "AlreadyAuthorized"
    assert (await client.get("/api/auth/session")).json() == {}


async def test_revoked_user_loses_session(client, register_user, db):
    await register_user("oscar", "github")
    assert (await client.get("/api/todos")).status_code == 200

    await AuthService().revoke(db, "oscar")

    res = await client.get("/api/todos")
    assert res.status_code == 401
    assert (await client.get("/api/auth/session")).json() == {}


async def test_signout(logged_in):
    res = await logged_in.post("/api/auth/signout")
    assert res.status_code == 303
    assert _location(res) == "/login"
    assert (await logged_in.get("/api/todos")).status_code == 401


async def test_revoked_user_cannot_reauthorize(client, gateway, register_user, db):
    await register_user("oscar", "github", account_id="gh-oscar")
    user = await AuthService().revoke(db, "oscar")
    assert user.is_revoked
    # an open placeholder must not be handed to the revoked account either
    await client.post("/api/auth/authorize", json={"alias": "newbie", "provider": "github"})

    gateway.identity = OAuthIdentity("github", "gh-oscar")
    res = await client.get("/api/auth/callback/github")
    assert _error_code(res) == "AccessDenied"

    res = await client.get("/api/auth/callback-setup", params={"alias": "oscar"})
    assert _error_code(res) == "AccessDenied"
    assert (await client.get("/api/todos")).status_code == 401

    await db.refresh(user)
    assert user.is_authorized is False
    assert (await UserRepository().get_by_alias(db, "newbie")).is_pending


async def test_authorize_rejects_bad_alias_in_service(db):
    with pytest.raises(InvalidAliasError):
        await AuthService().authorize(db, "bad alias!!", "google")
    assert await UserRepository().get_by_alias(db, "bad alias!!") is None
