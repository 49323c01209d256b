from urllib.parse import parse_qs, urlsplit

from httpx import ASGITransport, AsyncClient

from app.analytics.tracking import get_event_tracker
from app.database import get_db
from app.handlers.todo_handler import app as lambda_app
from app.oauth import OAuthIdentity, get_oauth_gateway


async def _todos(client):
    return (await client.get("/api/todos")).json()


async def test_index_renders_list(logged_in):
    await logged_in.post("/api/todos", json={"title": "Water plants", "tags": ["home"]})
    res = await logged_in.get("/")
    assert res.status_code == 200
    assert "todo list (alice)" in res.text
    assert "Water plants" in res.text

    res = await logged_in.get("/", params={"tags": "work"})
    assert "Water plants" not in res.text
    assert "No todos yet" in res.text


async def test_add_todo_form(logged_in):
    res = await logged_in.post("/todos", data={"title": "From form", "tags": "a, b, a", "next": "/?tags=a"})
    assert res.status_code == 303
    assert res.headers["location"] == "/?tags=a"
    todos = await _todos(logged_in)
    assert todos[0]["title"] == "From form"
    assert todos[0]["tags"] == ["a", "b"]


async def test_add_todo_form_reports_errors(logged_in):
    res = await logged_in.post("/todos", data={"title": "  ", "next": "/"})
    assert res.status_code == 303
    loc = urlsplit(res.headers["location"])
    assert loc.path == "/"
    assert "title" in parse_qs(loc.query)["error"][0]
    assert await _todos(logged_in) == []


async def test_foreign_next_url_is_ignored(logged_in):
    res = await logged_in.post("/todos", data={"title": "x", "next": "https://evil.example/"})
    assert res.headers["location"] == "/"


async def test_edit_complete_and_mark_forms(logged_in):
    todo = (await logged_in.post("/api/todos", json={"title": "old"})).json()

    res = await logged_in.get("/", params={"edit": todo["id"]})
    assert f'action="/todos/{todo["id"]}/edit"' in res.text

    await logged_in.post(f"/todos/{todo['id']}/edit", data={"title": "new", "tags": "x", "description": "d"})
    await logged_in.post(f"/todos/{todo['id']}/complete", data={})
    [updated] = await _todos(logged_in)
    assert (updated["title"], updated["tags"], updated["description"], updated["completed"]) == ("new", ["x"], "d", True)

    await logged_in.post(f"/todos/{todo['id']}/mark", data={})
    assert "clear deleted (1)" in (await logged_in.get("/")).text

    res = await logged_in.post("/todos/clear-deleted", data={"next": "/"})
    assert res.status_code == 303
    assert await _todos(logged_in) == []


async def test_edit_missing_todo_reports_error(logged_in):
    res = await logged_in.post("/todos/missing/complete", data={"next": "/"})
    assert parse_qs(urlsplit(res.headers["location"]).query)["error"] == ["Todo not found"]


async def test_login_page_flow(client, gateway, register_user):
    await register_user("quinn", "github", account_id="q-1")
    await client.post("/api/auth/signout")

    res = await client.post("/login", data={"username": ""})
    assert res.status_code == 400
    assert "Please enter your username" in res.text

    res = await client.post("/login", data={"username": "nobody"})
    assert res.status_code == 400
    assert "User not found" in res.text

    res = await client.post("/login", data={"username": " quinn "})
    assert res.status_code == 302
    assert res.headers["location"].startswith("https://oauth.example/github/authorize")

    gateway.identity = OAuthIdentity("github", "q-1")
    res = await client.get("/api/auth/callback/github")
    assert res.headers["location"] == "/"
    assert (await client.get("/")).status_code == 200


async def test_login_page_rejects_pending_user(client):
    await client.post("/api/auth/authorize", json={"alias": "rita", "provider": "google"})
    res = await client.post("/login", data={"username": "rita"})
    assert res.status_code == 400
    assert "not completed OAuth authorization" in res.text


async def test_register_page(logged_in, tracker):
    res = await logged_in.get("/register")
    assert res.status_code == 200
    assert "registration_started" in tracker.names()

    res = await logged_in.post("/register", data={"alias": "sam_2", "provider": "facebook"})
    assert res.status_code == 200
    assert "http://test/auth/start?provider=facebook" in res.text

    res = await logged_in.post("/register", data={"alias": "sam_2", "provider": "facebook"})
    assert res.status_code == 400
    assert "already taken" in res.text

    res = await logged_in.post("/register", data={"alias": "s!", "provider": "google"})
    assert res.status_code == 400


async def test_auth_pages(client):
    res = await client.get("/auth/error", params={"error": "ProviderMismatch"})
    assert "OAuth provider mismatch" in res.text
    assert "ProviderMismatch" in res.text

    res = await client.get("/auth/error", params={"error": "Whatever"})
    assert "An unexpected authentication error occurred" in res.text

    res = await client.get("/auth/setup-complete", params={"alias": "tina"})
    assert "Authorization Complete!" in res.text
    assert "tina" in res.text

    res = await client.get("/auth/start")
    assert res.headers["location"] == "/auth/error?error=Configuration"


async def test_form_actions_are_tracked(logged_in, tracker):
    await logged_in.post("/todos", data={"title": "tracked", "tags": "t"})
    [todo] = await _todos(logged_in)

    await logged_in.post(f"/todos/{todo['id']}/edit", data={"title": "tracked too"})
    await logged_in.post(f"/todos/{todo['id']}/complete", data={})
    await logged_in.post(f"/todos/{todo['id']}/complete", data={})
    await logged_in.post(f"/todos/{todo['id']}/mark", data={})
    await logged_in.post("/todos/clear-deleted", data={})

    todo_events = [e for e in tracker.events if e[1].startswith("todo_")]
    assert [e[1] for e in todo_events] == [
        "todo_created", "todo_updated", "todo_completed", "todo_updated", "todo_deleted",
    ]
    assert todo_events[0][2] == {"tags": ["t"]}
    assert todo_events[-1][2] == {"count": 1}


async def test_page_views_are_tracked(logged_in, tracker):
    await logged_in.get("/", params={"tags": "work"})
    await logged_in.get("/analytics")

    views = [e for e in tracker.events if e[1] == "$pageview"]
    assert [v[2]["$pathname"] for v in views][-2:] == ["/", "/analytics"]
    session = (await logged_in.get("/api/auth/session")).json()
    assert all(v[0] == session["user"]["id"] for v in views[-2:])
    assert views[-2][2]["$current_url"] == "http://test/?tags=work"


async def test_anonymous_page_views_are_tracked(client, tracker):
    await client.get("/login")
    await client.get("/auth/error", params={"error": "AccessDenied"})
    paths = [e[2]["$pathname"] for e in tracker.events if e[1] == "$pageview"]
    assert paths == ["/login", "/auth/error"]


async def test_lambda_app_serves_sign_in_pages(session_factory, gateway, tracker):
    paths = {getattr(r, "path", None) for r in lambda_app.routes}
    assert {"/login", "/auth/start", "/auth/error", "/auth/setup-complete"} <= paths
    assert "/" not in paths and "/analytics" not in paths

    async def override_db():
        async with session_factory() as session:
            yield session

    lambda_app.dependency_overrides[get_db] = override_db
    lambda_app.dependency_overrides[get_oauth_gateway] = lambda: gateway
    lambda_app.dependency_overrides[get_event_tracker] = lambda: tracker
    try:
        transport = ASGITransport(app=lambda_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            res = await client.post("/api/auth/authorize", json={"alias": "lena", "provider": "google"})
            start = urlsplit(res.json()["auth_url"])
            assert start.path == "/auth/start"
            res = await client.get(f"{start.path}?{start.query}")
            assert res.status_code == 302

            res = await client.get("/auth/error", params={"error": "AccessDenied"})
            assert res.status_code == 200
            assert "Access denied" in res.text
    finally:
        lambda_app.dependency_overrides.clear()
