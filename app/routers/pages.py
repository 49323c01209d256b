import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, Form, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app import config
from app.analytics.posthog import PostHogClient, get_posthog_client
from app.analytics.tracking import EventTracker, get_event_tracker
from app.board import Board, TodoFilters, parse_tags
from app.database import get_db
from app.dependencies import auth_service, get_board, get_page_user
from app.exceptions import (
    AliasExistsError,
    AnalyticsNotConfiguredError,
    TodoAppError,
    UserNotAuthorizedError,
    UserNotFoundError,
)
from app.models.user import User
from app.oauth import OAuthGateway, get_oauth_gateway
from app.routers.analytics_router import collect_dashboard
from app.routers.auth_router import safe_callback, start_sign_in
from app.schemas.todo import TodoCreate, TodoUpdate
from app.schemas.user import AuthorizeRequest
from app.services.todo_service import TodoService, completion_event

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

# sign-in pages; every deployment that issues auth links needs these
auth_pages = APIRouter(include_in_schema=False)
# the todo UI
router = APIRouter(include_in_schema=False)
service = TodoService()

AUTH_ERROR_MESSAGES = {
    "AccessDenied": "Access denied. You may not be registered in our system. Please contact your administrator.",
    "Configuration": "OAuth configuration error. Please contact your administrator.",
    "OAuthSignin": "OAuth sign in error. Please try again.",
    "OAuthCallback": "OAuth callback error. Please try again.",
    "SessionRequired": "Session required. Please sign in.",
    "MissingAlias": "Missing user alias. Please try again.",
    "NoSession": "No active session. Please complete OAuth authorization first.",
    "UserNotFound": "User not found. Please contact your administrator.",
    "AlreadyAuthorized": "User is already authorized. You can now login.",
    "ProviderMismatch": "OAuth provider mismatch. Please use the correct provider.",
    "OAuthNotCompleted": "OAuth authorization not completed. Please try again.",
    "IdentityMismatch": "This OAuth account does not belong to the user being set up.",
    "InternalError": "Internal error during authorization setup. Please try again.",
}
DEFAULT_AUTH_ERROR = "An unexpected authentication error occurred. Please try again."


def _back(next_url: Optional[str], **extra: str) -> RedirectResponse:
    target = safe_callback(next_url)
    if extra:
        target += ("&" if "?" in target else "?") + urlencode(extra)
    return RedirectResponse(target, status_code=303)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    return f"{field}: {err.get('msg')}" if field else str(err.get("msg"))


def track_pageview(background_tasks: BackgroundTasks, tracker: EventTracker, request: Request,
                   user: Optional[User] = None) -> None:
    if user is not None:
        distinct_id = user.id
    else:
        distinct_id = request.client.host if request.client else "anonymous"
    background_tasks.add_task(tracker.capture, distinct_id, "$pageview",
                              {"$current_url": str(request.url), "$pathname": request.url.path})


@router.get("/")
async def index(
    request: Request,
    background_tasks: BackgroundTasks,
    edit: Optional[str] = None,
    error: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_page_user),
    board: Board = Depends(get_board),
    tracker: EventTracker = Depends(get_event_tracker),
):
    filters = TodoFilters.from_query(request.query_params)
    todos = await service.board_view(db, board, filters)
    board.store(request.session)
    editing = next((t for t in todos if t.id == edit), None) if edit else None
    track_pageview(background_tasks, tracker, request, user)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "user": user,
            "todos": todos,
            "filters": filters,
            "editing": editing,
            "error": error,
            "marked_count": len(board.marked),
            "known_tags": await service.list_tags(db),
            "here": filters.url("/"),
        },
    )


@router.post("/todos")
async def add_todo(
    background_tasks: BackgroundTasks,
    title: str = Form(""),
    description: str = Form(""),
    tags: str = Form(""),
    next_url: Optional[str] = Form(None, alias="next"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_page_user),
    tracker: EventTracker = Depends(get_event_tracker),
):
    try:
        todo_in = TodoCreate(title=title, description=description or None, tags=parse_tags(tags))
    except ValidationError as e:
        return _back(next_url, error=_first_error(e))
    todo = await service.create_todo(db, todo_in, created_by_id=user.id)
    background_tasks.add_task(tracker.capture, user.id, "todo_created", {"tags": todo.tags})
    return _back(next_url)


@router.post("/todos/clear-deleted")
async def clear_deleted(
    request: Request,
    background_tasks: BackgroundTasks,
    next_url: Optional[str] = Form(None, alias="next"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_page_user),
    board: Board = Depends(get_board),
    tracker: EventTracker = Depends(get_event_tracker),
):
    deleted = await service.clear_marked(db, board)
    board.store(request.session)
    if deleted:
        background_tasks.add_task(tracker.capture, user.id, "todo_deleted", {"count": deleted})
    return _back(next_url)


@router.post("/todos/{todo_id}/edit")
async def edit_todo(
    todo_id: str,
    background_tasks: BackgroundTasks,
    title: str = Form(""),
    description: str = Form(""),
    tags: str = Form(""),
    next_url: Optional[str] = Form(None, alias="next"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_page_user),
    tracker: EventTracker = Depends(get_event_tracker),
):
    try:
        todo_in = TodoUpdate(title=title, description=description or None, tags=parse_tags(tags))
    except ValidationError as e:
        return _back(next_url, error=_first_error(e))
    try:
        await service.update_todo(db, todo_id, todo_in)
    except TodoAppError as e:
        return _back(next_url, error=e.message)
    background_tasks.add_task(tracker.capture, user.id, "todo_updated", {"todo_id": todo_id})
    return _back(next_url)


@router.post("/todos/{todo_id}/complete")
async def toggle_complete(
    todo_id: str,
    background_tasks: BackgroundTasks,
    next_url: Optional[str] = Form(None, alias="next"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_page_user),
    tracker: EventTracker = Depends(get_event_tracker),
):
    try:
        was_completed = (await service.get_todo(db, todo_id)).completed
        todo = await service.update_todo(db, todo_id, TodoUpdate(completed=not was_completed))
    except TodoAppError as e:
        return _back(next_url, error=e.message)
    background_tasks.add_task(tracker.capture, user.id, completion_event(was_completed, todo),
                              {"todo_id": todo_id})
    return _back(next_url)


@router.post("/todos/{todo_id}/mark")
async def toggle_mark(
    todo_id: str,
    request: Request,
    next_url: Optional[str] = Form(None, alias="next"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_page_user),
    board: Board = Depends(get_board),
):
    try:
        await service.toggle_mark(db, board, todo_id)
    except TodoAppError as e:
        return _back(next_url, error=e.message)
    board.store(request.session)
    return _back(next_url)


@auth_pages.get("/login")
async def login_page(
    request: Request,
    background_tasks: BackgroundTasks,
    error: Optional[str] = None,
    tracker: EventTracker = Depends(get_event_tracker),
):
    track_pageview(background_tasks, tracker, request)
    return templates.TemplateResponse(request, "login.html", {"error": error, "username": ""})


@auth_pages.post("/login")
async def login(
    request: Request,
    background_tasks: BackgroundTasks,
    username: str = Form(""),
    db: AsyncSession = Depends(get_db),
    gateway: OAuthGateway = Depends(get_oauth_gateway),
    tracker: EventTracker = Depends(get_event_tracker),
):
    username = username.strip()
    error = None
    if not username:
        error = "Please enter your username"
    else:
        try:
            user = await auth_service.lookup(db, username)
        except UserNotFoundError:
            error = "User not found. Please contact admin to register your account."
        except UserNotAuthorizedError as e:
            error = e.message
        else:
            return await start_sign_in(request, user.provider, "/", gateway, tracker, background_tasks)
    return templates.TemplateResponse(
        request, "login.html", {"error": error, "username": username}, status_code=400
    )


@router.get("/register")
async def register_page(
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_page_user),
    tracker: EventTracker = Depends(get_event_tracker),
):
    track_pageview(background_tasks, tracker, request, user)
    background_tasks.add_task(tracker.capture, user.id, "registration_started")
    return templates.TemplateResponse(
        request, "register.html",
        {"user": user, "providers": config.SUPPORTED_PROVIDERS, "error": None, "auth_url": None},
    )


@router.post("/register")
async def register(
    request: Request,
    background_tasks: BackgroundTasks,
    alias: str = Form(""),
    provider: str = Form("google"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_page_user),
    tracker: EventTracker = Depends(get_event_tracker),
):
    context = {"user": user, "providers": config.SUPPORTED_PROVIDERS, "error": None, "auth_url": None,
               "alias": alias.strip()}
    try:
        body = AuthorizeRequest(alias=alias, provider=provider)
        _, context["auth_url"] = await auth_service.authorize(db, body.alias, body.provider)
    except ValidationError:
        context["error"] = "Alias must be 3-20 letters, digits or underscores, with a supported provider."
    except AliasExistsError:
        context["error"] = "That alias is already taken. Please choose another one."
    if context["error"]:
        return templates.TemplateResponse(request, "register.html", context, status_code=400)
    background_tasks.add_task(tracker.capture, body.alias, "registration_form_submitted",
                              {"provider": body.provider})
    return templates.TemplateResponse(request, "register.html", context)


@auth_pages.get("/auth/start")
async def auth_start(
    request: Request,
    background_tasks: BackgroundTasks,
    provider: Optional[str] = None,
    callbackUrl: Optional[str] = None,
    gateway: OAuthGateway = Depends(get_oauth_gateway),
    tracker: EventTracker = Depends(get_event_tracker),
):
    if not provider:
        return RedirectResponse("/auth/error?error=Configuration", status_code=303)
    return await start_sign_in(request, provider, callbackUrl, gateway, tracker, background_tasks)


@auth_pages.get("/auth/error")
async def auth_error(
    request: Request,
    background_tasks: BackgroundTasks,
    error: Optional[str] = None,
    tracker: EventTracker = Depends(get_event_tracker),
):
    track_pageview(background_tasks, tracker, request)
    message = AUTH_ERROR_MESSAGES.get(error or "", DEFAULT_AUTH_ERROR)
    return templates.TemplateResponse(request, "auth_error.html", {"code": error, "message": message})


@auth_pages.get("/auth/setup-complete")
async def setup_complete(
    request: Request,
    background_tasks: BackgroundTasks,
    alias: Optional[str] = None,
    tracker: EventTracker = Depends(get_event_tracker),
):
    track_pageview(background_tasks, tracker, request)
    return templates.TemplateResponse(request, "setup_complete.html", {"alias": alias})


@router.get("/analytics")
async def analytics_page(
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_page_user),
    client: PostHogClient = Depends(get_posthog_client),
    tracker: EventTracker = Depends(get_event_tracker),
):
    track_pageview(background_tasks, tracker, request, user)
    data, error = None, None
    try:
        data = await collect_dashboard(client)
    except AnalyticsNotConfiguredError:
        error = ("PostHog API not configured. Please set POSTHOG_API_KEY and "
                 "POSTHOG_PROJECT_ID environment variables.")
    except Exception:
        logger.exception("Analytics page failed to load data")
        error = "Failed to load analytics data"
    return templates.TemplateResponse(request, "analytics.html", {"user": user, "data": data, "error": error})
