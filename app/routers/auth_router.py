import logging
from typing import Optional
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app import config
from app.analytics.tracking import EventTracker, get_event_tracker
from app.database import get_db
from app.dependencies import (
    SESSION_USER,
    auth_service,
    get_current_user_optional,
    session_identity,
    store_identity,
    store_user,
)
from app.exceptions import AccessDeniedError, SetupError
from app.models.user import User
from app.oauth import OAuthFlowError, OAuthGateway, get_oauth_gateway
from app.schemas.user import (
    AuthorizeRequest,
    AuthorizeResponse,
    LookupRequest,
    LookupResponse,
    SessionOut,
    UserOut,
)
from app.services.auth_service import SignInState

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_CALLBACK = "callback_url"


def error_redirect(code: str) -> RedirectResponse:
    return RedirectResponse(f"/auth/error?{urlencode({'error': code})}", status_code=303)


def safe_callback(url: Optional[str]) -> str:
    """Reduce a callback URL to a local path; foreign origins fall back to '/'."""
    if not url:
        return "/"
    parts = urlsplit(url)
    if parts.scheme or parts.netloc:
        base = urlsplit(config.APP_BASE_URL)
        if (parts.scheme, parts.netloc) != (base.scheme, base.netloc):
            return "/"
    path = parts.path or "/"
    if not path.startswith("/") or path.startswith("//"):
        return "/"
    return f"{path}?{parts.query}" if parts.query else path


async def start_sign_in(
    request: Request,
    provider: str,
    callback_url: Optional[str],
    gateway: OAuthGateway,
    tracker: EventTracker,
    background_tasks: BackgroundTasks,
):
    if not gateway.is_enabled(provider):
        logger.warning("Sign in requested for unconfigured provider %s", provider)
        return error_redirect("Configuration")
    request.session[SESSION_CALLBACK] = safe_callback(callback_url)
    redirect_uri = f"{config.APP_BASE_URL}/api/auth/callback/{provider}"
    background_tasks.add_task(tracker.capture, request.client.host if request.client else "anonymous",
                              "oauth_redirect_started", {"provider": provider})
    return await gateway.authorize_redirect(request, provider, redirect_uri)


@router.post("/authorize", response_model=AuthorizeResponse)
async def authorize(
    body: AuthorizeRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    tracker: EventTracker = Depends(get_event_tracker),
):
    user, auth_url = await auth_service.authorize(db, body.alias, body.provider)
    background_tasks.add_task(tracker.capture, body.alias, "registration_form_submitted",
                              {"provider": body.provider})
    return AuthorizeResponse(auth_url=auth_url, user_id=user.id)


@router.post("/lookup", response_model=LookupResponse)
async def lookup(body: LookupRequest, db: AsyncSession = Depends(get_db)):
    user = await auth_service.lookup(db, body.username)
    return LookupResponse(alias=user.alias, provider=user.provider)


@router.get("/signin/{provider}")
async def signin(
    provider: str,
    request: Request,
    background_tasks: BackgroundTasks,
    callbackUrl: Optional[str] = None,
    gateway: OAuthGateway = Depends(get_oauth_gateway),
    tracker: EventTracker = Depends(get_event_tracker),
):
    return await start_sign_in(request, provider, callbackUrl, gateway, tracker, background_tasks)


@router.get("/callback/{provider}", name="oauth_callback")
async def oauth_callback(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: OAuthGateway = Depends(get_oauth_gateway),
):
    if not gateway.is_enabled(provider):
        return error_redirect("Configuration")
    try:
        identity = await gateway.fetch_identity(request, provider)
    except OAuthFlowError as e:
        logger.warning("OAuth callback for %s failed: %s", provider, e)
        return error_redirect("OAuthCallback")

    try:
        result = await auth_service.sign_in(db, identity)
    except AccessDeniedError:
        request.session.pop(SESSION_USER, None)
        return error_redirect("AccessDenied")

    store_identity(request, identity.provider, identity.account_id)
    if result.state is SignInState.AUTHORIZED:
        store_user(request, result.user)
    else:
        request.session.pop(SESSION_USER, None)
    target = request.session.pop(SESSION_CALLBACK, None) or "/"
    return RedirectResponse(target, status_code=303)


@router.get("/callback-setup")
async def callback_setup(
    request: Request,
    background_tasks: BackgroundTasks,
    alias: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    tracker: EventTracker = Depends(get_event_tracker),
):
    identity = session_identity(request)
    try:
        user = await auth_service.finalize(
            db, alias, provider=identity.get("provider"), oauth_id=identity.get("oauth_id")
        )
    except SetupError as e:
        logger.warning("Setup for alias %r failed: %s", alias, e.code)
        return error_redirect(e.code)
    except Exception:
        logger.exception("Error in callback setup for alias %r", alias)
        return error_redirect("InternalError")

    store_user(request, user)
    background_tasks.add_task(tracker.capture, user.alias, "registration_completed",
                              {"provider": user.provider})
    return RedirectResponse(f"/auth/setup-complete?{urlencode({'alias': user.alias})}", status_code=303)


@router.get("/session", response_model=SessionOut, response_model_exclude_none=True)
async def current_session(request: Request, user: Optional[User] = Depends(get_current_user_optional)):
    if user is None:
        return SessionOut()
    identity = session_identity(request)
    return SessionOut(
        user=UserOut.model_validate(user),
        provider=identity.get("provider", user.provider),
        provider_id=identity.get("oauth_id", user.oauth_id),
    )


@router.api_route("/signout", methods=["GET", "POST"])
async def signout(request: Request):
    request.session.clear()
    return RedirectResponse("/login", status_code=303)
