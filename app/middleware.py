import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse

logger = logging.getLogger(__name__)

LOGIN_PATH = "/login"
PUBLIC_PREFIXES = ("/api/auth/", "/auth/", "/static/")
PUBLIC_PATHS = {LOGIN_PATH, "/api/health", "/favicon.ico"}


def is_public(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


class AuthGateMiddleware(BaseHTTPMiddleware):
    """Keeps anonymous visitors on the login page.

    Must sit inside SessionMiddleware. Only checks that a session user is
    present; route dependencies re-check the user against the database.
    """

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        logged_in = bool(request.session.get("user"))

        if not logged_in and not is_public(path):
            if path.startswith("/api/"):
                return JSONResponse({"error": "Unauthorized"}, status_code=401)
            logger.debug("Redirecting anonymous request for %s to login", path)
            return RedirectResponse(LOGIN_PATH, status_code=303)

        if logged_in and path == LOGIN_PATH:
            return RedirectResponse("/", status_code=303)

        return await call_next(request)
