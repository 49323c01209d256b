import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app import config

logger = logging.getLogger(__name__)


class TodoAppError(Exception):
    """Base error; carries the HTTP status and a machine-readable code."""

    def __init__(
        self,
        message: str,
        code: str = "TODO_APP_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result = {"error": self.message, "code": self.code}
        if self.details:
            result["details"] = self.details
        return result


class TodoNotFoundError(TodoAppError):
    def __init__(self, todo_id: str):
        super().__init__("Todo not found", code="TODO_NOT_FOUND", status_code=404,
                         details={"id": todo_id})


class AliasExistsError(TodoAppError):
    def __init__(self, alias: str):
        super().__init__("Alias already exists", code="ALIAS_EXISTS", status_code=409,
                         details={"alias": alias})


class InvalidAliasError(TodoAppError):
    def __init__(self, alias: str):
        super().__init__("Alias must be 3-20 letters, digits or underscores", code="INVALID_ALIAS",
                         status_code=400, details={"alias": alias})


class UserNotFoundError(TodoAppError):
    def __init__(self, alias: str):
        super().__init__("User not found", code="USER_NOT_FOUND", status_code=404,
                         details={"alias": alias})


class UserNotAuthorizedError(TodoAppError):
    def __init__(self, alias: str):
        super().__init__(
            "User has not completed OAuth authorization. Please contact admin to complete setup.",
            code="USER_NOT_AUTHORIZED",
            status_code=400,
            details={"alias": alias},
        )


class UnsupportedProviderError(TodoAppError):
    def __init__(self, provider: str):
        super().__init__("Invalid provider", code="INVALID_PROVIDER", status_code=400,
                         details={"provider": provider})


class AccessDeniedError(TodoAppError):
    """No authorized or pending user matches an OAuth identity."""

    def __init__(self, provider: str, oauth_id: str):
        super().__init__("Access denied", code="AccessDenied", status_code=403,
                         details={"provider": provider, "oauth_id": oauth_id})


class SetupError(TodoAppError):
    """Finalizing a pending user failed; `code` is shown on the auth error page."""

    def __init__(self, code: str, alias: str | None = None):
        super().__init__(f"Authorization setup failed: {code}", code=code, status_code=400,
                         details={"alias": alias} if alias else None)


class AnalyticsNotConfiguredError(TodoAppError):
    def __init__(self):
        super().__init__("PostHog API not configured", code="ANALYTICS_NOT_CONFIGURED",
                         status_code=503)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "configured": False}


class AnalyticsAPIError(TodoAppError):
    def __init__(self, status: int, reason: str):
        super().__init__(f"PostHog API error: {reason}", code="ANALYTICS_API_ERROR",
                         status_code=502, details={"status": status})


async def todo_app_exception_handler(request: Request, exc: TodoAppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid input data", "details": jsonable_encoder(details)},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail},
                        headers=getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content: dict[str, Any] = {"error": "Internal server error"}
    if config.is_development():
        content["details"] = str(exc)
    return JSONResponse(status_code=500, content=content)


def register_exception_handlers(app) -> None:
    app.add_exception_handler(TodoAppError, todo_app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
