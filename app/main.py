import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from app import config
from app.database import init_db
from app.exceptions import register_exception_handlers
from app.middleware import AuthGateMiddleware
from app.routers import analytics_router, auth_router, pages, tag_router, todo_router

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_ROUTERS = (
    (auth_router.router, "/api/auth", "Auth"),
    (todo_router.router, "/api/todos", "Todos"),
    (tag_router.router, "/api/tags", "Tags"),
    (analytics_router.router, "/api/analytics", "Analytics"),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.CREATE_TABLES_ON_STARTUP:
        logger.info("Creating database tables")
        await init_db()
    yield


PAGE_ROUTERS = (pages.auth_pages, pages.router)


def create_app(routers=API_ROUTERS, *, page_routers=PAGE_ROUTERS, title: str = "Todo Multi-Users") -> FastAPI:
    app = FastAPI(title=title, lifespan=lifespan)

    # added last = outermost: the gate needs the decoded session
    app.add_middleware(AuthGateMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.SECRET_KEY,
        session_cookie=config.SESSION_COOKIE_NAME,
        max_age=config.SESSION_MAX_AGE,
        same_site="lax",
        https_only=config.SESSION_HTTPS_ONLY,
    )
    register_exception_handlers(app)

    for router, prefix, tag in routers:
        app.include_router(router, prefix=prefix, tags=[tag])
    for router in page_routers:
        app.include_router(router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
