from mangum import Mangum

from app.main import create_app
from app.routers import auth_router, pages, tag_router, todo_router

# JSON API plus the sign-in pages its auth links and redirects point at
app = create_app(
    (
        (auth_router.router, "/api/auth", "Auth"),
        (todo_router.router, "/api/todos", "Todos"),
        (tag_router.router, "/api/tags", "Tags"),
    ),
    page_routers=(pages.auth_pages,),
    title="Todo Lambda",
)

handler = Mangum(app)
