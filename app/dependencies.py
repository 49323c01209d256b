import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.board import Board
from app.database import get_db
from app.models.user import User
from app.services.auth_service import AuthService

logger = logging.getLogger(__name__)

SESSION_USER = "user"
SESSION_OAUTH = "oauth"

auth_service = AuthService()


def store_user(request: Request, user: User) -> None:
    request.session[SESSION_USER] = {
        "id": user.id,
        "alias": user.alias,
        "email": user.email,
        "image": user.image,
    }


def store_identity(request: Request, provider: str, oauth_id: str) -> None:
    request.session[SESSION_OAUTH] = {"provider": provider, "oauth_id": oauth_id}


def session_identity(request: Request) -> dict:
    return request.session.get(SESSION_OAUTH) or {}


async def get_current_user_optional(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    data = request.session.get(SESSION_USER)
    if not data:
        return None
    user = await auth_service.get_active_user(db, data.get("id"))
    if user is None:
        # deleted or deauthorized since the session was issued
        logger.info("Session invalidated: user %s not found or not authorized", data.get("alias"))
        request.session.pop(SESSION_USER, None)
    return user


async def get_current_user(user: Optional[User] = Depends(get_current_user_optional)) -> User:
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def get_board(request: Request) -> Board:
    return Board.load(request.session)


async def get_page_user(user: Optional[User] = Depends(get_current_user_optional)) -> User:
    """Like get_current_user, but sends browsers back to the login page."""
    if user is None:
        raise HTTPException(status_code=status.HTTP_303_SEE_OTHER, detail="Login required",
                            headers={"Location": "/login"})
    return user
