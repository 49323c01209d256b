from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.board import parse_tags
from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.todo import TagCleanupOut
from app.services.todo_service import TodoService

router = APIRouter()
service = TodoService()


@router.get("", response_model=list[str])
async def list_tags(
    q: Optional[str] = None,
    exclude: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await service.list_tags(db, prefix=q, exclude=parse_tags(exclude))


@router.post("/cleanup", response_model=TagCleanupOut)
async def cleanup_tags(db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    # tags are stored on todos, so "active" is simply every tag still in use
    return TagCleanupOut(active_tags=await service.list_tags(db))
