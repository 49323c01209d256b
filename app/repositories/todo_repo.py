from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.todo import Todo
from app.repositories.base import BaseRepository


class TodoRepository(BaseRepository[Todo]):
    def __init__(self):
        super().__init__(Todo)

    async def list_filtered(
        self,
        db: AsyncSession,
        *,
        completed: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> list[Todo]:
        stmt = select(Todo)
        if completed is not None:
            stmt = stmt.where(Todo.completed.is_(completed))
        if search:
            # literal match: % and _ in the search text are escaped
            stmt = stmt.where(
                or_(
                    Todo.title.icontains(search, autoescape=True),
                    Todo.description.icontains(search, autoescape=True),
                )
            )
        # newest activity first
        stmt = stmt.order_by(Todo.updated_at.desc(), Todo.id)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def all_tag_lists(self, db: AsyncSession) -> list[list[str]]:
        result = await db.execute(select(Todo.tags))
        return [tags or [] for tags in result.scalars().all()]

