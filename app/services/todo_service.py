import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.board import Board, TodoFilters
from app.exceptions import TodoNotFoundError
from app.models.todo import Todo
from app.models.user import utcnow
from app.repositories.todo_repo import TodoRepository
from app.schemas.todo import TodoCreate, TodoOut, TodoUpdate

logger = logging.getLogger(__name__)


class TodoService:
    def __init__(self):
        self.repo = TodoRepository()

    async def create_todo(self, db: AsyncSession, todo_in: TodoCreate, created_by_id: Optional[str] = None) -> Todo:
        todo = Todo(
            title=todo_in.title,
            description=todo_in.description or None,
            tags=list(todo_in.tags),
            completed=False,
            created_by_id=created_by_id,
        )
        await self.repo.create(db, todo)
        await db.commit()
        await db.refresh(todo)
        logger.info("Todo %s created", todo.id)
        return todo

    async def list_todos(self, db: AsyncSession, filters: Optional[TodoFilters] = None) -> list[Todo]:
        filters = filters or TodoFilters()
        todos = await self.repo.list_filtered(db, completed=filters.done, search=filters.q)
        # any-of tag match; tags live in a JSON column
        return [t for t in todos if filters.matches_tags(t.tags or [])]

    async def board_view(self, db: AsyncSession, board: Board, filters: Optional[TodoFilters] = None) -> list[TodoOut]:
        filters = filters or TodoFilters()
        todos = await self.list_todos(db, filters)
        marked = board.reconcile((t.id for t in todos), complete=filters.is_empty)
        return [
            TodoOut.model_validate(t).model_copy(update={"marked_for_deletion": t.id in marked})
            for t in todos
        ]

    async def get_todo(self, db: AsyncSession, todo_id: str) -> Todo:
        todo = await self.repo.get(db, todo_id)
        if todo is None:
            raise TodoNotFoundError(todo_id)
        return todo

    async def update_todo(self, db: AsyncSession, todo_id: str, todo_in: TodoUpdate) -> Todo:
        values = todo_in.model_dump(exclude_unset=True)
        if "title" in values and values["title"] is None:
            values.pop("title")
        if "tags" in values and values["tags"] is None:
            values["tags"] = []
        if "completed" in values and values["completed"] is None:
            values.pop("completed")
        values["updated_at"] = utcnow()

        todo = await self.repo.update_entity(db, todo_id, values)
        if todo is None:
            raise TodoNotFoundError(todo_id)
        await db.commit()
        await db.refresh(todo)
        logger.info("Todo %s updated (%s)", todo_id, ", ".join(sorted(values)))
        return todo

    async def delete_todo(self, db: AsyncSession, todo_id: str) -> None:
        if not await self.repo.delete(db, todo_id):
            raise TodoNotFoundError(todo_id)
        await db.commit()
        logger.info("Todo %s deleted", todo_id)

    async def toggle_mark(self, db: AsyncSession, board: Board, todo_id: str) -> bool:
        await self.get_todo(db, todo_id)
        return board.toggle(todo_id)

    async def clear_marked(self, db: AsyncSession, board: Board) -> int:
        """Delete every marked todo that still exists, then empty the board."""
        # ids of todos deleted elsewhere simply drop out here
        existing = await self.repo.get_many_by_ids(db, board.marked)
        deleted = await self.repo.delete_many(db, [t.id for t in existing])
        await db.commit()
        board.forget(list(board.marked))
        logger.info("Cleared %d todos marked for deletion", deleted)
        return deleted

    async def list_tags(self, db: AsyncSession, prefix: Optional[str] = None, exclude=()) -> list[str]:
        tags = set()
        for tag_list in await self.repo.all_tag_lists(db):
            tags.update(tag_list)
        if prefix:
            needle = prefix.strip().lower()
            tags = {t for t in tags if t.lower().startswith(needle)}
        tags.difference_update(exclude)
        return sorted(tags)


def completion_event(was_completed: bool, todo: Todo) -> str:
    """Usage event for an update; only the open -> done transition counts as a completion."""
    return "todo_completed" if todo.completed and not was_completed else "todo_updated"
